"""Locate the transaction tagged with a reference account."""
from __future__ import annotations

import logging
from typing import Optional

from solders.pubkey import Pubkey

from .config import get_config
from .exceptions import NotFoundError
from .ledger import CommitmentLike, LedgerView
from .logging_utils import OperationType, get_pay_logger, log_operation

logger = logging.getLogger(__name__)


@log_operation(OperationType.FIND_SIGNATURE)
async def find_reference_signature(
    ledger: LedgerView,
    reference: Pubkey,
    until: Optional[str] = None,
    before: Optional[str] = None,
    limit: Optional[int] = None,
    commitment: Optional[CommitmentLike] = None,
) -> str:
    """Newest successful signature referencing ``reference``.

    One history query, newest first. Pass the last seen signature as
    ``until`` to poll incrementally. Failed transactions are skipped, so a
    signature returned here never belongs to a transaction that errored.

    Raises:
        NotFoundError: history empty or every entry errored. Transient:
            callers poll again on their own schedule.
    """
    config = get_config()
    signatures = await ledger.get_signatures_for_address(
        reference,
        before=before,
        until=until,
        limit=limit or config.signature_search_limit,
        commitment=commitment or config.commitment,
    )
    if not signatures:
        raise NotFoundError(f"no transactions reference {reference}", details={"reference": str(reference)})

    for info in signatures:
        if info.ok:
            logger.debug(
                f"Found {info.signature} for reference {get_pay_logger().address(reference)} at slot {info.slot}"
            )
            return info.signature

    raise NotFoundError(
        f"all {len(signatures)} transactions referencing {reference} failed",
        details={"reference": str(reference), "errored": len(signatures)},
    )
