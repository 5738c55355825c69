"""Async Solana JSON-RPC client implementing :class:`LedgerView`."""
from __future__ import annotations

import base64
import logging
import time
from typing import Any, List, Optional, Union

import httpx
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import Transaction, VersionedTransaction

from .config import SolanaPayConfig, get_config
from .exceptions import LedgerError, SolanaRPCError
from .ledger import (
    AccountInfo,
    Commitment,
    CommitmentLike,
    ConfirmedTransaction,
    SignatureInfo,
    SignatureStatus,
)
from .logging_utils import get_pay_logger

logger = logging.getLogger(__name__)


class SolanaClient:
    """Async Solana JSON-RPC client.

    Uses raw httpx instead of solana-py's RPC layer; every method is a
    JSON-RPC 2.0 call whose result is decoded into the records in
    :mod:`solpay_mint.ledger`.
    """

    def __init__(
        self,
        config: SolanaPayConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or get_config()
        self._client = http_client or httpx.AsyncClient(timeout=self.config.timeout)
        self._request_id = 0

    def _commitment(self, commitment: Optional[CommitmentLike]) -> str:
        return Commitment(commitment or self.config.commitment).value

    async def _rpc(self, method: str, params: list[Any] | None = None) -> Any:
        """Make a JSON-RPC call to Solana."""
        self._request_id += 1
        request_id = self._request_id
        payload = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params or [],
        }
        pay_logger = get_pay_logger()
        started = time.monotonic()
        try:
            resp = await self._client.post(self.config.rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            pay_logger.log_rpc_call(
                method, request_id, (time.monotonic() - started) * 1000, False, str(e)
            )
            raise LedgerError(f"RPC {method} failed: {e}", details={"method": method}) from e
        except ValueError as e:
            pay_logger.log_rpc_call(
                method, request_id, (time.monotonic() - started) * 1000, False, "invalid JSON"
            )
            raise LedgerError(f"RPC {method} returned invalid JSON", details={"method": method}) from e

        duration_ms = (time.monotonic() - started) * 1000
        if "error" in data:
            error = data["error"] or {}
            message = error.get("message", "Unknown RPC error")
            pay_logger.log_rpc_call(method, request_id, duration_ms, False, message)
            raise SolanaRPCError(message, method=method, error_data=error)

        pay_logger.log_rpc_call(method, request_id, duration_ms, True)
        return data.get("result")

    async def get_account_info(
        self, address: Pubkey, commitment: Optional[CommitmentLike] = None
    ) -> Optional[AccountInfo]:
        result = await self._rpc(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self._commitment(commitment)}],
        )
        value = result.get("value") if result else None
        if value is None:
            return None
        return AccountInfo.from_rpc(value)

    async def get_balance(self, address: Pubkey) -> int:
        """Get SOL balance in lamports."""
        result = await self._rpc("getBalance", [str(address), {"commitment": self.config.commitment}])
        return result["value"]

    async def get_minimum_balance_for_rent_exemption(self, data_size: int) -> int:
        """Get minimum balance for rent exemption."""
        return await self._rpc("getMinimumBalanceForRentExemption", [data_size])

    async def get_latest_blockhash(self) -> Hash:
        """Get latest blockhash for transaction building."""
        result = await self._rpc(
            "getLatestBlockhash", [{"commitment": self.config.commitment}]
        )
        return Hash.from_string(result["value"]["blockhash"])

    async def get_signatures_for_address(
        self,
        address: Pubkey,
        before: Optional[str] = None,
        until: Optional[str] = None,
        limit: Optional[int] = None,
        commitment: Optional[CommitmentLike] = None,
    ) -> List[SignatureInfo]:
        """Signatures involving ``address``, newest first."""
        options: dict[str, Any] = {"commitment": self._commitment(commitment)}
        if before:
            options["before"] = before
        if until:
            options["until"] = until
        if limit:
            options["limit"] = limit
        result = await self._rpc("getSignaturesForAddress", [str(address), options])
        return [SignatureInfo.from_rpc(item) for item in result or []]

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        result = await self._rpc(
            "getSignatureStatuses", [[signature], {"searchTransactionHistory": True}]
        )
        statuses = result.get("value", []) if result else []
        if not statuses or statuses[0] is None:
            return None
        return SignatureStatus.from_rpc(statuses[0])

    async def get_transaction(
        self, signature: str, commitment: Optional[CommitmentLike] = None
    ) -> Optional[ConfirmedTransaction]:
        level = self._commitment(commitment)
        # getTransaction does not accept "processed"
        if level == Commitment.PROCESSED.value:
            level = Commitment.CONFIRMED.value
        result = await self._rpc(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": level,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if result is None:
            return None
        return ConfirmedTransaction.from_rpc(signature, result)

    async def send_transaction(self, transaction: Union[Transaction, VersionedTransaction]) -> str:
        """Send a signed transaction. Returns transaction signature."""
        encoded = base64.b64encode(bytes(transaction)).decode("ascii")
        result = await self._rpc(
            "sendTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": self.config.commitment,
                },
            ],
        )
        logger.info("Solana tx sent: %s", result)
        return result

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "SolanaClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
