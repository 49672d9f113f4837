"""
Cosmos broadcast with bounded refetch-and-resign retry.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

from ..core.errors import ChainRequestError, CosmosBroadcastError
from ..core.retry import RetryPolicy
from ..providers.cosmos_rest import CosmosRestClient
from .cosmos_tx import CosmosTxSigner, SignedCosmosTx, is_retryable_cosmos_error
from .protobuf import Coin

logger = logging.getLogger(__name__)


@dataclass
class CosmosSendResult:
    tx_hash: str
    sequence: int
    attempts: int
    confirmed: bool = False
    height: Optional[int] = None
    gas_used: Optional[int] = None
    gas_wanted: Optional[int] = None
    tx_response: Optional[Dict[str, Any]] = field(default=None, repr=False)
    rest_api_url: Optional[str] = None


def default_cosmos_retry_policy(max_attempts: int = 3, delay_seconds: float = 2.0) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=max_attempts,
        delay_seconds=delay_seconds,
        is_retryable=is_retryable_cosmos_error,
        name="cosmos-broadcast",
    )


def _optional_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    return int(value)


class CosmosBroadcaster:
    """
    Sends bank transfers from the faucet account.

    Every attempt refetches the account and re-signs; the bytes of a failed
    attempt are never resent. The signer lock is held from the first fetch
    until the final outcome is known.
    """

    def __init__(
        self,
        rest: CosmosRestClient,
        tx_signer: CosmosTxSigner,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        enrichment_attempts: int = 5,
        enrichment_interval: float = 1.0,
    ):
        self.rest = rest
        self.tx_signer = tx_signer
        self.retry_policy = retry_policy or default_cosmos_retry_policy()
        self.enrichment_attempts = enrichment_attempts
        self.enrichment_interval = enrichment_interval

    async def send(self, recipient: str, coins: Sequence[Coin]) -> CosmosSendResult:
        async with self.tx_signer.signer.lock:
            attempts = 0

            async def attempt(number: int) -> Tuple[SignedCosmosTx, str]:
                nonlocal attempts
                attempts = number
                account = await self.rest.get_account(self.tx_signer.address)
                signed = self.tx_signer.build_send(account, recipient, coins)
                logger.info(
                    "Broadcasting Cosmos tx attempt=%d sequence=%d recipient=%s",
                    number,
                    signed.sequence,
                    recipient,
                )
                tx_hash = await self._broadcast(signed)
                return signed, tx_hash

            signed, tx_hash = await self.retry_policy.run(attempt)

            result = CosmosSendResult(
                tx_hash=tx_hash,
                sequence=signed.sequence,
                attempts=attempts,
                rest_api_url=self.rest.tx_url(tx_hash),
            )
            await self._enrich(result)
            return result

    async def _broadcast(self, signed: SignedCosmosTx) -> str:
        body = await self.rest.broadcast_tx(signed.tx_base64)
        tx_response = body.get("tx_response")

        if tx_response is None:
            # Gateway-level rejection: {"code": n, "message": "..."}
            message = str(body.get("message") or body)
            raise CosmosBroadcastError(
                f"Broadcast rejected: {message}",
                tx_code=int(body.get("code") or -1),
                raw_log=message,
            )

        code = int(tx_response.get("code") or 0)
        tx_hash = tx_response.get("txhash")
        if code != 0:
            raw_log = tx_response.get("raw_log", "")
            raise CosmosBroadcastError(
                f"Transaction failed with code {code}: {raw_log}",
                tx_code=code,
                raw_log=raw_log,
                tx_hash=tx_hash,
            )
        if not tx_hash:
            raise CosmosBroadcastError("Broadcast response carried no tx hash", raw_log=str(body))
        return tx_hash

    async def _enrich(self, result: CosmosSendResult) -> None:
        """Best-effort inclusion lookup. Never downgrades an accepted send.

        A tx that is found with a non-zero code did fail in delivery, and
        that is reported as a (non-retryable) error.
        """
        for poll in range(self.enrichment_attempts):
            if poll:
                await asyncio.sleep(self.enrichment_interval)
            try:
                tx_response = await self.rest.get_tx(result.tx_hash)
            except ChainRequestError as e:
                logger.warning("Tx lookup for %s failed: %s", result.tx_hash, e)
                continue
            if not tx_response:
                continue

            code = int(tx_response.get("code") or 0)
            if code != 0:
                raw_log = tx_response.get("raw_log", "")
                raise CosmosBroadcastError(
                    f"Transaction {result.tx_hash} failed in delivery with code {code}: {raw_log}",
                    tx_code=code,
                    raw_log=raw_log,
                    tx_hash=result.tx_hash,
                )
            try:
                result.height = _optional_int(tx_response.get("height"))
                result.gas_used = _optional_int(tx_response.get("gas_used"))
                result.gas_wanted = _optional_int(tx_response.get("gas_wanted"))
            except (TypeError, ValueError) as e:
                logger.warning("Unparsable tx response for %s: %s", result.tx_hash, e)
            result.tx_response = tx_response
            result.confirmed = True
            return

        logger.warning("Tx %s accepted but inclusion not observed; returning without enrichment", result.tx_hash)
