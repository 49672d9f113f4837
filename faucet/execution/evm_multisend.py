"""
EVM delivery through the AtomicMultiSend contract.

Every ERC-20 leg is pulled from the faucet account by the contract, so each
token needs an allowance covering the leg before the batch call. Native legs
ride along as ``msg.value``. The batch either lands completely or reverts.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_utils import encode_hex, keccak, to_checksum_address

from ..config import NATIVE_TOKEN_ADDRESS, TokenConfig
from ..core.errors import (
    ApprovalError,
    ChainError,
    ChainRequestError,
    EvmSendError,
    InclusionTimeoutError,
    InsufficientAllowanceError,
    TransactionRevertedError,
)
from ..core.keys import Signer
from ..core.models import TokenAmount
from ..core.retry import RetryPolicy
from ..providers.evm_rpc import EvmRpcClient, EvmRpcError
from .contracts import ERC20, AtomicMultiSend

logger = logging.getLogger(__name__)

RETRYABLE_NONCE_MARKERS = (
    "nonce too low",
    "replacement transaction underpriced",
)

# The node already holds this exact signed transaction
ALREADY_KNOWN_MARKERS = (
    "already known",
    "known transaction",
)


def is_already_known(exc: EvmRpcError) -> bool:
    text = (exc.rpc_message or str(exc)).lower()
    return any(marker in text for marker in ALREADY_KNOWN_MARKERS)


def is_retryable_evm_error(exc: BaseException) -> bool:
    """Nonce races that a fresh nonce and signature can fix."""
    if not isinstance(exc, (EvmSendError, EvmRpcError)):
        return False
    text = str(exc).lower()
    return any(marker in text for marker in RETRYABLE_NONCE_MARKERS)


def default_evm_retry_policy(max_attempts: int = 3, delay_seconds: float = 1.0) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=max_attempts,
        delay_seconds=delay_seconds,
        is_retryable=is_retryable_evm_error,
        name="evm-send",
    )


def _receipt_status(receipt: Dict[str, Any]) -> int:
    return int(receipt.get("status", "0x1"), 16)


def _receipt_int(receipt: Dict[str, Any], key: str) -> Optional[int]:
    value = receipt.get(key)
    return int(value, 16) if value else None


@dataclass
class SubmittedTx:
    tx_hash: str
    nonce: int
    gas_limit: int
    gas_price: int
    attempts: int


@dataclass
class EvmSendResult:
    """Outcome of a confirmed atomicMultiSend call."""
    tx_hash: str
    nonce: int
    attempts: int
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    gas_limit: Optional[int] = None
    approval_tx_hashes: List[str] = field(default_factory=list)


@dataclass
class ApprovalStatus:
    """Allowance granted by the faucet account to the multi-send contract."""
    denom: str
    token: str
    allowance: int
    required: int          # Low-watermark below which the sweep tops up
    approval_amount: int   # What a top-up approves
    error: Optional[str] = None

    @property
    def sufficient(self) -> bool:
        return self.error is None and self.allowance >= self.required

    def to_dict(self) -> Dict[str, Any]:
        return {
            "denom": self.denom,
            "token": self.token,
            "allowance": str(self.allowance),
            "required": str(self.required),
            "approval_amount": str(self.approval_amount),
            "sufficient": self.sufficient,
            "error": self.error,
        }


class EvmMultiSendOrchestrator:
    """
    Approval management and atomic multi-token sends from the faucet account.

    Callers never need to hold the signer lock themselves: ``send`` and
    ``top_up_approvals`` take it for the whole nonce -> sign -> inclusion span.
    """

    def __init__(
        self,
        rpc: EvmRpcClient,
        signer: Signer,
        tokens: Sequence[TokenConfig],
        *,
        contract_address: str,
        chain_id: int,
        retry_policy: Optional[RetryPolicy] = None,
        gas_margin_percent: int = 130,
        inclusion_timeout: float = 60.0,
        approval_multiplier: int = 100,
        low_watermark_multiplier: int = 10,
        poll_interval: float = 1.0,
    ):
        self.rpc = rpc
        self.signer = signer
        self.tokens = list(tokens)
        self.contract_address = contract_address
        self.chain_id = chain_id
        self.retry_policy = retry_policy or default_evm_retry_policy()
        self.gas_margin_percent = gas_margin_percent
        self.inclusion_timeout = inclusion_timeout
        self.approval_multiplier = approval_multiplier
        self.low_watermark_multiplier = low_watermark_multiplier
        self.poll_interval = poll_interval

        self._by_contract: Dict[str, TokenConfig] = {
            t.contract.lower(): t for t in self.tokens if not t.is_native
        }

    @property
    def operator(self) -> str:
        return self.signer.hex_address

    def erc20_tokens(self) -> List[TokenConfig]:
        return [t for t in self.tokens if not t.is_native]

    def approval_amount_for(self, token: TokenConfig, needed: int = 0) -> int:
        return max(needed, token.target_balance * self.approval_multiplier)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_allowance(self, token_address: str) -> int:
        result = await self.rpc.call(
            token_address,
            ERC20.encode_allowance(self.operator, self.contract_address),
        )
        return ERC20.decode_uint256(result)

    async def check_approvals(self) -> List[ApprovalStatus]:
        """Allowance of every ERC-20 token towards the multi-send contract."""
        statuses = []
        for token in self.erc20_tokens():
            status = ApprovalStatus(
                denom=token.denom,
                token=token.contract,
                allowance=0,
                required=token.target_balance * self.low_watermark_multiplier,
                approval_amount=self.approval_amount_for(token),
            )
            try:
                status.allowance = await self.get_allowance(token.contract)
            except (ChainRequestError, ValueError) as e:
                logger.warning(f"Allowance read failed for {token.denom}: {e}")
                status.error = str(e)
            statuses.append(status)
        return statuses

    # ------------------------------------------------------------------
    # Transaction plumbing (signer lock must be held)
    # ------------------------------------------------------------------

    async def _submit(self, to: str, data: str, value: int, label: str) -> SubmittedTx:
        """Fetch nonce, estimate, sign and send. Retries nonce races from scratch."""

        async def attempt(number: int) -> SubmittedTx:
            nonce = await self.rpc.get_transaction_count(self.operator, "pending")
            call = {"from": self.operator, "to": to, "data": data, "value": value}
            try:
                estimate = await self.rpc.estimate_gas(call)
            except EvmRpcError as e:
                raise EvmSendError(
                    f"Gas estimation for {label} failed: {e.rpc_message}",
                    {"label": label, "rpc_error": e.details.get("error")},
                ) from e
            gas_limit = estimate * self.gas_margin_percent // 100
            gas_price = await self.rpc.gas_price()

            raw = self.signer.sign_evm_transaction(
                {
                    "chainId": self.chain_id,
                    "nonce": nonce,
                    "to": to_checksum_address(to),
                    "value": value,
                    "data": data,
                    "gas": gas_limit,
                    "gasPrice": gas_price,
                }
            )
            logger.info(f"Submitting {label} attempt={number} nonce={nonce} gas={gas_limit}")
            try:
                tx_hash = await self.rpc.send_raw_transaction(raw)
            except EvmRpcError as e:
                if is_already_known(e):
                    tx_hash = encode_hex(keccak(raw))
                    logger.info(f"{label} already in mempool as {tx_hash}; waiting for it")
                    return SubmittedTx(
                        tx_hash=tx_hash,
                        nonce=nonce,
                        gas_limit=gas_limit,
                        gas_price=gas_price,
                        attempts=number,
                    )
                raise EvmSendError(
                    f"{label} rejected: {e.rpc_message}",
                    {"label": label, "nonce": nonce},
                ) from e
            return SubmittedTx(
                tx_hash=tx_hash,
                nonce=nonce,
                gas_limit=gas_limit,
                gas_price=gas_price,
                attempts=number,
            )

        return await self.retry_policy.run(attempt)

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        """Poll for a receipt, bounded by the inclusion timeout."""

        async def poll() -> Dict[str, Any]:
            while True:
                try:
                    receipt = await self.rpc.get_transaction_receipt(tx_hash)
                except ChainRequestError as e:
                    logger.warning(f"Receipt lookup for {tx_hash} failed: {e}")
                    receipt = None
                if receipt:
                    return receipt
                await asyncio.sleep(self.poll_interval)

        try:
            return await asyncio.wait_for(poll(), self.inclusion_timeout)
        except asyncio.TimeoutError:
            raise InclusionTimeoutError(
                f"Transaction {tx_hash} not included within {self.inclusion_timeout}s",
                tx_hash=tx_hash,
                timeout=self.inclusion_timeout,
            )

    async def _approve(self, denom: str, token_address: str, amount: int) -> str:
        submitted = await self._submit(
            token_address,
            ERC20.encode_approve(self.contract_address, amount),
            0,
            f"approve({denom})",
        )
        receipt = await self.wait_for_receipt(submitted.tx_hash)
        if _receipt_status(receipt) == 0:
            raise ApprovalError(
                f"Approval of {denom} reverted",
                {"denom": denom, "tx_hash": submitted.tx_hash},
            )
        logger.info(f"Approved {amount} {denom} for multi-send in {submitted.tx_hash}")
        return submitted.tx_hash

    async def _ensure_allowance(self, leg: TokenAmount) -> Optional[str]:
        """Make sure the contract may pull ``leg``. Returns the approval hash, if one was sent."""
        allowance = await self.get_allowance(leg.contract)
        if allowance >= leg.amount:
            return None

        token = self._by_contract.get(leg.contract.lower())
        target = token.target_balance if token else leg.amount
        amount = max(leg.amount, target * self.approval_multiplier)
        logger.info(f"Allowance for {leg.denom} is {allowance}, below {leg.amount}; approving {amount}")
        tx_hash = await self._approve(leg.denom, leg.contract, amount)

        allowance = await self.get_allowance(leg.contract)
        if allowance < leg.amount:
            raise InsufficientAllowanceError(
                f"Allowance for {leg.denom} still {allowance} after approval, need {leg.amount}",
                {"denom": leg.denom, "allowance": str(allowance), "needed": str(leg.amount)},
            )
        return tx_hash

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def send(self, recipient: str, legs: Sequence[TokenAmount]) -> EvmSendResult:
        """Deliver every leg to ``recipient`` in one atomicMultiSend call."""
        if not legs:
            raise ValueError("Nothing to send")
        if not self.contract_address:
            raise EvmSendError("No AtomicMultiSend contract configured")

        async with self.signer.lock:
            approvals = []
            for leg in legs:
                if leg.is_native:
                    continue
                tx_hash = await self._ensure_allowance(leg)
                if tx_hash:
                    approvals.append(tx_hash)

            transfers: List[Tuple[str, int]] = [
                (NATIVE_TOKEN_ADDRESS if leg.is_native else leg.contract, leg.amount)
                for leg in legs
            ]
            value = sum(leg.amount for leg in legs if leg.is_native)

            submitted = await self._submit(
                self.contract_address,
                AtomicMultiSend.encode_multi_send(recipient, transfers),
                value,
                "atomicMultiSend",
            )
            receipt = await self.wait_for_receipt(submitted.tx_hash)
            if _receipt_status(receipt) == 0:
                raise TransactionRevertedError(
                    f"atomicMultiSend to {recipient} reverted",
                    tx_hash=submitted.tx_hash,
                )

        logger.info(f"atomicMultiSend to {recipient} confirmed in {submitted.tx_hash}")
        return EvmSendResult(
            tx_hash=submitted.tx_hash,
            nonce=submitted.nonce,
            attempts=submitted.attempts,
            block_number=_receipt_int(receipt, "blockNumber"),
            gas_used=_receipt_int(receipt, "gasUsed"),
            gas_limit=submitted.gas_limit,
            approval_tx_hashes=approvals,
        )

    async def top_up_approvals(self) -> List[ApprovalStatus]:
        """Re-approve every token whose allowance fell below its low watermark."""
        if not self.contract_address:
            return []

        async with self.signer.lock:
            statuses = await self.check_approvals()
            for status in statuses:
                if status.error or status.sufficient:
                    continue
                token = self._by_contract[status.token.lower()]
                try:
                    await self._approve(token.denom, token.contract, status.approval_amount)
                    status.allowance = await self.get_allowance(token.contract)
                except ChainError as e:
                    logger.error(f"Approval top-up for {token.denom} failed: {e}")
                    status.error = str(e)
        return statuses


class ApprovalSweeper:
    """Background task that keeps allowances above their low watermark."""

    def __init__(self, orchestrator: EvmMultiSendOrchestrator, interval_seconds: float = 300.0):
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> List[ApprovalStatus]:
        try:
            return await self.orchestrator.top_up_approvals()
        except Exception as e:
            # Next tick retries
            logger.error(f"Approval sweep failed: {e}")
            return []

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.sweep_once()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Approval sweep started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
