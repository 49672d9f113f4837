"""
Faucet service: the control flow of one dispense.

classify -> resolve balances -> plan -> admit (reserve) -> send.
A send that fails hands its reserved quota back.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Set

from ..config import Settings, TokenConfig
from ..core.address import classify_address, normalize_address, require_supported_address
from ..core.errors import ChainError, InvalidAddressError, KeyDerivationError, RequestInProgressError
from ..core.keys import Signer, derive_key_material
from ..core.models import (
    AddressType,
    TokenAmount,
    TokenBalance,
    TokenTransferOutcome,
    TransferRequest,
    TransferResult,
    TransferStatus,
)
from ..core.planner import plan_distribution, plan_testing_amounts
from ..core.retry import RetryPolicy
from ..execution.broadcaster import CosmosBroadcaster
from ..execution.cosmos_tx import CosmosFee, CosmosTxSigner, is_retryable_cosmos_error
from ..execution.evm_multisend import (
    ApprovalStatus,
    ApprovalSweeper,
    EvmMultiSendOrchestrator,
    is_retryable_evm_error,
)
from ..providers.cosmos_rest import CosmosRestClient
from ..providers.evm_rpc import EvmRpcClient
from .balances import BalanceResolver
from .rate_limit import (
    FrequencyLimiter,
    RateLimiter,
    RateLimitStore,
    SnapshotFlusher,
    TokenAllowanceTracker,
)

logger = logging.getLogger(__name__)


def _outcomes(sent: Sequence[TokenAmount]) -> List[TokenTransferOutcome]:
    return [
        TokenTransferOutcome(
            denom=t.denom,
            amount=t.amount,
            token=t.denom if t.is_native else t.contract,
            type="native" if t.is_native else "erc20",
            status="sent",
        )
        for t in sent
    ]


class FaucetService:
    """Owns every collaborator needed to serve dispense requests."""

    def __init__(
        self,
        settings: Settings,
        tokens: Sequence[TokenConfig],
        *,
        signer: Signer,
        evm_rpc: EvmRpcClient,
        cosmos_rest: CosmosRestClient,
        balances: BalanceResolver,
        broadcaster: CosmosBroadcaster,
        orchestrator: EvmMultiSendOrchestrator,
        rate_limiter: RateLimiter,
        store: Optional[RateLimitStore] = None,
        flusher: Optional[SnapshotFlusher] = None,
        sweeper: Optional[ApprovalSweeper] = None,
    ):
        self.settings = settings
        self.tokens = list(tokens)
        self.signer = signer
        self.evm_rpc = evm_rpc
        self.cosmos_rest = cosmos_rest
        self.balances = balances
        self.broadcaster = broadcaster
        self.orchestrator = orchestrator
        self.rate_limiter = rate_limiter
        self.store = store
        self.flusher = flusher
        self.sweeper = sweeper
        self._in_flight: Set[str] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def startup(self) -> None:
        if self.settings.expected_evm_address or self.settings.expected_cosmos_address:
            self.signer.verify_addresses(
                self.settings.expected_evm_address or None,
                self.settings.expected_cosmos_address or None,
            )
        logger.info(f"Faucet signer: evm={self.signer.hex_address} cosmos={self.signer.bech32_address}")

        if self.store is not None:
            self.rate_limiter.restore(self.store.load())

        if self.sweeper is not None:
            await self.sweeper.sweep_once()
            self.sweeper.start()
        if self.flusher is not None:
            self.flusher.start()

    async def shutdown(self) -> None:
        if self.sweeper is not None:
            await self.sweeper.stop()
        if self.flusher is not None:
            await self.flusher.stop()
        await self.evm_rpc.close()
        await self.cosmos_rest.close()
        logger.info("Faucet service stopped")

    # ------------------------------------------------------------------
    # Dispense
    # ------------------------------------------------------------------

    def plan(self, address_type: AddressType, balances: Sequence[TokenBalance]) -> List[TokenAmount]:
        tokens = self.balances.relevant_tokens(address_type)
        if self.settings.testing_mode:
            return plan_testing_amounts(tokens)
        return plan_distribution(balances, tokens)

    async def dispense(self, recipient_address: str, client_ip: str) -> TransferResult:
        """Top up ``recipient_address`` to every token's target balance."""
        address = (recipient_address or "").strip()
        address_type = require_supported_address(address, self.settings.bech32_prefix)
        key = normalize_address(address, address_type)

        if key in self._in_flight:
            raise RequestInProgressError(
                f"A request for {address} is already being processed",
                {"address": address},
            )
        self._in_flight.add(key)
        try:
            balances = await self.balances.resolve(address, address_type)
            request = TransferRequest(
                recipient_address=address,
                address_type=address_type,
                client_ip=client_ip,
                needed=self.plan(address_type, balances),
            )

            if not request.needed:
                logger.info(f"{address} already holds every target balance")
                return TransferResult(
                    status=TransferStatus.ALREADY_FUNDED,
                    network_type=address_type,
                    current_balances=balances,
                    testing_mode=self.settings.testing_mode,
                )

            reservation = self.rate_limiter.admit(key, client_ip, request.needed)
            try:
                if address_type == AddressType.EVM:
                    result = await self._send_evm(request)
                else:
                    result = await self._send_cosmos(request)
            except Exception:
                self.rate_limiter.release(reservation)
                raise
            result.current_balances = balances
            return result
        finally:
            self._in_flight.discard(key)

    async def _send_evm(self, request: TransferRequest) -> TransferResult:
        sent = await self.orchestrator.send(request.recipient_address, request.needed)
        explorer_url = None
        if self.settings.evm_explorer_url:
            explorer_url = f"{self.settings.evm_explorer_url.rstrip('/')}/tx/{sent.tx_hash}"
        return TransferResult(
            status=TransferStatus.CONFIRMED,
            network_type=AddressType.EVM,
            tx_hash=sent.tx_hash,
            block_height=sent.block_number,
            gas_used=sent.gas_used,
            gas_wanted=sent.gas_limit,
            explorer_url=explorer_url,
            transfers=_outcomes(request.needed),
            testing_mode=self.settings.testing_mode,
        )

    async def _send_cosmos(self, request: TransferRequest) -> TransferResult:
        coins = [(t.denom, t.amount) for t in request.needed if t.is_native]
        sent = await self.broadcaster.send(request.recipient_address, coins)
        return TransferResult(
            status=TransferStatus.CONFIRMED if sent.confirmed else TransferStatus.BROADCAST,
            network_type=AddressType.COSMOS,
            tx_hash=sent.tx_hash,
            block_height=sent.height,
            gas_used=sent.gas_used,
            gas_wanted=sent.gas_wanted,
            explorer_url=sent.rest_api_url,
            transfers=_outcomes([t for t in request.needed if t.is_native]),
            testing_mode=self.settings.testing_mode,
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    async def approval_status(self) -> List[ApprovalStatus]:
        return await self.orchestrator.check_approvals()

    async def ledger_balances(self, ledger: AddressType, address: Optional[str] = None) -> Dict[str, Any]:
        """Configured-token holdings on one ledger, for ``address`` or the faucet itself."""
        if ledger == AddressType.EVM:
            own = self.signer.hex_address
        elif ledger == AddressType.COSMOS:
            own = self.signer.bech32_address
        else:
            raise ValueError(f"Unsupported ledger: {ledger}")

        target = (address or "").strip() or own
        if classify_address(target, self.settings.bech32_prefix) != ledger:
            raise InvalidAddressError(
                f"Address [{target}] is not a {ledger.value} address",
                {"address": target, "ledger": ledger.value},
            )

        balances = await self.balances.resolve(target, ledger)
        return {
            "type": ledger.value,
            "address": target,
            "is_faucet": target == own,
            "balances": [b.to_dict() for b in balances],
        }

    async def _operator_funded(self) -> bool:
        try:
            return await self.evm_rpc.get_balance(self.signer.hex_address) > 0
        except (ChainError, ValueError, TypeError) as e:
            logger.warning(f"Faucet balance check failed: {e}")
            return False

    async def _multisend_deployed(self) -> bool:
        if not self.settings.has_multisend_contract:
            return False
        try:
            code = await self.evm_rpc.get_code(self.settings.atomic_multisend_address)
        except (ChainError, ValueError, TypeError) as e:
            logger.warning(f"AtomicMultiSend code lookup failed: {e}")
            return False
        return code not in ("", "0x", "0x0")

    async def system_health(self) -> Dict[str, Any]:
        """Run every dependency check; healthy only when all of them pass."""
        evm, cosmos, funded, deployed = await asyncio.gather(
            self.evm_rpc.health_check(),
            self.cosmos_rest.health_check(),
            self._operator_funded(),
            self._multisend_deployed(),
        )
        checks = {
            "evm_provider": evm.get("status") == "healthy",
            "cosmos_client": cosmos.get("status") == "healthy",
            "faucet_balance": funded,
            "atomic_multisend": deployed,
            "tokens": len(self.tokens) > 0,
        }
        passed = sum(1 for ok in checks.values() if ok)
        if passed < len(checks):
            logger.warning(f"Faucet degraded: {[name for name, ok in checks.items() if not ok]}")
        return {
            "status": "healthy" if passed == len(checks) else "degraded",
            "checks": checks,
            "score": f"{passed}/{len(checks)}",
            "providers": {"evm": evm, "cosmos": cosmos},
        }

    def public_config(self) -> Dict[str, Any]:
        return {
            "network": {
                "name": self.settings.network_name,
                "cosmos": {
                    "chain_id": self.settings.cosmos_chain_id,
                    "rest_endpoint": self.settings.rest_endpoint,
                    "prefix": self.settings.bech32_prefix,
                },
                "evm": {
                    "chain_id": self.settings.evm_chain_id,
                    "rpc_endpoint": self.settings.evm_endpoint,
                    "explorer_url": self.settings.evm_explorer_url or None,
                },
                "contracts": {"atomic_multisend": self.settings.atomic_multisend_address or None},
            },
            "faucet_addresses": {
                "evm": self.signer.hex_address,
                "cosmos": self.signer.bech32_address,
            },
            "tokens": [
                {
                    "denom": t.denom,
                    "display_denom": t.label,
                    "decimals": t.decimals,
                    "target_amount": str(t.target_balance),
                    "contract": None if t.is_native else t.contract,
                    "type": "native" if t.is_native else "erc20",
                    "description": t.description,
                }
                for t in self.tokens
            ],
            "limits": {
                "window_seconds": self.settings.rate_limit_window_seconds,
                "per_address": self.settings.address_limit,
                "per_ip": self.settings.ip_limit,
                "token_allowance_window_seconds": self.settings.token_allowance_window_seconds,
            },
            "testing_mode": self.settings.testing_mode,
        }


def build_faucet_service(settings: Settings, tokens: Sequence[TokenConfig]) -> FaucetService:
    """Wire a FaucetService from settings. Fails fast on missing or bad seed material."""
    if not settings.has_mnemonic:
        raise KeyDerivationError("No mnemonic configured (set FAUCET_MNEMONIC)")

    key_material = derive_key_material(
        settings.mnemonic.get_secret_value(),
        derivation_path=settings.derivation_path,
        bech32_prefix=settings.bech32_prefix,
    )
    signer = Signer(key_material)

    evm_rpc = EvmRpcClient(settings.evm_endpoint, timeout=settings.request_timeout_seconds)
    cosmos_rest = CosmosRestClient(settings.rest_endpoint, timeout=settings.request_timeout_seconds)

    tx_signer = CosmosTxSigner(
        signer,
        chain_id=settings.cosmos_chain_id,
        fee=CosmosFee(
            denom=settings.cosmos_fee_denom,
            amount=settings.cosmos_fee_amount,
            gas_limit=settings.cosmos_gas_limit,
        ),
        pubkey_type_url=settings.cosmos_pubkey_type_url,
    )
    broadcaster = CosmosBroadcaster(
        cosmos_rest,
        tx_signer,
        retry_policy=RetryPolicy(
            max_attempts=settings.broadcast_max_attempts,
            delay_seconds=settings.broadcast_retry_delay_seconds,
            is_retryable=is_retryable_cosmos_error,
            name="cosmos-broadcast",
        ),
        enrichment_attempts=settings.enrichment_attempts,
        enrichment_interval=settings.enrichment_interval_seconds,
    )
    orchestrator = EvmMultiSendOrchestrator(
        evm_rpc,
        signer,
        tokens,
        contract_address=settings.atomic_multisend_address,
        chain_id=settings.evm_chain_id,
        retry_policy=RetryPolicy(
            max_attempts=settings.evm_max_attempts,
            delay_seconds=settings.evm_retry_delay_seconds,
            is_retryable=is_retryable_evm_error,
            name="evm-send",
        ),
        gas_margin_percent=settings.evm_gas_margin_percent,
        inclusion_timeout=settings.evm_inclusion_timeout_seconds,
        approval_multiplier=settings.approval_multiplier,
        low_watermark_multiplier=settings.approval_low_watermark_multiplier,
        poll_interval=settings.evm_receipt_poll_seconds,
    )

    rate_limiter = RateLimiter(
        FrequencyLimiter(window_seconds=settings.rate_limit_window_seconds),
        TokenAllowanceTracker(
            limits={t.denom: t.target_balance * settings.token_allowance_multiplier for t in tokens},
            window_seconds=settings.token_allowance_window_seconds,
        ),
        address_limit=settings.address_limit,
        ip_limit=settings.ip_limit,
    )
    store = RateLimitStore(settings.rate_limit_path)

    sweeper = None
    if settings.enable_approval_sweep and settings.has_multisend_contract:
        sweeper = ApprovalSweeper(orchestrator, settings.approval_sweep_interval_seconds)

    return FaucetService(
        settings,
        tokens,
        signer=signer,
        evm_rpc=evm_rpc,
        cosmos_rest=cosmos_rest,
        balances=BalanceResolver(evm_rpc, cosmos_rest, tokens),
        broadcaster=broadcaster,
        orchestrator=orchestrator,
        rate_limiter=rate_limiter,
        store=store,
        flusher=SnapshotFlusher(rate_limiter, store, settings.rate_limit_flush_interval_seconds),
        sweeper=sweeper,
    )
