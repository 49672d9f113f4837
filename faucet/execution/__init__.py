"""
Transaction Execution Layer

Builds, signs and submits the faucet's outbound transactions:
- CosmosTxSigner: hand-encoded MsgSend signed with the eth_secp256k1 scheme
- CosmosBroadcaster: broadcast with refetch-and-resign retry and enrichment
- EvmMultiSendOrchestrator: allowance management and atomicMultiSend calls

Usage:
    from faucet.execution import CosmosBroadcaster, EvmMultiSendOrchestrator

    result = await broadcaster.send("cosmos1...", [("uatom", 1000000)])
    result = await orchestrator.send("0x...", needed)
"""

from .broadcaster import CosmosBroadcaster, CosmosSendResult
from .cosmos_tx import CosmosFee, CosmosTxSigner, SignedCosmosTx, normalize_digest
from .evm_multisend import (
    ApprovalStatus,
    ApprovalSweeper,
    EvmMultiSendOrchestrator,
    EvmSendResult,
)

__all__ = [
    "CosmosBroadcaster",
    "CosmosSendResult",
    "CosmosFee",
    "CosmosTxSigner",
    "SignedCosmosTx",
    "normalize_digest",
    "ApprovalStatus",
    "ApprovalSweeper",
    "EvmMultiSendOrchestrator",
    "EvmSendResult",
]
