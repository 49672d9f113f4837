"""
Faucet data model.

All amounts are integers in the token's smallest unit.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..config import NATIVE_MARKERS, NATIVE_TOKEN_ADDRESS


class AddressType(str, Enum):
    """Which ledger an address string belongs to."""
    EVM = "evm"
    COSMOS = "cosmos"
    UNKNOWN = "unknown"


class TransferStatus(str, Enum):
    """Outcome of a faucet request."""
    CONFIRMED = "confirmed"            # Included on chain, enriched
    BROADCAST = "broadcast"            # Accepted by the node, inclusion not observed
    ALREADY_FUNDED = "already_funded"  # Nothing to send


@dataclass(frozen=True)
class TokenAmount:
    """An amount of one token to move."""
    denom: str
    amount: int
    contract: str = NATIVE_TOKEN_ADDRESS
    decimals: int = 0

    def __post_init__(self):
        if not isinstance(self.amount, int) or isinstance(self.amount, bool):
            raise TypeError(f"amount for {self.denom} must be int, got {type(self.amount).__name__}")
        if self.amount < 0:
            raise ValueError(f"amount for {self.denom} must be non-negative")

    @property
    def is_native(self) -> bool:
        return self.contract.lower() in NATIVE_MARKERS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "denom": self.denom,
            "amount": str(self.amount),
            "decimals": self.decimals,
            "type": "native" if self.is_native else "erc20",
            "contract": None if self.is_native else self.contract,
        }


@dataclass
class TokenBalance:
    """Current holding of one token for a recipient."""
    denom: str
    current: int
    target: int
    decimals: int
    error: Optional[str] = None   # Set when the read failed and zero was substituted

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "denom": self.denom,
            "current_amount": str(self.current),
            "target_amount": str(self.target),
            "decimals": self.decimals,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class AccountState:
    """Cosmos account fields needed to sign. Never reused across attempts."""
    address: str
    account_number: int
    sequence: int
    public_key: Optional[str] = None   # base64 key on file, None if never used


@dataclass
class TransferRequest:
    """One inbound faucet request after classification and planning."""
    recipient_address: str
    address_type: AddressType
    client_ip: str
    needed: List[TokenAmount] = field(default_factory=list)


@dataclass
class TokenTransferOutcome:
    """Per-token line of a TransferResult."""
    denom: str
    amount: int
    token: str
    type: str
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "denom": self.denom,
            "amount": str(self.amount),
            "token": self.token,
            "type": self.type,
            "status": self.status,
        }


@dataclass
class TransferResult:
    """Result of a faucet request."""
    status: TransferStatus
    network_type: AddressType
    tx_hash: Optional[str] = None

    # Enrichment (best effort)
    block_height: Optional[int] = None
    gas_used: Optional[int] = None
    gas_wanted: Optional[int] = None
    explorer_url: Optional[str] = None

    transfers: List[TokenTransferOutcome] = field(default_factory=list)
    current_balances: List[TokenBalance] = field(default_factory=list)
    testing_mode: bool = False

    @property
    def is_success(self) -> bool:
        return self.status in {TransferStatus.CONFIRMED, TransferStatus.BROADCAST}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "network_type": self.network_type.value,
            "transaction_hash": self.tx_hash,
            "block_height": None if self.block_height is None else str(self.block_height),
            "gas_used": None if self.gas_used is None else str(self.gas_used),
            "gas_wanted": None if self.gas_wanted is None else str(self.gas_wanted),
            "explorer_url": self.explorer_url,
            "tokens_sent": [t.to_dict() for t in self.transfers],
            "current_balances": [b.to_dict() for b in self.current_balances],
            "testing_mode": self.testing_mode,
        }
