import os

from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

NATIVE_MARKERS = {
    "0x0000000000000000000000000000000000000000",
    "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee",
}
NATIVE_TOKEN_ADDRESS = "0x0000000000000000000000000000000000000000"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FAUCET_",
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Pick up the bare MNEMONIC variable used by older deployments."""

        super().model_post_init(__context)

        if self.mnemonic is None:
            fallback = os.getenv("MNEMONIC")
            if fallback:
                object.__setattr__(self, "mnemonic", SecretStr(fallback))

    # Server Settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8088, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    request_timeout_seconds: float = Field(default=30.0, description="Outbound HTTP timeout")

    # Signer identity
    mnemonic: Optional[SecretStr] = Field(
        default=None,
        description="BIP-39 seed phrase for the faucet account (memory only)",
    )
    derivation_path: str = Field(
        default="m/44'/60'/0'/0/0",
        description="HD path; Ethereum coin type for both ledgers",
    )
    bech32_prefix: str = Field(default="cosmos", description="Cosmos address prefix")
    expected_evm_address: str = Field(
        default="",
        description="If set, startup fails unless the derived hex address matches",
    )
    expected_cosmos_address: str = Field(
        default="",
        description="If set, startup fails unless the derived bech32 address matches",
    )

    # Network
    network_name: str = Field(default="cosmos-evm-chain", description="Display name of the network")
    cosmos_chain_id: str = Field(default="cosmos_262144-1", description="Cosmos chain id")
    evm_chain_id: int = Field(default=262144, description="EVM chain id")
    rest_endpoint: str = Field(
        default="https://cevm-01-lcd.dev.skip.build",
        description="Cosmos REST (LCD) endpoint",
    )
    evm_endpoint: str = Field(
        default="https://cevm-01-evmrpc.dev.skip.build",
        description="EVM JSON-RPC endpoint",
    )
    evm_explorer_url: str = Field(default="", description="Block explorer base URL for EVM tx links")
    atomic_multisend_address: str = Field(
        default="",
        description="Deployed AtomicMultiSend contract",
    )
    cosmos_pubkey_type_url: str = Field(
        default="/cosmos.evm.crypto.v1.ethsecp256k1.PubKey",
        description="Type URL of the chain's Keccak-verified public key",
    )

    # Cosmos fee / broadcast
    cosmos_fee_denom: str = Field(default="uatom", description="Fee denom for Cosmos transactions")
    cosmos_fee_amount: int = Field(default=5000, ge=0, description="Fee amount in smallest units")
    cosmos_gas_limit: int = Field(default=200000, ge=1, description="Gas limit for Cosmos transactions")
    broadcast_max_attempts: int = Field(default=3, ge=1, description="Attempts per Cosmos send")
    broadcast_retry_delay_seconds: float = Field(default=2.0, ge=0, description="Delay between attempts")
    enrichment_attempts: int = Field(default=5, ge=0, description="Polls of the tx-by-hash endpoint")
    enrichment_interval_seconds: float = Field(default=1.0, ge=0, description="Delay between polls")

    # EVM send
    evm_gas_margin_percent: int = Field(default=130, ge=100, description="Gas limit as a percent of the estimate")
    evm_inclusion_timeout_seconds: float = Field(default=60.0, gt=0, description="Receipt wait bound")
    evm_receipt_poll_seconds: float = Field(default=1.0, gt=0, description="Receipt polling interval")
    evm_max_attempts: int = Field(default=3, ge=1, description="Attempts per EVM send on nonce races")
    evm_retry_delay_seconds: float = Field(default=1.0, ge=0, description="Delay between EVM attempts")

    # Allowances
    approval_multiplier: int = Field(
        default=100,
        ge=1,
        description="Approvals are sized as target_balance times this multiple",
    )
    approval_low_watermark_multiplier: int = Field(
        default=10,
        ge=1,
        description="Sweep tops up allowances that drop below target times this multiple",
    )
    approval_sweep_interval_seconds: float = Field(default=300.0, gt=0, description="Approval sweep period")

    # Rate Limiting
    rate_limit_window_seconds: float = Field(default=43200.0, gt=0, description="Request-count window")
    address_limit: int = Field(default=1, ge=1, description="Requests per address per window")
    ip_limit: int = Field(default=10, ge=1, description="Requests per IP per window")
    token_allowance_window_seconds: float = Field(default=86400.0, gt=0, description="Value window")
    token_allowance_multiplier: int = Field(
        default=10,
        ge=1,
        description="Per-token daily cap as a multiple of target_balance",
    )
    rate_limit_path: Path = Field(
        default=Path(".faucet/rate_limits.json"),
        description="Snapshot file for rate-limit logs",
    )
    rate_limit_flush_interval_seconds: float = Field(default=30.0, gt=0, description="Snapshot flush period")

    # Tokens
    tokens_file: Path = Field(
        default=Path(__file__).resolve().parent / "tokens.yaml",
        description="YAML list of distributable tokens",
    )

    # Feature Flags
    testing_mode: bool = Field(
        default=False,
        description="Send one smallest unit of each token regardless of balance",
    )
    enable_approval_sweep: bool = Field(default=True, description="Run the background approval sweep")

    @property
    def has_mnemonic(self) -> bool:
        return self.mnemonic is not None and bool(self.mnemonic.get_secret_value())

    @property
    def has_multisend_contract(self) -> bool:
        return bool(self.atomic_multisend_address)


class TokenConfig(BaseModel):
    """One distributable token, as declared in tokens.yaml."""

    denom: str
    decimals: int = Field(ge=0, le=36)
    target_balance: int = Field(ge=0)
    contract: str = NATIVE_TOKEN_ADDRESS
    display_denom: str = ""
    description: str = ""

    @field_validator("target_balance", mode="before")
    @classmethod
    def _parse_amount(cls, value: Any) -> int:
        # YAML amounts are quoted strings; floats would lose precision at 18 decimals
        if isinstance(value, float):
            raise ValueError("target_balance must be an integer or integer string")
        return int(value)

    @field_validator("contract", mode="before")
    @classmethod
    def _default_contract(cls, value: Any) -> str:
        return value or NATIVE_TOKEN_ADDRESS

    @property
    def is_native(self) -> bool:
        return self.contract.lower() in NATIVE_MARKERS

    @property
    def label(self) -> str:
        return self.display_denom or self.denom


def load_tokens(path: Path) -> List[TokenConfig]:
    """Load and validate the token list from a YAML file."""
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}

    entries = raw.get("tokens", []) if isinstance(raw, dict) else raw
    tokens = [TokenConfig.model_validate(entry) for entry in entries]

    seen = set()
    for token in tokens:
        if token.denom in seen:
            raise ValueError(f"Duplicate token denom in {path}: {token.denom}")
        seen.add(token.denom)
    return tokens


# Global settings instance
settings = Settings()
