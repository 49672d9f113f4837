import pytest

from faucet.config import Settings, TokenConfig
from faucet.core.keys import Signer, key_material_from_private_key

# Well-known development account (index 0 of "test test ... junk")
DEV_PRIVATE_KEY = bytes.fromhex("ac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80")
DEV_HEX_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
DEV_MNEMONIC = "test test test test test test test test test test test junk"

MULTISEND_ADDRESS = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x2222222222222222222222222222222222222222"

WBTC = "0x921c48F521329cF6187D1De1D0Ca5181B47FF946"
USDT = "0x480f8F25d13D523e89E9aaC518A5674A305ff687"


@pytest.fixture
def signer() -> Signer:
    return Signer(key_material_from_private_key(DEV_PRIVATE_KEY))


@pytest.fixture
def tokens():
    return [
        TokenConfig(denom="uatom", decimals=6, target_balance=1000000),
        TokenConfig(denom="wbtc", decimals=8, target_balance=1000, contract=WBTC),
        TokenConfig(denom="usdt", decimals=6, target_balance=1000, contract=USDT),
    ]


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        atomic_multisend_address=MULTISEND_ADDRESS,
        evm_explorer_url="https://explorer.example/",
        enable_approval_sweep=False,
    )


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
