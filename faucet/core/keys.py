"""
Signer identity derivation.

One BIP-39 seed, one Ethereum-coin-type HD path, one secp256k1 key. The
account hash is the last 20 bytes of Keccak-256 over the uncompressed public
key (no RIPEMD-160 step), so the hex and bech32 addresses name the same
account on both ledgers.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from eth_account import Account
from eth_keys import keys
from eth_utils import ValidationError, keccak, to_checksum_address

from .address import account_hash_to_bech32, bech32_to_account_hash
from .errors import KeyDerivationError

logger = logging.getLogger(__name__)

DEFAULT_DERIVATION_PATH = "m/44'/60'/0'/0/0"

Account.enable_unaudited_hdwallet_features()


@dataclass(frozen=True)
class KeyMaterial:
    """Derived key and addresses. Held in memory only."""
    derivation_path: str
    private_key: bytes = field(repr=False)
    public_key_compressed: bytes
    public_key_uncompressed: bytes   # 64 bytes, no 0x04 prefix
    account_hash: bytes
    hex_address: str
    bech32_address: str

    def __post_init__(self):
        if len(self.private_key) != 32:
            raise KeyDerivationError("Private key must be 32 bytes")
        if bech32_to_account_hash(self.bech32_address) != self.account_hash:
            raise KeyDerivationError("bech32 address does not encode the account hash")
        if bytes.fromhex(self.hex_address[2:]) != self.account_hash:
            raise KeyDerivationError("hex address does not encode the account hash")


def derive_key_material(
    mnemonic: str,
    *,
    derivation_path: str = DEFAULT_DERIVATION_PATH,
    bech32_prefix: str = "cosmos",
) -> KeyMaterial:
    """Derive the faucet identity from a seed phrase.

    Raises:
        KeyDerivationError: if the phrase fails BIP-39 validation (including
            its checksum) or the path cannot be derived.
    """
    if not mnemonic or not mnemonic.strip():
        raise KeyDerivationError("Seed phrase is empty")

    try:
        account = Account.from_mnemonic(mnemonic.strip(), account_path=derivation_path)
    except (ValidationError, ValueError) as exc:
        # Never fall back to a freshly generated identity
        raise KeyDerivationError(f"Invalid seed phrase: {exc}") from exc

    return key_material_from_private_key(
        bytes(account.key),
        derivation_path=derivation_path,
        bech32_prefix=bech32_prefix,
    )


def key_material_from_private_key(
    private_key: bytes,
    *,
    derivation_path: str = DEFAULT_DERIVATION_PATH,
    bech32_prefix: str = "cosmos",
) -> KeyMaterial:
    key = keys.PrivateKey(private_key)
    uncompressed = key.public_key.to_bytes()
    account_hash = keccak(uncompressed)[-20:]

    return KeyMaterial(
        derivation_path=derivation_path,
        private_key=private_key,
        public_key_compressed=key.public_key.to_compressed_bytes(),
        public_key_uncompressed=uncompressed,
        account_hash=account_hash,
        hex_address=to_checksum_address(account_hash),
        bech32_address=account_hash_to_bech32(account_hash, bech32_prefix),
    )


class Signer:
    """
    Process-wide signing identity.

    Owns the key material and the lock that serializes every chain mutation.
    The Cosmos sequence and the EVM nonce are the same per-account counter,
    so both send paths must hold ``lock`` from fetch to broadcast.
    """

    def __init__(self, key_material: KeyMaterial):
        self._key_material = key_material
        self._private_key = keys.PrivateKey(key_material.private_key)
        self.lock = asyncio.Lock()

    @property
    def key_material(self) -> KeyMaterial:
        return self._key_material

    @property
    def hex_address(self) -> str:
        return self._key_material.hex_address

    @property
    def bech32_address(self) -> str:
        return self._key_material.bech32_address

    @property
    def public_key_compressed(self) -> bytes:
        return self._key_material.public_key_compressed

    @property
    def pubkey_base64(self) -> str:
        return base64.b64encode(self._key_material.public_key_compressed).decode()

    def sign_digest(self, digest: bytes) -> bytes:
        """Sign a 32-byte digest, returning r || s (64 bytes, low-s, no v)."""
        if len(digest) != 32:
            raise ValueError(f"Digest must be 32 bytes, got {len(digest)}")
        signature = self._private_key.sign_msg_hash(digest)
        return signature.r.to_bytes(32, "big") + signature.s.to_bytes(32, "big")

    def sign_evm_transaction(self, tx: Dict[str, Any]) -> bytes:
        """Sign an EVM transaction dict and return the raw RLP bytes."""
        signed = Account.sign_transaction(tx, self._key_material.private_key)
        return bytes(signed.raw_transaction)

    def verify_addresses(
        self,
        expected_hex: Optional[str] = None,
        expected_bech32: Optional[str] = None,
    ) -> None:
        errors = []
        if expected_hex and expected_hex.lower() != self.hex_address.lower():
            errors.append(f"EVM address mismatch: expected {expected_hex}, got {self.hex_address}")
        if expected_bech32 and expected_bech32 != self.bech32_address:
            errors.append(f"Cosmos address mismatch: expected {expected_bech32}, got {self.bech32_address}")
        if errors:
            raise KeyDerivationError("Address validation failed: " + "; ".join(errors))
        logger.info("Signer addresses verified")

    def __repr__(self) -> str:
        return f"Signer(hex={self.hex_address}, bech32={self.bech32_address})"
