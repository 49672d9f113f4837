"""Helpers for classifying recipient addresses and converting between encodings.

Both encodings name the same 20-byte account hash. Conversion is pure 8-bit
to 5-bit regrouping; nothing is hashed in either direction.
"""

from __future__ import annotations

import re

import bech32

from .errors import InvalidAddressError
from .models import AddressType

_EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

ACCOUNT_HASH_LENGTH = 20


def _decode_bech32(address: str) -> tuple[str, bytes] | None:
    hrp, words = bech32.bech32_decode(address)
    if hrp is None or words is None:
        return None
    data = bech32.convertbits(words, 5, 8, False)
    if data is None:
        return None
    return hrp, bytes(data)


def is_valid_evm_address(address: str) -> bool:
    return bool(address) and bool(_EVM_ADDRESS_RE.fullmatch(address))


def is_valid_cosmos_address(address: str, prefix: str) -> bool:
    if not address or not address.startswith(prefix):
        return False
    decoded = _decode_bech32(address)
    if decoded is None:
        return False
    hrp, data = decoded
    return hrp == prefix and len(data) == ACCOUNT_HASH_LENGTH


def classify_address(address: str | None, prefix: str) -> AddressType:
    """Label a free-form address as evm, cosmos or unknown."""

    if not address:
        return AddressType.UNKNOWN
    address = address.strip()
    if is_valid_evm_address(address):
        return AddressType.EVM
    if is_valid_cosmos_address(address, prefix):
        return AddressType.COSMOS
    return AddressType.UNKNOWN


def require_supported_address(address: str | None, prefix: str) -> AddressType:
    """Classify, raising InvalidAddressError for anything unsupported."""

    address_type = classify_address(address, prefix)
    if address_type == AddressType.UNKNOWN:
        raise InvalidAddressError(
            f"Address [{address}] is not supported. Must be a valid cosmos address "
            f"({prefix}...) or hex address (0x...)",
            {"address": address},
        )
    return address_type


def account_hash_to_bech32(account_hash: bytes, prefix: str) -> str:
    if len(account_hash) != ACCOUNT_HASH_LENGTH:
        raise InvalidAddressError(f"Account hash must be {ACCOUNT_HASH_LENGTH} bytes")
    words = bech32.convertbits(account_hash, 8, 5)
    return bech32.bech32_encode(prefix, words)


def hex_to_bech32(hex_address: str, prefix: str) -> str:
    if not is_valid_evm_address(hex_address):
        raise InvalidAddressError(f"Invalid hex address: {hex_address}", {"address": hex_address})
    return account_hash_to_bech32(bytes.fromhex(hex_address[2:]), prefix)


def bech32_to_account_hash(bech32_address: str) -> bytes:
    decoded = _decode_bech32(bech32_address)
    if decoded is None or len(decoded[1]) != ACCOUNT_HASH_LENGTH:
        raise InvalidAddressError(f"Invalid bech32 address: {bech32_address}", {"address": bech32_address})
    return decoded[1]


def bech32_to_hex(bech32_address: str) -> str:
    """Return the lowercase 0x-prefixed hex form of a bech32 address."""
    return "0x" + bech32_to_account_hash(bech32_address).hex()


def normalize_address(address: str, address_type: AddressType) -> str:
    """Canonical form used as a rate-limit key."""
    if address_type == AddressType.EVM:
        return address.strip().lower()
    return address.strip()


__all__ = [
    "classify_address",
    "require_supported_address",
    "is_valid_evm_address",
    "is_valid_cosmos_address",
    "hex_to_bech32",
    "bech32_to_hex",
    "account_hash_to_bech32",
    "bech32_to_account_hash",
    "normalize_address",
]
