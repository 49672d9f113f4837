import pytest

from faucet.core.address import (
    bech32_to_hex,
    classify_address,
    hex_to_bech32,
    normalize_address,
    require_supported_address,
)
from faucet.core.errors import InvalidAddressError
from faucet.core.models import AddressType

HEX = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def test_classifies_hex_addresses():
    assert classify_address(HEX, "cosmos") == AddressType.EVM
    assert classify_address(HEX.lower(), "cosmos") == AddressType.EVM


def test_classifies_bech32_with_matching_prefix():
    address = hex_to_bech32(HEX, "cosmos")

    assert classify_address(address, "cosmos") == AddressType.COSMOS
    assert classify_address(address, "evmos") == AddressType.UNKNOWN


@pytest.mark.parametrize(
    "address",
    [
        None,
        "",
        "0x1234",
        "0xZZ9Fd6e51aad88F6F4ce6aB8827279cffFb92266",
        "f39Fd6e51aad88F6F4ce6aB8827279cffFb92266",
        "cosmos1notreallyanaddress",
        "hello world",
    ],
)
def test_everything_else_is_unknown(address):
    assert classify_address(address, "cosmos") == AddressType.UNKNOWN


def test_bech32_with_broken_checksum_is_unknown():
    address = hex_to_bech32(HEX, "cosmos")
    last = "q" if address[-1] != "q" else "p"

    assert classify_address(address[:-1] + last, "cosmos") == AddressType.UNKNOWN


def test_require_supported_address_rejects_unknown():
    with pytest.raises(InvalidAddressError) as exc_info:
        require_supported_address("nope", "cosmos")

    assert exc_info.value.code == "invalid_address"
    assert exc_info.value.details["address"] == "nope"


def test_hex_round_trip_is_lowercase():
    assert bech32_to_hex(hex_to_bech32(HEX, "cosmos")) == HEX.lower()


def test_bech32_round_trip_is_identity():
    address = hex_to_bech32("0x" + "ab" * 20, "cosmos")

    assert hex_to_bech32(bech32_to_hex(address), "cosmos") == address


def test_conversion_rejects_invalid_input():
    with pytest.raises(InvalidAddressError):
        hex_to_bech32("0x1234", "cosmos")
    with pytest.raises(InvalidAddressError):
        bech32_to_hex("cosmos1invalid")


def test_normalize_address():
    cosmos = hex_to_bech32(HEX, "cosmos")

    assert normalize_address(HEX, AddressType.EVM) == HEX.lower()
    assert normalize_address(f" {cosmos} ", AddressType.COSMOS) == cosmos
