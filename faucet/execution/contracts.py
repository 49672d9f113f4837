"""
Static interfaces of the contracts the faucet talks to.

Only the functions we call are declared. Calldata is ``selector || abi(args)``
with selectors computed from the canonical signatures at import time.
"""

from typing import Any, List, Sequence, Tuple

from eth_abi import decode, encode
from eth_utils import keccak, to_checksum_address

from ..config import NATIVE_TOKEN_ADDRESS


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak256 over the canonical signature."""
    return keccak(text=signature)[:4]


def _calldata(selector: bytes, types: Sequence[str], args: Sequence[Any]) -> str:
    return "0x" + (selector + encode(list(types), list(args))).hex()


def _decode_single(abi_type: str, result: str) -> Any:
    data = bytes.fromhex(result[2:] if result.startswith("0x") else result)
    if not data:
        raise ValueError(f"Empty return data for {abi_type}")
    return decode([abi_type], data)[0]


class ERC20:
    BALANCE_OF = function_selector("balanceOf(address)")
    ALLOWANCE = function_selector("allowance(address,address)")
    APPROVE = function_selector("approve(address,uint256)")
    DECIMALS = function_selector("decimals()")
    SYMBOL = function_selector("symbol()")

    @classmethod
    def encode_balance_of(cls, owner: str) -> str:
        return _calldata(cls.BALANCE_OF, ["address"], [to_checksum_address(owner)])

    @classmethod
    def encode_allowance(cls, owner: str, spender: str) -> str:
        return _calldata(
            cls.ALLOWANCE,
            ["address", "address"],
            [to_checksum_address(owner), to_checksum_address(spender)],
        )

    @classmethod
    def encode_approve(cls, spender: str, amount: int) -> str:
        return _calldata(cls.APPROVE, ["address", "uint256"], [to_checksum_address(spender), amount])

    @classmethod
    def encode_decimals(cls) -> str:
        return "0x" + cls.DECIMALS.hex()

    @classmethod
    def encode_symbol(cls) -> str:
        return "0x" + cls.SYMBOL.hex()

    @staticmethod
    def decode_uint256(result: str) -> int:
        return _decode_single("uint256", result)

    @staticmethod
    def decode_decimals(result: str) -> int:
        return _decode_single("uint8", result)

    @staticmethod
    def decode_symbol(result: str) -> str:
        return _decode_single("string", result)


class AtomicMultiSend:
    """
    All-or-nothing batch transfer contract.

    ``atomicMultiSend(recipient, transfers)`` pulls every ERC-20 leg from the
    caller through its allowance and forwards ``msg.value`` for the native
    leg. Native legs are encoded with the zero address.
    """

    MULTI_SEND = function_selector("atomicMultiSend(address,(address,uint256)[])")
    GET_BALANCE = function_selector("getBalance(address)")

    @classmethod
    def encode_multi_send(cls, recipient: str, transfers: Sequence[Tuple[str, int]]) -> str:
        legs: List[Tuple[str, int]] = [
            (to_checksum_address(token), amount) for token, amount in transfers
        ]
        return _calldata(
            cls.MULTI_SEND,
            ["address", "(address,uint256)[]"],
            [to_checksum_address(recipient), legs],
        )

    @classmethod
    def encode_get_balance(cls, token: str = NATIVE_TOKEN_ADDRESS) -> str:
        return _calldata(cls.GET_BALANCE, ["address"], [to_checksum_address(token)])

    @staticmethod
    def decode_get_balance(result: str) -> int:
        return _decode_single("uint256", result)
