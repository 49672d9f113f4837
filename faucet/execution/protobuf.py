"""
Minimal proto3 wire encoder for the handful of Cosmos-SDK messages we sign.

Field numbers follow cosmos/tx/v1beta1/tx.proto, cosmos/bank/v1beta1/tx.proto,
cosmos/base/v1beta1/coin.proto and google/protobuf/any.proto. Zero-valued
scalars and empty strings are omitted, matching canonical proto3 output.
"""

from typing import Iterable, Sequence, Tuple

WIRE_VARINT = 0
WIRE_LEN = 2

SIGN_MODE_DIRECT = 1

MSG_SEND_TYPE_URL = "/cosmos.bank.v1beta1.MsgSend"

Coin = Tuple[str, int]


def encode_varint(value: int) -> bytes:
    if value < 0:
        raise ValueError("Varint must be non-negative")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _tag(field_number: int, wire_type: int) -> bytes:
    return encode_varint((field_number << 3) | wire_type)


def field_bytes(field_number: int, value: bytes) -> bytes:
    """Length-delimited field. Empty values are omitted."""
    if not value:
        return b""
    return _tag(field_number, WIRE_LEN) + encode_varint(len(value)) + value


def field_message(field_number: int, value: bytes) -> bytes:
    """Embedded message field. Emitted even when empty, since presence matters."""
    return _tag(field_number, WIRE_LEN) + encode_varint(len(value)) + value


def field_string(field_number: int, value: str) -> bytes:
    return field_bytes(field_number, value.encode("utf-8"))


def field_uint64(field_number: int, value: int) -> bytes:
    if value == 0:
        return b""
    if value >= 1 << 64:
        raise ValueError("uint64 overflow")
    return _tag(field_number, WIRE_VARINT) + encode_varint(value)


def encode_any(type_url: str, value: bytes) -> bytes:
    return field_string(1, type_url) + field_bytes(2, value)


def encode_coin(denom: str, amount: int) -> bytes:
    # Coin.amount is a decimal string (cosmos.Int)
    return field_string(1, denom) + field_string(2, str(amount))


def encode_msg_send(from_address: str, to_address: str, coins: Iterable[Coin]) -> bytes:
    body = field_string(1, from_address) + field_string(2, to_address)
    for denom, amount in coins:
        body += field_message(3, encode_coin(denom, amount))
    return body


def encode_tx_body(messages: Sequence[bytes], memo: str = "", timeout_height: int = 0) -> bytes:
    """TxBody from already Any-wrapped messages."""
    body = b"".join(field_message(1, msg) for msg in messages)
    return body + field_string(2, memo) + field_uint64(3, timeout_height)


def encode_eth_pubkey(compressed_key: bytes) -> bytes:
    """ethsecp256k1.PubKey { bytes key = 1; }"""
    return field_bytes(1, compressed_key)


def encode_mode_info_single(mode: int = SIGN_MODE_DIRECT) -> bytes:
    single = field_uint64(1, mode)
    return field_message(1, single)


def encode_signer_info(public_key_any: bytes, sequence: int, mode: int = SIGN_MODE_DIRECT) -> bytes:
    return (
        field_message(1, public_key_any)
        + field_message(2, encode_mode_info_single(mode))
        + field_uint64(3, sequence)
    )


def encode_fee(amount: Iterable[Coin], gas_limit: int, payer: str = "", granter: str = "") -> bytes:
    body = b"".join(field_message(1, encode_coin(d, a)) for d, a in amount)
    return body + field_uint64(2, gas_limit) + field_string(3, payer) + field_string(4, granter)


def encode_auth_info(signer_infos: Sequence[bytes], fee: bytes) -> bytes:
    body = b"".join(field_message(1, info) for info in signer_infos)
    return body + field_message(2, fee)


def encode_sign_doc(body_bytes: bytes, auth_info_bytes: bytes, chain_id: str, account_number: int) -> bytes:
    return (
        field_bytes(1, body_bytes)
        + field_bytes(2, auth_info_bytes)
        + field_string(3, chain_id)
        + field_uint64(4, account_number)
    )


def encode_tx_raw(body_bytes: bytes, auth_info_bytes: bytes, signatures: Sequence[bytes]) -> bytes:
    body = field_bytes(1, body_bytes) + field_bytes(2, auth_info_bytes)
    for signature in signatures:
        body += field_message(3, signature)
    return body
