"""
Wire-format checks for the hand-written proto3 encoder.
"""

import pytest

from faucet.execution import protobuf as pb


@pytest.mark.parametrize(
    "value,expected",
    [
        (0, b"\x00"),
        (1, b"\x01"),
        (127, b"\x7f"),
        (128, b"\x80\x01"),
        (300, b"\xac\x02"),
        (2**64 - 1, b"\xff\xff\xff\xff\xff\xff\xff\xff\xff\x01"),
    ],
)
def test_encode_varint(value, expected):
    assert pb.encode_varint(value) == expected


def test_negative_varint_rejected():
    with pytest.raises(ValueError):
        pb.encode_varint(-1)


def test_zero_scalars_and_empty_strings_are_omitted():
    assert pb.field_uint64(3, 0) == b""
    assert pb.field_string(2, "") == b""
    assert pb.field_bytes(1, b"") == b""


def test_embedded_messages_are_always_emitted():
    assert pb.field_message(1, b"") == b"\x0a\x00"


def test_coin_amount_is_a_decimal_string():
    assert pb.encode_coin("uatom", 5) == b"\x0a\x05uatom\x12\x015"


def test_msg_send_layout():
    encoded = pb.encode_msg_send("a", "b", [("uatom", 10)])

    assert encoded == b"\x0a\x01a\x12\x01b\x1a\x0b" + pb.encode_coin("uatom", 10)


def test_tx_body_omits_empty_memo_and_zero_timeout():
    msg = pb.encode_any(pb.MSG_SEND_TYPE_URL, b"\x0a\x01a")

    body = pb.encode_tx_body([msg])

    assert body == pb.field_message(1, msg)


def test_signer_info_carries_direct_mode_and_sequence():
    pubkey_any = pb.encode_any("/t", pb.encode_eth_pubkey(b"\x02" * 33))

    info = pb.encode_signer_info(pubkey_any, sequence=34)

    assert info == (
        pb.field_message(1, pubkey_any)
        + b"\x12\x04\x0a\x02\x08\x01"
        + b"\x18\x22"
    )


def test_signer_info_omits_sequence_zero():
    info = pb.encode_signer_info(b"", sequence=0)

    assert info == b"\x0a\x00\x12\x04\x0a\x02\x08\x01"


def test_fee_layout():
    fee = pb.encode_fee([("uatom", 5000)], 200000)

    assert fee == pb.field_message(1, pb.encode_coin("uatom", 5000)) + b"\x10" + pb.encode_varint(200000)


def test_sign_doc_omits_account_number_zero():
    doc = pb.encode_sign_doc(b"B", b"A", "chain-1", 0)

    assert doc == b"\x0a\x01B\x12\x01A\x1a\x07chain-1"


def test_sign_doc_includes_account_number():
    doc = pb.encode_sign_doc(b"B", b"A", "c", 7)

    assert doc.endswith(b"\x20\x07")


def test_tx_raw_layout():
    raw = pb.encode_tx_raw(b"B", b"A", [b"\x01" * 64])

    assert raw == b"\x0a\x01B\x12\x01A\x1a\x40" + b"\x01" * 64


def test_uint64_overflow_rejected():
    with pytest.raises(ValueError):
        pb.field_uint64(1, 2**64)
