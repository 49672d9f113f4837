import pytest
from eth_keys import keys
from eth_utils import keccak

from faucet.core.errors import CosmosBroadcastError, KeyMismatchError
from faucet.core.models import AccountState
from faucet.execution import protobuf as pb
from faucet.execution.cosmos_tx import (
    DEFAULT_PUBKEY_TYPE_URL,
    CosmosFee,
    CosmosTxSigner,
    is_retryable_cosmos_error,
    normalize_digest,
)

CHAIN_ID = "cosmos_262144-1"


@pytest.fixture
def tx_signer(signer):
    return CosmosTxSigner(
        signer,
        chain_id=CHAIN_ID,
        fee=CosmosFee(denom="uatom", amount=5000, gas_limit=200000),
    )


def _account(signer, sequence=34, account_number=12, public_key=None):
    return AccountState(
        address=signer.bech32_address,
        account_number=account_number,
        sequence=sequence,
        public_key=public_key,
    )


def test_normalize_digest_hashes_arbitrary_payloads():
    payload = b"x" * 100

    assert normalize_digest(payload) == keccak(payload)
    assert len(normalize_digest(b"")) == 32


def test_normalize_digest_passes_32_byte_input_through():
    digest = b"\x11" * 32

    assert normalize_digest(digest) == digest


def test_build_send_signs_keccak_of_sign_doc(signer, tx_signer):
    signed = tx_signer.build_send(_account(signer), "cosmos1recipient", [("uatom", 1000000)])

    expected_doc = pb.encode_sign_doc(signed.body_bytes, signed.auth_info_bytes, CHAIN_ID, 12)
    assert signed.sign_bytes == expected_doc
    assert signed.digest == keccak(expected_doc)
    assert len(signed.signature) == 64

    recovered = {
        keys.Signature(signature_bytes=signed.signature + bytes([v]))
        .recover_public_key_from_msg_hash(signed.digest)
        .to_bytes()
        for v in (0, 1)
    }
    assert signer.key_material.public_key_uncompressed in recovered


def test_tx_raw_is_assembled_from_signed_parts(signer, tx_signer):
    signed = tx_signer.build_send(_account(signer), "cosmos1recipient", [("uatom", 5)])

    assert signed.tx_bytes == pb.encode_tx_raw(signed.body_bytes, signed.auth_info_bytes, [signed.signature])
    assert signed.sequence == 34
    assert signed.account_number == 12
    assert signed.coins == (("uatom", 5),)


def test_auth_info_uses_eth_pubkey_and_current_sequence(signer, tx_signer):
    signed = tx_signer.build_send(_account(signer, sequence=35), "cosmos1recipient", [("uatom", 5)])

    pubkey_any = pb.encode_any(DEFAULT_PUBKEY_TYPE_URL, pb.encode_eth_pubkey(signer.public_key_compressed))
    expected = pb.encode_auth_info(
        [pb.encode_signer_info(pubkey_any, 35)],
        pb.encode_fee([("uatom", 5000)], 200000),
    )
    assert signed.auth_info_bytes == expected
    assert DEFAULT_PUBKEY_TYPE_URL.encode() in signed.auth_info_bytes


def test_body_wraps_msg_send(signer, tx_signer):
    body = tx_signer.build_body("cosmos1recipient", [("uatom", 5)])

    msg = pb.encode_msg_send(signer.bech32_address, "cosmos1recipient", [("uatom", 5)])
    assert body == pb.encode_tx_body([pb.encode_any(pb.MSG_SEND_TYPE_URL, msg)])


def test_different_sequence_gives_different_bytes(signer, tx_signer):
    first = tx_signer.build_send(_account(signer, sequence=34), "cosmos1recipient", [("uatom", 5)])
    second = tx_signer.build_send(_account(signer, sequence=35), "cosmos1recipient", [("uatom", 5)])

    assert first.tx_bytes != second.tx_bytes
    assert first.body_bytes == second.body_bytes


def test_matching_pubkey_on_file_is_accepted(signer, tx_signer):
    account = _account(signer, public_key=signer.pubkey_base64)

    tx_signer.build_send(account, "cosmos1recipient", [("uatom", 5)])


def test_foreign_pubkey_on_file_is_fatal(signer, tx_signer):
    account = _account(signer, public_key="A" * 44)

    with pytest.raises(KeyMismatchError):
        tx_signer.build_send(account, "cosmos1recipient", [("uatom", 5)])


def test_empty_coin_list_rejected(signer, tx_signer):
    with pytest.raises(ValueError):
        tx_signer.build_send(_account(signer), "cosmos1recipient", [])


def test_zero_fee_omits_fee_coins(signer):
    tx_signer = CosmosTxSigner(signer, chain_id=CHAIN_ID, fee=CosmosFee("uatom", 0, 200000))

    assert tx_signer.fee.coins == []


@pytest.mark.parametrize(
    "raw_log,retryable",
    [
        ("signature verification failed; please verify account number (12) and chain-id", True),
        ("account sequence mismatch, expected 35, got 34: incorrect account sequence", True),
        ("Unauthorized", True),
        ("insufficient funds", False),
        ("out of gas", False),
    ],
)
def test_retryable_classification(raw_log, retryable):
    error = CosmosBroadcastError("rejected", tx_code=4, raw_log=raw_log)

    assert is_retryable_cosmos_error(error) is retryable


def test_other_exceptions_are_not_retryable():
    assert not is_retryable_cosmos_error(RuntimeError("sequence mismatch"))
