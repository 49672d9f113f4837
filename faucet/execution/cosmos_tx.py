"""
Cosmos transaction construction and signing for an eth_secp256k1 account.

The chain verifies signatures with its own public-key type, which hashes the
sign payload with Keccak-256 instead of the SDK's SHA-256. Signing therefore
goes: SignDoc bytes -> digest normalization -> secp256k1 (r || s).
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from eth_utils import keccak

from ..core.errors import CosmosBroadcastError, KeyMismatchError
from ..core.keys import Signer
from ..core.models import AccountState
from . import protobuf as pb

logger = logging.getLogger(__name__)

DEFAULT_PUBKEY_TYPE_URL = "/cosmos.evm.crypto.v1.ethsecp256k1.PubKey"

RETRYABLE_BROADCAST_MARKERS = (
    "signature verification failed",
    "sequence mismatch",
    "incorrect account sequence",
    "unauthorized",
)


def normalize_digest(payload: bytes) -> bytes:
    """Digest normalization for the chain's Keccak-verified key type.

    Payloads that are already 32 bytes are signed as is; anything else is
    Keccak-256 hashed to 32 bytes first. Mirrors the chain's verifier.
    """
    if len(payload) == 32:
        return payload
    return keccak(payload)


def is_retryable_cosmos_error(exc: BaseException) -> bool:
    """Rejections that a refetch-and-resign can fix."""
    if not isinstance(exc, CosmosBroadcastError):
        return False
    text = f"{exc.raw_log} {exc.message}".lower()
    return any(marker in text for marker in RETRYABLE_BROADCAST_MARKERS)


@dataclass(frozen=True)
class CosmosFee:
    denom: str
    amount: int
    gas_limit: int

    @property
    def coins(self) -> List[pb.Coin]:
        return [(self.denom, self.amount)] if self.amount else []


@dataclass(frozen=True)
class SignedCosmosTx:
    """A fully assembled TxRaw plus what went into it."""
    tx_bytes: bytes
    body_bytes: bytes
    auth_info_bytes: bytes
    sign_bytes: bytes
    digest: bytes
    signature: bytes
    account_number: int
    sequence: int
    coins: Sequence[pb.Coin] = field(default_factory=tuple)

    @property
    def tx_base64(self) -> str:
        return base64.b64encode(self.tx_bytes).decode()


class CosmosTxSigner:
    """
    Builds and signs bank MsgSend transactions.

    Holds no chain state: the caller passes a freshly fetched AccountState on
    every call, so a retry always signs against the current sequence.
    """

    def __init__(
        self,
        signer: Signer,
        *,
        chain_id: str,
        fee: CosmosFee,
        pubkey_type_url: str = DEFAULT_PUBKEY_TYPE_URL,
    ):
        self.signer = signer
        self.chain_id = chain_id
        self.fee = fee
        self.pubkey_type_url = pubkey_type_url

    @property
    def address(self) -> str:
        return self.signer.bech32_address

    def public_key_any(self) -> bytes:
        return pb.encode_any(
            self.pubkey_type_url,
            pb.encode_eth_pubkey(self.signer.public_key_compressed),
        )

    def check_account_key(self, account: AccountState) -> None:
        """Refuse to sign if the chain already holds a different key for us."""
        if account.public_key and account.public_key != self.signer.pubkey_base64:
            raise KeyMismatchError(
                f"Public key on file for {account.address} does not match the derived key",
                {"address": account.address},
            )

    def build_body(self, recipient: str, coins: Sequence[pb.Coin]) -> bytes:
        msg = pb.encode_any(
            pb.MSG_SEND_TYPE_URL,
            pb.encode_msg_send(self.address, recipient, coins),
        )
        return pb.encode_tx_body([msg], memo="", timeout_height=0)

    def build_auth_info(self, sequence: int) -> bytes:
        signer_info = pb.encode_signer_info(self.public_key_any(), sequence)
        fee = pb.encode_fee(self.fee.coins, self.fee.gas_limit)
        return pb.encode_auth_info([signer_info], fee)

    def build_send(
        self,
        account: AccountState,
        recipient: str,
        coins: Sequence[pb.Coin],
    ) -> SignedCosmosTx:
        """Assemble, sign and serialize a MsgSend for ``account``'s current sequence."""
        if not coins:
            raise ValueError("MsgSend needs at least one coin")
        self.check_account_key(account)

        body_bytes = self.build_body(recipient, coins)
        auth_info_bytes = self.build_auth_info(account.sequence)
        sign_bytes = pb.encode_sign_doc(
            body_bytes,
            auth_info_bytes,
            self.chain_id,
            account.account_number,
        )
        digest = normalize_digest(sign_bytes)
        signature = self.signer.sign_digest(digest)
        tx_bytes = pb.encode_tx_raw(body_bytes, auth_info_bytes, [signature])

        logger.debug(
            "Signed MsgSend account_number=%d sequence=%d bytes=%d",
            account.account_number,
            account.sequence,
            len(tx_bytes),
        )
        return SignedCosmosTx(
            tx_bytes=tx_bytes,
            body_bytes=body_bytes,
            auth_info_bytes=auth_info_bytes,
            sign_bytes=sign_bytes,
            digest=digest,
            signature=signature,
            account_number=account.account_number,
            sequence=account.sequence,
            coins=tuple(coins),
        )
