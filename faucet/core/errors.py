"""
Faucet error taxonomy.

Input errors are raised before any chain I/O. Chain errors carry enough
context for the retry policy to decide whether a rebuild-and-resend is safe.
"""

from typing import Any, Dict, Optional


class FaucetError(Exception):
    """Base exception for faucet errors."""

    code: str = "faucet_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidAddressError(FaucetError):
    """Recipient address is neither a valid hex nor a valid bech32 address."""
    code = "invalid_address"


class KeyDerivationError(FaucetError):
    """Seed material could not produce the configured signer identity."""
    code = "key_derivation_failed"


class KeyMismatchError(FaucetError):
    """The chain holds a different public key for the signer account."""
    code = "key_mismatch"


class RateLimitExceededError(FaucetError):
    """Address, IP or token-value quota exhausted."""
    code = "rate_limited"

    def __init__(
        self,
        message: str,
        retry_after: int,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.retry_after = retry_after


class RequestInProgressError(FaucetError):
    """Another request for the same recipient is still being processed."""
    code = "request_in_progress"


class ChainError(FaucetError):
    """Base for failures reported by, or while talking to, a ledger."""
    code = "chain_error"


class ChainRequestError(ChainError):
    """Transport failure or JSON-RPC error object."""
    code = "chain_request_failed"


class CosmosAccountError(ChainError):
    """Signer account missing on chain or response unparsable."""
    code = "cosmos_account_error"


class CosmosBroadcastError(ChainError):
    """Cosmos node rejected the transaction."""
    code = "cosmos_broadcast_failed"

    def __init__(self, message: str, tx_code: int = -1, raw_log: str = "", tx_hash: Optional[str] = None):
        super().__init__(message, {"tx_code": tx_code, "raw_log": raw_log, "tx_hash": tx_hash})
        self.tx_code = tx_code
        self.raw_log = raw_log
        self.tx_hash = tx_hash


class EvmSendError(ChainError):
    """EVM node rejected a signed transaction."""
    code = "evm_send_failed"


class ApprovalError(ChainError):
    """An ERC-20 approval transaction failed."""
    code = "approval_failed"


class InsufficientAllowanceError(ChainError):
    """Allowance still below the amount needed after approval."""
    code = "insufficient_allowance"


class TransactionRevertedError(ChainError):
    """Transaction was included but reverted."""
    code = "transaction_reverted"

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message, {"tx_hash": tx_hash})
        self.tx_hash = tx_hash


class InclusionTimeoutError(ChainError):
    """Transaction was not included before the configured deadline."""
    code = "inclusion_timeout"

    def __init__(self, message: str, tx_hash: Optional[str] = None, timeout: float = 0.0):
        super().__init__(message, {"tx_hash": tx_hash, "timeout_seconds": timeout})
        self.tx_hash = tx_hash
        self.timeout = timeout
