"""Dual-ledger test-token faucet."""

__version__ = "0.1.0"
