"""
Exception hierarchy for bsvclaw.

    ClawError (base)
    ├── LedgerError            - ledger API unreachable or returned non-2xx
    │   └── BroadcastError     - raw transaction rejected
    ├── SigningError           - transaction could not be built or signed
    ├── InsufficientFundsError - UTXO set cannot cover payment + fee
    ├── InputsBusyError        - inputs kept being claimed by concurrent builds
    ├── InferenceError         - inference backend failed (mapped to "Error: ..." by callers)
    ├── WalletError            - wallet file missing or unreadable
    ├── ConversationBusyError  - requester already has a pending exchange
    └── ResponseTimeoutError   - bridge gave up waiting; the job may still settle

Malformed requests (no tag, no payment) are not errors: they are discarded.
"""

from typing import Any, Dict, Optional


class ClawError(Exception):
    """Base exception for all bsvclaw errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class LedgerError(ClawError):
    """A ledger read or write failed (network error or non-2xx status)."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        details: Dict[str, Any] = {}
        if status_code is not None:
            details["status_code"] = status_code
        if url:
            details["url"] = url
        super().__init__(message, details)
        self.status_code = status_code
        self.url = url


class BroadcastError(LedgerError):
    """The ledger refused a transaction (fee too low, already spent, ...)."""


class SigningError(ClawError):
    """The transaction-building library could not produce a signed transaction."""


class InsufficientFundsError(ClawError):
    def __init__(self, required: int, available: int, address: Optional[str] = None):
        message = f"Insufficient funds: need {required} sats, only {available} available"
        details: Dict[str, Any] = {"required": required, "available": available}
        if address:
            details["address"] = address
        super().__init__(message, details)
        self.required = required
        self.available = available


class InputsBusyError(ClawError):
    """Every candidate input was claimed by a concurrent build; retry later."""

    def __init__(self, attempts: int, address: Optional[str] = None):
        details: Dict[str, Any] = {"attempts": attempts}
        if address:
            details["address"] = address
        super().__init__(f"Inputs busy: still contended after {attempts} attempts", details)
        self.attempts = attempts


class InferenceError(ClawError):
    """Inference backend unreachable, timed out or returned garbage."""


class WalletError(ClawError):
    pass


class ConversationBusyError(ClawError):
    def __init__(self, requester_key: str):
        super().__init__(
            "A previous request is still pending for this requester",
            {"requester": requester_key},
        )
        self.requester_key = requester_key


class ResponseTimeoutError(ClawError):
    """
    No matching response appeared within the bounded wait.

    This says nothing about the job itself: it may still settle later.
    """

    def __init__(self, job_txid: str, timeout_seconds: float):
        super().__init__(
            f"Timeout waiting for response to {job_txid} after {timeout_seconds:.0f}s",
            {"job_txid": job_txid, "timeout_seconds": timeout_seconds},
        )
        self.job_txid = job_txid
        self.timeout_seconds = timeout_seconds
