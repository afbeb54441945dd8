"""
Bundle Error Classification

Faults raised by the bundle lifecycle. Relay-level rejections of a well-formed
request are *not* in this module: they come back as ``RelayError`` records
(see ``models.py``) and callers branch on them.
"""

from typing import Optional


class BundleError(Exception):
    """Base exception for bundle lifecycle faults."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# Input errors: raised before any network call


class BundleInputError(BundleError):
    """Malformed bundle input; nothing was signed or sent."""
    pass


class DecodeError(BundleInputError):
    """A raw signed transaction could not be decoded."""
    pass


class InvalidNonceError(BundleInputError):
    """An explicit transaction nonce is not an integer."""
    pass


# Transport faults


class RelayTransportError(BundleError):
    """HTTP-level failure talking to the relay or blocks index."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(RelayTransportError):
    """Relay kept rate-limiting after the allowed number of backoffs."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class ChainProviderError(BundleError):
    """The chain node rejected or failed a JSON-RPC call."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


# Diagnosis preconditions


class DiagnosisPreconditionError(BundleError):
    """Conflict diagnosis cannot start."""
    pass


class BlockNotIndexedError(DiagnosisPreconditionError):
    """The blocks index has not processed the target block yet."""

    def __init__(self, target_block: int, latest_indexed: int):
        super().__init__(
            f"Blocks index is at {latest_indexed}, target block {target_block} not processed yet"
        )
        self.target_block = target_block
        self.latest_indexed = latest_indexed


class TargetBundleRevertsError(DiagnosisPreconditionError):
    """The bundle under diagnosis fails on its own at the top of the block."""
    pass


class DiagnosisSimulationError(BundleError):
    """A replay simulation failed for a reason other than a nonce collision."""
    pass


# Timeout


class BundleWaitTimeout(BundleError, TimeoutError):
    """No resolution arrived before the wait deadline."""

    def __init__(self, target_block: int, timeout_s: float):
        super().__init__(f"Timed out after {timeout_s}s waiting for block {target_block}")
        self.target_block = target_block
        self.timeout_s = timeout_s
