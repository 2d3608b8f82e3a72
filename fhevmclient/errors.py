"""
Error taxonomy for the fhevmclient session layer.

Every failure surfaced to callers is a subclass of FhevmError. The
``retryable`` flag tells the caller whether repeating the same call may
succeed; the session layer itself never retries on its own, except for the
transparent re-signing of an expired decryption signature.
"""


class FhevmError(Exception):
    """Base class for all fhevmclient errors."""
    retryable = False


class NoProvider(FhevmError):
    """Raised when an instance is requested without a provider."""
    pass


class EngineLoadFailed(FhevmError):
    """Raised when the external crypto engine bundle could not be loaded."""
    retryable = True


class KeyFetchFailed(FhevmError):
    """Raised when the public key material for a chain could not be fetched."""
    retryable = True


class NetworkError(FhevmError):
    """Raised on transport failures talking to the relay or the RPC node."""
    retryable = True


class NotReady(FhevmError):
    """Raised when an operation needs a Ready instance and there is none."""
    pass


class ValueOutOfRange(FhevmError, ValueError):
    """Raised when a plaintext does not fit the declared encrypted type."""
    pass


class UserRejected(FhevmError):
    """Raised when the wallet refused (or failed) to sign a decryption request."""
    pass


class ScopeMismatch(FhevmError):
    """Raised when a decrypt request targets a contract outside the signature's scope."""
    pass


class AccessDenied(FhevmError):
    """Raised when the relay refuses to disclose a handle."""
    pass
