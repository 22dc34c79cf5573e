"""
Exceptions raised by the extension runtime.

Kept in one module so the dispatcher, registrar and client share the same
types without importing each other.
"""


class ExtensionError(Exception):
    """Base class for all extension runtime errors."""


class InvalidRequestError(ExtensionError):
    """
    Raised when an inbound request is structurally invalid.

    The dispatcher answers with HTTP 400 and {"error": reason}.
    """

    def __init__(self, reason):
        self.reason = reason
        super().__init__(reason)


class HandshakeError(InvalidRequestError):
    """Raised when a connect handshake carries a missing or malformed callback."""


class RegistrationError(ExtensionError):
    """
    Raised when self-registration used up its retry budget.

    Fatal: an unregistered extension must not keep running.
    """

    def __init__(self, category, attempts, last_error=None):
        self.category = category
        self.attempts = attempts
        self.last_error = last_error
        msg = f"Failed to register {category}. Retries used up after {attempts} attempts"
        if last_error is not None:
            msg += f": {last_error}"
        super().__init__(msg)


class OrchestratorError(ExtensionError):
    """Raised when a call to the orchestrator fails or is answered with a non-2xx status."""

    def __init__(self, detail, status_code=None):
        self.detail = detail
        self.status_code = status_code
        if status_code is not None:
            super().__init__(f"Orchestrator returned {status_code}: {detail}")
        else:
            super().__init__(f"Orchestrator unreachable: {detail}")


class CallDepthExceeded(ExtensionError):
    """Raised when a nested call would exceed the configured maximum call depth."""

    def __init__(self, depth, max_depth):
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"Nested call depth {depth} exceeds maximum of {max_depth}"
        )


class SessionStateError(ExtensionError):
    """Raised when a client operation needs a session it does not own."""
