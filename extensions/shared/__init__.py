"""
Shared extension runtime.

Capabilities implement business logic; dispatchers expose them over HTTP,
registrars connect them to the orchestrator and the server hosts them.
"""

from .capabilities import Executable, Reporter
from .client import OrchestratorClient, ExtensionAction
from .dispatcher import ExecutableDispatcher, ReporterDispatcher
from .errors import (
    ExtensionError,
    InvalidRequestError,
    HandshakeError,
    RegistrationError,
    OrchestratorError,
    CallDepthExceeded,
    SessionStateError,
)
from .registrar import Registrar
from .schemas import (
    ExecutionOutcome,
    ExtensionCategory,
    ExtensionDescriptor,
    LogEntry,
    RegistrationState,
    Session,
    SessionContext,
)
from .server import ExtensionServer
from .settings import ExtensionSettings

__all__ = [
    "Executable",
    "Reporter",
    "OrchestratorClient",
    "ExtensionAction",
    "ExecutableDispatcher",
    "ReporterDispatcher",
    "ExtensionError",
    "InvalidRequestError",
    "HandshakeError",
    "RegistrationError",
    "OrchestratorError",
    "CallDepthExceeded",
    "SessionStateError",
    "Registrar",
    "ExecutionOutcome",
    "ExtensionCategory",
    "ExtensionDescriptor",
    "LogEntry",
    "RegistrationState",
    "Session",
    "SessionContext",
    "ExtensionServer",
    "ExtensionSettings",
]
