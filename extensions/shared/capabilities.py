"""
Extension Capabilities

Abstract base classes implemented by concrete extensions. A capability only
holds business logic; HTTP routing, validation and registration are provided
by the dispatcher composed around it.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, TYPE_CHECKING

from .schemas import ExecutionOutcome, Session

if TYPE_CHECKING:
    from .client import OrchestratorClient


class Executable(ABC):
    """
    Capability of drivers and actors: perform an action within a session.

    Drivers and actors share this interface and differ only in the
    category they are registered under.
    """

    def __init__(
        self,
        name: str,
        extension_type: str,
        secret: str = "",
        connect_on_startup: bool = False
    ):
        """
        Initialize capability.

        Args:
            name: Extension name, unique within its category
            extension_type: Type the orchestrator routes requests by (e.g. "browser")
            secret: Shared secret disclosed during the connect handshake
            connect_on_startup: Self-register with the orchestrator on startup
        """
        hook = "live_log" if live else "session_end_log"
        if getattr(type(self), hook) is getattr(Reporter, hook):
            raise TypeError(f"{type(self).__name__} must implement {hook}() when live={live}")

        self.name = name
        self.extension_type = extension_type
        self.secret = secret
        self.connect_on_startup = connect_on_startup

    @abstractmethod
    def execute(
        self,
        action: str,
        parameters: Dict[str, Any],
        client: "OrchestratorClient"
    ) -> ExecutionOutcome:
        """
        Execute the given action with parameters.
        Must be implemented by subclasses.

        Runs on a worker thread. Requests for the same session may run
        concurrently; keep a session-keyed lock if that matters.

        Args:
            action: The action to execute
            parameters: Parameters for the action (empty if none were sent)
            client: Client bound to the inbound session, for nested calls

        Returns:
            ExecutionOutcome describing the result
        """
        pass

    def on_session_end(self, session_id: str) -> None:
        """Release per-session resources. Called once the orchestrator ends the session."""


class Reporter(ABC):
    """
    Capability that consumes session log events.

    A live reporter receives every log event as it happens; any other
    reporter receives the full session log once the session ends.
    """

    def __init__(
        self,
        name: str,
        secret: str = "",
        live: bool = False,
        connect_on_startup: bool = False
    ):
        """
        Initialize reporter.

        Args:
            name: Reporter name
            secret: Shared secret disclosed during the connect handshake
            live: Receive events one by one instead of an end-of-session snapshot
            connect_on_startup: Self-register with the orchestrator on startup
        """
        self.name = name
        self.secret = secret
        self.live = live
        self.connect_on_startup = connect_on_startup

    def live_log(self, session_id: str, category: str, message: str) -> int:
        """
        Process a single log event. Only called for live reporters.

        Args:
            session_id: Orchestrator-side UUID of the session
            category: Category of the event
            message: Event content

        Returns:
            HTTP status code (200 for OK)
        """
        raise NotImplementedError(f"{type(self).__name__} does not process live log events")

    def session_end_log(self, session: Session) -> int:
        """
        Process the complete log of an ended session. Only called for non-live reporters.

        Args:
            session: Session snapshot with the ordered log

        Returns:
            HTTP status code (200 for OK)
        """
        raise NotImplementedError(f"{type(self).__name__} does not process session reports")
