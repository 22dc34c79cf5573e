"""
Orchestrator Client

Synchronous HTTP client for the orchestrator's session and execute API.

Two ways to obtain one:
- OrchestratorClient.create_for(url): a top-level client that creates its
  own session on first use (test scripts, the CLI).
- OrchestratorClient.bound_to_session(url, session_id, ...): a re-entrant
  client handed to a capability while it handles a request. It carries the
  inbound session id on every call and never creates or ends a session.
"""

import logging
import threading
from typing import Any, Dict, Optional

import httpx

from .errors import CallDepthExceeded, OrchestratorError, SessionStateError
from .schemas import ExecutionOutcome, ExtensionCategory, Session

logger = logging.getLogger(__name__)

CALL_DEPTH_HEADER = "X-Call-Depth"


class ExtensionAction:
    """
    Fluent builder for one action on a driver or actor.

    Example:
        client.driver("browser").action("open").parameter("url", url).execute()
    """

    def __init__(self, client: "OrchestratorClient", category: ExtensionCategory, extension_type: str):
        self.client = client
        self.category = category
        self.extension_type = extension_type
        self.action_name: Optional[str] = None
        self.parameters: Dict[str, Any] = {}

    def action(self, name: str) -> "ExtensionAction":
        self.action_name = name
        return self

    def parameter(self, name: str, value: Any) -> "ExtensionAction":
        self.parameters[name] = value
        return self

    def execute(self) -> ExecutionOutcome:
        if not self.action_name:
            raise ValueError("no action set")
        return self.client.execute(
            self.category,
            self.extension_type,
            self.action_name,
            self.parameters
        )


class OrchestratorClient:
    """
    Client for the orchestrator HTTP API.

    Thread-safe for session creation; one instance is normally used by a
    single thread (one request handler or one test script).
    """

    def __init__(
        self,
        base_url: str,
        session_id: Optional[str] = None,
        bound: bool = False,
        call_depth: int = 0,
        max_call_depth: int = 8,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize client.

        Args:
            base_url: Orchestrator base URL (e.g. "http://localhost:8080/")
            session_id: Session to use instead of creating one
            bound: Session belongs to an inbound request (never created or ended here)
            call_depth: Nesting depth of the request this client was created for
            max_call_depth: Refuse calls that would nest deeper than this
            timeout: Timeout in seconds for each HTTP call
            transport: Optional httpx transport (tests)
        """
        if not base_url.endswith("/"):
            base_url += "/"
        self.base_url = base_url
        self.bound = bound
        self.call_depth = call_depth
        self.max_call_depth = max_call_depth
        self.timeout = timeout

        self._transport = transport
        self._http: Optional[httpx.Client] = None
        self._session_id = session_id
        self._session: Optional[Session] = None
        self._lock = threading.Lock()

    @classmethod
    def create_for(cls, url: str, **kwargs) -> "OrchestratorClient":
        """Client that creates its own session on first use"""
        return cls(url, **kwargs)

    @classmethod
    def bound_to_session(
        cls,
        url: str,
        session_id: str,
        call_depth: int = 0,
        **kwargs
    ) -> "OrchestratorClient":
        """
        Re-entrant client for a request being handled in session_id.

        Performs no network I/O; every execute call carries session_id.
        """
        if not session_id:
            raise ValueError("session id is required")
        return cls(url, session_id=session_id, bound=True, call_depth=call_depth, **kwargs)

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    @property
    def http(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport
            )
        return self._http

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self.http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Request to orchestrator failed. method={method} path={path} error={e}")
            raise OrchestratorError(str(e)) from e

        if not response.is_success:
            logger.warning(
                f"Orchestrator rejected request. method={method} path={path} "
                f"status={response.status_code}"
            )
            raise OrchestratorError(response.text.strip(), status_code=response.status_code)

        return response

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None

    def __enter__(self) -> "OrchestratorClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    def session(self) -> str:
        """
        Current session id, creating a session if this client has none.

        A bound client always returns its inbound session id.
        """
        with self._lock:
            if self._session_id is None:
                response = self._request("GET", "session")
                self._session = Session.model_validate(response.json())
                self._session_id = self._session.uuid
                logger.info(f"New session created. session={self._session_id}")
            return self._session_id

    def session_info(self) -> Session:
        """Fetch the current session (with its log) from the orchestrator"""
        response = self._request("GET", f"session/{self.session()}")
        return Session.model_validate(response.json())

    def refresh_session_info(self) -> Session:
        self._session = self.session_info()
        return self._session

    def log(self, message: str) -> None:
        """Append a message to the session log"""
        self._request(
            "POST",
            f"session/{self.session()}",
            json={"type": "logMessage", "logMessage": message}
        )

    def end_session(self) -> None:
        """
        End the session this client created.

        Raises:
            SessionStateError: If there is no session or the session belongs to an inbound request
        """
        if self.bound:
            raise SessionStateError("cannot end a session owned by the calling request")
        with self._lock:
            if self._session_id is None:
                raise SessionStateError("no active session")
            session_id = self._session_id
            self._request("DELETE", f"session/{session_id}")
            self._session_id = None
            self._session = None
        logger.info(f"Session ended. session={session_id}")

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def driver(self, extension_type: str) -> ExtensionAction:
        return ExtensionAction(self, ExtensionCategory.DRIVER, extension_type)

    def actor(self, extension_type: str) -> ExtensionAction:
        return ExtensionAction(self, ExtensionCategory.ACTOR, extension_type)

    def execute(
        self,
        category: ExtensionCategory,
        extension_type: str,
        action: str,
        parameters: Optional[Dict[str, Any]] = None
    ) -> ExecutionOutcome:
        """
        Execute an action on a driver or actor via the orchestrator.

        Args:
            category: DRIVER or ACTOR
            extension_type: Type the orchestrator routes by
            action: Action name
            parameters: Action parameters

        Returns:
            ExecutionOutcome returned by the target extension

        Raises:
            CallDepthExceeded: If the call would nest deeper than max_call_depth
            OrchestratorError: If the orchestrator cannot be reached or rejects the call
        """
        depth = self.call_depth + 1
        if depth > self.max_call_depth:
            raise CallDepthExceeded(depth, self.max_call_depth)

        category = ExtensionCategory(category)
        body = {
            "type": extension_type,
            "action": action,
            "session": self.session(),
            "parameters": parameters or {}
        }

        logger.info(
            f"Executing {category.value} action. type={extension_type} "
            f"action={action} session={body['session']} depth={depth}"
        )

        response = self._request(
            "POST",
            f"{category.value}/execute",
            json=body,
            headers={CALL_DEPTH_HEADER: str(depth)}
        )
        return ExecutionOutcome.model_validate(response.json())
