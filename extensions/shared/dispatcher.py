"""
Dispatchers - HTTP endpoints of one extension instance

A dispatcher is composed around a capability and a Registrar. It exposes
the capability's routes on a FastAPI APIRouter, validates inbound payloads,
runs the capability on the worker pool and serializes the result.

Routes are keyed by (category, lower-cased extension name):

    Executable:  POST   /{category}/{name}/execute
                 DELETE /{category}/{name}/session/{id}
                 POST   /{category}/{name}/serverConnect
    Reporter:    POST   /reporter/{name}/live           (live reporters only)
                 POST   /reporter/{name}/report         (non-live reporters only)
                 POST   /reporter/{name}/serverConnect
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import APIRouter, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response

from .capabilities import Executable, Reporter
from .client import CALL_DEPTH_HEADER, OrchestratorClient
from .errors import InvalidRequestError, HandshakeError
from .registrar import Registrar
from .schemas import ExecutionOutcome, ExtensionCategory, session_from_payload
from .worker_pool import WorkerPool

logger = logging.getLogger(__name__)


def describe_source(request: Request) -> str:
    """Source address of a request for log lines"""
    if request.client is None:
        return "unknown"
    return f"{request.client.host}:{request.client.port}"


def error_response(reason: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": reason})


async def read_payload(request: Request) -> Optional[Dict[str, Any]]:
    """
    Decode a JSON object body.

    Returns:
        The decoded object, or None if the body is empty or not a JSON object
    """
    body = await request.body()
    if not body.strip():
        return None
    try:
        data = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


class BaseDispatcher:
    """
    Behaviour shared by all extension categories: routing key, connect
    handshake and delegation of the registration flows to the Registrar.
    """

    category: ExtensionCategory

    def __init__(self, name: str, registrar: Registrar, worker_pool: WorkerPool):
        self.name = name
        self.registrar = registrar
        self.worker_pool = worker_pool
        self.router = APIRouter()
        self.setup_endpoints()

    @property
    def base_path(self) -> str:
        return f"/{self.category.value}/{self.name.lower()}"

    @property
    def connect_on_startup(self) -> bool:
        raise NotImplementedError

    def setup_endpoints(self) -> None:
        self.router.add_api_route(
            f"{self.base_path}/serverConnect",
            self.handle_server_connect,
            methods=["POST"]
        )

    async def register_remote(self):
        """Run self-registration (Flow A)"""
        return await self.registrar.register_remote()

    def set_remote_server(self, host: str, port: int, scheme: str = "http") -> None:
        self.registrar.set_remote_server(host, port, scheme)

    def reject(self, request: Request, reason: str) -> JSONResponse:
        logger.warning(f"Received invalid request. source=\"{describe_source(request)}\" reason=\"{reason}\"")
        return error_response(reason)

    async def handle_server_connect(self, request: Request) -> JSONResponse:
        """Connect handshake (Flow B)"""
        source = describe_source(request)
        logger.info(f"Received server side registration request. source=\"{source}\"")

        payload = await read_payload(request)
        try:
            descriptor = await self.worker_pool.run(self.registrar.handle_connect, payload)
        except HandshakeError as e:
            return self.reject(request, e.reason)

        logger.info(f"Accepted server side {self.category.value} registration. source=\"{source}\"")
        return JSONResponse(status_code=200, content=descriptor.model_dump(exclude_none=True))


class ExecutableDispatcher(BaseDispatcher):
    """Endpoints for drivers and actors"""

    def __init__(
        self,
        category: ExtensionCategory,
        capability: Executable,
        registrar: Registrar,
        worker_pool: WorkerPool,
        max_call_depth: int = 8,
        client_timeout: float = 30.0,
        expose_outcome_data: bool = False,
        client_transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize dispatcher.

        Args:
            category: DRIVER or ACTOR
            capability: Capability implementation
            registrar: Registrar holding the orchestrator address
            worker_pool: Pool the capability runs on
            max_call_depth: Nesting limit for re-entrant clients
            client_timeout: Timeout for re-entrant client calls
            expose_outcome_data: Echo ExecutionOutcome.data in execute responses
            client_transport: Optional httpx transport for re-entrant clients (tests)
        """
        category = ExtensionCategory(category)
        if category == ExtensionCategory.REPORTER:
            raise ValueError("reporters are dispatched by ReporterDispatcher")
        self.category = category
        self.capability = capability
        self.max_call_depth = max_call_depth
        self.client_timeout = client_timeout
        self.expose_outcome_data = expose_outcome_data
        self.client_transport = client_transport
        super().__init__(capability.name, registrar, worker_pool)

    @property
    def connect_on_startup(self) -> bool:
        return self.capability.connect_on_startup

    def setup_endpoints(self) -> None:
        self.router.add_api_route(
            f"{self.base_path}/execute",
            self.handle_execute,
            methods=["POST"]
        )
        self.router.add_api_route(
            f"{self.base_path}/session/{{session_id}}",
            self.handle_session_end,
            methods=["DELETE"]
        )
        super().setup_endpoints()

    def create_client(self, session_id: str, call_depth: int = 0) -> OrchestratorClient:
        """Re-entrant client bound to the inbound session"""
        return OrchestratorClient.bound_to_session(
            self.registrar.orchestrator_url,
            session_id,
            call_depth=call_depth,
            max_call_depth=self.max_call_depth,
            timeout=self.client_timeout,
            transport=self.client_transport
        )

    def validate_execute(self, payload: Optional[Dict[str, Any]]) -> tuple:
        """
        Check an execute payload in protocol order.

        Returns:
            Tuple of action, session id and parameters

        Raises:
            InvalidRequestError: Naming the first missing or invalid field
        """
        if payload is None:
            raise InvalidRequestError("missing payload")
        if "action" not in payload:
            raise InvalidRequestError("missing action")
        if "session" not in payload:
            raise InvalidRequestError("missing session id")

        action = payload["action"]
        session = payload["session"]
        if not isinstance(action, str) or not action:
            raise InvalidRequestError("invalid action")
        if not isinstance(session, str) or not session:
            raise InvalidRequestError("invalid session id")

        parameters = payload.get("parameters")
        if parameters is None:
            parameters = {}
        elif not isinstance(parameters, dict):
            raise InvalidRequestError("invalid parameters")

        return action, session, parameters

    def run_capability(
        self,
        action: str,
        session_id: str,
        parameters: Dict[str, Any],
        call_depth: int
    ) -> ExecutionOutcome:
        """
        Invoke the capability; any exception becomes a failed outcome.

        Runs on a worker thread.
        """
        try:
            with self.create_client(session_id, call_depth) as client:
                outcome = self.capability.execute(action, parameters, client)
            if not isinstance(outcome, ExecutionOutcome):
                raise TypeError(
                    f"{type(self.capability).__name__}.execute returned "
                    f"{type(outcome).__name__}, expected ExecutionOutcome"
                )
            return outcome
        except Exception as e:
            logger.error(
                f"Execution of {self.category.value} action failed. "
                f"session=\"{session_id}\" action=\"{action}\" error=\"{e}\"",
                exc_info=True
            )
            return ExecutionOutcome.failed(str(e) or type(e).__name__)

    def outcome_body(self, outcome: ExecutionOutcome) -> Dict[str, Any]:
        body = outcome.to_wire(include_data=self.expose_outcome_data)
        if "data" in body:
            try:
                body["data"] = jsonable_encoder(body["data"])
            except (TypeError, ValueError) as e:
                logger.warning(
                    f"Outcome data is not JSON serializable, omitting it. "
                    f"extension=\"{self.name}\" error=\"{e}\""
                )
                del body["data"]
        return body

    async def handle_execute(self, request: Request) -> JSONResponse:
        payload = await read_payload(request)
        try:
            action, session_id, parameters = self.validate_execute(payload)
        except InvalidRequestError as e:
            return self.reject(request, e.reason)

        try:
            call_depth = int(request.headers.get(CALL_DEPTH_HEADER, "0"))
        except ValueError:
            return self.reject(request, "invalid call depth")

        logger.info(
            f"Received {self.category.value} execution request. "
            f"source=\"{describe_source(request)}\" session=\"{session_id}\" action=\"{action}\""
        )

        outcome = await self.worker_pool.run(
            self.run_capability, action, session_id, parameters, call_depth
        )
        return JSONResponse(status_code=200, content=self.outcome_body(outcome))

    def run_session_end(self, session_id: str) -> None:
        try:
            self.capability.on_session_end(session_id)
        except Exception as e:
            # Teardown is fire-and-forget; the caller must not retry it
            logger.error(
                f"Session end hook failed. session=\"{session_id}\" error=\"{e}\"",
                exc_info=True
            )

    async def handle_session_end(self, session_id: str, request: Request) -> JSONResponse:
        logger.info(
            f"Received session end. source=\"{describe_source(request)}\" session=\"{session_id}\""
        )
        await self.worker_pool.run(self.run_session_end, session_id)
        return JSONResponse(status_code=200, content="ok")


class ReporterDispatcher(BaseDispatcher):
    """
    Endpoints for reporters.

    Live reporters only expose /live, all others only /report, so a
    reporter never receives events of the other mode.
    """

    category = ExtensionCategory.REPORTER

    def __init__(self, capability: Reporter, registrar: Registrar, worker_pool: WorkerPool):
        self.capability = capability
        super().__init__(capability.name, registrar, worker_pool)

    @property
    def connect_on_startup(self) -> bool:
        return self.capability.connect_on_startup

    def setup_endpoints(self) -> None:
        logger.info(f"Setting up reporter endpoint. name={self.capability.name} live={self.capability.live}")

        if self.capability.live:
            self.router.add_api_route(
                f"{self.base_path}/live",
                self.handle_live_log,
                methods=["POST"]
            )
        else:
            self.router.add_api_route(
                f"{self.base_path}/report",
                self.handle_end_report,
                methods=["POST"]
            )
        super().setup_endpoints()

    @staticmethod
    def validate_live_log(payload: Optional[Dict[str, Any]]) -> tuple:
        """
        Check a live log payload {session, message: {type, message}}.

        Returns:
            Tuple of session id, category and message content

        Raises:
            InvalidRequestError: Naming the first missing field
        """
        if payload is None:
            raise InvalidRequestError("missing payload")

        session_id = payload.get("session")
        if not session_id:
            raise InvalidRequestError("missing session id")

        message = payload.get("message")
        if not isinstance(message, dict):
            raise InvalidRequestError("missing message data")

        category = message.get("type")
        if category is None:
            raise InvalidRequestError("missing message type")

        content = message.get("message")
        if content is None:
            raise InvalidRequestError("missing message content")

        return str(session_id), str(category), str(content)

    async def invoke(self, func, *args) -> Response:
        """Run a reporter callback and answer with the status code it returns"""
        try:
            status_code = await self.worker_pool.run(func, *args)
        except Exception as e:
            logger.error(f"Reporter {self.capability.name} failed. error=\"{e}\"", exc_info=True)
            return error_response(str(e) or type(e).__name__, status_code=500)

        if not isinstance(status_code, int) or not 100 <= status_code <= 599:
            logger.warning(
                f"Reporter {self.capability.name} returned invalid status code {status_code!r}"
            )
            return error_response("invalid reporter status code", status_code=500)

        if status_code < 200 or status_code in (204, 304):
            # Bodyless status codes
            return Response(status_code=status_code)
        return JSONResponse(status_code=status_code, content="ok")

    async def handle_live_log(self, request: Request) -> Response:
        payload = await read_payload(request)
        try:
            session_id, category, content = self.validate_live_log(payload)
        except InvalidRequestError as e:
            return self.reject(request, e.reason)

        logger.info(f"Received live logging. session=\"{session_id}\" source=\"{describe_source(request)}\"")
        return await self.invoke(self.capability.live_log, session_id, category, content)

    async def handle_end_report(self, request: Request) -> Response:
        payload = await read_payload(request)
        if payload is None:
            return self.reject(request, "missing payload")

        try:
            session = session_from_payload(payload)
        except ValueError as e:
            return self.reject(request, str(e))

        logger.info(
            f"Received session report. session=\"{session.uuid}\" entries={len(session.context.log)} "
            f"source=\"{describe_source(request)}\""
        )
        return await self.invoke(self.capability.session_end_log, session)
