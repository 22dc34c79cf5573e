"""
Extension Runtime - Test Fixtures

Provides an in-process fake orchestrator (an httpx MockTransport), a fake
clock for the registration retry loop, and recording capabilities.
Everything runs in-process; no ports are opened.
"""

import asyncio
import json
import sys
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from extensions.shared.capabilities import Executable, Reporter
from extensions.shared.schemas import ExecutionOutcome, Session
from extensions.shared.settings import ExtensionSettings


class FakeOrchestrator:
    """
    Orchestrator stand-in behind an httpx.MockTransport.

    Routes are keyed by (method, path). Unrouted requests get a 404.
    GET /session is routed by default and hands out numbered sessions.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes: Dict[tuple, Callable[[httpx.Request], httpx.Response]] = {}
        self.sessions_created = 0
        self._lock = threading.Lock()
        self.transport = httpx.MockTransport(self.handle)
        self.route("GET", "/session", self._create_session)

    def route(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[(method, path)] = handler

    def respond(self, method: str, path: str, status_code: int = 200, body: Any = "ok") -> None:
        """Route that always answers with the same response"""
        self.route(method, path, lambda request: httpx.Response(status_code, json=body))

    def handle(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "not found"})
        return handler(request)

    def requests_to(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def bodies(self, method: str, path: str) -> List[Any]:
        return [json.loads(r.content) for r in self.requests_to(method, path)]

    def _create_session(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.sessions_created += 1
            uuid = f"session-{self.sessions_created}"
        return httpx.Response(201, json={"uuid": uuid, "context": {"log": []}})


class FakeClock:
    """Async sleep that returns immediately and remembers the requested delays."""

    def __init__(self):
        self.sleeps: List[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await asyncio.sleep(0)


class RecordingExecutable(Executable):
    """
    Executable that records every call.

    `behavior(action, parameters, client)` decides the outcome; by default
    every action succeeds with message "ok".
    """

    def __init__(self, name: str = "TestDriver", extension_type: str = "test", connect_on_startup: bool = False):
        super().__init__(
            name=name,
            extension_type=extension_type,
            secret="testSecret",
            connect_on_startup=connect_on_startup
        )
        self.calls: List[tuple] = []
        self.ended_sessions: List[str] = []
        self.behavior: Callable = lambda action, parameters, client: ExecutionOutcome.succeeded("ok")
        self.session_end_behavior: Optional[Callable[[str], None]] = None

    def execute(self, action, parameters, client):
        self.calls.append((action, parameters, client.session_id))
        return self.behavior(action, parameters, client)

    def on_session_end(self, session_id):
        self.ended_sessions.append(session_id)
        if self.session_end_behavior is not None:
            self.session_end_behavior(session_id)


class RecordingReporter(Reporter):
    """Reporter that records events and answers with `status_code`."""

    def __init__(self, name: str = "TestReporter", live: bool = False, connect_on_startup: bool = False):
        super().__init__(name=name, secret="reporterSecret", live=live, connect_on_startup=connect_on_startup)
        self.events: List[tuple] = []
        self.sessions: List[Session] = []
        self.status_code: Any = 200
        self.error: Optional[Exception] = None

    def live_log(self, session_id, category, message):
        if self.error is not None:
            raise self.error
        self.events.append((session_id, category, message))
        return self.status_code

    def session_end_log(self, session):
        if self.error is not None:
            raise self.error
        self.sessions.append(session)
        return self.status_code


@pytest.fixture
def orchestrator():
    """Fake orchestrator reachable through its transport"""
    return FakeOrchestrator()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    """Settings that do not depend on the environment"""
    return ExtensionSettings(
        hostname="extension.test",
        port=9999,
        bind_host="127.0.0.1",
        orchestrator_host="orchestrator.test",
        orchestrator_port=8080,
        worker_pool_size=4,
        registration_max_retries=10,
        registration_retry_delay=5.0,
        max_call_depth=8,
        client_timeout=5.0,
        expose_outcome_data=False,
        log_level="INFO",
        log_dir=str(tmp_path / "logs")
    )


@pytest.fixture
def driver():
    return RecordingExecutable()


@pytest.fixture
def live_reporter():
    return RecordingReporter(name="LiveReporter", live=True)


@pytest.fixture
def session_reporter():
    return RecordingReporter(name="SessionReporter", live=False)


@pytest.fixture
def make_executable():
    """Factory for additional recording executables"""
    return RecordingExecutable


@pytest.fixture
def make_reporter():
    """Factory for additional recording reporters"""
    return RecordingReporter
