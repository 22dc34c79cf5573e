"""
Example Driver

Minimal driver that echoes the actions it receives. Keeps a small amount
of per-session state to show how a driver serializes work within one
session and releases it when the orchestrator ends the session.
"""

import threading
from typing import Dict, Any, List

from extensions.shared.capabilities import Executable
from extensions.shared.client import OrchestratorClient
from extensions.shared.schemas import ExecutionOutcome
from extensions.shared.server import ExtensionServer
from extensions.shared.settings import ExtensionSettings


class ExampleDriver(Executable):
    """
    Example driver.

    Actions:
    - history: list the actions executed so far in this session
    - anything else: echo the action parameters
    """

    def __init__(self, name: str = "exampledriver", secret: str = "someTestSecret"):
        super().__init__(
            name=name,
            extension_type="example",
            secret=secret,
            connect_on_startup=False
        )
        self._registry_lock = threading.Lock()
        self._session_locks: Dict[str, threading.Lock] = {}
        self._history: Dict[str, List[str]] = {}

    def _session_lock(self, session_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._session_locks.setdefault(session_id, threading.Lock())

    def execute(
        self,
        action: str,
        parameters: Dict[str, Any],
        client: OrchestratorClient
    ) -> ExecutionOutcome:
        session_id = client.session()

        # One action at a time per session
        with self._session_lock(session_id):
            history = self._history.setdefault(session_id, [])

            if action == "history":
                return ExecutionOutcome.succeeded(
                    f"{len(history)} action(s) executed",
                    data=list(history)
                )

            history.append(action)
            return ExecutionOutcome.succeeded(
                f"action executed with parameters: {parameters}"
            )

    def on_session_end(self, session_id: str) -> None:
        with self._registry_lock:
            self._session_locks.pop(session_id, None)
            self._history.pop(session_id, None)

    def active_sessions(self) -> List[str]:
        with self._registry_lock:
            return list(self._history.keys())


def main():
    """Main entry point for running the example driver"""
    print("[EXAMPLEDRIVER] Starting Example Driver...")
    ExtensionServer.for_driver(
        ExampleDriver(),
        settings=ExtensionSettings(port=9091)
    ).run()


if __name__ == "__main__":
    main()
