"""
Example Actor

Actor that performs its action by calling a driver back through the
orchestrator, within the session of the request it is handling.
"""

import logging
from typing import Dict, Any

from extensions.shared.capabilities import Executable
from extensions.shared.client import OrchestratorClient
from extensions.shared.schemas import ExecutionOutcome
from extensions.shared.server import ExtensionServer
from extensions.shared.settings import ExtensionSettings

logger = logging.getLogger(__name__)


class ExampleActor(Executable):
    """
    Example actor.

    Every action is forwarded to the driver of type `driver_type` as
    "doSomething"; the actor succeeds only if the driver did.
    """

    def __init__(
        self,
        name: str = "exampleactor",
        driver_type: str = "example",
        secret: str = "someTestSecret",
        connect_on_startup: bool = False
    ):
        super().__init__(
            name=name,
            extension_type="example",
            secret=secret,
            connect_on_startup=connect_on_startup
        )
        self.driver_type = driver_type

    def execute(
        self,
        action: str,
        parameters: Dict[str, Any],
        client: OrchestratorClient
    ) -> ExecutionOutcome:
        logger.info(f"Actor '{self.name}' executing '{action}' in session {client.session()}")

        result = (
            client.driver(self.driver_type)
            .action("doSomething")
            .parameter("origin", action)
            .parameter("test", 1234)
            .execute()
        )

        message = f"Executed action '{action}' with parameters: {parameters}"
        if not result.success:
            return ExecutionOutcome.failed(f"{message}; driver failed: {result.message}")
        return ExecutionOutcome.succeeded(message)


def main():
    """Main entry point for running the example actor"""
    print("[EXAMPLEACTOR] Starting Example Actor...")
    ExtensionServer.for_actor(
        ExampleActor(),
        settings=ExtensionSettings(port=9092)
    ).run()


if __name__ == "__main__":
    main()
