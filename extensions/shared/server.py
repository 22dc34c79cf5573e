"""
Extension Server

Hosts one or more dispatchers in a FastAPI application and runs it with
uvicorn. On startup, every extension whose capability asks for it is
self-registered with the orchestrator in a background task; a registration
that runs out of retries stops the server and is re-raised from run().
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional

import httpx
import uvicorn
from fastapi import FastAPI

from .capabilities import Executable, Reporter
from .dispatcher import BaseDispatcher, ExecutableDispatcher, ReporterDispatcher
from .errors import RegistrationError
from .file_logger import setup_file_logger
from .registrar import Registrar
from .schemas import ExtensionCategory
from .settings import ExtensionSettings
from .worker_pool import WorkerPool

logger = logging.getLogger(__name__)


class ExtensionServer:
    """
    HTTP server for extension dispatchers.

    Usage:
        ExtensionServer.for_driver(MyDriver()).run()
    """

    def __init__(
        self,
        settings: Optional[ExtensionSettings] = None,
        registration_transport: Optional[httpx.AsyncBaseTransport] = None,
        client_transport: Optional[httpx.BaseTransport] = None,
        sleep=asyncio.sleep
    ):
        """
        Initialize server.

        Args:
            settings: Extension settings (defaults to environment)
            registration_transport: Optional httpx transport for self-registration (tests)
            client_transport: Optional httpx transport for re-entrant clients (tests)
            sleep: Awaitable sleep used between registration attempts
        """
        self.settings = settings or ExtensionSettings()
        self.worker_pool = WorkerPool(self.settings.worker_pool_size)
        self.dispatchers: List[BaseDispatcher] = []

        self.registration_tasks: List[asyncio.Task] = []
        self.fatal_error: Optional[BaseException] = None

        self._registration_transport = registration_transport
        self._client_transport = client_transport
        self._sleep = sleep
        self._app: Optional[FastAPI] = None
        self._uvicorn: Optional[uvicorn.Server] = None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def for_driver(cls, capability: Executable, **kwargs) -> "ExtensionServer":
        return cls(**kwargs).add_executable(ExtensionCategory.DRIVER, capability)

    @classmethod
    def for_actor(cls, capability: Executable, **kwargs) -> "ExtensionServer":
        return cls(**kwargs).add_executable(ExtensionCategory.ACTOR, capability)

    @classmethod
    def for_reporter(cls, capability: Reporter, **kwargs) -> "ExtensionServer":
        return cls(**kwargs).add_reporter(capability)

    def _create_registrar(
        self,
        category: ExtensionCategory,
        name: str,
        extension_type: str,
        secret: str,
        live: Optional[bool] = None
    ) -> Registrar:
        return Registrar(
            category=category,
            name=name,
            extension_type=extension_type,
            secret=secret,
            callback_url=self.settings.callback_url,
            orchestrator_host=self.settings.orchestrator_host,
            orchestrator_port=self.settings.orchestrator_port,
            live=live,
            max_retries=self.settings.registration_max_retries,
            retry_delay=self.settings.registration_retry_delay,
            timeout=self.settings.client_timeout,
            sleep=self._sleep,
            transport=self._registration_transport
        )

    def add_executable(self, category: ExtensionCategory, capability: Executable) -> "ExtensionServer":
        category = ExtensionCategory(category)
        registrar = self._create_registrar(
            category, capability.name, capability.extension_type, capability.secret
        )
        self._add(ExecutableDispatcher(
            category,
            capability,
            registrar,
            self.worker_pool,
            max_call_depth=self.settings.max_call_depth,
            client_timeout=self.settings.client_timeout,
            expose_outcome_data=self.settings.expose_outcome_data,
            client_transport=self._client_transport
        ))
        return self

    def add_reporter(self, capability: Reporter) -> "ExtensionServer":
        registrar = self._create_registrar(
            ExtensionCategory.REPORTER,
            capability.name,
            ExtensionCategory.REPORTER.value,
            capability.secret,
            live=capability.live
        )
        self._add(ReporterDispatcher(capability, registrar, self.worker_pool))
        return self

    def _add(self, dispatcher: BaseDispatcher) -> None:
        key = (dispatcher.category.value, dispatcher.name.lower())
        for existing in self.dispatchers:
            if (existing.category.value, existing.name.lower()) == key:
                raise ValueError(f"{key[0]} '{dispatcher.name}' is already hosted by this server")
        if self._app is not None:
            raise RuntimeError("cannot add extensions after the application was created")
        self.dispatchers.append(dispatcher)

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    @property
    def app(self) -> FastAPI:
        if self._app is None:
            self._app = self.create_app()
        return self._app

    def create_app(self) -> FastAPI:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            logger.info(f"Starting extension server on port {self.settings.port}...")
            print(f"[EXTENSIONS] Starting on port {self.settings.port}...")

            self.fatal_error = None
            self.start_registration()

            yield

            logger.info("Shutting down...")
            print("[EXTENSIONS] Shutting down...")
            await self.stop_registration()
            self.worker_pool.shutdown()

        app = FastAPI(
            title="Extension Server",
            version="1.0.0",
            description="Driver, actor and reporter endpoints for the orchestrator",
            lifespan=lifespan
        )

        for dispatcher in self.dispatchers:
            app.include_router(dispatcher.router)

        @app.get("/health")
        async def health_check():
            """Health check endpoint"""
            return self.health()

        return app

    def health(self) -> Dict[str, Any]:
        extensions = []
        for dispatcher in self.dispatchers:
            state = dispatcher.registrar.state
            extensions.append({
                "name": dispatcher.name,
                "category": dispatcher.category.value,
                "registered": state.registered,
                "orchestrator": state.orchestrator_url
            })
        return {
            "status": "failed" if self.fatal_error else "healthy",
            "extensions": extensions,
            "timestamp": datetime.now(UTC).isoformat()
        }

    # ------------------------------------------------------------------
    # Self-registration
    # ------------------------------------------------------------------

    def start_registration(self) -> None:
        """Start Flow A for every extension that asks for it"""
        for dispatcher in self.dispatchers:
            if not dispatcher.connect_on_startup:
                logger.info(f"Self-registration disabled. name={dispatcher.name}")
                continue
            task = asyncio.create_task(
                dispatcher.register_remote(),
                name=f"register-{dispatcher.category.value}-{dispatcher.name}"
            )
            task.add_done_callback(self._registration_done)
            self.registration_tasks.append(task)

    def _registration_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        if not isinstance(error, RegistrationError):
            logger.critical(f"Self-registration crashed. task={task.get_name()} error=\"{error}\"")
        self.fatal_error = error
        print(f"[EXTENSIONS] FATAL: {error}")
        if self._uvicorn is not None:
            self._uvicorn.should_exit = True

    async def wait_for_registration(self) -> None:
        """Wait until all registration tasks are finished"""
        if self.registration_tasks:
            await asyncio.wait(self.registration_tasks)

    async def stop_registration(self) -> None:
        """Cancel registration attempts that are still in flight"""
        pending = [task for task in self.registration_tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info(f"Cancelled {len(pending)} pending registration(s)")
        self.registration_tasks.clear()

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def run(self, configure_logging: bool = True) -> None:
        """
        Serve until interrupted.

        Raises:
            RegistrationError: If self-registration ran out of retries
        """
        if configure_logging:
            service_name = "-".join(d.name.lower() for d in self.dispatchers) or "extensions"
            setup_file_logger(
                service_name,
                log_level=self.settings.log_level,
                output_dir=self.settings.log_dir,
                logger_name="extensions"
            )

        config = uvicorn.Config(
            self.app,
            host=self.settings.bind_host,
            port=self.settings.port,
            log_level=self.settings.log_level.lower()
        )
        self._uvicorn = uvicorn.Server(config)
        try:
            self._uvicorn.run()
        finally:
            self._uvicorn = None

        if self.fatal_error is not None:
            raise self.fatal_error
