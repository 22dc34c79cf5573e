"""
Extension Settings

Runtime configuration for an extension process. Every value can be passed
explicitly or falls back to an environment variable (a .env file in the
working directory is loaded on import).
"""

import os
from typing import Optional

from dotenv import load_dotenv


load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class ExtensionSettings:
    """
    Configuration for one extension server.

    Covers the extension's own address, the initial orchestrator address,
    worker pool sizing, the self-registration retry policy and logging.
    """

    def __init__(
        self,
        hostname: Optional[str] = None,
        port: Optional[int] = None,
        bind_host: Optional[str] = None,
        orchestrator_host: Optional[str] = None,
        orchestrator_port: Optional[int] = None,
        worker_pool_size: Optional[int] = None,
        registration_max_retries: Optional[int] = None,
        registration_retry_delay: Optional[float] = None,
        max_call_depth: Optional[int] = None,
        client_timeout: Optional[float] = None,
        expose_outcome_data: Optional[bool] = None,
        log_level: Optional[str] = None,
        log_dir: Optional[str] = None
    ):
        """
        Initialize settings.

        Args:
            hostname: Host the orchestrator can reach this extension at (EXTENSION_HOSTNAME)
            port: Port this extension listens on (EXTENSION_PORT)
            bind_host: Interface to bind (EXTENSION_BIND_HOST)
            orchestrator_host: Initial orchestrator host (ORCHESTRATOR_HOST)
            orchestrator_port: Initial orchestrator port (ORCHESTRATOR_PORT)
            worker_pool_size: Threads available to capability code (EXTENSION_WORKER_POOL_SIZE)
            registration_max_retries: Self-registration retries (REGISTRATION_MAX_RETRIES)
            registration_retry_delay: Seconds between retries (REGISTRATION_RETRY_DELAY)
            max_call_depth: Maximum nesting of re-entrant calls (EXTENSION_MAX_CALL_DEPTH)
            client_timeout: Timeout for outbound HTTP calls (EXTENSION_CLIENT_TIMEOUT)
            expose_outcome_data: Echo ExecutionOutcome.data on the wire (EXTENSION_EXPOSE_OUTCOME_DATA)
            log_level: Logging level (LOG_LEVEL)
            log_dir: Directory for log files (LOG_DIR)
        """
        if hostname is None:
            hostname = os.getenv("EXTENSION_HOSTNAME", "localhost")
        self.hostname = hostname

        if port is None:
            port = int(os.getenv("EXTENSION_PORT", "8888"))
        self.port = port

        if bind_host is None:
            bind_host = os.getenv("EXTENSION_BIND_HOST", "0.0.0.0")
        self.bind_host = bind_host

        if orchestrator_host is None:
            orchestrator_host = os.getenv("ORCHESTRATOR_HOST", "localhost")
        self.orchestrator_host = orchestrator_host

        if orchestrator_port is None:
            orchestrator_port = int(os.getenv("ORCHESTRATOR_PORT", "8080"))
        self.orchestrator_port = orchestrator_port

        if worker_pool_size is None:
            worker_pool_size = int(os.getenv("EXTENSION_WORKER_POOL_SIZE", "10"))
        self.worker_pool_size = worker_pool_size

        if registration_max_retries is None:
            registration_max_retries = int(os.getenv("REGISTRATION_MAX_RETRIES", "10"))
        self.registration_max_retries = registration_max_retries

        if registration_retry_delay is None:
            registration_retry_delay = float(os.getenv("REGISTRATION_RETRY_DELAY", "5"))
        self.registration_retry_delay = registration_retry_delay

        if max_call_depth is None:
            max_call_depth = int(os.getenv("EXTENSION_MAX_CALL_DEPTH", "8"))
        self.max_call_depth = max_call_depth

        if client_timeout is None:
            client_timeout = float(os.getenv("EXTENSION_CLIENT_TIMEOUT", "30"))
        self.client_timeout = client_timeout

        if expose_outcome_data is None:
            expose_outcome_data = _env_bool("EXTENSION_EXPOSE_OUTCOME_DATA")
        self.expose_outcome_data = expose_outcome_data

        self.log_level = log_level or os.getenv("LOG_LEVEL", "INFO")
        self.log_dir = log_dir or os.getenv("LOG_DIR", "logs")

    @property
    def callback_url(self) -> str:
        """Base URL the orchestrator uses to reach this extension"""
        return f"http://{self.hostname}:{self.port}/"

    @property
    def orchestrator_url(self) -> str:
        """Initial orchestrator base URL"""
        return f"http://{self.orchestrator_host}:{self.orchestrator_port}/"
