"""
Registrar - Extension registration with the orchestrator

Implements both registration flows of an extension instance:

- Self-registration (push): on startup the extension posts its name and
  type to the orchestrator's /{category}/ endpoint, retrying with a fixed
  delay until the retry budget is used up. Running out of retries is fatal.
- Connect handshake (pull): the orchestrator posts {callback: URL} to the
  extension's serverConnect endpoint; the extension remembers the
  orchestrator address from the URL and answers with its own descriptor.

Both flows end in the same state: a remembered orchestrator address.
"""

import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlsplit

import httpx

from .errors import HandshakeError, RegistrationError
from .schemas import ExtensionCategory, ExtensionDescriptor, RegistrationState

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}


def parse_callback(callback: str) -> tuple:
    """
    Extract (scheme, host, port) from a callback URL.

    Args:
        callback: Absolute http(s) URL

    Returns:
        Tuple of scheme, hostname and port (scheme default if the URL has none)

    Raises:
        ValueError: If the URL is malformed
    """
    parts = urlsplit(callback.strip())
    if parts.scheme not in DEFAULT_PORTS:
        raise ValueError(f"unsupported scheme '{parts.scheme}'")
    if not parts.hostname:
        raise ValueError("missing host")
    port = parts.port  # raises ValueError for out-of-range or non-numeric ports
    return parts.scheme, parts.hostname, port or DEFAULT_PORTS[parts.scheme]


class Registrar:
    """
    Registration state and flows for one extension instance.

    The current RegistrationState is replaced, never mutated; reads and
    swaps are guarded by a lock because handshakes run on worker threads.
    """

    def __init__(
        self,
        category: ExtensionCategory,
        name: str,
        extension_type: str,
        secret: str,
        callback_url: str,
        orchestrator_host: str = "localhost",
        orchestrator_port: int = 8080,
        live: Optional[bool] = None,
        max_retries: int = 10,
        retry_delay: float = 5.0,
        timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize registrar.

        Args:
            category: Category the extension registers under
            name: Extension name
            extension_type: Type reported to the orchestrator
            secret: Shared secret
            callback_url: Base URL the orchestrator can reach this extension at
            orchestrator_host: Initial orchestrator host
            orchestrator_port: Initial orchestrator port
            live: Live flag (reporters only)
            max_retries: Retries after the first failed self-registration attempt
            retry_delay: Fixed delay between attempts in seconds
            timeout: Timeout for each registration request
            sleep: Awaitable sleep used between attempts (tests pass a fake clock)
            transport: Optional httpx transport (tests)
        """
        self.category = ExtensionCategory(category)
        self.name = name
        self.extension_type = extension_type
        self.secret = secret
        self.callback_url = callback_url
        self.live = live
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout

        self._sleep = sleep
        self._transport = transport
        self._lock = threading.Lock()
        self._state = RegistrationState(
            orchestrator_host=orchestrator_host,
            orchestrator_port=orchestrator_port
        )

    @property
    def state(self) -> RegistrationState:
        with self._lock:
            return self._state

    def _swap(self, update: Callable[[RegistrationState], RegistrationState]) -> RegistrationState:
        with self._lock:
            self._state = update(self._state)
            return self._state

    @property
    def orchestrator_url(self) -> str:
        return self.state.orchestrator_url

    def set_remote_server(self, host: str, port: int, scheme: str = "http") -> None:
        """Remember a new orchestrator address"""
        logger.info(f"Updating remote server URL. scheme={scheme} host={host} port={port}")
        self._swap(lambda state: state.with_address(host, port, scheme))

    def descriptor(self) -> ExtensionDescriptor:
        """Descriptor disclosed to the orchestrator in the connect handshake"""
        return ExtensionDescriptor(
            name=self.name,
            type=self.extension_type,
            secret=self.secret,
            callback=self.callback_url,
            live=self.live
        )

    def registration_payload(self) -> Dict[str, Any]:
        """Body of the self-registration request: {<category>: name, type, ...}"""
        payload: Dict[str, Any] = {
            self.category.value: self.name,
            "type": self.extension_type,
            "callback": self.callback_url,
            "secret": self.secret
        }
        if self.live is not None:
            payload["live"] = self.live
        return payload

    # ------------------------------------------------------------------
    # Flow A - self-registration
    # ------------------------------------------------------------------

    async def register_remote(self) -> RegistrationState:
        """
        Register with the orchestrator, retrying with a fixed delay.

        Makes one attempt plus up to max_retries retries. Every call starts
        with the full budget. Cancelling the awaiting task aborts the flow
        between or during attempts.

        Returns:
            RegistrationState after successful registration

        Raises:
            RegistrationError: If all attempts failed
        """
        category = self.category.value
        payload = self.registration_payload()
        self._swap(lambda s: s.restarted())

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as http:
            while True:
                state = self.state
                url = f"{state.orchestrator_url}{category}/"
                logger.info(
                    f"Registering {category} with orchestrator. name={self.name} "
                    f"remote={state.orchestrator_host}:{state.orchestrator_port} "
                    f"attempt={state.retry_count + 1}/{self.max_retries + 1}"
                )

                try:
                    response = await http.post(url, json=payload)
                    if not response.is_success:
                        raise httpx.HTTPStatusError(
                            f"registration rejected with status {response.status_code}",
                            request=response.request,
                            response=response
                        )
                except httpx.HTTPError as e:
                    if state.retry_count >= self.max_retries:
                        logger.critical(
                            f"Failed to register {category}. Retries used up. error=\"{e}\""
                        )
                        raise RegistrationError(category, state.retry_count + 1, e) from e

                    logger.info(f"Failed to register {category}. Retrying. error=\"{e}\"")
                    await self._sleep(self.retry_delay)
                    self._swap(lambda s: s.after_failure())
                    continue

                state = self._swap(lambda s: s.as_registered())
                logger.info(
                    f"{category} registered on remote server. "
                    f"remote={state.orchestrator_host}:{state.orchestrator_port}"
                )
                print(f"[{self.name.upper()}] Registered with orchestrator at {state.orchestrator_url}")
                return state

    # ------------------------------------------------------------------
    # Flow B - connect handshake
    # ------------------------------------------------------------------

    def handle_connect(self, payload: Optional[Dict[str, Any]]) -> ExtensionDescriptor:
        """
        Answer an orchestrator-initiated connect handshake.

        Args:
            payload: Decoded request body {callback: URL}

        Returns:
            Descriptor of this extension

        Raises:
            HandshakeError: If payload or callback is missing or the callback is malformed
        """
        if payload is None:
            raise HandshakeError("missing payload")

        callback = payload.get("callback")
        if callback is None:
            raise HandshakeError("missing callback")

        if not isinstance(callback, str):
            raise HandshakeError("malformed callback URL")
        try:
            scheme, host, port = parse_callback(callback)
        except ValueError:
            raise HandshakeError("malformed callback URL") from None

        self.set_remote_server(host, port, scheme)
        self._swap(lambda s: s.as_registered())
        return self.descriptor()
