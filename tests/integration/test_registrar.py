"""
Integration tests for the Registrar

Covers self-registration with its fixed-delay retry loop (driven by a fake
clock) and the orchestrator-initiated connect handshake.
"""

import asyncio
import httpx
import pytest

from extensions.shared.errors import HandshakeError, RegistrationError
from extensions.shared.registrar import Registrar, parse_callback
from extensions.shared.schemas import ExtensionCategory


def make_registrar(transport=None, sleep=None, **kwargs):
    options = dict(
        category=ExtensionCategory.DRIVER,
        name="BrowserDriver",
        extension_type="browser",
        secret="s3cret",
        callback_url="http://extension.test:9091/",
        orchestrator_host="orchestrator.test",
        orchestrator_port=8080,
        transport=transport
    )
    if sleep is not None:
        options["sleep"] = sleep
    options.update(kwargs)
    return Registrar(**options)


def failing_then_ok(failures: int):
    """Orchestrator handler that answers 503 for the first `failures` attempts"""
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) <= failures:
            return httpx.Response(503, text="not ready")
        return httpx.Response(200, json="ok")

    return handler, attempts


class TestParseCallback:
    """Test callback URL parsing"""

    def test_host_and_port(self):
        assert parse_callback("http://10.0.0.7:9000/") == ("http", "10.0.0.7", 9000)
        assert parse_callback("https://orch.example.com:8443") == ("https", "orch.example.com", 8443)

    def test_default_ports(self):
        assert parse_callback("http://orch.example.com/") == ("http", "orch.example.com", 80)
        assert parse_callback("https://orch.example.com/") == ("https", "orch.example.com", 443)

    def test_ipv6(self):
        assert parse_callback("http://[::1]:8080/") == ("http", "::1", 8080)

    @pytest.mark.parametrize("callback", [
        "not a url",
        "ftp://orch:21/",
        "http://",
        "http://orch:notaport/",
        "http://orch:70000/",
    ])
    def test_malformed(self, callback):
        with pytest.raises(ValueError):
            parse_callback(callback)


class TestRegistrationPayload:
    """Test what the extension discloses about itself"""

    def test_executable_payload(self):
        registrar = make_registrar()

        assert registrar.registration_payload() == {
            "driver": "BrowserDriver",
            "type": "browser",
            "callback": "http://extension.test:9091/",
            "secret": "s3cret"
        }

    def test_reporter_payload_carries_live_flag(self):
        registrar = make_registrar(
            category=ExtensionCategory.REPORTER,
            name="LiveDashboard",
            extension_type="reporter",
            live=True
        )

        payload = registrar.registration_payload()
        assert payload["reporter"] == "LiveDashboard"
        assert payload["live"] is True

    def test_descriptor(self):
        descriptor = make_registrar().descriptor()

        assert descriptor.name == "BrowserDriver"
        assert descriptor.type == "browser"
        assert descriptor.secret == "s3cret"
        assert descriptor.callback == "http://extension.test:9091/"
        assert descriptor.live is None


@pytest.mark.asyncio
class TestSelfRegistration:
    """Test Flow A: registration with fixed-delay retries"""

    async def test_first_attempt_succeeds(self, orchestrator, fake_clock):
        orchestrator.respond("POST", "/driver/")
        registrar = make_registrar(orchestrator.transport, fake_clock.sleep)

        state = await registrar.register_remote()

        assert state.registered is True
        assert state.retry_count == 0
        assert fake_clock.sleeps == []
        assert orchestrator.bodies("POST", "/driver/") == [registrar.registration_payload()]
        assert str(orchestrator.requests[0].url) == "http://orchestrator.test:8080/driver/"

    async def test_succeeds_after_failures(self, fake_clock):
        handler, attempts = failing_then_ok(failures=3)
        registrar = make_registrar(httpx.MockTransport(handler), fake_clock.sleep)

        state = await registrar.register_remote()

        assert len(attempts) == 4
        assert fake_clock.sleeps == [5.0, 5.0, 5.0]
        assert state.registered is True
        assert state.retry_count == 3

    async def test_connection_errors_are_retried(self, fake_clock):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json="ok")

        registrar = make_registrar(httpx.MockTransport(handler), fake_clock.sleep)
        state = await registrar.register_remote()

        assert len(attempts) == 2
        assert state.registered is True

    async def test_retries_used_up_is_fatal(self, fake_clock):
        """Test one attempt plus ten retries, then RegistrationError"""
        handler, attempts = failing_then_ok(failures=1000)
        registrar = make_registrar(httpx.MockTransport(handler), fake_clock.sleep)

        with pytest.raises(RegistrationError) as exc_info:
            await registrar.register_remote()

        assert len(attempts) == 11
        assert len(fake_clock.sleeps) == 10
        assert all(delay >= 5.0 for delay in fake_clock.sleeps)
        assert exc_info.value.category == "driver"
        assert exc_info.value.attempts == 11
        assert isinstance(exc_info.value.last_error, httpx.HTTPStatusError)
        assert registrar.state.registered is False
        assert registrar.state.retry_count == 10

    async def test_custom_retry_policy(self, fake_clock):
        handler, attempts = failing_then_ok(failures=1000)
        registrar = make_registrar(
            httpx.MockTransport(handler),
            fake_clock.sleep,
            max_retries=2,
            retry_delay=0.5
        )

        with pytest.raises(RegistrationError):
            await registrar.register_remote()

        assert len(attempts) == 3
        assert fake_clock.sleeps == [0.5, 0.5]

    async def test_second_flow_gets_full_budget(self, fake_clock):
        """Test that a new registration does not inherit the previous flow's retries"""
        handler, attempts = failing_then_ok(failures=3)
        registrar = make_registrar(httpx.MockTransport(handler), fake_clock.sleep)
        await registrar.register_remote()
        assert registrar.state.retry_count == 3

        always_failing, second_attempts = failing_then_ok(failures=1000)
        registrar._transport = httpx.MockTransport(always_failing)

        with pytest.raises(RegistrationError) as exc_info:
            await registrar.register_remote()

        assert len(second_attempts) == 11
        assert exc_info.value.attempts == 11
        assert registrar.state.registered is False

    async def test_retry_uses_address_set_in_between(self, fake_clock):
        """Test that a handshake during the retry delay redirects the next attempt"""
        handler, attempts = failing_then_ok(failures=1)

        async def sleep(seconds):
            registrar.set_remote_server("10.0.0.9", 7000)
            await fake_clock.sleep(seconds)

        registrar = make_registrar(httpx.MockTransport(handler), sleep)
        await registrar.register_remote()

        assert attempts[0].url.host == "orchestrator.test"
        assert attempts[1].url.host == "10.0.0.9"
        assert attempts[1].url.port == 7000

    async def test_cancellation_aborts_waiting_registration(self):
        handler, attempts = failing_then_ok(failures=1000)
        sleeping = asyncio.Event()

        async def sleep(seconds):
            sleeping.set()
            await asyncio.sleep(3600)

        registrar = make_registrar(httpx.MockTransport(handler), sleep)
        task = asyncio.create_task(registrar.register_remote())

        await asyncio.wait_for(sleeping.wait(), timeout=5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(attempts) == 1
        assert registrar.state.registered is False


class TestConnectHandshake:
    """Test Flow B: orchestrator-initiated handshake"""

    def test_valid_callback_updates_address(self):
        registrar = make_registrar()

        descriptor = registrar.handle_connect({"callback": "http://10.1.2.3:7000/"})

        assert registrar.state.orchestrator_host == "10.1.2.3"
        assert registrar.state.orchestrator_port == 7000
        assert registrar.orchestrator_url == "http://10.1.2.3:7000/"
        assert registrar.state.registered is True
        assert descriptor.name == "BrowserDriver"
        assert descriptor.callback == "http://extension.test:9091/"

    def test_callback_without_port(self):
        registrar = make_registrar()

        registrar.handle_connect({"callback": "http://orch.internal/"})

        assert registrar.orchestrator_url == "http://orch.internal:80/"

    def test_https_callback_keeps_scheme(self):
        registrar = make_registrar()

        registrar.handle_connect({"callback": "https://orch.example/"})

        assert registrar.state.orchestrator_scheme == "https"
        assert registrar.orchestrator_url == "https://orch.example:443/"

    @pytest.mark.asyncio
    async def test_registration_after_https_handshake(self, orchestrator, fake_clock):
        orchestrator.respond("POST", "/driver/")
        registrar = make_registrar(orchestrator.transport, fake_clock.sleep)
        registrar.handle_connect({"callback": "https://orch.example:8443/"})

        await registrar.register_remote()

        assert str(orchestrator.requests[0].url) == "https://orch.example:8443/driver/"

    @pytest.mark.parametrize("payload, reason", [
        (None, "missing payload"),
        ({}, "missing callback"),
        ({"callback": None}, "missing callback"),
        ({"callback": "::::"}, "malformed callback URL"),
        ({"callback": 42}, "malformed callback URL"),
        ({"callback": "http://orch:badport/"}, "malformed callback URL"),
    ])
    def test_rejected_handshake_keeps_address(self, payload, reason):
        registrar = make_registrar()

        with pytest.raises(HandshakeError) as exc_info:
            registrar.handle_connect(payload)

        assert exc_info.value.reason == reason
        assert registrar.state.orchestrator_host == "orchestrator.test"
        assert registrar.state.orchestrator_port == 8080
        assert registrar.state.registered is False
