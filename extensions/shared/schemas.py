"""
Extension Protocol - Data Schemas

Pydantic models for the values exchanged between extensions and the
orchestrator: execution outcomes, session snapshots and registration
descriptors.
"""

import re
from dataclasses import dataclass, replace
from datetime import datetime, UTC
from enum import Enum
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field, ConfigDict

_EXTRA_FRACTION = re.compile(r"(\.\d{6})\d+")


class ExtensionBaseModel(BaseModel):
    """Base class for all protocol models"""
    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True
    )

    def to_json(self) -> str:
        """Serialize to JSON string (wire field names)"""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, json_str: str):
        """Deserialize from JSON string"""
        return cls.model_validate_json(json_str)


class ExtensionCategory(str, Enum):
    """Registration category; also the first path segment of every route"""
    DRIVER = "driver"
    ACTOR = "actor"
    REPORTER = "reporter"


# ============================================
# Execution
# ============================================

class ExecutionOutcome(ExtensionBaseModel):
    """Result of a single extension invocation"""
    success: bool
    message: str = ""
    data: Optional[Any] = None

    @classmethod
    def succeeded(cls, message: str, data: Any = None) -> "ExecutionOutcome":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failed(cls, message: str, data: Any = None) -> "ExecutionOutcome":
        return cls(success=False, message=message, data=data)

    def to_wire(self, include_data: bool = False) -> Dict[str, Any]:
        """
        Body of an execute response.

        Args:
            include_data: Also echo the data field

        Returns:
            Dict with success and message (and data when requested)
        """
        body: Dict[str, Any] = {"success": self.success, "message": self.message}
        if include_data and self.data is not None:
            body["data"] = self.data
        return body


# ============================================
# Sessions
# ============================================

class LogEntry(ExtensionBaseModel):
    """Single entry of a session log"""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    timestamp: datetime
    category: str = Field(alias="type")
    message: str


class SessionContext(ExtensionBaseModel):
    """Ordered, append-only session log (oldest entry first)"""
    log: List[LogEntry] = Field(default_factory=list)


class Session(ExtensionBaseModel):
    """Orchestrator-owned session, referenced by extensions via uuid"""
    uuid: str = Field(min_length=1)
    context: SessionContext = Field(default_factory=SessionContext)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp as sent by the orchestrator.

    Fractions beyond microseconds are truncated; naive timestamps are
    taken as UTC.

    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp
    """
    value = _EXTRA_FRACTION.sub(r"\1", value.strip())
    timestamp = datetime.fromisoformat(value)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    return timestamp


def session_from_payload(data: Dict[str, Any]) -> Session:
    """
    Build a Session from an end-of-session report payload.

    Each structural problem is reported with its own reason so the
    dispatcher can return it verbatim.

    Args:
        data: Decoded JSON payload {uuid, context: {log: [...]}}

    Returns:
        Session snapshot

    Raises:
        ValueError: With the reason the payload was rejected
    """
    uuid = data.get("uuid")
    if not isinstance(uuid, str) or not uuid:
        raise ValueError("missing session id")

    context = data.get("context")
    if not isinstance(context, dict):
        raise ValueError("missing session context")

    raw_log = context.get("log") or []
    if not isinstance(raw_log, list):
        raise ValueError("invalid log format")

    entries = []
    for element in raw_log:
        if not isinstance(element, dict):
            raise ValueError("invalid log entry format")

        timestamp = element.get("timestamp")
        if timestamp is None:
            raise ValueError("missing timestamp in log entry")
        try:
            parsed = parse_timestamp(str(timestamp))
        except ValueError:
            raise ValueError("malformed timestamp in log entry") from None

        category = element.get("type")
        if category is None:
            raise ValueError("missing type in log entry")

        message = element.get("message")
        if message is None:
            raise ValueError("missing message in log entry")

        entries.append(LogEntry(timestamp=parsed, category=str(category), message=str(message)))

    return Session(uuid=uuid, context=SessionContext(log=entries))


# ============================================
# Registration
# ============================================

class ExtensionDescriptor(ExtensionBaseModel):
    """What an extension discloses about itself in the connect handshake"""
    name: str
    type: str
    secret: str = ""
    callback: str
    live: Optional[bool] = None


@dataclass(frozen=True)
class RegistrationState:
    """
    Registration progress and the remembered orchestrator address.

    Immutable; the Registrar swaps in a new value on every change.
    """
    orchestrator_host: str = "localhost"
    orchestrator_port: int = 8080
    orchestrator_scheme: str = "http"
    retry_count: int = 0
    registered: bool = False

    @property
    def orchestrator_url(self) -> str:
        host = self.orchestrator_host
        if ":" in host:  # IPv6 literal
            host = f"[{host}]"
        return f"{self.orchestrator_scheme}://{host}:{self.orchestrator_port}/"

    def with_address(self, host: str, port: int, scheme: str = "http") -> "RegistrationState":
        return replace(self, orchestrator_host=host, orchestrator_port=port, orchestrator_scheme=scheme)

    def restarted(self) -> "RegistrationState":
        """Fresh attempt: full retry budget, not registered, same address"""
        return replace(self, retry_count=0, registered=False)

    def after_failure(self) -> "RegistrationState":
        return replace(self, retry_count=self.retry_count + 1)

    def as_registered(self) -> "RegistrationState":
        return replace(self, registered=True)
