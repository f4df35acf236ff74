"""Event types exchanged over the bridge.

Activity events flow from the main agent to the pair agent, feedback
events flow back. The bridge does not interpret payloads beyond the
fields listed here; unknown sender fields are carried through untouched.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

ACTIVITY_TYPES = ("activity", "prompt")
FEEDBACK_TYPE = "feedback"
SEVERITIES = ("high", "medium", "low")

_ACTIVITY_FIELDS = {
    "type", "timestamp", "tool", "input", "output_summary", "content",
    "sequence", "session_id",
}
_FEEDBACK_FIELDS = {"type", "timestamp", "severity", "message", "context"}


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ActivityEvent:
    """One unit of observable work by the main agent (tool call or prompt)."""
    type: str
    sequence: int
    session_id: str
    timestamp: str
    tool: str = ""
    input: Dict[str, Any] = field(default_factory=dict)
    output_summary: str = ""
    content: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        sequence: int,
        session_id: str,
    ) -> "ActivityEvent":
        """
        Build an event from a sender payload.

        ``sequence`` and ``session_id`` always come from the bridge; any
        values the sender put there are discarded.
        """
        return cls(
            type=payload.get("type", "activity"),
            sequence=sequence,
            session_id=session_id,
            timestamp=payload.get("timestamp") or utc_timestamp(),
            tool=payload.get("tool", ""),
            input=payload.get("input") or {},
            output_summary=payload.get("output_summary", ""),
            content=payload.get("content"),
            extra={k: v for k, v in payload.items() if k not in _ACTIVITY_FIELDS},
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        extra = data.pop("extra")
        if data["content"] is None:
            del data["content"]
        return {**extra, **data}


@dataclass
class FeedbackEvent:
    """Feedback raised by the pair agent for the main agent."""
    severity: str
    message: str
    timestamp: str
    context: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    type: str = FEEDBACK_TYPE

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "FeedbackEvent":
        """
        Validate and build a feedback event.

        Raises:
            ValueError: If severity or message is missing or malformed
        """
        severity = payload.get("severity")
        if severity not in SEVERITIES:
            raise ValueError(
                f"severity must be one of {', '.join(SEVERITIES)} (got {severity!r})"
            )
        message = payload.get("message")
        if not isinstance(message, str):
            raise ValueError("message must be a string")
        context = payload.get("context")
        if context is not None and not isinstance(context, dict):
            raise ValueError("context must be an object")

        return cls(
            severity=severity,
            message=message,
            timestamp=payload.get("timestamp") or utc_timestamp(),
            context=context,
            extra={k: v for k, v in payload.items() if k not in _FEEDBACK_FIELDS},
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        extra = data.pop("extra")
        if data["context"] is None:
            del data["context"]
        return {**extra, **data}


@dataclass
class ControlEvent:
    type: str
    session_id: str
    timestamp: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BridgeStatus:
    session_id: str
    activity_count: int
    pending_feedback: int
    pair_connected: bool
    uptime_seconds: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
