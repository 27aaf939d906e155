"""Bridge frames for HTTP and WebSocket clients (op-based JSON)."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from topicbus.errors import ProtocolError

OP_ADVERTISE = "advertise"
OP_UNADVERTISE = "unadvertise"
OP_PUBLISH = "publish"
OP_SUBSCRIBE = "subscribe"
OP_UNSUBSCRIBE = "unsubscribe"
OP_PING = "ping"
CLIENT_OPS = (OP_ADVERTISE, OP_UNADVERTISE, OP_PUBLISH, OP_SUBSCRIBE, OP_UNSUBSCRIBE, OP_PING)

# Ops that require a "type" field
_TYPED_OPS = (OP_ADVERTISE, OP_SUBSCRIBE)


# ---- Health ----

@dataclass
class HealthResponse:
    """Response for GET /health."""
    uptime_sec: float
    connected: bool
    channels: int
    subscriptions: int
    sessions: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime_sec": int(self.uptime_sec),
            "connected": self.connected,
            "channels": self.channels,
            "subscriptions": self.subscriptions,
            "sessions": self.sessions,
        }


# ---- Client → Server ----

@dataclass
class ClientOp:
    """One parsed client frame."""
    op: str
    topic: Optional[str] = None
    type: Optional[str] = None
    msg: Optional[Dict[str, Any]] = None
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "ClientOp":
        """Validate a decoded JSON frame; raises ProtocolError (BAD_REQUEST) when malformed."""
        if not isinstance(data, dict):
            raise ProtocolError("frame must be a JSON object")
        op = data.get("op")
        request_id = data.get("id")
        if request_id is not None:
            request_id = str(request_id)
        if op not in CLIENT_OPS:
            raise ProtocolError(f"unknown op {op!r}")
        if op == OP_PING:
            return cls(op=op, id=request_id)

        topic = data.get("topic")
        if not isinstance(topic, str) or not topic.strip():
            raise ProtocolError(f"{op} requires topic")
        message_type = data.get("type")
        if message_type is not None and (not isinstance(message_type, str) or not message_type.strip()):
            raise ProtocolError(f"{op} type must be a non-empty string", topic=topic)
        if op in _TYPED_OPS and message_type is None:
            raise ProtocolError(f"{op} requires type", topic=topic)
        msg = data.get("msg")
        if op == OP_PUBLISH and not isinstance(msg, dict):
            raise ProtocolError("publish requires msg object", topic=topic)
        return cls(op=op, topic=topic.strip(), type=message_type, msg=msg, id=request_id)


# ---- Server → Client ----

def now_ts() -> str:
    """Current UTC timestamp in ISO 8601 (e.g. 2026-10-18T10:00:00Z)."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def op_publish(topic: str, msg: Dict[str, Any]) -> Dict[str, Any]:
    return {"op": OP_PUBLISH, "topic": topic, "msg": msg}


def op_ack(request_id: Optional[str], op: str, topic: Optional[str] = None) -> Dict[str, Any]:
    out: Dict[str, Any] = {"op": "ack", "status": "ok", "for": op, "ts": now_ts()}
    if request_id is not None:
        out["id"] = request_id
    if topic is not None:
        out["topic"] = topic
    return out


def op_status(
    level: str,
    msg: str,
    request_id: Optional[str] = None,
    code: Optional[str] = None,
    topic: Optional[str] = None,
) -> Dict[str, Any]:
    out: Dict[str, Any] = {"op": "status", "level": level, "msg": msg, "ts": now_ts()}
    if code is not None:
        out["code"] = code
    if request_id is not None:
        out["id"] = request_id
    if topic is not None:
        out["topic"] = topic
    return out


def op_error(request_id: Optional[str], code: str, msg: str, topic: Optional[str] = None) -> Dict[str, Any]:
    return op_status("error", msg, request_id=request_id, code=code, topic=topic)


def op_pong(request_id: Optional[str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {"op": "pong", "ts": now_ts()}
    if request_id is not None:
        out["id"] = request_id
    return out
