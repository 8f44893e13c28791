from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .enums import DaemonState, EntryOrigin
from .errors import MalformedEnvelope


# -------------------------
# ENVELOPE
# -------------------------

# Wire field name -> dataclass attribute
ENVELOPE_WIRE_FIELDS = {
    "d": "data",
    "k": "wrapped_key",
    "n": "nonce",
    "t": "auth_tag",
}


def _b64decode(value: str) -> bytes:
    # line breaks and missing padding are tolerated; other non-alphabet characters are not
    compact = "".join(value.split())
    return base64.b64decode(compact + "=" * (-len(compact) % 4), validate=True)


@dataclass(frozen=True)
class EncryptedEnvelope:
    data: bytes
    wrapped_key: bytes
    nonce: bytes
    auth_tag: bytes

    @classmethod
    def from_wire(cls, obj: Any) -> "EncryptedEnvelope":
        """
        Decode the ``{d, k, n, t}`` wire object.

        All four fields are checked for presence before any of them is
        decoded, so a partial envelope never reaches the cipher.
        """
        if not isinstance(obj, Mapping):
            raise MalformedEnvelope("Encrypted data must be a JSON object")

        missing = [name for name in ENVELOPE_WIRE_FIELDS if not obj.get(name)]
        if missing:
            raise MalformedEnvelope(
                f"Missing required fields ({','.join(missing)}) in encrypted data"
            )

        decoded: Dict[str, bytes] = {}
        for wire_name, attr in ENVELOPE_WIRE_FIELDS.items():
            value = obj[wire_name]
            if not isinstance(value, str):
                raise MalformedEnvelope(f"Field '{wire_name}' must be base64 text")
            try:
                decoded[attr] = _b64decode(value)
            except (binascii.Error, ValueError):
                raise MalformedEnvelope(f"Invalid base64 in field '{wire_name}'")
            if not decoded[attr]:
                raise MalformedEnvelope(f"Field '{wire_name}' is empty")

        return cls(**decoded)

    def to_wire(self) -> Dict[str, str]:
        return {
            wire_name: base64.b64encode(getattr(self, attr)).decode("ascii")
            for wire_name, attr in ENVELOPE_WIRE_FIELDS.items()
        }


# -------------------------
# LOGS
# -------------------------

@dataclass
class LogEntry:
    event_id: Any
    type: str
    message: str
    timestamp: Optional[str] = None
    origin: EntryOrigin = EntryOrigin.PARSED
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def synthesized(self) -> bool:
        return self.origin == EntryOrigin.SYNTHESIZED

    def get(self, name: str, default: Any = None) -> Any:
        if name in ("event_id", "type", "message", "timestamp"):
            return getattr(self, name)
        return self.extra.get(name, default)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data.update(
            event_id=self.event_id,
            type=self.type,
            message=self.message,
        )
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        return data


@dataclass
class LogBundle:
    logs: List[LogEntry]
    prev_cid: Optional[str] = None
    cid: Optional[str] = None

    def __post_init__(self) -> None:
        # "" and None both mean the beginning of history
        if not self.prev_cid:
            self.prev_cid = None

    @property
    def has_previous(self) -> bool:
        return self.prev_cid is not None

    @property
    def is_terminal(self) -> bool:
        return self.prev_cid is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cid": self.cid,
            "prev_cid": self.prev_cid or "",
            "logs": [entry.to_dict() for entry in self.logs],
        }


# -------------------------
# NODE
# -------------------------

@dataclass(frozen=True)
class KeyInfo:
    value: str
    name: str

    def to_dict(self) -> Dict[str, str]:
        return {"value": self.value, "name": self.name}


@dataclass(frozen=True)
class FetchAttempt:
    source: str
    reason: str


@dataclass
class DaemonStatus:
    state: DaemonState = DaemonState.STOPPED
    pid: Optional[int] = None
    pid_file: Optional[str] = None
    started_at: Optional[str] = None
    stderr: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "pid": self.pid,
            "pid_file": self.pid_file,
            "started_at": self.started_at,
            "stderr": self.stderr,
        }
