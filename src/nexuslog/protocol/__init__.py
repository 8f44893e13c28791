from .enums import (
    ConnectionMode,
    DaemonState,
    EntryOrigin,
    ErrorCode,
    NodeErrorKind,
    SortOrder,
)
from .errors import (
    AuthenticationFailure,
    ConfigurationError,
    DuplicateKeyError,
    InvalidPlaintext,
    MalformedBundle,
    MalformedEnvelope,
    MalformedResolveResult,
    NameKeyMissing,
    NameNotPublished,
    NexusError,
    NodeCommandError,
    NotFoundError,
    PrivateKeyUnavailable,
    ProcessSupervisionError,
)
from .models import (
    DaemonStatus,
    EncryptedEnvelope,
    FetchAttempt,
    KeyInfo,
    LogBundle,
    LogEntry,
)

__all__ = [
    "ConnectionMode",
    "DaemonState",
    "EntryOrigin",
    "ErrorCode",
    "NodeErrorKind",
    "SortOrder",
    "AuthenticationFailure",
    "ConfigurationError",
    "DuplicateKeyError",
    "InvalidPlaintext",
    "MalformedBundle",
    "MalformedEnvelope",
    "MalformedResolveResult",
    "NameKeyMissing",
    "NameNotPublished",
    "NexusError",
    "NodeCommandError",
    "NotFoundError",
    "PrivateKeyUnavailable",
    "ProcessSupervisionError",
    "DaemonStatus",
    "EncryptedEnvelope",
    "FetchAttempt",
    "KeyInfo",
    "LogBundle",
    "LogEntry",
]
