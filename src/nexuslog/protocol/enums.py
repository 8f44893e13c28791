from enum import Enum


class ErrorCode(str, Enum):
    MALFORMED_ENVELOPE = "malformed_envelope"
    AUTHENTICATION_FAILURE = "authentication_failure"
    INVALID_PLAINTEXT = "invalid_plaintext"
    MALFORMED_BUNDLE = "malformed_bundle"
    NOT_FOUND = "not_found"
    NAME_NOT_PUBLISHED = "name_not_published"
    MALFORMED_RESOLVE_RESULT = "malformed_resolve_result"
    PROCESS_SUPERVISION_ERROR = "process_supervision_error"
    DUPLICATE_KEY = "duplicate_key"
    NODE_COMMAND_ERROR = "node_command_error"
    PRIVATE_KEY_UNAVAILABLE = "private_key_unavailable"
    CONFIGURATION_ERROR = "configuration_error"
    INTERNAL_ERROR = "internal_error"


class ConnectionMode(str, Enum):
    GATEWAY = "gateway"  # gateways first, local node last
    API = "api"  # local node first, then gateways


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class EntryOrigin(str, Enum):
    """Whether a log entry was decoded from its JSON text or rebuilt from raw text."""

    PARSED = "parsed"
    SYNTHESIZED = "synthesized"


class DaemonState(str, Enum):
    STOPPED = "stopped"
    CLEANING = "cleaning"
    STARTING = "starting"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"


class NodeErrorKind(str, Enum):
    """Failure classes reported by a one-shot node command."""

    SPAWN_FAILED = "spawn_failed"
    TIMEOUT = "timeout"
    EXIT_STATUS = "exit_status"
    NOT_PUBLISHED = "not_published"
