from typing import List, Optional, Sequence

from .enums import ErrorCode, NodeErrorKind


class NexusError(Exception):
    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.code = code or ErrorCode.INTERNAL_ERROR


class MalformedEnvelope(NexusError):
    """Raised when an envelope is structurally invalid. No crypto is attempted."""

    def __init__(self, message: str, raw: Optional[bytes] = None, cid: Optional[str] = None):
        super().__init__(message, ErrorCode.MALFORMED_ENVELOPE)
        self.raw = raw
        self.cid = cid


class AuthenticationFailure(NexusError):
    """Raised when key unwrapping or the GCM tag check fails."""

    def __init__(self, message: str = "GCM decryption failed (bad tag?)"):
        super().__init__(message, ErrorCode.AUTHENTICATION_FAILURE)


class InvalidPlaintext(NexusError):
    """Raised when an envelope decrypts but the plaintext is not JSON."""

    def __init__(self, message: str, plaintext: bytes = b"", cid: Optional[str] = None):
        super().__init__(message, ErrorCode.INVALID_PLAINTEXT)
        self.plaintext = plaintext
        self.cid = cid


class MalformedBundle(NexusError):
    """Raised when decrypted JSON does not have the log bundle shape."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.MALFORMED_BUNDLE)


class NotFoundError(NexusError):
    """Raised once every fetch source has failed for a content identifier."""

    def __init__(self, cid: str, attempts: Sequence = ()):
        self.cid = cid
        self.attempts = list(attempts)
        lines = [f"{a.source}: {a.reason}" for a in self.attempts]
        message = "All fetch attempts failed"
        if lines:
            message += ":\n" + "\n".join(lines)
        super().__init__(message, ErrorCode.NOT_FOUND)


class NameNotPublished(NexusError):
    """Raised when the naming pointer exists but nothing was published under it."""

    def __init__(self, message: str = "IPNS name not published yet. Please publish content first."):
        super().__init__(message, ErrorCode.NAME_NOT_PUBLISHED)


class NameKeyMissing(NameNotPublished):
    """Raised when the IPNS key file is empty or cannot be read."""


class MalformedResolveResult(NexusError):
    def __init__(self, output: str, message: Optional[str] = None):
        super().__init__(message or f"Invalid resolve result: {output}", ErrorCode.MALFORMED_RESOLVE_RESULT)
        self.output = output


class ProcessSupervisionError(NexusError):
    """Raised when the node daemon does not reach readiness."""

    def __init__(self, message: str, stderr: str = ""):
        if stderr:
            message = f"{message}\n{stderr.strip()}"
        super().__init__(message, ErrorCode.PROCESS_SUPERVISION_ERROR)
        self.stderr = stderr


class DuplicateKeyError(NexusError):
    def __init__(self, name: str):
        super().__init__(f"Key with name '{name}' already exists", ErrorCode.DUPLICATE_KEY)
        self.name = name


class NodeCommandError(NexusError):
    """Raised by a one-shot node command. ``kind`` classifies the failure."""

    def __init__(self, message: str, kind: NodeErrorKind, args: Optional[List[str]] = None):
        super().__init__(message, ErrorCode.NODE_COMMAND_ERROR)
        self.kind = kind
        self.command_args = list(args or [])

    @property
    def retryable(self) -> bool:
        return self.kind in (NodeErrorKind.TIMEOUT, NodeErrorKind.EXIT_STATUS)


class PrivateKeyUnavailable(NexusError):
    def __init__(self, message: str):
        super().__init__(message, ErrorCode.PRIVATE_KEY_UNAVAILABLE)


class ConfigurationError(NexusError):
    def __init__(self, message: str):
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR)
