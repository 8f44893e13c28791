"""
One-shot node command execution.

Every call is bounded by a hard timeout. Failures are classified once, here,
into a NodeErrorKind so callers branch on the kind instead of the text.
"""

from __future__ import annotations

import logging
import subprocess
from typing import Sequence

from nexuslog.protocol.enums import NodeErrorKind
from nexuslog.protocol.errors import NodeCommandError

logger = logging.getLogger(__name__)

# stderr fragment the node prints for a name with no published record.
# "could not resolve name" alone also covers timeouts and DHT misses.
NOT_PUBLISHED_MARKERS = ("no link named",)


def classify_failure(stderr: str) -> NodeErrorKind:
    lowered = stderr.lower()
    if any(marker in lowered for marker in NOT_PUBLISHED_MARKERS):
        return NodeErrorKind.NOT_PUBLISHED
    return NodeErrorKind.EXIT_STATUS


def run_node_command(args: Sequence[str], timeout: float, binary: str = "ipfs") -> str:
    """Run ``binary *args`` and return its stripped stdout."""
    cmd = [binary, *args]
    logger.debug("Running node command: %s", " ".join(cmd))

    try:
        proc = subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise NodeCommandError(
            f"{binary} command timed out after {timeout:g}s",
            NodeErrorKind.TIMEOUT,
            cmd,
        )
    except OSError as e:
        raise NodeCommandError(
            f"Cannot run {binary}: {e}",
            NodeErrorKind.SPAWN_FAILED,
            cmd,
        )

    if proc.returncode != 0:
        stderr = (proc.stderr or "").strip()
        raise NodeCommandError(
            stderr or f"{binary} exited with code {proc.returncode}",
            classify_failure(stderr),
            cmd,
        )
    return (proc.stdout or "").strip()
