"""
IPNS name resolution through the local node.

The resolver reads the peer id of the naming identity from the configured
key file, asks the node to resolve ``/ipns/<peer>`` bypassing its cache, and
returns the CID that follows the ``/ipfs/`` prefix of the output.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, List, Optional

from nexuslog.protocol.enums import NodeErrorKind
from nexuslog.protocol.errors import (
    MalformedResolveResult,
    NameKeyMissing,
    NameNotPublished,
    NexusError,
    NodeCommandError,
)

logger = logging.getLogger(__name__)

CONTENT_PREFIX = "/ipfs/"


def extract_cid(output: str) -> str:
    pos = output.find(CONTENT_PREFIX)
    if pos == -1:
        raise MalformedResolveResult(output)
    rest = output[pos + len(CONTENT_PREFIX):].split()
    if not rest:
        raise MalformedResolveResult(output)
    return rest[0]


class NameResolver:
    def __init__(
        self,
        store,
        encryption,
        node_client,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._encryption = encryption
        self._node = node_client
        self._sleep = sleep

    def read_peer_id(self) -> str:
        key_path = Path(self._encryption.ipns_key_file)
        try:
            peer_id = key_path.read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.error("Failed to read IPNS key file %s: %s", key_path, e)
            raise NameKeyMissing(f"Cannot read IPNS key file: {key_path}")
        if not peer_id:
            raise NameKeyMissing(f"IPNS key file is empty: {key_path}")
        return peer_id

    def resolve(self) -> str:
        """Return the CID of the newest published bundle."""
        peer_id = self.read_peer_id()
        attempts = self._store.max_retries
        failures: List[str] = []
        last_error: Optional[NexusError] = None

        for i in range(attempts):
            try:
                output = self._node.resolve_name(peer_id)
                cid = extract_cid(output)
            except NodeCommandError as e:
                if e.kind == NodeErrorKind.NOT_PUBLISHED:
                    logger.warning("IPNS name %s not published yet", peer_id)
                    raise NameNotPublished() from e
                if e.kind == NodeErrorKind.SPAWN_FAILED:
                    raise
                last_error = e
                failures.append(str(e))
            except MalformedResolveResult as e:
                last_error = e
                failures.append(str(e))
            else:
                logger.info(
                    "Resolved IPNS name %s -> %s",
                    peer_id,
                    cid,
                    extra={"operation": "resolve"},
                )
                return cid

            logger.warning(
                "IPNS resolve attempt %d/%d failed: %s",
                i + 1,
                attempts,
                failures[-1],
                extra={"operation": "resolve"},
            )
            if i < attempts - 1:
                self._sleep(self._store.retry_delay)

        summary = "IPNS resolve failed:\n" + "\n".join(failures)
        if isinstance(last_error, MalformedResolveResult):
            raise MalformedResolveResult(last_error.output, summary) from last_error
        raise NodeCommandError(summary, last_error.kind, last_error.command_args) from last_error
