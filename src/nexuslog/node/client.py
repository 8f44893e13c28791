from __future__ import annotations

import logging
import re
import time
from typing import Callable, List, Optional, Sequence

from nexuslog.protocol.errors import NodeCommandError
from nexuslog.protocol.models import KeyInfo

from .runner import run_node_command

logger = logging.getLogger(__name__)

Runner = Callable[..., str]


class NodeClient:
    """
    One-shot commands against the local node, with retries.

    Timeouts and non-zero exits are retried up to ``max_retries`` attempts
    with ``retry_delay`` seconds between them. A missing binary or an
    unpublished name fails immediately.
    """

    def __init__(
        self,
        store,
        encryption=None,
        runner: Runner = run_node_command,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._encryption = encryption
        self._runner = runner
        self._sleep = sleep

    @property
    def store(self):
        return self._store

    def run(self, args: Sequence[str], timeout: Optional[float] = None) -> str:
        return self._runner(list(args), timeout or self._store.timeout, binary=self._store.binary)

    def run_with_retry(self, args: Sequence[str], timeout: Optional[float] = None) -> str:
        attempts = self._store.max_retries
        attempt = 1
        while True:
            try:
                return self.run(args, timeout)
            except NodeCommandError as e:
                if not e.retryable or attempt >= attempts:
                    raise
                logger.warning(
                    "Node command %s failed (attempt %d/%d): %s",
                    args[0] if args else "",
                    attempt,
                    attempts,
                    e,
                )
            self._sleep(self._store.retry_delay)
            attempt += 1

    # --- Commands ------------------------------------------------------

    def resolve_name(self, peer_id: str) -> str:
        args = [
            "name",
            "resolve",
            "--nocache",
            "--timeout",
            self._store.name_resolve_timeout,
        ]
        if self._store.allow_offline:
            args.append("--offline")
        args.append(f"/ipns/{peer_id}")
        # the process deadline must outlive the node-side resolve timeout
        timeout = max(self._store.timeout, parse_duration(self._store.name_resolve_timeout) + 5.0)
        return self.run(args, timeout)

    def list_keys(self) -> List[KeyInfo]:
        output = self.run_with_retry(["key", "list", "-l"])
        return parse_key_list(output)

    def gen_key(self, name: str) -> str:
        key_type = self._encryption.key_gen_type if self._encryption else "rsa"
        bits = self._encryption.key_gen_bits if self._encryption else 2048
        return self.run_with_retry(
            ["key", "gen", f"--type={key_type}", f"--size={bits}", name]
        )

    def add_file(self, path: str) -> str:
        args = ["add", "-Q"]
        if not self._store.pin_enabled:
            args.append("--pin=false")
        if not self._store.pin_recursive:
            args.append("--recursive=false")
        args.append(path)
        return self.run_with_retry(args)


def parse_key_list(output: str) -> List[KeyInfo]:
    """
    Parse ``key list -l`` output. Each line is ``<value> <name>``; the last
    word is the name and everything before it the value.
    """
    keys: List[KeyInfo] = []
    for line in output.splitlines():
        parts = line.split()
        if not parts:
            continue
        if len(parts) == 1:
            keys.append(KeyInfo(value=parts[0], name=""))
            continue
        keys.append(KeyInfo(value=" ".join(parts[:-1]), name=parts[-1]))
    return keys


_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION = re.compile(r"(?:\d+(?:\.\d+)?(?:ms|s|m|h))+")


def parse_duration(value: str) -> float:
    """Seconds in a node duration string such as ``30s`` or ``1m30s``. 0 if unparsable."""
    value = (value or "").strip()
    if not _DURATION.fullmatch(value):
        return 0.0
    return sum(float(n) * _DURATION_UNITS[unit] for n, unit in _DURATION_PART.findall(value))
