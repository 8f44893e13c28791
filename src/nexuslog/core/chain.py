"""
Log bundle parsing and back-link traversal.

A decrypted bundle looks like:

    { "logs": ["<json LogEntry>", ...], "prev_cid": "<cid>" | "" }

Each bundle points to its chronological predecessor, so history is walked
by fetching ``prev_cid`` until it is empty. No index is kept.
"""

from __future__ import annotations

import json
import logging
import numbers
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Tuple, Union

from nexuslog.protocol.enums import EntryOrigin, SortOrder
from nexuslog.protocol.errors import InvalidPlaintext, MalformedBundle, MalformedEnvelope
from nexuslog.protocol.models import LogBundle, LogEntry
from nexuslog.utils.json import json_loads
from nexuslog.utils.timestamps import now_iso, now_ms

logger = logging.getLogger(__name__)

DEFAULT_SORT_FIELD = "event_id"

_KNOWN_FIELDS = ("event_id", "type", "message", "timestamp")


def _synthesize(raw: Any) -> LogEntry:
    return LogEntry(
        event_id=now_ms(),
        type="unknown",
        message=raw if isinstance(raw, str) else json.dumps(raw, default=str),
        timestamp=now_iso(),
        origin=EntryOrigin.SYNTHESIZED,
    )


def parse_entry(raw: Any) -> LogEntry:
    """
    Parse one element of ``logs``. Elements are JSON strings; anything that
    does not decode to an object becomes a synthesized ``unknown`` entry that
    keeps the raw text as its message.
    """
    if isinstance(raw, dict):
        data = raw
    else:
        try:
            data = json_loads(raw)
        except (TypeError, ValueError):
            return _synthesize(raw)
        if not isinstance(data, dict):
            return _synthesize(raw)

    timestamp = data.get("timestamp")
    return LogEntry(
        event_id=data.get("event_id"),
        type=str(data.get("type", "")),
        message=str(data.get("message", "")),
        timestamp=str(timestamp) if timestamp is not None else None,
        extra={k: v for k, v in data.items() if k not in _KNOWN_FIELDS},
    )


def _sort_key(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return None
    return float(value)


def sort_entries(
    entries: Iterable[LogEntry],
    sort_field: str = DEFAULT_SORT_FIELD,
    sort_order: Union[SortOrder, str] = SortOrder.DESC,
) -> List[LogEntry]:
    """
    Order entries by a numeric field.

    ``sorted`` is stable and stays stable with ``reverse=True``, so entries
    with equal keys keep their bundle order. Entries whose field is missing
    or not numeric follow all numeric ones, in bundle order.
    """
    order = SortOrder(sort_order)
    numeric: List[Tuple[float, LogEntry]] = []
    rest: List[LogEntry] = []
    for entry in entries:
        key = _sort_key(entry.get(sort_field))
        if key is None:
            rest.append(entry)
        else:
            numeric.append((key, entry))

    numeric.sort(key=lambda item: item[0], reverse=order == SortOrder.DESC)
    return [entry for _, entry in numeric] + rest


def parse_entries(
    raw_logs: Iterable[Any],
    sort_field: str = DEFAULT_SORT_FIELD,
    sort_order: Union[SortOrder, str] = SortOrder.DESC,
) -> List[LogEntry]:
    entries = [parse_entry(raw) for raw in raw_logs]
    synthesized = sum(1 for e in entries if e.synthesized)
    if synthesized:
        logger.warning("%d log entries were not valid JSON and were kept as raw text", synthesized)
    return sort_entries(entries, sort_field, sort_order)


def parse_bundle(
    payload: Any,
    sort_field: str = DEFAULT_SORT_FIELD,
    sort_order: Union[SortOrder, str] = SortOrder.DESC,
    cid: Optional[str] = None,
) -> LogBundle:
    if not isinstance(payload, dict):
        raise MalformedBundle("Decrypted payload must be a JSON object")

    raw_logs = payload.get("logs", [])
    if not isinstance(raw_logs, list):
        raise MalformedBundle("'logs' must be an array")

    prev_cid = payload.get("prev_cid")
    if prev_cid is not None and not isinstance(prev_cid, str):
        raise MalformedBundle("'prev_cid' must be a string")

    return LogBundle(
        logs=parse_entries(raw_logs, sort_field, sort_order),
        prev_cid=prev_cid,
        cid=cid,
    )


class ChainWalker:
    """
    fetch -> decrypt -> parse for one bundle, and backward traversal over
    ``prev_cid`` links.
    """

    def __init__(
        self,
        fetcher,
        decryptor,
        resolver=None,
        sort_field: str = DEFAULT_SORT_FIELD,
        sort_order: Union[SortOrder, str] = SortOrder.DESC,
    ):
        self._fetcher = fetcher
        self._decryptor = decryptor
        self._resolver = resolver
        self._sort_field = sort_field
        self._sort_order = SortOrder(sort_order)

    def load(self, cid: str) -> LogBundle:
        raw = self._fetcher.fetch(cid)
        try:
            payload = self._decryptor.decrypt_and_parse(raw)
        except MalformedEnvelope as e:
            raise MalformedEnvelope(str(e), raw=raw, cid=cid) from e
        except InvalidPlaintext as e:
            raise InvalidPlaintext(str(e), e.plaintext, cid=cid) from e
        bundle = parse_bundle(payload, self._sort_field, self._sort_order, cid=cid)
        logger.info(
            "Loaded bundle %s: %d entries, prev_cid=%s",
            cid,
            len(bundle.logs),
            bundle.prev_cid or "-",
            extra={"cid": cid, "operation": "chain"},
        )
        return bundle

    def latest(self) -> LogBundle:
        if self._resolver is None:
            raise RuntimeError("ChainWalker has no name resolver")
        return self.load(self._resolver.resolve())

    def walk(self, start_cid: str, limit: Optional[int] = None) -> Iterator[LogBundle]:
        """
        Yield bundles from ``start_cid`` backward until the first bundle with
        no predecessor, or until ``limit`` bundles were produced.
        """
        cid: Optional[str] = start_cid
        count = 0
        while cid and (limit is None or count < limit):
            bundle = self.load(cid)
            yield bundle
            count += 1
            cid = bundle.prev_cid


def write_jsonl(entries: Iterable[LogEntry], path: Union[str, Path], indent: Optional[int] = 4) -> int:
    """Append entries to ``path``, one JSON document per block. Returns the count."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with path.open("a", encoding="utf-8") as f:
        for entry in entries:
            f.write(json.dumps(entry.to_dict(), indent=indent, ensure_ascii=False) + "\n\n")
            count += 1
    return count
