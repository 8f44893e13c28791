"""
Tests for log bundle parsing, sorting and back-link traversal.
"""

import json
import os

import pytest

from nexuslog.core.chain import (
    ChainWalker,
    parse_bundle,
    parse_entries,
    parse_entry,
    sort_entries,
    write_jsonl,
)
from nexuslog.protocol.enums import EntryOrigin, SortOrder
from nexuslog.protocol.errors import InvalidPlaintext, MalformedBundle, MalformedEnvelope
from nexuslog.protocol.models import LogBundle, LogEntry


def _raw(event_id, type_="info", message="m", **extra):
    data = {"event_id": event_id, "type": type_, "message": message}
    data.update(extra)
    return json.dumps(data)


class TestParseEntry:
    def test_parsed_entry(self):
        entry = parse_entry(_raw(3, "auth", "login", timestamp="2024-01-01T00:00:00Z", host="a"))
        assert entry.event_id == 3
        assert entry.type == "auth"
        assert entry.message == "login"
        assert entry.timestamp == "2024-01-01T00:00:00Z"
        assert entry.origin == EntryOrigin.PARSED
        assert entry.extra == {"host": "a"}

    def test_invalid_json_is_synthesized_not_dropped(self):
        entry = parse_entry("this is not json {")
        assert entry.origin == EntryOrigin.SYNTHESIZED
        assert entry.synthesized
        assert entry.type == "unknown"
        assert entry.message == "this is not json {"
        assert entry.timestamp
        assert isinstance(entry.event_id, int)

    def test_json_scalar_is_synthesized(self):
        entry = parse_entry("42")
        assert entry.synthesized
        assert entry.message == "42"

    def test_dict_element_accepted(self):
        entry = parse_entry({"event_id": 1, "type": "x", "message": "y"})
        assert entry.origin == EntryOrigin.PARSED

    def test_to_dict_roundtrip_keeps_extra(self):
        entry = parse_entry(_raw(1, host="h"))
        assert entry.to_dict() == {"event_id": 1, "type": "info", "message": "m", "host": "h"}


class TestSorting:
    def test_desc_by_event_id(self):
        entries = parse_entries([_raw(i) for i in (5, 1, 9, 3, 9, 0)], "event_id", "desc")
        ids = [e.event_id for e in entries]
        assert all(ids[i] >= ids[i + 1] for i in range(len(ids) - 1))

    def test_asc(self):
        entries = parse_entries([_raw(i) for i in (5, 1, 9)], "event_id", SortOrder.ASC)
        assert [e.event_id for e in entries] == [1, 5, 9]

    def test_equal_keys_keep_bundle_order(self):
        raws = [_raw(1, message="a"), _raw(2, message="b"), _raw(1, message="c"), _raw(2, message="d")]
        desc = parse_entries(raws, "event_id", "desc")
        assert [e.message for e in desc] == ["b", "d", "a", "c"]
        asc = parse_entries(raws, "event_id", "asc")
        assert [e.message for e in asc] == ["a", "c", "b", "d"]

    def test_missing_or_non_numeric_sort_last(self):
        entries = [
            LogEntry(event_id=None, type="t", message="none"),
            LogEntry(event_id=2, type="t", message="two"),
            LogEntry(event_id="x", type="t", message="text"),
            LogEntry(event_id=7, type="t", message="seven"),
        ]
        assert [e.message for e in sort_entries(entries, "event_id", "desc")] == [
            "seven", "two", "none", "text",
        ]
        assert [e.message for e in sort_entries(entries, "event_id", "asc")] == [
            "two", "seven", "none", "text",
        ]

    def test_sort_by_extra_field(self):
        entries = parse_entries([_raw(1, seq=3), _raw(2, seq=1), _raw(3, seq=2)], "seq", "asc")
        assert [e.event_id for e in entries] == [2, 3, 1]

    def test_invalid_order(self):
        with pytest.raises(ValueError):
            parse_entries([], "event_id", "sideways")


class TestParseBundle:
    def test_empty_prev_cid_is_terminal(self):
        bundle = parse_bundle({"logs": [_raw(1)], "prev_cid": ""})
        assert bundle.prev_cid is None
        assert bundle.is_terminal
        assert not bundle.has_previous

    def test_missing_prev_cid_is_terminal(self):
        assert parse_bundle({"logs": []}).is_terminal

    def test_prev_cid_kept(self):
        bundle = parse_bundle({"logs": [], "prev_cid": "bafy123"}, cid="bafy456")
        assert bundle.prev_cid == "bafy123"
        assert bundle.has_previous
        assert bundle.cid == "bafy456"

    def test_prev_cid_independent_of_entry_errors(self):
        bundle = parse_bundle({"logs": ["garbage", _raw(1)], "prev_cid": "bafy123"})
        assert bundle.prev_cid == "bafy123"
        assert len(bundle.logs) == 2

    @pytest.mark.parametrize(
        "payload",
        [[], "text", {"logs": "nope"}, {"logs": [], "prev_cid": 5}],
    )
    def test_malformed(self, payload):
        with pytest.raises(MalformedBundle):
            parse_bundle(payload)

    def test_to_dict(self):
        bundle = LogBundle(logs=[], prev_cid="", cid="c")
        assert bundle.to_dict() == {"cid": "c", "prev_cid": "", "logs": []}


# ===========================================================================
# Traversal
# ===========================================================================


class FakeFetcher:
    def __init__(self, store):
        self.store = store
        self.calls = []

    def fetch(self, cid):
        self.calls.append(cid)
        return self.store[cid]


class PassthroughDecryptor:
    def decrypt_and_parse(self, raw):
        return json.loads(raw)


class FakeResolver:
    def __init__(self, cid):
        self.cid = cid

    def resolve(self):
        return self.cid


def _chain():
    return {
        "c3": json.dumps({"logs": [_raw(5), _raw(6)], "prev_cid": "c2"}),
        "c2": json.dumps({"logs": [_raw(3), _raw(4)], "prev_cid": "c1"}),
        "c1": json.dumps({"logs": [_raw(1), _raw(2)], "prev_cid": ""}),
    }


class TestChainWalker:
    def test_load_sorts_entries(self):
        walker = ChainWalker(FakeFetcher(_chain()), PassthroughDecryptor())
        bundle = walker.load("c3")
        assert [e.event_id for e in bundle.logs] == [6, 5]
        assert bundle.prev_cid == "c2"
        assert bundle.cid == "c3"

    def test_prev_cid_allows_one_more_fetch(self):
        fetcher = FakeFetcher({
            "bafy456": json.dumps({"logs": [], "prev_cid": "bafy123"}),
            "bafy123": json.dumps({"logs": [], "prev_cid": ""}),
        })
        walker = ChainWalker(fetcher, PassthroughDecryptor())

        bundles = list(walker.walk("bafy456"))
        assert fetcher.calls == ["bafy456", "bafy123"]
        assert bundles[-1].is_terminal

    def test_walk_to_beginning(self):
        fetcher = FakeFetcher(_chain())
        walker = ChainWalker(fetcher, PassthroughDecryptor(), sort_order="asc")
        bundles = list(walker.walk("c3"))
        assert [b.cid for b in bundles] == ["c3", "c2", "c1"]
        assert [e.event_id for b in bundles for e in b.logs] == [5, 6, 3, 4, 1, 2]

    def test_walk_limit(self):
        fetcher = FakeFetcher(_chain())
        bundles = list(ChainWalker(fetcher, PassthroughDecryptor()).walk("c3", limit=2))
        assert [b.cid for b in bundles] == ["c3", "c2"]
        assert fetcher.calls == ["c3", "c2"]

    def test_latest_uses_resolver(self):
        walker = ChainWalker(FakeFetcher(_chain()), PassthroughDecryptor(), FakeResolver("c2"))
        assert walker.latest().cid == "c2"

    def test_latest_without_resolver(self):
        with pytest.raises(RuntimeError):
            ChainWalker(FakeFetcher({}), PassthroughDecryptor()).latest()

    def test_real_decryptor(self, encryptor, encryption_settings):
        from nexuslog.security.hybrid import HybridDecryptor

        payload = {"logs": [_raw(1), "broken"], "prev_cid": ""}
        fetcher = FakeFetcher({"cX": json.dumps(encryptor.encrypt(payload).to_wire()).encode()})
        bundle = ChainWalker(fetcher, HybridDecryptor(encryption_settings)).load("cX")
        assert len(bundle.logs) == 2
        assert sum(e.synthesized for e in bundle.logs) == 1

    def test_malformed_second_bundle_names_it(self, encryptor, encryption_settings):
        from nexuslog.security.hybrid import HybridDecryptor

        first = encryptor.encrypt({"logs": [_raw(1)], "prev_cid": "bafySECOND"}).to_wire()
        fetcher = FakeFetcher({
            "bafyFIRST": json.dumps(first).encode(),
            "bafySECOND": b"SECOND-RAW gateway error page",
        })
        walker = ChainWalker(fetcher, HybridDecryptor(encryption_settings))

        bundles = []
        with pytest.raises(MalformedEnvelope) as excinfo:
            for bundle in walker.walk("bafyFIRST", limit=2):
                bundles.append(bundle)

        assert [b.cid for b in bundles] == ["bafyFIRST"]
        assert excinfo.value.cid == "bafySECOND"
        assert excinfo.value.raw == b"SECOND-RAW gateway error page"
        assert fetcher.calls == ["bafyFIRST", "bafySECOND"]

    def test_invalid_plaintext_names_bundle(self, encryptor, encryption_settings):
        from nexuslog.security.hybrid import HybridDecryptor

        sealed = encryptor.encrypt_bytes(b"plain text, not json").to_wire()
        fetcher = FakeFetcher({"bafyX": json.dumps(sealed).encode()})

        with pytest.raises(InvalidPlaintext) as excinfo:
            ChainWalker(fetcher, HybridDecryptor(encryption_settings)).load("bafyX")
        assert excinfo.value.cid == "bafyX"
        assert excinfo.value.plaintext == b"plain text, not json"


class TestWriteJsonl:
    def test_appends(self, tmp_dir):
        path = os.path.join(tmp_dir, "out", "logs.jsonl")
        entries = parse_entries([_raw(1), _raw(2)])
        assert write_jsonl(entries, path, indent=None) == 2
        write_jsonl(entries[:1], path, indent=None)

        with open(path) as f:
            blocks = [b for b in f.read().split("\n\n") if b.strip()]
        assert len(blocks) == 3
        assert json.loads(blocks[0])["event_id"] == 2
