"""
Tests for the command line parser and commands, with stub services.
"""

import json
import os
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from nexuslog.cli import commands
from nexuslog.cli.main import build_parser, main
from nexuslog.core.chain import ChainWalker
from nexuslog.core.settings import NexusSettings
from nexuslog.protocol.enums import ConnectionMode, EntryOrigin
from nexuslog.protocol.errors import InvalidPlaintext, NameNotPublished
from nexuslog.protocol.models import KeyInfo, LogBundle, LogEntry
from nexuslog.security.hybrid import HybridDecryptor


def _bundle(cid="bafyCUR", prev_cid=None):
    return LogBundle(
        logs=[
            LogEntry(event_id=2, type="auth", message="login", timestamp="2024-01-01T00:00:00Z"),
            LogEntry(event_id=1, type="unknown", message="garbled", origin=EntryOrigin.SYNTHESIZED),
        ],
        prev_cid=prev_cid,
        cid=cid,
    )


@pytest.fixture
def services(tmp_dir, monkeypatch):
    settings = NexusSettings(logging={"log_dir": tmp_dir, "enable_file": False, "enable_console": False})
    svc = SimpleNamespace(
        settings=settings,
        supervisor=MagicMock(),
        fetcher=MagicMock(),
        resolver=MagicMock(),
        walker=MagicMock(),
        keys=MagicMock(),
    )
    monkeypatch.setattr(commands, "load_settings", lambda path=None: settings)
    monkeypatch.setattr(commands, "build_services", lambda s: svc)
    return svc


class TestParser:
    def test_fetch(self):
        args = build_parser().parse_args(["fetch", "bafyCUR", "--chain", "3", "--output", "json", "--no-daemon"])
        assert args.cid == "bafyCUR"
        assert args.chain == 3
        assert args.output == "json"
        assert args.no_daemon is True
        assert args.func is commands.cmd_fetch

    def test_keys_create(self):
        args = build_parser().parse_args(["keys", "create", "alice"])
        assert args.name == "alice"
        assert args.func is commands.cmd_keys_create

    def test_serve_overrides(self):
        args = build_parser().parse_args(["serve", "--host", "0.0.0.0", "--port", "8080"])
        assert (args.host, args.port) == ("0.0.0.0", 8080)

    def test_no_command(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main([])
        assert excinfo.value.code == 1


class TestFetchCommand:
    def test_table_output_and_save(self, services, capsys, tmp_dir):
        services.walker.walk.return_value = iter([_bundle()])

        main(["fetch", "bafyCUR", "--no-daemon"])

        out = capsys.readouterr().out
        assert "=== Decrypted Logs (bafyCUR) ===" in out
        assert "| Message  : login" in out
        assert "not valid JSON" in out
        assert "No more logs." in out
        services.walker.walk.assert_called_once_with("bafyCUR", limit=1)
        services.supervisor.start.assert_not_called()

        with open(os.path.join(tmp_dir, "logs_output.jsonl")) as f:
            blocks = [b for b in f.read().split("\n\n") if b.strip()]
        assert [json.loads(b)["event_id"] for b in blocks] == [2, 1]

    def test_json_output_no_save(self, services, capsys, tmp_dir):
        services.walker.walk.return_value = iter([_bundle(prev_cid="bafyPREV")])

        main(["fetch", "bafyCUR", "--output", "json", "--no-save", "--no-daemon"])

        data = json.loads(capsys.readouterr().out)
        assert data["prev_cid"] == "bafyPREV"
        assert not os.path.exists(os.path.join(tmp_dir, "logs_output.jsonl"))

    def test_api_mode_starts_node(self, services, capsys):
        services.settings = services.settings.model_copy(
            update={"store": services.settings.store.model_copy(update={"connection_mode": ConnectionMode.API})}
        )
        services.walker.walk.return_value = iter([_bundle()])

        main(["fetch", "bafyCUR", "--no-save"])

        services.supervisor.start.assert_called_once()
        services.supervisor.stop.assert_called_once()

    def test_invalid_plaintext_prints_raw(self, services, capsys):
        services.walker.walk.side_effect = InvalidPlaintext("Decrypted payload is not valid JSON", b"not json at all")

        with pytest.raises(SystemExit) as excinfo:
            main(["fetch", "bafyCUR", "--no-daemon"])

        assert excinfo.value.code == 1
        err = capsys.readouterr().err
        assert "[Raw Response]" in err
        assert "not json at all" in err

    def test_malformed_later_bundle_prints_its_own_body(self, services, capsys, encryptor, encryption_settings):
        first = encryptor.encrypt({"logs": [], "prev_cid": "bafySECOND"}).to_wire()
        bodies = {
            "bafyFIRST": json.dumps(first).encode(),
            "bafySECOND": b"SECOND-RAW upstream error",
        }
        fetcher = MagicMock()
        fetcher.fetch.side_effect = lambda cid: bodies[cid]
        services.walker = ChainWalker(fetcher, HybridDecryptor(encryption_settings))

        with pytest.raises(SystemExit) as excinfo:
            main(["fetch", "bafyFIRST", "--chain", "2", "--no-save", "--no-daemon"])

        assert excinfo.value.code == 1
        err = capsys.readouterr().err
        assert "(bafySECOND)" in err
        assert "SECOND-RAW upstream error" in err
        assert '"prev_cid"' not in err
        assert [c.args[0] for c in fetcher.fetch.call_args_list] == ["bafyFIRST", "bafySECOND"]


class TestOtherCommands:
    def test_latest(self, services, capsys):
        services.resolver.resolve.return_value = "bafyLATEST"
        services.walker.walk.return_value = iter([_bundle(cid="bafyLATEST")])

        main(["latest", "--no-save"])

        out = capsys.readouterr().out
        assert "Latest CID: bafyLATEST" in out
        services.supervisor.start.assert_called_once()
        services.supervisor.stop.assert_called_once()

    def test_resolve_not_published(self, services, capsys):
        services.resolver.resolve.side_effect = NameNotPublished()

        with pytest.raises(SystemExit) as excinfo:
            main(["resolve", "--no-daemon"])

        assert excinfo.value.code == 1
        assert "not published" in capsys.readouterr().err

    def test_keys_list_json(self, services, capsys):
        services.keys.list.return_value = [KeyInfo("k51self", "self")]
        main(["keys", "list", "--output", "json", "--no-daemon"])
        assert json.loads(capsys.readouterr().out) == [{"value": "k51self", "name": "self"}]

    def test_keys_list_table(self, services, capsys):
        services.keys.list.return_value = [KeyInfo("k51self", "self")]
        main(["keys", "list", "--no-daemon"])
        out = capsys.readouterr().out
        assert "NAME" in out
        assert "k51self" in out

    def test_keys_create(self, services, capsys):
        services.keys.create.return_value = "k51alice"
        main(["keys", "create", "alice", "--no-daemon"])
        assert capsys.readouterr().out.strip() == "k51alice"
        services.keys.create.assert_called_once_with("alice")


class TestPrintOutput:
    def test_table(self, capsys):
        commands._print_output({"state": "ready", "pid": None}, "table", title="Daemon")
        out = capsys.readouterr().out
        assert out.startswith("Daemon\n")
        assert "pid:" in out
        assert out.rstrip().endswith("-")

    def test_jsonl(self, capsys):
        commands._print_output({"a": 1}, "jsonl")
        assert capsys.readouterr().out == '{"a": 1}\n'
