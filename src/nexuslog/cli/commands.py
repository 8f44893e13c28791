"""
nexuslog CLI commands.

Commands:
    nexuslog fetch <cid> [--chain N]     Fetch and decrypt a bundle, optionally N bundles back
    nexuslog latest [--chain N]          Resolve the IPNS name, then fetch
    nexuslog resolve                     Print the newest CID
    nexuslog keys list                   List IPNS keys held by the node
    nexuslog keys create <name>          Create an IPNS key
    nexuslog daemon                      Run the supervised node until interrupted
    nexuslog serve                       Run the node and the HTTP API
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from nexuslog.core.chain import write_jsonl
from nexuslog.core.services import NexusServices, build_services
from nexuslog.core.settings import load_settings
from nexuslog.protocol.enums import ConnectionMode
from nexuslog.protocol.errors import (
    InvalidPlaintext,
    MalformedEnvelope,
    NexusError,
)
from nexuslog.protocol.models import LogBundle
from nexuslog.utils.logging import configure_logging

logger = logging.getLogger(__name__)


def _services(args) -> NexusServices:
    settings = load_settings(getattr(args, "config", None))
    configure_logging(settings.logging)
    return build_services(settings)


def _wants_daemon(services: NexusServices, args, requires_node: bool) -> bool:
    if getattr(args, "no_daemon", False):
        return False
    if requires_node:
        return True
    # gateway mode only reaches the local node as a last resort
    return services.settings.store.connection_mode == ConnectionMode.API


@contextmanager
def _node_session(services: NexusServices, args, requires_node: bool = True) -> Iterator[None]:
    if not _wants_daemon(services, args, requires_node):
        yield
        return

    services.supervisor.start()
    try:
        yield
    finally:
        services.supervisor.stop()


def _fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


# ----------------------------------------------------------------------
# fetch / latest
# ----------------------------------------------------------------------

def cmd_fetch(args) -> None:
    """Fetch and decrypt a bundle by CID."""
    services = _services(args)
    with _node_session(services, args, requires_node=False):
        _show_chain(services, args.cid, args)


def cmd_latest(args) -> None:
    """Resolve the newest bundle through IPNS and fetch it."""
    services = _services(args)
    with _node_session(services, args):
        try:
            cid = services.resolver.resolve()
        except NexusError as e:
            _fail(str(e))
        print(f"Latest CID: {cid}")
        _show_chain(services, cid, args)


def _show_chain(services: NexusServices, cid: str, args) -> None:
    output_format = getattr(args, "output", "table")
    limit = max(1, getattr(args, "chain", 1) or 1)
    log_settings = services.settings.logging

    try:
        for bundle in services.walker.walk(cid, limit=limit):
            _print_bundle(bundle, output_format)
            if not getattr(args, "no_save", False):
                write_jsonl(bundle.logs, log_settings.output_path, log_settings.indent)
    except (InvalidPlaintext, MalformedEnvelope) as e:
        _print_raw_response(e)
        sys.exit(1)
    except NexusError as e:
        _fail(str(e))


def _print_raw_response(err: NexusError) -> None:
    # raw bytes of the bundle that failed to decrypt
    raw = err.plaintext if isinstance(err, InvalidPlaintext) else err.raw
    where = f" ({err.cid})" if err.cid else ""
    print(f"[x] Error{where}: {err}", file=sys.stderr)
    if raw is None:
        return
    print("[Raw Response]", file=sys.stderr)
    print(raw.decode("utf-8", errors="replace"), file=sys.stderr)


def _print_bundle(bundle: LogBundle, fmt: str) -> None:
    if fmt == "json":
        print(json.dumps(bundle.to_dict(), indent=2))
        return
    if fmt == "jsonl":
        print(json.dumps(bundle.to_dict()))
        return

    print(f"=== Decrypted Logs ({bundle.cid}) ===")
    for entry in bundle.logs:
        print("+" + "-" * 40)
        print(f"| Event ID : {entry.event_id}")
        print(f"| Type     : {entry.type}")
        print(f"| Message  : {entry.message}")
        if entry.timestamp:
            print(f"| Time     : {entry.timestamp}")
        if entry.synthesized:
            print("| (not valid JSON, shown as raw text)")
        print("+" + "-" * 40)

    print(f"prev_cid: {bundle.prev_cid or ''}")
    if bundle.is_terminal:
        print("No more logs.")


# ----------------------------------------------------------------------
# resolve / keys
# ----------------------------------------------------------------------

def cmd_resolve(args) -> None:
    """Print the CID the IPNS name currently points to."""
    services = _services(args)
    with _node_session(services, args):
        try:
            print(services.resolver.resolve())
        except NexusError as e:
            _fail(str(e))


def cmd_keys_list(args) -> None:
    services = _services(args)
    output_format = getattr(args, "output", "table")
    with _node_session(services, args):
        try:
            keys = services.keys.list()
        except NexusError as e:
            _fail(str(e))

    if output_format == "json":
        print(json.dumps([k.to_dict() for k in keys], indent=2))
        return

    if not keys:
        print("No keys.")
        return
    print(f"{'NAME':<24} VALUE")
    print("-" * 80)
    for key in keys:
        print(f"{key.name:<24} {key.value}")


def cmd_keys_create(args) -> None:
    services = _services(args)
    with _node_session(services, args):
        try:
            value = services.keys.create(args.name)
        except NexusError as e:
            _fail(str(e))
    print(value)


# ----------------------------------------------------------------------
# daemon / serve
# ----------------------------------------------------------------------

def cmd_daemon(args) -> None:
    """Run the supervised node until interrupted."""
    services = _services(args)
    try:
        status = services.supervisor.start()
    except NexusError as e:
        _fail(f"Failed to start IPFS daemon: {e}")

    _print_output(status.to_dict(), getattr(args, "output", "table"))
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        pass
    finally:
        services.supervisor.stop()


def cmd_serve(args) -> None:
    """Run the node and the HTTP API."""
    import uvicorn

    from nexuslog.api.app import create_app

    services = _services(args)
    server = services.settings.server
    host = getattr(args, "host", None) or server.host
    port = getattr(args, "port", None) or server.port

    with _node_session(services, args):
        logger.info("Web API: http://%s:%d%s", host, port, server.api_prefix)
        uvicorn.run(create_app(services, getattr(args, "config", None)), host=host, port=port, log_level="info")


def _print_output(data: Dict[str, Any], fmt: str, title: Optional[str] = None) -> None:
    if fmt == "json":
        print(json.dumps(data, indent=2))
    elif fmt == "jsonl":
        print(json.dumps(data))
    else:
        if title:
            print(title)
            print("=" * 40)
        for key, value in data.items():
            print(f"{key + ':':<20}{value if value is not None else '-'}")
