"""
nexuslog command line entry point.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from nexuslog.protocol.errors import NexusError

from . import commands


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to settings.json (default: $NEXUS_CONFIG or config/settings.json)")
    parser.add_argument(
        "--output",
        choices=["table", "json", "jsonl"],
        default="table",
        help="Output format",
    )
    parser.add_argument(
        "--no-daemon",
        action="store_true",
        help="Do not start the supervised node (it must already be running if needed)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nexuslog",
        description="Fetch, decrypt and walk encrypted log bundles stored on IPFS",
    )
    sub = parser.add_subparsers(dest="command")

    p_fetch = sub.add_parser("fetch", help="Fetch and decrypt a bundle by CID")
    p_fetch.add_argument("cid", help="Content identifier of the bundle")
    p_fetch.add_argument("--chain", type=int, default=1, metavar="N", help="Follow prev_cid for up to N bundles")
    p_fetch.add_argument("--no-save", action="store_true", help="Do not append entries to the output file")
    _add_common(p_fetch)
    p_fetch.set_defaults(func=commands.cmd_fetch)

    p_latest = sub.add_parser("latest", help="Resolve the IPNS name and fetch the newest bundle")
    p_latest.add_argument("--chain", type=int, default=1, metavar="N", help="Follow prev_cid for up to N bundles")
    p_latest.add_argument("--no-save", action="store_true", help="Do not append entries to the output file")
    _add_common(p_latest)
    p_latest.set_defaults(func=commands.cmd_latest)

    p_resolve = sub.add_parser("resolve", help="Print the newest CID")
    _add_common(p_resolve)
    p_resolve.set_defaults(func=commands.cmd_resolve)

    p_keys = sub.add_parser("keys", help="Manage IPNS keys")
    keys_sub = p_keys.add_subparsers(dest="keys_command")
    p_keys_list = keys_sub.add_parser("list", help="List keys")
    _add_common(p_keys_list)
    p_keys_list.set_defaults(func=commands.cmd_keys_list)
    p_keys_create = keys_sub.add_parser("create", help="Create a key")
    p_keys_create.add_argument("name")
    _add_common(p_keys_create)
    p_keys_create.set_defaults(func=commands.cmd_keys_create)

    p_daemon = sub.add_parser("daemon", help="Run the supervised IPFS daemon")
    _add_common(p_daemon)
    p_daemon.set_defaults(func=commands.cmd_daemon)

    p_serve = sub.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host")
    p_serve.add_argument("--port", type=int)
    _add_common(p_serve)
    p_serve.set_defaults(func=commands.cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except NexusError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
