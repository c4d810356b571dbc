from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Sequence

from .errors import ScriptVaultError
from .install import InstallRequest
from .vault import ScriptVault

logger = logging.getLogger(__name__)


def _positive_int(value: str) -> int:
    ivalue = int(value)
    if ivalue <= 0:
        raise argparse.ArgumentTypeError("value must be a positive integer")
    return ivalue


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m scriptvault",
        description="Inspect and maintain a userscript store.",
    )
    parser.add_argument(
        "--data-file",
        type=Path,
        default=None,
        help="Store file (defaults to the configured SCRIPTVAULT_DATA_FILE).",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="<command>", required=True)

    subparsers.add_parser("list", help="List installed scripts in execution order.")

    install_cmd = subparsers.add_parser("install", help="Install or update a script from a file.")
    install_cmd.add_argument("file", type=Path, help="Script source (.user.js).")
    install_cmd.add_argument(
        "--url",
        default=None,
        help="Remote URL the script came from; relative @require/@resource resolve against it.",
    )
    install_cmd.add_argument(
        "--new",
        action="store_true",
        help="Fail instead of updating when a script with the same name exists.",
    )
    install_cmd.add_argument(
        "--position",
        type=_positive_int,
        default=None,
        help="1-based position to place the script at.",
    )

    remove_cmd = subparsers.add_parser("remove", help="Delete a script with its code and values.")
    remove_cmd.add_argument("id", type=_positive_int)

    move_cmd = subparsers.add_parser("move", help="Move a script by OFFSET positions.")
    move_cmd.add_argument("id", type=_positive_int)
    move_cmd.add_argument("offset", type=int)

    export_cmd = subparsers.add_parser("export", help="Export scripts (and optionally values) as JSON.")
    export_cmd.add_argument("ids", nargs="*", type=_positive_int, help="Script ids (default: all).")
    export_cmd.add_argument("--values", action="store_true", help="Include value stores.")
    export_cmd.add_argument("--output", "-o", type=Path, default=None, help="Write to file instead of stdout.")

    subparsers.add_parser("vacuum", help="Drop orphaned cache entries and re-fetch missing ones.")
    subparsers.add_parser("purge", help="Permanently delete scripts marked as removed.")
    return parser


def _format_row(script) -> str:
    flags = "on " if script.enabled else "off"
    if script.removed:
        flags = "rm "
    return f"{script.props.position:>4}  {script.props.id:>4}  {flags}  {script.meta.name}  ({script.props.uri})"


async def _run(args: argparse.Namespace, out) -> int:
    vault = ScriptVault.from_config(str(args.data_file) if args.data_file else None)
    async with vault:
        if args.command == "list":
            for script in await vault.get_scripts():
                print(_format_row(script), file=out)
        elif args.command == "install":
            code = args.file.read_text(encoding="utf-8")
            event = await vault.parse_script(
                InstallRequest(code=code, url=args.url, is_new=args.new, position=args.position)
            )
            update = event.data["update"]
            print(f"{update['message']} [{event.data['where']['id']}] {update['meta']['name']}", file=out)
        elif args.command == "remove":
            if await vault.get_script(id=args.id) is None:
                print(f"Script {args.id} not found", file=sys.stderr)
                return 1
            await vault.remove_script(args.id)
            print(f"Removed script {args.id}", file=out)
        elif args.command == "move":
            await vault.move_script(args.id, args.offset)
            script = await vault.get_script(id=args.id)
            print(f"Script {args.id} is now at position {script.props.position}", file=out)
        elif args.command == "export":
            ids: List[int] = args.ids or [s.props.id for s in await vault.get_scripts()]
            data: Any = await vault.get_export_data(ids, with_values=args.values)
            payload = json.dumps(data, ensure_ascii=False, indent=2)
            if args.output:
                args.output.write_text(payload, encoding="utf-8")
                print(f"Exported {len(data['items'])} scripts to {args.output}", file=out)
            else:
                print(payload, file=out)
        elif args.command == "vacuum":
            report = await vault.vacuum()
            print(
                f"Removed {report.removed_count} orphaned keys, "
                f"re-fetched {report.refetched_count} dependencies",
                file=out,
            )
            if report.missing_code:
                print(f"Missing code for scripts: {', '.join(report.missing_code)}", file=out)
        elif args.command == "purge":
            count = await vault.check_remove()
            print(f"Purged {count} removed scripts", file=out)
    return 0


def main(argv: Sequence[str] | None = None, out=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return asyncio.run(_run(args, out or sys.stdout))
    except ScriptVaultError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


__all__ = ["build_parser", "main"]
