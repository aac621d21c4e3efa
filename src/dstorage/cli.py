"""Command line entry point for DStorage.

Examples::

    dstorage --principal 0xabc... upload report.pdf -d "Q3 report" --access private --encrypt
    dstorage --principal 0xabc... share 7 0xdef...
    dstorage --principal 0xdef... download 7 -o report.pdf
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import os
import sys
from datetime import datetime
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import List, Optional

from dstorage import __version__
from dstorage.config import Settings
from dstorage.context import AppContext, build_context, build_vault
from dstorage.core.exceptions import (
    DStorageError,
    KeyPersistenceError,
    PartialSuccessError,
    ValidationError,
)
from dstorage.core.metadata import MetadataExtractor
from dstorage.core.models import AccessType
from dstorage.logging_config import configure_logging

logger = logging.getLogger(__name__)

PASSWORD_ENV = "DSTORAGE_VAULT_PASSWORD"


def _format_record(record) -> str:
    uploaded = datetime.fromtimestamp(record.upload_time).strftime("%Y-%m-%d %H:%M")
    flags = "enc" if record.is_encrypted else "   "
    return (
        f"#{record.file_id:<5} {record.access_type.name:<10} {flags} "
        f"{record.file_size:>10}  {uploaded}  {record.uploader[:10]}...  "
        f"{record.file_name}  {record.file_description}"
    )


def _read_password(confirm: bool = False) -> str:
    password = os.environ.get(PASSWORD_ENV)
    if password:
        return password
    password = getpass.getpass("Vault backup password: ")
    if confirm and getpass.getpass("Repeat password: ") != password:
        raise ValidationError("Passwords do not match")
    return password


# ----------------------------------------------------------------------
# Commands needing a principal
# ----------------------------------------------------------------------

async def _cmd_upload(ctx: AppContext, args) -> int:
    path = Path(args.path).expanduser()
    if not path.is_file():
        raise ValidationError(f"No such file: {path}")
    data = path.read_bytes()
    name = args.name or path.name
    meta = MetadataExtractor().extract(name, data)
    result = await ctx.uploader.upload(
        data,
        file_name=name,
        description=args.description,
        access_type=args.access,
        recipients=args.recipient,
        encrypt=args.encrypt,
        file_type=args.type or meta["mime_type"],
    )
    print(_format_record(result.record))
    print(f"content hash: {result.record.content_hash}")
    if "width" in meta:
        print(f"image: {meta['width']}x{meta['height']} {meta.get('format') or ''}".rstrip())
    elif "file_count" in meta:
        print(f"archive: {meta['file_count']} entries")
    return 0


def default_output_path(record) -> Path:
    """Local file name for a download without -o.

    The registered name is chosen by the uploader, so only its last path
    component is used and the file always lands in the working directory.
    """
    name = PureWindowsPath(PurePosixPath(record.file_name or "").name).name.strip()
    if name in ("", ".", ".."):
        name = f"file-{record.file_id}"
    return Path(name)


async def _cmd_download(ctx: AppContext, args) -> int:
    result = await ctx.downloader.download_by_id(args.file_id, ctx.principal)
    out = Path(args.output).expanduser() if args.output else default_output_path(result.record)
    if out.exists() and not args.force:
        raise ValidationError(f"{out} exists; use --force to overwrite")
    out.write_bytes(result.data)
    print(f"wrote {len(result.data)} bytes to {out}")
    return 0


async def _cmd_share(ctx: AppContext, args) -> int:
    await ctx.access.share_file(args.file_id, args.address)
    print(f"shared #{args.file_id} with {args.address}")
    return 0


async def _cmd_revoke(ctx: AppContext, args) -> int:
    await ctx.access.revoke_access(args.file_id, args.address)
    print(f"revoked {args.address} on #{args.file_id}")
    return 0


async def _cmd_grant(ctx: AppContext, args) -> int:
    granted = await ctx.uploader.retry_grants(args.file_id, args.address)
    print(f"granted {len(granted)} recipient(s) on #{args.file_id}")
    return 0


async def _cmd_check(ctx: AppContext, args) -> int:
    who = args.address or ctx.principal
    allowed = await ctx.access.check_access(args.file_id, who)
    print("yes" if allowed else "no")
    return 0 if allowed else 2


async def _cmd_ls(ctx: AppContext, args) -> int:
    listing = await ctx.access.list_files(ctx.principal)
    if args.owned:
        ids = sorted(listing.owned)
    elif args.shared:
        ids = sorted(listing.shared)
    elif args.public:
        ids = sorted(listing.public)
    else:
        ids = listing.all_ids()
    for file_id in ids:
        record = await ctx.directory.get_file(file_id)
        print(_format_record(record))
    return 0


async def _cmd_info(ctx: AppContext, args) -> int:
    record = await ctx.directory.get_file(args.file_id)
    for key, value in record.to_dict().items():
        if key == "access_type":
            value = AccessType(value).name
        print(f"{key:<17}{value}")
    print(f"{'key_on_device':<17}{ctx.vault.get(record.file_id) is not None}")
    return 0


async def _cmd_log(ctx: AppContext, args) -> int:
    for entry in await ctx.access.access_log(args.file_id):
        when = datetime.fromtimestamp(entry.accessed_at).strftime("%Y-%m-%d %H:%M:%S")
        print(f"{when}  {entry.accessor}")
    return 0


async def _cmd_grants(ctx: AppContext, args) -> int:
    for grant in await ctx.access.list_grants(args.file_id):
        print(f"{grant.grantee}  {'active' if grant.active else 'revoked'}")
    return 0


# ----------------------------------------------------------------------
# Vault commands (no principal needed)
# ----------------------------------------------------------------------

def _cmd_vault(settings: Settings, args) -> int:
    vault = build_vault(settings)
    if args.vault_command == "list":
        for file_id in vault.file_ids():
            print(file_id)
    elif args.vault_command == "delete":
        if not vault.delete(args.file_id):
            print(f"no key for #{args.file_id}")
            return 1
        print(f"deleted key for #{args.file_id}")
    elif args.vault_command == "export":
        blob = vault.export_backup(_read_password(confirm=True))
        Path(args.path).expanduser().write_bytes(blob)
        print(f"exported {len(vault.file_ids())} key(s) to {args.path}")
    elif args.vault_command == "import":
        blob = Path(args.path).expanduser().read_bytes()
        written = vault.import_backup(blob, _read_password(), overwrite=args.overwrite)
        print(f"imported {written} key(s)")
    return 0


COMMANDS = {
    "upload": _cmd_upload,
    "download": _cmd_download,
    "share": _cmd_share,
    "revoke": _cmd_revoke,
    "grant": _cmd_grant,
    "check": _cmd_check,
    "ls": _cmd_ls,
    "info": _cmd_info,
    "log": _cmd_log,
    "grants": _cmd_grants,
}


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dstorage",
        description="Store files in a content-addressed store with registry-controlled access.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--principal", help="Active principal address (default: $DSTORAGE_PRINCIPAL)")
    parser.add_argument("--home", help="Data directory (default: $DSTORAGE_HOME or ~/.dstorage)")
    parser.add_argument("--network", help="Network identity (default: $DSTORAGE_NETWORK or local)")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("upload", help="Upload a file")
    p.add_argument("path")
    p.add_argument("-d", "--description", default="")
    p.add_argument("--name", help="Name to register (default: file name)")
    p.add_argument("--type", help="MIME type (default: detected)")
    p.add_argument(
        "--access",
        default="public",
        help="public, private or restricted (or 0/1/2)",
    )
    p.add_argument("-r", "--recipient", action="append", default=[], help="Recipient address (repeatable)")
    p.add_argument("--encrypt", action="store_true", help="Encrypt before upload")

    p = sub.add_parser("download", help="Download a file")
    p.add_argument("file_id", type=int)
    p.add_argument("-o", "--output")
    p.add_argument("--force", action="store_true")

    for name, text in (("share", "Grant access"), ("revoke", "Revoke access")):
        p = sub.add_parser(name, help=text)
        p.add_argument("file_id", type=int)
        p.add_argument("address")

    p = sub.add_parser("grant", help="Retry granting recipients after a partial upload")
    p.add_argument("file_id", type=int)
    p.add_argument("address", nargs="+")

    p = sub.add_parser("check", help="Check access")
    p.add_argument("file_id", type=int)
    p.add_argument("address", nargs="?")

    p = sub.add_parser("ls", help="List visible files")
    group = p.add_mutually_exclusive_group()
    group.add_argument("--owned", action="store_true")
    group.add_argument("--shared", action="store_true")
    group.add_argument("--public", action="store_true")

    p = sub.add_parser("info", help="Show a file record")
    p.add_argument("file_id", type=int)

    p = sub.add_parser("log", help="Show the access log of an owned file")
    p.add_argument("file_id", type=int)

    p = sub.add_parser("grants", help="List grants on an owned file")
    p.add_argument("file_id", type=int)

    p = sub.add_parser("vault", help="Manage local file keys")
    vsub = p.add_subparsers(dest="vault_command", required=True)
    vsub.add_parser("list", help="List file ids with a key")
    vp = vsub.add_parser("delete", help="Forget the key of one file")
    vp.add_argument("file_id", type=int)
    vp = vsub.add_parser("export", help="Write a password-sealed backup")
    vp.add_argument("path")
    vp = vsub.add_parser("import", help="Merge a password-sealed backup")
    vp.add_argument("path")
    vp.add_argument("--overwrite", action="store_true")

    return parser


def _report(err: DStorageError) -> None:
    print(f"error: {err}", file=sys.stderr)
    if isinstance(err, PartialSuccessError):
        print(
            f"hint: file #{err.record.file_id} is registered; "
            f"run 'dstorage grant {err.record.file_id} ADDRESS...' to retry",
            file=sys.stderr,
        )
    elif isinstance(err, KeyPersistenceError):
        print(f"save this key for file #{err.file_id} now: {err.key_string}", file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env().with_overrides(
            home=Path(args.home).expanduser() if args.home else None,
            network=args.network,
        )
        level = settings.log_level
        if args.verbose:
            level = logging.DEBUG if args.verbose > 1 else logging.INFO
        configure_logging(level)

        if args.command == "vault":
            return _cmd_vault(settings, args)

        ctx = build_context(settings, principal=args.principal)
        try:
            return asyncio.run(COMMANDS[args.command](ctx, args))
        finally:
            ctx.close()
    except DStorageError as err:
        logger.debug("Command %s failed", args.command, exc_info=True)
        _report(err)
        return 1
    except OSError as err:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"error: {err}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
