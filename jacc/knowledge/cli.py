"""Operator commands: ``jacc-admin <command>``."""

import argparse
import asyncio
import logging
import sys

from knowledge.auth import DatabaseSessionStore
from knowledge.db import async_session_factory
from knowledge.models import Role
from knowledge.services.faq_import import import_faq_rows
from knowledge.services.folders import load_folder_specs, provision_folders
from knowledge.services.ingestion import sweep_expired_tickets
from knowledge.services.storage import FileStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def cmd_provision_folders(args: argparse.Namespace) -> int:
    specs = load_folder_specs(args.config)
    async with async_session_factory() as session:
        created = await provision_folders(session, args.owner, specs)
    for folder in created:
        print(f"{folder.id}\t{folder.name}")
    return 0


async def cmd_import_faq(args: argparse.Namespace) -> int:
    with open(args.path, encoding="utf-8") as f:
        text = f.read()
    async with async_session_factory() as session:
        report = await import_faq_rows(session, text, args.imported_by)
    print(f"Imported {report.imported} entries")
    if report.skipped:
        print(f"Skipped lines: {', '.join(str(n) for n in report.skipped)}")
    return 0


async def cmd_open_session(args: argparse.Namespace) -> int:
    async with async_session_factory() as session:
        store = DatabaseSessionStore(session)
        session_id, info = await store.open(args.user_id, Role(args.role))
    print(session_id)
    logger.info(f"Opened session for {info.user_id} ({info.role.value}) until {info.expires_at}")
    return 0


async def cmd_sweep_staging(args: argparse.Namespace) -> int:  # noqa: ARG001
    async with async_session_factory() as session:
        expired = await sweep_expired_tickets(session, FileStore())
    print(f"Expired {expired} staging tickets")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="jacc-admin", description="JACC knowledge admin tasks")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("provision-folders", help="Create the default routing folders")
    p.add_argument("--owner", default="system", help="Owner id recorded on new folders")
    p.add_argument("--config", default=None, help="YAML folder list (defaults to the packaged one)")
    p.set_defaults(func=cmd_provision_folders)

    p = sub.add_parser("import-faq", help="Import a tab-separated FAQ sheet")
    p.add_argument("path")
    p.add_argument("--imported-by", default="system")
    p.set_defaults(func=cmd_import_faq)

    p = sub.add_parser("open-session", help="Issue a bearer session id for a user")
    p.add_argument("user_id")
    p.add_argument("--role", choices=[r.value for r in Role], default=Role.AGENT.value)
    p.set_defaults(func=cmd_open_session)

    p = sub.add_parser("sweep-staging", help="Expire staging tickets past their deadline")
    p.set_defaults(func=cmd_sweep_staging)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
