import argparse
import json
from typing import Optional

from .env import Config, load_config, load_env

from . import __version__
from .commands import DownloadGamesCommand, SqlCommandQueue
from .database import get_session_factory, init_database
from .downloader import ArchiveDownloader
from .errors import ConfigError
from .ledger import ArchiveLedger
from .logger import StructuredLogger
from .reconcile import is_eligible
from .schema import CHESS_DOT_COM, SUPPORTED_PLATFORMS


def build_logger(config: Config) -> StructuredLogger:
    return StructuredLogger(
        level=config.log_level,
        log_dir=config.log_dir,
        enable_file=config.log_dir is not None,
    )


def _open_ledger(config: Config) -> ArchiveLedger:
    init_database(config.database_path)
    return ArchiveLedger.from_path(config.database_path)


def cmd_init_db(args: argparse.Namespace, config: Config) -> None:
    init_database(config.database_path)
    print(f"Database ready: {config.database_path}")


def cmd_download(args: argparse.Namespace, config: Config) -> None:
    logger = build_logger(config)
    downloader = ArchiveDownloader.from_config(config, logger)
    body = json.dumps({"username": args.username, "platform": args.platform})
    envelope = downloader.handle(body, request_id=args.request_id)
    payload = json.loads(envelope["body"])
    if envelope["statusCode"] != 200:
        raise SystemExit(f"[{payload['kind']}] {payload['message']}")
    print(f"Download: {payload['downloadId']}")
    if args.metrics:
        logger.log_metrics_summary()


def cmd_archives(args: argparse.Namespace, config: Config) -> None:
    ledger = _open_ledger(config)
    archives = ledger.list_archives(args.user_id)
    if not archives:
        print(f"No archives for user {args.user_id}.")
        return
    print(f"Found {len(archives)} archives for user {args.user_id}:\n")
    for archive in archives:
        flag = "eligible" if is_eligible(archive) else "done"
        downloaded_at = archive.downloaded_at.isoformat() if archive.downloaded_at else "never"
        print(f"{archive.year:04d}/{archive.month:02d} [{flag}] {archive.archive_id}")
        print(f"  Downloaded: {archive.downloaded} (last at {downloaded_at})")


def cmd_session(args: argparse.Namespace, config: Config) -> None:
    ledger = _open_ledger(config)
    record = ledger.get_session_record(args.id)
    if record is None:
        raise SystemExit(f"Download not found: {args.id}")
    print(f"Download: {record.download_id}")
    print(f"  Expected commands: {record.expected_count}")
    print(f"  Created at: {record.created_at.isoformat()}")


def cmd_queue(args: argparse.Namespace, config: Config) -> None:
    if config.uses_sqs:
        raise SystemExit("Queue listing is only available for the local queue (DOWNLOAD_GAMES_QUEUE_URL is set).")
    init_database(config.database_path)
    queue = SqlCommandQueue(get_session_factory(config.database_path))
    messages = queue.receive(group_id=args.user_id, limit=args.limit)
    if not messages:
        print("Queue is empty.")
        return
    for message in messages:
        command = DownloadGamesCommand.from_json(message.body)
        print(f"#{message.sequence} {command.archiveId} (user {command.userId}, download {command.downloadId})")


def main(argv: Optional[list] = None):
    # Load .env if present (CATALOG_URL, DATABASE_PATH, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="archivesync", description="Reconcile remote game archives and fan out downloads")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    ini = subparsers.add_parser("init-db", help="Create the ledger tables")
    ini.set_defaults(func=cmd_init_db)

    dl = subparsers.add_parser("download", help="Reconcile a user's archives and publish download commands")
    dl.add_argument("--username", required=True, help="Username on the remote platform")
    dl.add_argument("--platform", default=CHESS_DOT_COM, choices=sorted(SUPPORTED_PLATFORMS), help="Remote platform")
    dl.add_argument("--request-id", help="Correlation id for log lines (default: random)")
    dl.add_argument("--metrics", action="store_true", help="Log a metrics summary at the end")
    dl.set_defaults(func=cmd_download)

    arc = subparsers.add_parser("archives", help="List a user's ledger entries")
    arc.add_argument("--user-id", required=True, help="Remote user id")
    arc.set_defaults(func=cmd_archives)

    ses = subparsers.add_parser("session", help="Show a download session")
    ses.add_argument("--id", required=True, help="Download id returned by 'download'")
    ses.set_defaults(func=cmd_session)

    que = subparsers.add_parser("queue", help="List commands in the local queue")
    que.add_argument("--user-id", help="Only commands of this user")
    que.add_argument("--limit", type=int, help="Maximum number of commands to show")
    que.set_defaults(func=cmd_queue)

    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if not hasattr(args, "func"):
        parser.print_help()
        return

    try:
        config = load_config()
    except ConfigError as e:
        lines = "\n".join(f" - {p}" for p in e.problems)
        raise SystemExit(f"Invalid configuration:\n{lines}")

    args.func(args, config)


if __name__ == "__main__":
    main()
