import argparse
import json
from pathlib import Path

from . import __version__
from .bulk import HTTP_ACCEPTED, bulk_onboard
from .config import Settings
from .database import STATUSES, get_session, init_database
from .dispatch import redispatch_pending
from .env import load_env
from .logger import get_logger
from .retry import RetryPolicy
from .storage import batch_summary, list_by_batch
from .work_queue import WorkQueue
from .worker import run_workers

logger = get_logger()


def _db_path(args: argparse.Namespace, settings: Settings) -> Path:
    return Path(args.db) if args.db else settings.db_path


def _drain(queue: WorkQueue, db_path: Path, settings: Settings, workers: int) -> int:
    return run_workers(
        queue,
        db_path,
        count=workers,
        policy=RetryPolicy(tries=settings.tries, backoff=settings.backoff),
        processing_delay=settings.processing_delay,
        retry_validation_errors=settings.retry_validation_errors,
    )


def _print_summary(db_path: Path, batch_id: str) -> None:
    with get_session(db_path) as session:
        summary = batch_summary(session, batch_id)
    print(f"Batch {batch_id}: " + " ".join(f"{s}={summary[s]}" for s in STATUSES))


def cmd_init_db(args: argparse.Namespace, settings: Settings) -> None:
    db_path = _db_path(args, settings)
    init_database(db_path)
    print(f"Database ready: {db_path}")


def cmd_onboard(args: argparse.Namespace, settings: Settings) -> None:
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as f:
        try:
            payload = json.load(f)
        except json.JSONDecodeError as e:
            raise SystemExit(f"Input is not valid JSON: {e}")

    # Bare list is accepted as the organizations array
    if isinstance(payload, list):
        payload = {"organizations": payload}

    db_path = _db_path(args, settings)
    init_database(db_path)
    queue = WorkQueue(settings.queue_name)

    status, body = bulk_onboard(payload, db_path, queue, chunk_size=settings.chunk_size)
    print(json.dumps(body, indent=2))
    if status != HTTP_ACCEPTED:
        raise SystemExit(2 if status < 500 else 1)

    if args.no_work:
        return
    _drain(queue, db_path, settings, args.workers or settings.workers)
    _print_summary(db_path, body["batch_id"])
    logger.log_metrics_summary()


def cmd_status(args: argparse.Namespace, settings: Settings) -> None:
    db_path = _db_path(args, settings)
    if not db_path.exists():
        print(f"Database not found: {db_path}")
        return
    with get_session(db_path) as session:
        organizations = list_by_batch(session, args.batch, status=args.status)
    if not organizations:
        print("No organizations found.")
        return
    print(f"Found {len(organizations)} organizations in batch {args.batch}:\n")
    for org in organizations:
        print(f"ID: {org.id}")
        print(f"  Name: {org.name}")
        print(f"  Domain: {org.domain}")
        print(f"  Contact: {org.contact_email or '-'}")
        print(f"  Status: {org.status}")
        if org.processed_at:
            print(f"  Processed: {org.processed_at.isoformat(timespec='seconds')}")
        if org.failed_reason:
            print(f"  Failed: {org.failed_reason}")
        print()
    _print_summary(db_path, args.batch)


def cmd_redispatch(args: argparse.Namespace, settings: Settings) -> None:
    db_path = _db_path(args, settings)
    if not db_path.exists():
        raise SystemExit(f"Database not found: {db_path}")
    queue = WorkQueue(settings.queue_name)
    count = redispatch_pending(db_path, queue, batch_id=args.batch)
    print(f"Re-dispatched {count} pending organizations.")
    if count:
        _drain(queue, db_path, settings, args.workers or settings.workers)
        logger.log_metrics_summary()


def main(argv=None):
    # Load .env if present (ONBOARDER_DB, ONBOARDER_LOG_LEVEL, etc.)
    load_env()
    settings = Settings.from_env()
    logger.configure(
        level=settings.log_level,
        log_dir=settings.log_dir,
        enable_file=settings.log_dir is not None,
    )

    parser = argparse.ArgumentParser(prog="onboarder", description="Bulk organization onboarding")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--db", help=f"Path to SQLite database (default: {settings.db_path})")

    subparsers = parser.add_subparsers(dest="command")
    ini = subparsers.add_parser("init-db", help="Create the organizations table")
    ini.set_defaults(func=cmd_init_db)

    onb = subparsers.add_parser("onboard", help="Ingest a JSON batch of organizations and run onboarding")
    onb.add_argument("--input", required=True, help="Path to JSON payload ({\"organizations\": [...]})")
    onb.add_argument("--workers", type=int, help="Worker threads (default: ONBOARDER_WORKERS)")
    onb.add_argument("--no-work", action="store_true", help="Ingest only; leave organizations pending")
    onb.set_defaults(func=cmd_onboard)

    sts = subparsers.add_parser("status", help="List organizations of a batch")
    sts.add_argument("--batch", required=True, help="Batch id returned by onboard")
    sts.add_argument("--status", choices=STATUSES, help="Only show organizations in this status")
    sts.set_defaults(func=cmd_status)

    rdp = subparsers.add_parser("redispatch", help="Re-enqueue pending organizations and run onboarding")
    rdp.add_argument("--batch", help="Limit to one batch")
    rdp.add_argument("--workers", type=int, help="Worker threads (default: ONBOARDER_WORKERS)")
    rdp.set_defaults(func=cmd_redispatch)

    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args, settings)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
