"""CLI entry point for the certificate registry poller."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date

from pydantic import ValidationError

from certwatch.core.config import Settings
from certwatch.core.db import SqliteStore
from certwatch.core.schemas import JobConfig, VerificationMode
from certwatch.pipeline.manager import JobManager


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Certificate registry poller - watch a date range for matching names",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- run subcommand ---
    run_parser = subparsers.add_parser(
        "run",
        help="Start a job (if dates are given), resume persisted jobs, and poll",
    )
    run_parser.add_argument("--start-date", type=date.fromisoformat, help="First date (YYYY-MM-DD)")
    run_parser.add_argument("--end-date", type=date.fromisoformat, help="Last date, inclusive")
    run_parser.add_argument(
        "--gender",
        default="male",
        choices=["male", "female"],
        help="Gender filter sent with every request (default: male)",
    )
    run_parser.add_argument(
        "--name",
        action="append",
        default=[],
        dest="names",
        help="Name to look for (repeatable). Omit to collect every record.",
    )
    run_parser.add_argument(
        "--interval",
        type=float,
        help="Minutes between poll cycles (default: polling.default_interval_minutes)",
    )
    run_parser.add_argument("--verification-code", help="Verification code to use")
    run_parser.add_argument("--token", help="CSRF token to use instead of the scraped one")
    run_parser.add_argument(
        "--per-unit-code",
        action="store_true",
        help="Fetch a fresh verification code before every date",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without contacting the registry",
    )
    _add_common(run_parser)

    # --- status subcommand ---
    status_parser = subparsers.add_parser("status", help="Show a job's full record as JSON")
    status_parser.add_argument("job_id")
    _add_common(status_parser)

    # --- list subcommand ---
    list_parser = subparsers.add_parser("list", help="List known jobs")
    _add_common(list_parser)

    # --- stop subcommand ---
    stop_parser = subparsers.add_parser("stop", help="Stop a job")
    stop_parser.add_argument("job_id")
    _add_common(stop_parser)

    # --- forget subcommand ---
    forget_parser = subparsers.add_parser("forget", help="Stop a job and delete its record")
    forget_parser.add_argument("job_id")
    _add_common(forget_parser)

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_job_config(args: argparse.Namespace, settings: Settings) -> JobConfig | None:
    """Job configuration from ``run`` flags, or None when no dates were given."""
    if args.start_date is None and args.end_date is None:
        return None
    if args.start_date is None or args.end_date is None:
        msg = "--start-date and --end-date must be given together"
        raise ValueError(msg)
    mode = VerificationMode.PER_UNIT if args.per_unit_code else VerificationMode.PER_SESSION
    return JobConfig.from_date_range(
        args.start_date,
        args.end_date,
        gender=args.gender,
        queries=args.names,
        interval_minutes=args.interval or settings.polling.default_interval_minutes,
        verification_code=args.verification_code,
        token=args.token,
        verification_mode=mode,
    )


def dry_run(settings: Settings, config: JobConfig | None) -> None:
    """Print what would happen without actually polling."""
    print(f"[DRY RUN] Registry: {settings.source.landing_url}")
    if config is None:
        print("[DRY RUN] No new job; would resume persisted jobs only")
        return
    print(f"[DRY RUN] {len(config.unit_keys)} date(s): "
          f"{config.unit_keys[0]} .. {config.unit_keys[-1]}")
    print(f"  Gender: {config.gender}")
    print(f"  Names: {config.queries or 'all records'}")
    print(f"  Interval: {config.interval_minutes:g} minutes")
    print(f"  Verification: {config.verification_mode.value}, "
          f"code {'provided' if config.verification_code else 'from page'}")
    print(f"  Pacing: {settings.polling.unit_delay_s:g}s between dates, "
          f"{settings.polling.retry_delay_s:g}s before retries")


async def run(settings: Settings, config: JobConfig | None) -> None:
    """Start/resume jobs and keep polling until every job is stopped."""
    store = SqliteStore.open(settings.database.path)
    manager = JobManager(settings, store)
    try:
        resumed = await manager.resume_all()
        if config is not None:
            job_id = await manager.start(config)
            print(f"Started job {job_id}")
        if config is None and not resumed:
            print("No active jobs to resume.")
            return
        await manager.wait()
    finally:
        await manager.shutdown()
        store.close()


def cmd_status(settings: Settings, job_id: str) -> int:
    store = SqliteStore.open(settings.database.path)
    try:
        job = JobManager(settings, store).status(job_id)
    finally:
        store.close()
    if job is None:
        print(f"Job not found: {job_id}", file=sys.stderr)
        return 1
    print(job.model_dump_json(indent=2))
    return 0


def cmd_list(settings: Settings) -> int:
    store = SqliteStore.open(settings.database.path)
    try:
        summaries = JobManager(settings, store).list_jobs()
    finally:
        store.close()
    if not summaries:
        print("No jobs.")
        return 0
    for s in summaries:
        print(f"{s.job_id}  {s.status.value:<16} found={s.found_units_count} "
              f"requests={s.total_requests} errors={s.error_count}  "
              f"names={json.dumps(s.queries)}")
    return 0


async def cmd_stop(settings: Settings, job_id: str, *, forget: bool) -> int:
    store = SqliteStore.open(settings.database.path)
    try:
        manager = JobManager(settings, store)
        known = await (manager.forget(job_id) if forget else manager.stop(job_id))
    finally:
        store.close()
    if not known:
        print(f"Job not found: {job_id}", file=sys.stderr)
        return 1
    print(f"{'Forgot' if forget else 'Stopped'} job {job_id}")
    return 0


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    if args.command == "status":
        sys.exit(cmd_status(settings, args.job_id))
    elif args.command == "list":
        sys.exit(cmd_list(settings))
    elif args.command in ("stop", "forget"):
        sys.exit(asyncio.run(cmd_stop(settings, args.job_id, forget=args.command == "forget")))

    # run
    try:
        config = build_job_config(args, settings)
    except (ValidationError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.dry_run:
        dry_run(settings, config)
        return

    try:
        asyncio.run(run(settings, config))
    except KeyboardInterrupt:
        print("\nInterrupted; active jobs will resume on the next run.")


if __name__ == "__main__":
    main()
