#!/usr/bin/env python3
"""Command-line entry point.

Usage:
    python -m src.runner.cli init-db
    python -m src.runner.cli add-account --first-name Jane --last-name Doe --email jane@example.com --password ...
    python -m src.runner.cli import-csv accounts.csv [--force]
    python -m src.runner.cli run --account-id 3 [--no-restore-session] [--start-stage location]
    python -m src.runner.cli process --limit 10 --concurrency 2
    python -m src.runner.cli retry
    python -m src.runner.cli crawl --pages 5 --out out/jobs.jsonl
    python -m src.runner.cli set-otp --account-id 3 --code 123456
    python -m src.runner.cli stats
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date

from src.crawler.engine import CrawlSummary
from src.errors import AutomationError
from src.runner.account_runner import AccountRunner
from src.runner.config import PROJECT_ROOT, AppConfig, load_config
from src.runner.crawl import run_crawl
from src.runner.parallel_executor import run_parallel
from src.runner.retry import retry_rounds
from src.store.account_store import AccountStore
from src.store.csv_import import import_csv
from src.wizard.stages import WizardStage

logger = logging.getLogger(__name__)


def _store(config: AppConfig) -> AccountStore:
    store = AccountStore(config.database_url)
    store.create_all()
    return store


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_init_db(config: AppConfig, args) -> int:
    _store(config)
    print(f"Database ready: {config.database_url}")
    return 0


def cmd_add_account(config: AppConfig, args) -> int:
    store = _store(config)
    fields = {
        "first_name": args.first_name,
        "last_name": args.last_name,
        "email": args.email,
        "password": args.password,
        "country_code": args.country.upper(),
    }
    if args.birth_date:
        fields["birth_date"] = date.fromisoformat(args.birth_date)
    if args.phone:
        fields["phone"] = args.phone
    account = store.add_account(**fields)
    print(f"Created account {account.id} ({account.email})")
    return 0


def cmd_import_csv(config: AppConfig, args) -> int:
    report = import_csv(_store(config), args.path, force=args.force)
    print(json.dumps(report.to_dict(), indent=2))
    return 1 if report.errors and not (report.created or report.updated) else 0


async def _with_runner(config: AppConfig, store: AccountStore, headless, fn):
    runner = AccountRunner(config, store, headless=headless)
    try:
        return await fn(runner)
    finally:
        await runner.aclose()


def cmd_run(config: AppConfig, args) -> int:
    store = _store(config)
    start_stage = WizardStage.parse(args.start_stage) if args.start_stage else None
    result = asyncio.run(_with_runner(
        config, store, args.headless,
        lambda runner: runner.run(
            args.account_id, restore_session=args.restore_session, start_stage=start_stage,
        ),
    ))
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.ok else 1


def cmd_process(config: AppConfig, args) -> int:
    store = _store(config)
    ids = [a.id for a in store.pending_accounts(args.limit)]
    if not ids:
        print("No pending accounts")
        return 0
    metrics = asyncio.run(_with_runner(
        config, store, args.headless,
        lambda runner: run_parallel(
            ids, runner.run_with_metrics,
            concurrency=args.concurrency,
            start_delay=config.retry.delay_between_accounts,
        ),
    ))
    metrics.print_summary()
    if args.output:
        metrics.save(args.output)
    return 0


def cmd_retry(config: AppConfig, args) -> int:
    store = _store(config)
    rounds = asyncio.run(_with_runner(
        config, store, args.headless,
        lambda runner: retry_rounds(
            store, runner.run_with_metrics,
            max_attempts=args.max_attempts or config.retry.max_attempts,
            max_rounds=args.max_rounds or config.retry.max_rounds,
            concurrency=args.concurrency,
            start_delay=config.retry.delay_between_accounts,
        ),
    ))
    for metrics in rounds:
        metrics.print_summary()
    print(json.dumps(store.stats(config.retry.max_attempts), indent=2))
    return 0


def cmd_crawl(config: AppConfig, args) -> int:
    store = _store(config) if args.account_id is not None else None
    summary = None
    try:
        summary = asyncio.run(run_crawl(
            config,
            store=store,
            account_id=args.account_id,
            restore_session=args.restore_session,
            pages=args.pages,
            out=args.out,
            headless=args.headless,
        ))
    finally:
        if summary is not None:
            print(json.dumps(summary.to_dict(), indent=2))
        else:
            print(json.dumps(CrawlSummary(failures=["crawl aborted"]).to_dict(), indent=2))
    return 0 if summary and not summary.failures else 1


def cmd_set_otp(config: AppConfig, args) -> int:
    store = _store(config)
    store.set_otp(args.account_id, args.code.strip())
    print(f"Code stored for account {args.account_id}")
    return 0


def cmd_stats(config: AppConfig, args) -> int:
    store = _store(config)
    print(json.dumps(store.stats(config.retry.max_attempts), indent=2))
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Profile wizard automation and listing crawl")
    parser.add_argument("--config-dir", default=None, help="Directory holding automation.yaml and profile.yaml")
    parser.add_argument("--verbose", "-v", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the database tables")

    p = sub.add_parser("add-account", help="Add one account")
    p.add_argument("--first-name", required=True)
    p.add_argument("--last-name", required=True)
    p.add_argument("--email", required=True)
    p.add_argument("--password", required=True)
    p.add_argument("--country", default="US")
    p.add_argument("--birth-date", default=None, help="YYYY-MM-DD")
    p.add_argument("--phone", default=None)

    p = sub.add_parser("import-csv", help="Import accounts from a CSV/TSV file")
    p.add_argument("path")
    p.add_argument("--force", action="store_true", help="Update accounts whose email already exists")

    def browser_flags(p):
        p.add_argument("--headless", dest="headless", action="store_true", default=None)
        p.add_argument("--headed", dest="headless", action="store_false")

    p = sub.add_parser("run", help="Run the wizard for one account")
    p.add_argument("--account-id", type=int, required=True)
    p.add_argument("--restore-session", dest="restore_session", action="store_true", default=True)
    p.add_argument("--no-restore-session", dest="restore_session", action="store_false")
    p.add_argument("--start-stage", default=None, choices=[s.value for s in WizardStage])
    browser_flags(p)

    p = sub.add_parser("process", help="Run the wizard for pending accounts")
    p.add_argument("--limit", type=int, default=None)
    p.add_argument("--concurrency", type=int, default=1)
    p.add_argument("--output", default=str(PROJECT_ROOT / "results" / "metrics.json"))
    browser_flags(p)

    p = sub.add_parser("retry", help="Retry unsuccessful accounts in rounds")
    p.add_argument("--max-attempts", type=int, default=None)
    p.add_argument("--max-rounds", type=int, default=None)
    p.add_argument("--concurrency", type=int, default=1)
    browser_flags(p)

    p = sub.add_parser("crawl", help="Crawl the job listing feed")
    p.add_argument("--pages", type=int, default=None)
    p.add_argument("--out", default=None)
    p.add_argument("--account-id", type=int, default=None, help="Crawl as this account's stored session")
    p.add_argument("--restore-session", dest="restore_session", action="store_true", default=True)
    p.add_argument("--no-restore-session", dest="restore_session", action="store_false")
    browser_flags(p)

    p = sub.add_parser("set-otp", help="Store an operator-supplied verification code")
    p.add_argument("--account-id", type=int, required=True)
    p.add_argument("--code", required=True)

    sub.add_parser("stats", help="Print account counts")
    return parser


COMMANDS = {
    "init-db": cmd_init_db,
    "add-account": cmd_add_account,
    "import-csv": cmd_import_csv,
    "run": cmd_run,
    "process": cmd_process,
    "retry": cmd_retry,
    "crawl": cmd_crawl,
    "set-otp": cmd_set_otp,
    "stats": cmd_stats,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s: %(message)s",
    )
    try:
        config = load_config(args.config_dir)
        return COMMANDS[args.command](config, args)
    except AutomationError as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
