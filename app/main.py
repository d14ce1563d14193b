"""
Command-line entry point for the Cashvault jobs.

Each job is one command, meant to be run by cron:

    python app/main.py recurring      # fire due recurring transactions
    python app/main.py budgets        # send budget alerts
    python app/main.py reports        # send last month's reports
    python app/main.py crontab        # print the crontab for the jobs
    python app/main.py check-config   # show which settings load

Job commands print a JSON summary and exit non-zero if any unit failed.
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime

from cashvault.config import get_settings, validate_all_settings
from cashvault.core.clock import to_naive_utc
from cashvault.orchestrator import create_app_components
from cashvault.scheduling import render_crontab


JOBS = ("recurring", "budgets", "reports")


def parse_now(value: str) -> datetime:
    """ISO timestamp for --now; an offset is converted to naive UTC."""
    return to_naive_utc(datetime.fromisoformat(value))


async def run_job(job: str, db_path=None, use_audit_sheet=True, now=None):
    components = create_app_components(
        use_audit_sheet=use_audit_sheet,
        db_path=db_path,
    )
    try:
        if job == "recurring":
            return await components.recurring_flow.trigger(now)
        if job == "budgets":
            return await components.budget_alert_flow.check_all(now)
        return await components.monthly_report_flow.generate_all(now)
    finally:
        components.storage.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cashvault scheduled jobs")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for job in JOBS:
        sub = subparsers.add_parser(job, help=f"Run the {job} job once")
        sub.add_argument("--db", dest="db_path", default=None, help="Ledger database path (defaults to DATABASE_PATH)")
        sub.add_argument("--now", type=parse_now, default=None, help="Run as if the current UTC time were this ISO timestamp")
        sub.add_argument("--no-audit-sheet", action="store_true", help="Keep audit events in the local log only")

    crontab = subparsers.add_parser("crontab", help="Print crontab lines for all jobs")
    crontab.add_argument("--command", dest="cron_command", default="python app/main.py", help="Command cron should run")

    subparsers.add_parser("check-config", help="Report which settings sections load")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "crontab":
        print("\n".join(render_crontab(get_settings().jobs, command=args.cron_command)))
        return 0

    if args.command == "check-config":
        results = validate_all_settings()
        print(json.dumps(results, indent=2, sort_keys=True))
        return 0 if all(v for k, v in results.items() if not k.endswith("_error")) else 1

    summary = asyncio.run(run_job(
        args.command,
        db_path=args.db_path,
        use_audit_sheet=not args.no_audit_sheet,
        now=args.now,
    ))
    print(summary.model_dump_json(indent=2))
    return 0 if summary.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
