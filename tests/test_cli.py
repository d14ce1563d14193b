"""Tests for the command-line entry point."""

import json
from datetime import datetime

from app.main import build_parser, main
from cashvault.config import get_settings


class TestCli:
    """Tests for app/main.py."""

    def setup_method(self):
        get_settings.cache_clear()

    def test_crontab(self, capsys):
        assert main(["crontab", "--command", "cashvault-run"]) == 0
        lines = capsys.readouterr().out.strip().splitlines()
        assert lines[0] == "0 0 * * * cashvault-run recurring"
        assert len(lines) == 3

    def test_crontab_default_command(self, capsys):
        assert main(["crontab"]) == 0
        lines = capsys.readouterr().out.strip().splitlines()
        assert lines[-1] == "0 0 1 * * python app/main.py reports"

    def test_now_with_offset_becomes_naive_utc(self):
        args = build_parser().parse_args(["recurring", "--now", "2024-03-01T02:00:00+02:00"])
        assert args.now == datetime(2024, 3, 1, 0, 0)
        assert args.now.tzinfo is None

    def test_job_requires_known_command(self):
        parser = build_parser()
        args = parser.parse_args(["budgets", "--now", "2024-03-15T06:00:00"])
        assert args.command == "budgets"
        assert args.now.day == 15

    def test_recurring_run_on_empty_ledger(self, tmp_path, capsys):
        db_path = str(tmp_path / "ledger.db")

        code = main(["recurring", "--db", db_path, "--no-audit-sheet", "--now", "2024-03-01T00:00:00"])

        summary = json.loads(capsys.readouterr().out)
        assert code == 0
        assert summary["job"] == "recurring"
        assert summary["triggered"] == 0
        assert summary["failed"] == 0
