"""
Crontab rendering.

The jobs have no scheduler of their own; the host's cron runs the
command-line entry point at the configured cadences.
"""

from cashvault.config import JobSettings


JOB_COMMANDS = {
    "recurring": "recurring_cron",
    "budgets": "budget_alert_cron",
    "reports": "monthly_report_cron",
}


def validate_cron_expression(expression: str) -> str:
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(
            f"Cron expression must have 5 fields, got {len(fields)}: {expression!r}"
        )
    return " ".join(fields)


def render_crontab(settings: JobSettings, command: str = "python app/main.py") -> list[str]:
    """Return one crontab line per job, in a stable order."""
    lines = []
    for job, field in JOB_COMMANDS.items():
        schedule = validate_cron_expression(getattr(settings, field))
        lines.append(f"{schedule} {command} {job}")
    return lines
