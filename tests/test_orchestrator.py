"""
Integration tests for the job flows.

The flows run against a real in-memory ledger; notifications go to an
outbox and insights come from a stub, so nothing leaves the process.
"""

import asyncio
import sqlite3
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from cashvault.audit import AuditLogger
from cashvault.config import get_settings
from cashvault.models.audit import AuditEventType
from cashvault.models.ledger import (
    Account,
    Budget,
    NotificationTemplate,
    Transaction,
    TransactionType,
    User,
)
from cashvault.orchestrator import (
    BudgetAlertFlow,
    MonthlyReportFlow,
    RecurringTransactionFlow,
    create_app_components,
)
from cashvault.services.notifications import (
    NotificationError,
    NotificationSenderInterface,
)
from cashvault.services.storage import PersistenceError, SQLiteLedgerStorage


class FlakyScheduleStorage(SQLiteLedgerStorage):
    """Fails the schedule write a set number of times, then behaves."""

    def __init__(self, failures: int):
        super().__init__(":memory:")
        self.failures = failures
        self.calls = 0

    def _advance_schedule(self, conn, firing):
        self.calls += 1
        if self.calls <= self.failures:
            raise sqlite3.OperationalError("database is locked")
        super()._advance_schedule(conn, firing)


class StubInsightsAgent:
    def __init__(self, insights):
        self.insights = insights
        self.calls = []

    async def generate_insights(self, stats, month):
        self.calls.append((stats, month))
        return list(self.insights)


class BrokenSender(NotificationSenderInterface):
    async def send(self, notification):
        raise NotificationError("mail relay unavailable")


def event_types(audit_logger: AuditLogger) -> list:
    return [e.event_type for e in audit_logger.events]


async def seed(storage, user, account):
    await storage.save_user(user)
    await storage.save_account(account)


class TestRecurringTransactionFlow:
    """Tests for the recurring job."""

    @pytest.mark.asyncio
    async def test_trigger_fires_due_template(self, ledger, account, template, job_settings):
        t = await ledger.save_transaction(template(amount="100.00"))
        audit = AuditLogger()
        flow = RecurringTransactionFlow(ledger, audit, job_settings)
        now = datetime(2024, 3, 1)

        summary = await flow.trigger(now)

        assert summary.triggered == 1
        assert summary.processed == 1
        assert summary.succeeded
        assert (await ledger.get_account(account.id)).balance == Decimal("900.00")
        updated = await ledger.get_transaction(t.id)
        assert updated.last_processed == now
        assert updated.next_recurring_date == datetime(2024, 4, 1)
        assert AuditEventType.RECURRING_TRIGGERED in event_types(audit)
        assert AuditEventType.RECURRING_PROCESSED in event_types(audit)

    @pytest.mark.asyncio
    async def test_second_run_finds_nothing_due(self, ledger, account, template, job_settings):
        await ledger.save_transaction(template(amount="100.00"))
        flow = RecurringTransactionFlow(ledger, AuditLogger(), job_settings)

        await flow.trigger(datetime(2024, 3, 1))
        summary = await flow.trigger(datetime(2024, 3, 2))

        assert summary.triggered == 0
        assert (await ledger.get_account(account.id)).balance == Decimal("900.00")

    @pytest.mark.asyncio
    async def test_income_template_credits_account(self, ledger, account, template, job_settings):
        await ledger.save_transaction(template(amount="2500.00", type=TransactionType.INCOME))
        flow = RecurringTransactionFlow(ledger, AuditLogger(), job_settings)

        await flow.trigger(datetime(2024, 3, 1))

        assert (await ledger.get_account(account.id)).balance == Decimal("3500.00")

    @pytest.mark.asyncio
    async def test_bad_template_does_not_stop_batch(self, ledger, account, template, job_settings):
        broken = await ledger.save_transaction(template(interval=None, description="Broken"))
        await ledger.save_transaction(template(amount="50.00"))
        audit = AuditLogger()
        flow = RecurringTransactionFlow(ledger, audit, job_settings)

        summary = await flow.trigger(datetime(2024, 3, 1))

        assert summary.triggered == 2
        assert summary.processed == 1
        assert summary.skipped == 1
        assert summary.failed == 0
        assert (await ledger.get_account(account.id)).balance == Decimal("950.00")
        skipped = [e for e in audit.events if e.event_type == AuditEventType.RECURRING_SKIPPED]
        assert skipped[0].entity_id == broken.id
        assert skipped[0].details["reason"] == "recurring interval is missing"

    @pytest.mark.asyncio
    async def test_persistence_failure_fails_loudly(self, user, account, template, job_settings):
        storage = FlakyScheduleStorage(failures=99).initialize()
        await seed(storage, user, account)
        t = await storage.save_transaction(template(amount="100.00"))
        audit = AuditLogger()
        flow = RecurringTransactionFlow(storage, audit, job_settings)

        summary = await flow.trigger(datetime(2024, 3, 1))

        assert summary.failed == 1
        assert not summary.succeeded
        assert storage.calls == job_settings.retry_attempts
        assert (await storage.get_account(account.id)).balance == Decimal("1000.00")
        assert (await storage.get_transaction(t.id)).last_processed is None
        assert AuditEventType.RECURRING_FAILED in event_types(audit)
        storage.close()

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, user, account, template, job_settings):
        storage = FlakyScheduleStorage(failures=1).initialize()
        await seed(storage, user, account)
        await storage.save_transaction(template(amount="100.00"))
        flow = RecurringTransactionFlow(storage, AuditLogger(), job_settings)

        summary = await flow.trigger(datetime(2024, 3, 1))

        assert summary.processed == 1
        assert storage.calls == 2
        assert (await storage.get_account(account.id)).balance == Decimal("900.00")
        storage.close()

    @pytest.mark.asyncio
    async def test_process_raises_after_retries(self, user, account, template, job_settings):
        storage = FlakyScheduleStorage(failures=99).initialize()
        await seed(storage, user, account)
        t = await storage.save_transaction(template())
        flow = RecurringTransactionFlow(storage, AuditLogger(), job_settings)

        with pytest.raises(PersistenceError):
            await flow.process(t.id, t.user_id, now=datetime(2024, 3, 1))
        storage.close()

    @pytest.mark.asyncio
    async def test_concurrent_units_fire_once(self, ledger, account, template, job_settings):
        t = await ledger.save_transaction(template(amount="100.00"))
        flow = RecurringTransactionFlow(ledger, AuditLogger(), job_settings)
        now = datetime(2024, 3, 1)

        results = await asyncio.gather(
            flow.process(t.id, t.user_id, now=now),
            flow.process(t.id, t.user_id, now=now),
        )

        assert sorted(results) == [False, True]
        assert (await ledger.get_account(account.id)).balance == Decimal("900.00")

    @pytest.mark.asyncio
    async def test_trigger_accepts_aware_now(self, ledger, account, template, job_settings):
        t = await ledger.save_transaction(template(
            last_processed=datetime(2024, 2, 1),
            next_recurring_date=datetime(2024, 3, 1),
        ))
        flow = RecurringTransactionFlow(ledger, AuditLogger(), job_settings)

        summary = await flow.trigger(datetime(2024, 3, 2, tzinfo=timezone.utc))

        assert summary.processed == 1
        updated = await ledger.get_transaction(t.id)
        assert updated.last_processed == datetime(2024, 3, 2)
        assert updated.next_recurring_date == datetime(2024, 4, 2)

    @pytest.mark.asyncio
    async def test_process_missing_ids_is_skipped(self, ledger, job_settings):
        audit = AuditLogger()
        flow = RecurringTransactionFlow(ledger, audit, job_settings)

        assert await flow.process(None, uuid4()) is False
        assert event_types(audit) == [AuditEventType.RECURRING_SKIPPED]

    @pytest.mark.asyncio
    async def test_process_unknown_transaction_is_skipped(self, ledger, job_settings):
        flow = RecurringTransactionFlow(ledger, AuditLogger(), job_settings)
        assert await flow.process(uuid4(), uuid4(), now=datetime(2024, 3, 1)) is False

    @pytest.mark.asyncio
    async def test_process_rechecks_due(self, ledger, template, job_settings):
        t = await ledger.save_transaction(template(
            last_processed=datetime(2024, 3, 1),
            next_recurring_date=datetime(2024, 4, 1),
        ))
        flow = RecurringTransactionFlow(ledger, AuditLogger(), job_settings)

        assert await flow.process(t.id, t.user_id, now=datetime(2024, 3, 15)) is False


class TestBudgetAlertFlow:
    """Tests for the budget alert job."""

    async def spend(self, storage, user, account, amount, when):
        await storage.save_transaction(Transaction(
            user_id=user.id,
            account_id=account.id,
            type=TransactionType.EXPENSE,
            amount=Decimal(amount),
            date=when,
        ))

    @pytest.mark.asyncio
    async def test_sends_alert_and_marks_budget(self, ledger, user, account, outbox, job_settings):
        budget = await ledger.save_budget(Budget(user_id=user.id, amount=Decimal("1000")))
        await self.spend(ledger, user, account, "850", datetime(2024, 3, 5))
        flow = BudgetAlertFlow(ledger, outbox, AuditLogger(), job_settings)
        now = datetime(2024, 3, 15)

        summary = await flow.check_all(now)

        assert summary.processed == 1
        assert len(outbox.outbox) == 1
        notification = outbox.outbox[0]
        assert notification.recipient == "asha@example.com"
        assert notification.subject == "Budget Alert for Everyday"
        assert notification.template == NotificationTemplate.BUDGET_ALERT
        assert notification.data["percentage_used"] == Decimal("85.0")
        assert notification.data["account_name"] == "Everyday"
        assert (await ledger.get_budget(budget.id)).last_alert_sent == now

    @pytest.mark.asyncio
    async def test_one_alert_per_month(self, ledger, user, account, outbox, job_settings):
        await ledger.save_budget(Budget(user_id=user.id, amount=Decimal("1000")))
        await self.spend(ledger, user, account, "900", datetime(2024, 3, 5))
        flow = BudgetAlertFlow(ledger, outbox, AuditLogger(), job_settings)

        await flow.check_all(datetime(2024, 3, 15))
        summary = await flow.check_all(datetime(2024, 3, 15, 6))

        assert summary.skipped == 1
        assert len(outbox.outbox) == 1

    @pytest.mark.asyncio
    async def test_only_current_month_counts(self, ledger, user, account, outbox, job_settings):
        await ledger.save_budget(Budget(user_id=user.id, amount=Decimal("1000")))
        await self.spend(ledger, user, account, "900", datetime(2024, 2, 28))
        flow = BudgetAlertFlow(ledger, outbox, AuditLogger(), job_settings)

        summary = await flow.check_all(datetime(2024, 3, 15))

        assert summary.processed == 0
        assert outbox.outbox == []

    @pytest.mark.asyncio
    async def test_zero_budget_is_skipped(self, ledger, user, account, outbox, job_settings):
        await ledger.save_budget(Budget(user_id=user.id, amount=Decimal("0")))
        await self.spend(ledger, user, account, "10", datetime(2024, 3, 5))
        audit = AuditLogger()
        flow = BudgetAlertFlow(ledger, outbox, audit, job_settings)

        summary = await flow.check_all(datetime(2024, 3, 15))

        assert summary.skipped == 1
        assert summary.failed == 0
        assert AuditEventType.BUDGET_CHECK_SKIPPED in event_types(audit)

    @pytest.mark.asyncio
    async def test_user_without_default_account(self, storage, outbox, job_settings):
        user = User(email="ravi@example.com", name="Ravi")
        await storage.save_user(user)
        await storage.save_account(Account(user_id=user.id, name="Savings", is_default=False))
        await storage.save_budget(Budget(user_id=user.id, amount=Decimal("100")))
        flow = BudgetAlertFlow(storage, outbox, AuditLogger(), job_settings)

        summary = await flow.check_all(datetime(2024, 3, 15))

        assert summary.skipped == 1
        assert outbox.outbox == []

    @pytest.mark.asyncio
    async def test_failed_send_leaves_budget_unmarked(self, ledger, user, account, job_settings):
        budget = await ledger.save_budget(Budget(user_id=user.id, amount=Decimal("1000")))
        await self.spend(ledger, user, account, "950", datetime(2024, 3, 5))
        audit = AuditLogger()
        flow = BudgetAlertFlow(ledger, BrokenSender(), audit, job_settings)

        summary = await flow.check_all(datetime(2024, 3, 15))

        assert summary.failed == 1
        assert (await ledger.get_budget(budget.id)).last_alert_sent is None
        assert AuditEventType.EXTERNAL_SERVICE_ERROR in event_types(audit)
        assert AuditEventType.BUDGET_CHECK_FAILED in event_types(audit)


class TestMonthlyReportFlow:
    """Tests for the monthly report job."""

    @pytest.mark.asyncio
    async def test_reports_previous_month(self, ledger, user, account, outbox):
        for type, amount, category, when in (
            (TransactionType.INCOME, "3000.00", "salary", datetime(2024, 2, 1)),
            (TransactionType.EXPENSE, "200.00", "food", datetime(2024, 2, 20)),
            (TransactionType.EXPENSE, "75.00", "food", datetime(2024, 3, 1, 8)),
        ):
            await ledger.save_transaction(Transaction(
                user_id=user.id,
                account_id=account.id,
                type=type,
                amount=Decimal(amount),
                category=category,
                date=when,
            ))
        agent = StubInsightsAgent(["Food is your top category."])
        flow = MonthlyReportFlow(ledger, outbox, agent, AuditLogger())

        summary = await flow.generate_all(datetime(2024, 3, 1, 0, 0))

        assert summary.processed == 1
        notification = outbox.outbox[0]
        assert notification.subject == "Your Monthly Financial Report - February"
        assert notification.template == NotificationTemplate.MONTHLY_REPORT
        assert notification.user_name == "Asha"
        assert notification.data["month"] == "February"
        assert notification.data["stats"]["total_income"] == Decimal("3000.00")
        assert notification.data["stats"]["total_expenses"] == Decimal("200.00")
        assert notification.data["insights"] == ["Food is your top category."]
        assert agent.calls[0][1] == "February"

    @pytest.mark.asyncio
    async def test_user_without_email_is_skipped(self, storage, outbox):
        user = User(name="No Mail")
        await storage.save_user(user)
        await storage.save_account(Account(user_id=user.id, name="Main", is_default=True))
        audit = AuditLogger()
        flow = MonthlyReportFlow(storage, outbox, StubInsightsAgent([]), audit)

        summary = await flow.generate_all(datetime(2024, 3, 1))

        assert summary.skipped == 1
        assert outbox.outbox == []
        assert AuditEventType.MONTHLY_REPORT_SKIPPED in event_types(audit)


class TestCreateAppComponents:
    """Tests for the component factory."""

    def test_builds_flows_without_external_services(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        get_settings.cache_clear()

        components = create_app_components(use_audit_sheet=False, db_path=":memory:")

        assert isinstance(components.recurring_flow, RecurringTransactionFlow)
        assert isinstance(components.budget_alert_flow, BudgetAlertFlow)
        assert isinstance(components.monthly_report_flow, MonthlyReportFlow)
        components.storage.close()
        get_settings.cache_clear()
