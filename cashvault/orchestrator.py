"""
Job Orchestrator for Cashvault

Ties the pure decision rules to storage, notifications and the audit log.
Three jobs run on a schedule:
1. Recurring transactions (daily): fire every due template
2. Budget alerts (every few hours): warn users nearing their budget
3. Monthly reports (first of the month): summarize last month

DESIGN DECISION: The orchestrator enforces the boundaries:
- Decisions come only from cashvault.core
- A recurring firing is applied in one storage transaction or not at all
- A unit that could not commit fails loudly; it is still due on the next
  pass, and re-running it repeats the same, correct mutation
- One bad record never stops a batch
"""

import asyncio
from datetime import datetime
from typing import NamedTuple, Optional
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cashvault.agents import FinancialInsightsAgent
from cashvault.audit import AuditLogger, create_correlation_id
from cashvault.config import AppSettings, JobSettings, get_settings
from cashvault.core.budget_alerts import evaluate_budget, month_bounds
from cashvault.core.clock import resolve_now
from cashvault.core.recurring import (
    DEFAULT_DESCRIPTION_SUFFIX,
    compute_next_occurrence,
    invalid_state_reason,
    is_due,
    is_eligible,
    select_due_transactions,
)
from cashvault.core.reports import (
    build_report_subject,
    get_monthly_stats,
    month_name,
    previous_month,
)
from cashvault.models.ledger import (
    BudgetCheckTarget,
    JobRunSummary,
    MonthlyReportPayload,
    Notification,
    NotificationTemplate,
    Transaction,
    User,
)
from cashvault.scheduling import KeyedThrottle
from cashvault.services.notifications import (
    NotificationError,
    NotificationSenderInterface,
    OutboxNotificationSender,
)
from cashvault.services.storage import (
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    LedgerStorageInterface,
    NotFoundError,
    PersistenceError,
    SQLiteLedgerStorage,
)


logger = structlog.get_logger(__name__)


def _tally(summary: JobRunSummary, results: list) -> JobRunSummary:
    for result in results:
        if isinstance(result, BaseException):
            summary.failed += 1
        elif result:
            summary.processed += 1
        else:
            summary.skipped += 1
    return summary


class RecurringTransactionFlow:
    """
    Fires due recurring transactions.

    Flow:
    1. Trigger → list recurring templates, keep the due ones
    2. Dispatch → one unit per template, throttled per user
    3. Process → re-read, re-check, compute the firing, apply atomically
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[JobSettings] = None,
        description_suffix: Optional[str] = None,
        throttle: Optional[KeyedThrottle] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = settings or get_settings().jobs
        self._description_suffix = description_suffix or DEFAULT_DESCRIPTION_SUFFIX
        self._throttle = throttle or KeyedThrottle(
            limit=self._settings.throttle_limit,
            period=self._settings.throttle_period_seconds,
            max_in_flight=self._settings.max_in_flight_per_user,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(PersistenceError),
            stop=stop_after_attempt(self._settings.retry_attempts),
            wait=wait_exponential(
                multiplier=self._settings.retry_wait_multiplier,
                max=self._settings.retry_wait_max_seconds,
            ),
            reraise=True,
        )

    async def trigger(self, now: Optional[datetime] = None) -> JobRunSummary:
        """
        Fire every due recurring transaction.

        Returns:
            Summary where triggered is the number of due templates found
        """
        now = resolve_now(now)
        correlation_id = create_correlation_id()
        summary = JobRunSummary(job="recurring", correlation_id=correlation_id)

        due = select_due_transactions(
            await self._storage.list_recurring_transactions(), now
        )
        summary.triggered = len(due)
        await self._audit_logger.log_recurring_triggered(
            due_count=len(due),
            correlation_id=correlation_id,
        )

        results = await asyncio.gather(
            *(self._run_unit(t, now, correlation_id) for t in due),
            return_exceptions=True,
        )
        _tally(summary, results)

        logger.info(
            "recurring_run_finished",
            correlation_id=str(correlation_id),
            triggered=summary.triggered,
            processed=summary.processed,
            skipped=summary.skipped,
            failed=summary.failed,
        )
        return summary

    async def _run_unit(
        self,
        transaction: Transaction,
        now: datetime,
        correlation_id: UUID,
    ) -> bool:
        async with self._throttle.slot(transaction.user_id):
            try:
                return await self.process(
                    transaction.id,
                    transaction.user_id,
                    now=now,
                    correlation_id=correlation_id,
                )
            except PersistenceError:
                raise
            except Exception as e:
                logger.exception(
                    "recurring_unit_crashed",
                    transaction_id=str(transaction.id),
                )
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"transaction_id": str(transaction.id)},
                    correlation_id=correlation_id,
                )
                raise

    async def process(
        self,
        transaction_id: Optional[UUID],
        user_id: Optional[UUID],
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Process one recurring transaction.

        Returns:
            True if a firing was applied, False if the unit was skipped

        Raises:
            PersistenceError: If the firing still did not commit after retries
        """
        if transaction_id is None or user_id is None:
            await self._audit_logger.log_recurring_skipped(
                transaction_id=transaction_id,
                reason="missing transaction or user id",
                correlation_id=correlation_id,
            )
            return False

        now = resolve_now(now)
        try:
            async for attempt in self._retrying():
                with attempt:
                    return await self._process_once(
                        transaction_id, user_id, now, correlation_id
                    )
        except PersistenceError as e:
            await self._audit_logger.log_recurring_failed(
                transaction_id=transaction_id,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise

    async def _process_once(
        self,
        transaction_id: UUID,
        user_id: UUID,
        now: datetime,
        correlation_id: Optional[UUID],
    ) -> bool:
        transaction = await self._storage.get_transaction(transaction_id, user_id)
        if transaction is None:
            return await self._skip(transaction_id, "transaction not found", correlation_id)
        if not is_eligible(transaction):
            return await self._skip(transaction_id, "transaction is not an active recurring template", correlation_id)
        if not is_due(transaction, now):
            return await self._skip(transaction_id, "transaction is not due", correlation_id)

        reason = invalid_state_reason(transaction)
        if reason:
            return await self._skip(transaction_id, reason, correlation_id)

        firing = compute_next_occurrence(transaction, now, self._description_suffix)
        try:
            await self._storage.apply_recurring_firing(firing)
        except NotFoundError as e:
            return await self._skip(transaction_id, str(e), correlation_id)
        except DuplicateError:
            return await self._skip(transaction_id, "firing already applied", correlation_id)

        await self._audit_logger.log_recurring_processed(
            transaction_id=transaction_id,
            new_entry_id=firing.new_entry.id,
            balance_delta=str(firing.balance_delta),
            next_recurring_date=firing.next_recurring_date,
            correlation_id=correlation_id,
        )
        return True

    async def _skip(
        self,
        transaction_id: UUID,
        reason: str,
        correlation_id: Optional[UUID],
    ) -> bool:
        await self._audit_logger.log_recurring_skipped(
            transaction_id=transaction_id,
            reason=reason,
            correlation_id=correlation_id,
        )
        return False


class BudgetAlertFlow:
    """
    Sends at most one budget alert per budget per calendar month.

    The alert is handed to the sender before last_alert_sent is stored.
    If the hand-off fails nothing is stored and the next run tries again.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        notification_sender: Optional[NotificationSenderInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[JobSettings] = None,
    ):
        self._storage = storage
        self._sender = notification_sender or OutboxNotificationSender()
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = settings or get_settings().jobs

    async def check_all(self, now: Optional[datetime] = None) -> JobRunSummary:
        now = resolve_now(now)
        correlation_id = create_correlation_id()
        summary = JobRunSummary(job="budgets", correlation_id=correlation_id)

        targets = await self._storage.list_budget_targets()
        summary.triggered = len(targets)

        results = []
        for target in targets:
            try:
                results.append(await self.check_budget(target, now, correlation_id))
            except Exception as e:
                logger.exception("budget_check_failed", budget_id=str(target.budget.id))
                await self._audit_logger.log_budget_check_failed(
                    budget_id=target.budget.id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
                results.append(e)
        _tally(summary, results)

        logger.info(
            "budget_run_finished",
            correlation_id=str(correlation_id),
            checked=summary.triggered,
            alerted=summary.processed,
            failed=summary.failed,
        )
        return summary

    async def check_budget(
        self,
        target: BudgetCheckTarget,
        now: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Evaluate one budget and send its alert if due.

        Returns:
            True if an alert was sent
        """
        budget = target.budget
        account = target.default_account
        if account is None:
            return await self._skip(budget.id, "user has no default account", correlation_id)
        if not target.user.email:
            return await self._skip(budget.id, "user has no email address", correlation_id)

        date_from, date_to = month_bounds(now)
        total = await self._storage.get_expense_total(
            target.user.id, account.id, date_from, date_to
        )
        decision = evaluate_budget(
            budget,
            total,
            now,
            account_name=account.name,
            threshold=self._settings.budget_alert_threshold,
        )

        if not decision.should_alert:
            if decision.skip_reason:
                return await self._skip(budget.id, decision.skip_reason, correlation_id)
            logger.debug(
                "budget_below_threshold",
                budget_id=str(budget.id),
                percentage_used=str(decision.percentage_used),
            )
            return False

        try:
            await self._sender.send(Notification(
                recipient=target.user.email,
                subject=f"Budget Alert for {account.name}",
                template=NotificationTemplate.BUDGET_ALERT,
                user_name=target.user.name,
                data=decision.payload.model_dump(),
            ))
        except NotificationError as e:
            await self._audit_logger.log_external_service_error(
                service="notifications",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise
        await self._storage.mark_budget_alert_sent(budget.id, decision.alert_sent_at)

        await self._audit_logger.log_budget_alert_sent(
            budget_id=budget.id,
            percentage_used=str(decision.payload.percentage_used),
            recipient=target.user.email,
            correlation_id=correlation_id,
        )
        return True

    async def _skip(self, budget_id: UUID, reason: str, correlation_id: Optional[UUID]) -> bool:
        await self._audit_logger.log_budget_check_skipped(
            budget_id=budget_id,
            reason=reason,
            correlation_id=correlation_id,
        )
        return False


class MonthlyReportFlow:
    """Sends every user a summary of the previous calendar month."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        notification_sender: Optional[NotificationSenderInterface] = None,
        insights_agent: Optional[FinancialInsightsAgent] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._sender = notification_sender or OutboxNotificationSender()
        self._insights_agent = insights_agent or FinancialInsightsAgent()
        self._audit_logger = audit_logger or AuditLogger()

    async def generate_all(self, now: Optional[datetime] = None) -> JobRunSummary:
        now = resolve_now(now)
        correlation_id = create_correlation_id()
        summary = JobRunSummary(job="reports", correlation_id=correlation_id)

        users = await self._storage.list_users()
        summary.triggered = len(users)

        results = []
        for user in users:
            try:
                results.append(await self.generate_report(user, now, correlation_id))
            except Exception as e:
                logger.exception("monthly_report_failed", user_id=str(user.id))
                await self._audit_logger.log_monthly_report_failed(
                    user_id=user.id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
                results.append(e)
        return _tally(summary, results)

    async def generate_report(
        self,
        user: User,
        now: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Build and send one user's report for the month before now.

        Returns:
            True if a report was sent
        """
        accounts = await self._storage.list_accounts(user.id)
        if not any(a.is_default for a in accounts):
            await self._audit_logger.log_monthly_report_skipped(
                user_id=user.id,
                reason="user has no default account",
                correlation_id=correlation_id,
            )
            return False
        if not user.email:
            await self._audit_logger.log_monthly_report_skipped(
                user_id=user.id,
                reason="user has no email address",
                correlation_id=correlation_id,
            )
            return False

        report_month = previous_month(now)
        date_from, date_to = month_bounds(report_month)
        transactions = await self._storage.list_transactions(user.id, date_from, date_to)
        stats = get_monthly_stats(transactions)

        name = month_name(report_month)
        insights = await self._insights_agent.generate_insights(stats, name)
        payload = MonthlyReportPayload(month=name, stats=stats, insights=insights)

        await self._sender.send(Notification(
            recipient=user.email,
            subject=build_report_subject(name),
            template=NotificationTemplate.MONTHLY_REPORT,
            user_name=user.name,
            data=payload.model_dump(),
        ))
        await self._audit_logger.log_monthly_report_sent(
            user_id=user.id,
            month=name,
            correlation_id=correlation_id,
        )
        return True


class AppComponents(NamedTuple):
    recurring_flow: RecurringTransactionFlow
    budget_alert_flow: BudgetAlertFlow
    monthly_report_flow: MonthlyReportFlow
    storage: LedgerStorageInterface
    notification_sender: NotificationSenderInterface


def create_app_components(
    use_audit_sheet: bool = True,
    db_path: Optional[str] = None,
    notification_sender: Optional[NotificationSenderInterface] = None,
) -> AppComponents:
    """
    Factory function to create all job components.

    Args:
        use_audit_sheet: Whether to also write audit events to Google Sheets.
                        Falls back to local-only audit logging if the sheet
                        is not configured.
        db_path: Ledger database path; defaults to DATABASE_PATH.
        notification_sender: Delivery integration; defaults to an outbox.
    """
    settings = get_settings()
    database = settings.database
    app_settings: AppSettings = settings.app

    storage = SQLiteLedgerStorage(
        db_path or database.path,
        busy_timeout_ms=database.busy_timeout_ms,
    ).initialize()

    audit_logger = AuditLogger()
    if use_audit_sheet:
        try:
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(GoogleSheetsClient()))
        except Exception as e:
            logger.warning("audit_sheet_not_configured", error=str(e))

    sender = notification_sender or OutboxNotificationSender()
    jobs = settings.jobs

    return AppComponents(
        recurring_flow=RecurringTransactionFlow(
            storage,
            audit_logger=audit_logger,
            settings=jobs,
            description_suffix=app_settings.recurring_description_suffix,
        ),
        budget_alert_flow=BudgetAlertFlow(
            storage,
            notification_sender=sender,
            audit_logger=audit_logger,
            settings=jobs,
        ),
        monthly_report_flow=MonthlyReportFlow(
            storage,
            notification_sender=sender,
            insights_agent=FinancialInsightsAgent(settings.gemini),
            audit_logger=audit_logger,
        ),
        storage=storage,
        notification_sender=sender,
    )
