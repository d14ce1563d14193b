"""Tests for the budget alert rules."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from cashvault.core.budget_alerts import (
    evaluate_budget,
    is_new_month,
    month_bounds,
    percentage_used,
    round_one_decimal,
)
from cashvault.models.ledger import Budget


def make_budget(amount="1000", last_alert_sent=None) -> Budget:
    return Budget(user_id=uuid4(), amount=Decimal(amount), last_alert_sent=last_alert_sent)


class TestEvaluateBudget:
    """Tests for evaluate_budget."""

    def test_fires_at_85_percent(self):
        """1000 budget with 850 spent on 2024-03-15 fires with 85.0 used."""
        budget = make_budget("1000")
        now = datetime(2024, 3, 15)

        decision = evaluate_budget(budget, Decimal("850"), now, account_name="Everyday")

        assert decision.should_alert is True
        assert decision.payload.percentage_used == Decimal("85.0")
        assert decision.payload.budget_amount == Decimal("1000.0")
        assert decision.payload.total_expenses == Decimal("850.0")
        assert decision.payload.account_name == "Everyday"
        assert decision.alert_sent_at == now
        assert decision.skip_reason is None

    def test_fires_exactly_at_threshold(self):
        decision = evaluate_budget(make_budget("500"), Decimal("400"), datetime(2024, 3, 15))
        assert decision.should_alert is True
        assert decision.payload.percentage_used == Decimal("80.0")

    def test_below_threshold_does_not_fire(self):
        decision = evaluate_budget(make_budget("1000"), Decimal("799.99"), datetime(2024, 3, 15))
        assert decision.should_alert is False
        assert decision.payload is None
        assert decision.skip_reason is None
        assert decision.percentage_used < 80

    def test_suppressed_within_same_month(self):
        budget = make_budget("1000", last_alert_sent=datetime(2024, 3, 2))
        decision = evaluate_budget(budget, Decimal("900"), datetime(2024, 3, 28))
        assert decision.should_alert is False
        assert decision.skip_reason == "alert already sent this month"

    def test_alerted_mid_month_stays_quiet(self):
        """Alerted on the 15th; 850 of 1000 spent on the 20th does not alert again."""
        budget = make_budget("1000", last_alert_sent=datetime(2024, 3, 15))

        decision = evaluate_budget(budget, Decimal("850"), datetime(2024, 3, 20))

        assert decision.should_alert is False
        assert decision.payload is None
        assert decision.skip_reason == "alert already sent this month"

    def test_repeated_evaluation_never_fires_twice_in_month(self):
        budget = make_budget("1000", last_alert_sent=datetime(2024, 3, 15))
        for day in (15, 16, 20, 25, 31):
            decision = evaluate_budget(budget, Decimal("850"), datetime(2024, 3, day, 23, 0))
            assert decision.should_alert is False
        assert budget.last_alert_sent == datetime(2024, 3, 15)

    def test_aware_now_does_not_raise(self):
        budget = make_budget("1000", last_alert_sent=datetime(2024, 3, 15))
        # 00:30 on April 1 at +02:00 is still March 31 in UTC
        now = datetime(2024, 4, 1, 0, 30, tzinfo=timezone(timedelta(hours=2)))

        decision = evaluate_budget(budget, Decimal("850"), now)

        assert decision.should_alert is False
        assert decision.skip_reason == "alert already sent this month"

    def test_fires_again_in_new_month(self):
        budget = make_budget("1000", last_alert_sent=datetime(2024, 2, 29))
        decision = evaluate_budget(budget, Decimal("900"), datetime(2024, 3, 1))
        assert decision.should_alert is True

    def test_same_month_previous_year_is_new(self):
        budget = make_budget("1000", last_alert_sent=datetime(2023, 3, 10))
        decision = evaluate_budget(budget, Decimal("900"), datetime(2024, 3, 10))
        assert decision.should_alert is True

    @pytest.mark.parametrize("amount", ["0", "-50"])
    def test_non_positive_budget_never_fires(self, amount):
        decision = evaluate_budget(make_budget(amount), Decimal("100"), datetime(2024, 3, 15))
        assert decision.should_alert is False
        assert decision.percentage_used is None
        assert decision.skip_reason == "budget amount is not positive"

    def test_custom_threshold(self):
        decision = evaluate_budget(
            make_budget("1000"),
            Decimal("500"),
            datetime(2024, 3, 15),
            threshold=Decimal("50"),
        )
        assert decision.should_alert is True

    def test_payload_rounds_half_up(self):
        decision = evaluate_budget(make_budget("300"), Decimal("250.25"), datetime(2024, 3, 15))
        # 250.25 / 300 * 100 = 83.41666...
        assert decision.payload.percentage_used == Decimal("83.4")
        assert decision.payload.total_expenses == Decimal("250.3")


class TestHelpers:
    """Tests for the small date and number helpers."""

    def test_percentage_used(self):
        assert percentage_used(Decimal("250"), Decimal("1000")) == Decimal("25")

    def test_percentage_used_zero_budget(self):
        assert percentage_used(Decimal("250"), Decimal("0")) is None

    def test_round_one_decimal(self):
        assert round_one_decimal(Decimal("84.95")) == Decimal("85.0")
        assert round_one_decimal(Decimal("84.94")) == Decimal("84.9")

    def test_is_new_month(self):
        assert is_new_month(datetime(2024, 3, 31), datetime(2024, 4, 1)) is True
        assert is_new_month(datetime(2024, 3, 1), datetime(2024, 3, 31)) is False

    def test_month_bounds(self):
        start, end = month_bounds(datetime(2024, 12, 15, 18, 45, 10))
        assert start == datetime(2024, 12, 1)
        assert end == datetime(2025, 1, 1)
