"""Tests for pipeline analytics."""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from pipeline_engine.reporting import (
    average_close_time,
    average_probability,
    closed_won_volume,
    commission_earned,
    commission_paid,
    commission_pending,
    commission_report,
    conversion_rate,
    count_by_stage,
    pipeline_stats,
    stage_distribution,
    total_volume,
    weighted_volume,
)
from pipeline_engine.transactions import Stage, create_transaction

NOW = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)
TODAY = date(2026, 10, 18)


def make_transaction(transaction_id, amount, stage=Stage.PROSPECTING, user="u1", name="Agent One",
                     created_at=NOW, probability=None):
    return create_transaction(
        name=f"Deal {transaction_id}",
        amount=amount,
        expected_close_date=date(2026, 12, 1),
        now=created_at,
        commission_rate=3,
        stage=stage,
        probability=probability,
        assigned_user_id=user,
        assigned_user_name=name,
        transaction_id=transaction_id,
    )


@pytest.fixture
def pipeline():
    """One deal each in Prospecting, Negotiation and Closed Won."""
    return [
        make_transaction("a", 100),
        make_transaction("b", 200, stage=Stage.NEGOTIATION),
        make_transaction("c", 300, stage=Stage.CLOSED_WON),
    ]


class TestVolume:
    """Tests for volume rollups."""

    def test_total_volume_counts_active_only(self, pipeline):
        """Test closed deals are left out of pipeline volume."""
        assert total_volume(pipeline) == Decimal("300")

    def test_closed_won_volume(self, pipeline):
        """Test closed won volume is separate from active volume."""
        assert closed_won_volume(pipeline) == Decimal("300")

    def test_weighted_volume(self, pipeline):
        """Test 100 at 10% plus 200 at 75% is 160."""
        assert weighted_volume(pipeline) == Decimal("160.00")

    def test_empty_pipeline(self):
        """Test empty input gives zeros rather than errors."""
        assert total_volume([]) == 0
        assert weighted_volume([]) == 0
        assert conversion_rate([]) == 0.0
        assert average_close_time([]) == 0.0
        assert average_probability([]) == 0


class TestStageRollups:
    """Tests for stage counts and conversion."""

    def test_count_by_stage_includes_empty_stages(self, pipeline):
        """Test every stage appears in the counts."""
        counts = count_by_stage(pipeline)

        assert set(counts) == set(Stage)
        assert counts[Stage.PROSPECTING] == 1
        assert counts[Stage.NEGOTIATION] == 1
        assert counts[Stage.CLOSED_WON] == 1
        assert counts[Stage.CLOSED_LOST] == 0

    def test_stage_distribution(self, pipeline):
        """Test stage shares are rounded percentages."""
        distribution = stage_distribution(pipeline)
        assert distribution[Stage.PROSPECTING] == 33.3
        assert distribution[Stage.PROPOSAL] == 0.0

    def test_conversion_rate(self, pipeline):
        """Test one closed won deal out of three is 33.3%."""
        assert conversion_rate(pipeline) == 33.3

    def test_average_probability(self, pipeline):
        """Test (10 + 75 + 100) / 3 rounds to 62."""
        assert average_probability(pipeline) == 62


class TestAverageCloseTime:
    """Tests for average_close_time."""

    def test_mean_days_to_close(self):
        """Test deals closing after 30 and 20 days average 25."""
        first = make_transaction("a", 100).transition(Stage.CLOSED_WON, NOW + timedelta(days=30))
        second = make_transaction("b", 100).transition(Stage.CLOSED_WON, NOW + timedelta(days=20))

        assert average_close_time([first, second]) == 25.0

    def test_ignores_lost_and_open_deals(self):
        """Test only closed won deals count."""
        lost = make_transaction("a", 100).transition(Stage.CLOSED_LOST, NOW + timedelta(days=5))
        open_deal = make_transaction("b", 100)

        assert average_close_time([lost, open_deal]) == 0.0


class TestCommissionRollups:
    """Tests for commission totals."""

    def test_earned_and_pending(self, pipeline):
        """Test earned is closed won commission and pending is active commission."""
        lost = make_transaction("d", 1000, stage=Stage.CLOSED_LOST)
        transactions = pipeline + [lost]

        assert commission_earned(transactions) == Decimal("9.00")
        assert commission_pending(transactions) == Decimal("9.00")

    def test_commission_report_by_agent(self):
        """Test commission is grouped per agent, highest total first."""
        transactions = [
            make_transaction("a", 100000, user="u1", name="Jane"),
            make_transaction("b", 200000, stage=Stage.CLOSED_WON, user="u1", name="Jane"),
            make_transaction("c", 500000, user="u2", name="Sam"),
            make_transaction("d", 900000, stage=Stage.CLOSED_LOST, user="u2", name="Sam"),
        ]

        reports = commission_report(transactions)

        assert [r.agent_id for r in reports] == ["u2", "u1"]
        sam, jane = reports
        assert sam.pending_commission == Decimal("15000.00")
        assert sam.paid_commission == 0
        assert sam.transaction_count == 2
        assert jane.paid_commission == 0
        assert jane.unpaid_commission == Decimal("6000.00")
        assert jane.pending_commission == Decimal("3000.00")
        assert jane.total_commission == Decimal("9000.00")
        assert jane.transaction_ids == ["a", "b"]


class TestPipelineStats:
    """Tests for the pipeline summary."""

    def test_summary(self, pipeline):
        """Test the summary pulls every figure together."""
        summary = pipeline_stats(pipeline, TODAY)

        assert summary.total_transactions == 3
        assert summary.active_transactions == 2
        assert summary.closed_this_month == 1
        assert summary.total_volume == Decimal("300")
        assert summary.conversion_rate == 33.3
        assert summary.commission_earned == Decimal("9.00")
        assert summary.by_stage["Closed Won"] == 1
        assert summary.to_dict()["by_stage"]["Closed Lost"] == 0

    def test_closed_this_month_uses_today(self, pipeline):
        """Test deals closed in an earlier month are not counted."""
        summary = pipeline_stats(pipeline, date(2026, 11, 2))
        assert summary.closed_this_month == 0

    def test_repeatable(self, pipeline):
        """Test analytics read nothing but their input."""
        assert pipeline_stats(pipeline, TODAY) == pipeline_stats(pipeline, TODAY)


class TestCommissionPayout:
    """Tests for paid versus unpaid earned commission."""

    def test_paid_split_from_unpaid(self):
        """Test paid commission is reported apart from earned but unpaid."""
        paid = make_transaction("a", 100000, stage=Stage.CLOSED_WON).set_commission_paid(True, NOW)
        unpaid = make_transaction("b", 200000, stage=Stage.CLOSED_WON)
        open_deal = make_transaction("c", 300000)
        transactions = [paid, unpaid, open_deal]

        assert commission_earned(transactions) == Decimal("9000.00")
        assert commission_paid(transactions) == Decimal("3000.00")

        (report,) = commission_report(transactions)
        assert report.paid_commission == Decimal("3000.00")
        assert report.unpaid_commission == Decimal("6000.00")
        assert report.pending_commission == Decimal("9000.00")
        assert report.total_commission == Decimal("18000.00")

        assert pipeline_stats(transactions, TODAY).commission_paid == Decimal("3000.00")
