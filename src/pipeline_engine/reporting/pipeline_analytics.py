"""Pipeline rollups over a collection of transactions.

Every function here is pure: it reads only the transactions it is given
(plus `today` where stated) and never consults the clock or the store.
Filtering by agent or date range is done by the caller beforehand.
"""

import statistics
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Iterable, Union

from ..transactions.commission import CENTS, CommissionStatus
from ..transactions.milestones import as_date
from ..transactions.stages import Stage
from ..transactions.transaction import Transaction

ZERO = Decimal("0")
SECONDS_PER_DAY = 86400


def total_volume(transactions: Iterable[Transaction]) -> Decimal:
    """Sum of deal amounts still in the active pipeline."""
    return sum((t.amount for t in transactions if t.is_active()), ZERO)


def closed_won_volume(transactions: Iterable[Transaction]) -> Decimal:
    """Sum of deal amounts that closed won."""
    return sum((t.amount for t in transactions if t.stage == Stage.CLOSED_WON), ZERO)


def weighted_volume(transactions: Iterable[Transaction]) -> Decimal:
    """Active volume weighted by each deal's close probability."""
    weighted = sum(
        (t.amount * t.probability / 100 for t in transactions if t.is_active()),
        ZERO,
    )
    return weighted.quantize(CENTS, rounding=ROUND_HALF_UP)


def count_by_stage(transactions: Iterable[Transaction]) -> Dict[Stage, int]:
    """Number of transactions in each stage, including empty stages."""
    counts = {stage: 0 for stage in Stage}
    for t in transactions:
        counts[t.stage] += 1
    return counts


def stage_distribution(transactions: Iterable[Transaction]) -> Dict[Stage, float]:
    """Share of transactions in each stage, as percentages."""
    counts = count_by_stage(transactions)
    total = sum(counts.values())
    if total == 0:
        return {stage: 0.0 for stage in Stage}
    return {stage: round(count / total * 100, 1) for stage, count in counts.items()}


def conversion_rate(transactions: Iterable[Transaction]) -> float:
    """Percentage of all transactions that closed won; 0 for no transactions."""
    transactions = list(transactions)
    if not transactions:
        return 0.0
    won = len([t for t in transactions if t.stage == Stage.CLOSED_WON])
    return round(won / len(transactions) * 100, 1)


def average_close_time(transactions: Iterable[Transaction]) -> float:
    """Mean days from creation to close across Closed Won deals.

    Returns 0.0 when no Closed Won deal has both timestamps.
    """
    durations = [
        (t.closed_at - t.created_at).total_seconds() / SECONDS_PER_DAY
        for t in transactions
        if t.stage == Stage.CLOSED_WON and t.created_at and t.closed_at
    ]
    if not durations:
        return 0.0
    return round(statistics.mean(durations), 1)


def average_probability(transactions: Iterable[Transaction]) -> int:
    """Mean close probability, rounded to a whole percentage."""
    probabilities = [t.probability for t in transactions]
    if not probabilities:
        return 0
    mean = Decimal(sum(probabilities)) / len(probabilities)
    return int(mean.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def commission_earned(transactions: Iterable[Transaction]) -> Decimal:
    """Commission on deals that closed won."""
    return sum(
        (t.commission.amount for t in transactions
         if t.commission_status() == CommissionStatus.EARNED),
        ZERO,
    )


def commission_paid(transactions: Iterable[Transaction]) -> Decimal:
    """Earned commission that has been paid out."""
    return sum(
        (t.commission.amount for t in transactions
         if t.commission_status() == CommissionStatus.EARNED and t.commission.paid),
        ZERO,
    )


def commission_pending(transactions: Iterable[Transaction]) -> Decimal:
    """Commission still to be earned on active deals."""
    return sum(
        (t.commission.amount for t in transactions
         if t.commission_status() == CommissionStatus.PENDING and t.is_active()),
        ZERO,
    )


def closed_won_in_month(transactions: Iterable[Transaction], today: Union[date, datetime]) -> List[Transaction]:
    """Closed Won deals whose close time falls in today's calendar month."""
    today = as_date(today)
    return [
        t for t in transactions
        if t.stage == Stage.CLOSED_WON and t.closed_at
        and t.closed_at.year == today.year and t.closed_at.month == today.month
    ]


@dataclass
class PipelineStats:
    """Dashboard summary of a pipeline."""
    total_transactions: int
    active_transactions: int
    closed_this_month: int
    total_volume: Decimal
    weighted_volume: Decimal
    average_close_time: float
    conversion_rate: float
    commission_earned: Decimal
    commission_paid: Decimal
    pending_commission: Decimal
    by_stage: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return asdict(self)


def pipeline_stats(transactions: Iterable[Transaction], today: Union[date, datetime]) -> PipelineStats:
    """Every headline figure for the pipeline dashboard in one pass."""
    transactions = list(transactions)
    return PipelineStats(
        total_transactions=len(transactions),
        active_transactions=len([t for t in transactions if t.is_active()]),
        closed_this_month=len(closed_won_in_month(transactions, today)),
        total_volume=total_volume(transactions),
        weighted_volume=weighted_volume(transactions),
        average_close_time=average_close_time(transactions),
        conversion_rate=conversion_rate(transactions),
        commission_earned=commission_earned(transactions),
        commission_paid=commission_paid(transactions),
        pending_commission=commission_pending(transactions),
        by_stage={stage.value: count for stage, count in count_by_stage(transactions).items()},
    )


@dataclass
class CommissionReport:
    """Commission totals for one assigned agent."""
    agent_id: str
    agent_name: str
    total_commission: Decimal = ZERO
    paid_commission: Decimal = ZERO
    unpaid_commission: Decimal = ZERO
    pending_commission: Decimal = ZERO
    transaction_count: int = 0
    transaction_ids: List[str] = field(default_factory=list)


def commission_report(transactions: Iterable[Transaction]) -> List[CommissionReport]:
    """Per-agent earned and pending commission, highest total first.

    Earned commission is split into paid and unpaid; pending is commission
    on active deals. Closed Lost deals count toward the agent's
    transactions but add no commission.
    """
    reports: Dict[str, CommissionReport] = {}

    for t in transactions:
        report = reports.get(t.assigned_user_id)
        if report is None:
            report = CommissionReport(agent_id=t.assigned_user_id, agent_name=t.assigned_user_name)
            reports[t.assigned_user_id] = report

        report.transaction_count += 1
        report.transaction_ids.append(t.id)

        if t.commission_status() == CommissionStatus.EARNED:
            if t.commission.paid:
                report.paid_commission += t.commission.amount
            else:
                report.unpaid_commission += t.commission.amount
        elif t.is_active():
            report.pending_commission += t.commission.amount
        report.total_commission = (
            report.paid_commission + report.unpaid_commission + report.pending_commission
        )

    return sorted(reports.values(), key=lambda r: (-r.total_commission, r.agent_id))
