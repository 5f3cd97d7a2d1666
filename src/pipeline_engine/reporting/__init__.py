"""Pipeline reporting and analytics."""

from .pipeline_analytics import (
    PipelineStats,
    CommissionReport,
    total_volume,
    closed_won_volume,
    weighted_volume,
    count_by_stage,
    stage_distribution,
    conversion_rate,
    average_close_time,
    average_probability,
    commission_earned,
    commission_pending,
    commission_paid,
    pipeline_stats,
    commission_report,
)

__all__ = [
    'PipelineStats',
    'CommissionReport',
    'total_volume',
    'closed_won_volume',
    'weighted_volume',
    'count_by_stage',
    'stage_distribution',
    'conversion_rate',
    'average_close_time',
    'average_probability',
    'commission_earned',
    'commission_pending',
    'commission_paid',
    'pipeline_stats',
    'commission_report',
]
