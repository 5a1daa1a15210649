"""Final aggregation over container results."""

from typing import Iterable

from retention_audit.models import GIB, AuditSummary, ContainerResult, ranking_key


def build_summary(
    results: Iterable[ContainerResult], cost_per_gb_month: float = 0.0
) -> AuditSummary:
    """Aggregate container results into run totals.

    Savings are computed once from the summed deletion size rather than by
    adding per-container estimates, so the figure does not depend on how
    the results were split across runs.

    Args:
        results: Results of this run and any resumed rows.
        cost_per_gb_month: Storage price per GB-month.

    Returns:
        AuditSummary with totals, percentages, savings and ranking.
    """
    unique = {result.container: result for result in results}
    ranked = tuple(sorted(unique.values(), key=ranking_key))

    total_count = sum(r.total_count for r in ranked)
    total_size = sum(r.total_size for r in ranked)
    deletion_count = sum(r.deletion_count for r in ranked)
    deletion_size = sum(r.deletion_size for r in ranked)
    monthly = deletion_size / GIB * cost_per_gb_month

    return AuditSummary(
        container_count=len(ranked),
        total_count=total_count,
        total_size=total_size,
        deletion_count=deletion_count,
        deletion_size=deletion_size,
        percent_objects_affected=100.0 * deletion_count / total_count if total_count else 0.0,
        percent_size_affected=100.0 * deletion_size / total_size if total_size else 0.0,
        monthly_savings=monthly,
        annual_savings=monthly * 12,
        ranked=ranked,
    )
