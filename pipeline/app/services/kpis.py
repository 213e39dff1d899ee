"""
Pantry CRM Opportunity KPIs
Aggregates over opportunity views, shared by the API and the console store
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from ..schemas.opportunities import OpportunityStage


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _is_won(record: Mapping[str, Any]) -> bool:
    return bool(record.get("is_won")) or record.get("stage") == OpportunityStage.CLOSED_WON.value


def calculate_opportunity_kpis(
    records: Iterable[Mapping[str, Any]],
    now: Optional[datetime] = None,
    total_count: Optional[int] = None
) -> Dict[str, Any]:
    """Counts, averages and the weighted pipeline value over opportunity records.

    ``total_count`` overrides the record count when the records are one page
    of a larger result set.
    """
    now = now or datetime.now(timezone.utc)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    week_start = now - timedelta(days=7)

    records = list(records)
    stage_distribution = {stage.value: 0 for stage in OpportunityStage}

    won = 0
    won_this_month = 0
    created_this_week = 0
    updated_this_week = 0
    closed_this_week = 0
    probability_sum = 0
    pipeline_value = 0.0

    for record in records:
        stage = record.get("stage")
        if stage in stage_distribution:
            stage_distribution[stage] += 1

        probability = record.get("probability_percent") or 0
        probability_sum += probability

        created_at = _parse_timestamp(record.get("created_at"))
        updated_at = _parse_timestamp(record.get("updated_at"))
        stage_changed_at = _parse_timestamp(record.get("stage_changed_at")) or updated_at

        if created_at and created_at >= week_start:
            created_this_week += 1
        if updated_at and updated_at >= week_start:
            updated_this_week += 1

        if _is_won(record):
            won += 1
            if stage_changed_at and stage_changed_at >= month_start:
                won_this_month += 1
            if stage_changed_at and stage_changed_at >= week_start:
                closed_this_week += 1
        elif record.get("estimated_value"):
            pipeline_value += float(record["estimated_value"]) * (probability / 100)

    loaded = len(records)
    total = loaded if total_count is None else total_count

    return {
        "total_opportunities": total,
        "active_opportunities": loaded - won,
        "won_opportunities": won,
        "average_probability": round(probability_sum / loaded) if loaded else 0,
        "won_this_month": won_this_month,
        "conversion_rate": round(won / loaded * 100) if loaded else 0,
        "pipeline_value": round(pipeline_value, 2),
        "stage_distribution": stage_distribution,
        "created_this_week": created_this_week,
        "updated_this_week": updated_this_week,
        "closed_this_week": closed_this_week,
    }
