from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.orm import Session

from assistant.models import Lead
from assistant.models.enums import CLOSED_LEAD_STATUSES, LeadStatus
from assistant.schemas.intents import ProgressReport, Recommendation, Trends
from assistant.services.clock import to_utc, utcnow

PIPELINE_DEAL_VALUE = 1000
PIPELINE_WEIGHTS = {
    LeadStatus.INTERESTED.value: 0.3,
    LeadStatus.PROPOSAL_SENT.value: 0.6,
    LeadStatus.WAITING.value: 0.8,
}


def day_bounds(now: datetime, tz_name: str) -> tuple[datetime, datetime]:
    """UTC start and end of the user's local calendar day."""
    local = to_utc(now).astimezone(ZoneInfo(tz_name))
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return to_utc(start), to_utc(start + timedelta(days=1))


def growth_rate(current: int, previous: int) -> int:
    if previous == 0:
        return 100 if current > 0 else 0
    return round((current - previous) / previous * 100)


def _count(db: Session, user_id, *criteria) -> int:
    return db.query(func.count(Lead.id)).filter(Lead.user_id == user_id, *criteria).scalar() or 0


def status_breakdown(db: Session, user_id) -> dict[str, int]:
    rows = (
        db.query(Lead.status, func.count(Lead.id))
        .filter(Lead.user_id == user_id)
        .group_by(Lead.status)
        .all()
    )
    return {status: count for status, count in rows}


def followup_counts(db: Session, user_id, now: datetime, tz_name: str) -> tuple[int, int]:
    """(due today, overdue) follow-up counts."""
    start, end = day_bounds(now, tz_name)
    today = _count(db, user_id, Lead.next_followup >= start, Lead.next_followup < end)
    overdue = _count(db, user_id, Lead.next_followup < start)
    return today, overdue


def conversion_metrics(db: Session, user_id) -> dict:
    total = _count(db, user_id)
    if total == 0:
        return {"contacted_rate": 0, "reply_rate": 0, "interest_rate": 0, "win_rate": 0}

    contacted = _count(db, user_id, Lead.contacted.is_(True))
    replied = _count(db, user_id, Lead.replied.is_(True))
    interested = _count(db, user_id, Lead.interested.is_(True))
    won = _count(db, user_id, Lead.status == LeadStatus.CLOSED_WON.value)
    return {
        "contacted_rate": round(contacted / total * 100),
        "reply_rate": round(replied / contacted * 100) if contacted else 0,
        "interest_rate": round(interested / replied * 100) if replied else 0,
        "win_rate": round(won / interested * 100) if interested else 0,
    }


def activity_score(updates: int, scheduled: int, overdue: int) -> int:
    return max(0, updates + scheduled - overdue * 2)


def activity_metrics(db: Session, user_id, now: datetime) -> dict:
    now = to_utc(now)
    updates = _count(db, user_id, Lead.updated_at >= now - timedelta(weeks=1))
    scheduled = _count(db, user_id, Lead.next_followup >= now)
    overdue = _count(db, user_id, Lead.next_followup < now)
    return {
        "updates_this_week": updates,
        "followups_scheduled": scheduled,
        "overdue_followups": overdue,
        "activity_score": activity_score(updates, scheduled, overdue),
    }


def followup_health(db: Session, user_id) -> dict:
    open_lead = Lead.status.notin_(CLOSED_LEAD_STATUSES)
    active = _count(db, user_id, open_lead)
    with_followups = _count(db, user_id, open_lead, Lead.next_followup.isnot(None))
    return {
        "total_active_leads": active,
        "leads_with_followups": with_followups,
        "followup_coverage": round(with_followups / active * 100) if active else 0,
    }


def pipeline_value(db: Session, user_id) -> dict:
    counts = {status: _count(db, user_id, Lead.status == status) for status in PIPELINE_WEIGHTS}
    estimated = sum(counts[status] * PIPELINE_DEAL_VALUE * weight for status, weight in PIPELINE_WEIGHTS.items())
    return {
        "interested": counts[LeadStatus.INTERESTED.value],
        "proposals": counts[LeadStatus.PROPOSAL_SENT.value],
        "negotiations": counts[LeadStatus.WAITING.value],
        "estimated_value": round(estimated),
    }


def gather_progress_data(db: Session, user_id, now: Optional[datetime] = None) -> dict:
    now = to_utc(now or utcnow())
    last_month = now - timedelta(days=30)
    this_month = _count(db, user_id, Lead.created_at >= last_month)
    last_3_months = _count(db, user_id, Lead.created_at >= now - timedelta(days=90))

    return {
        "overview": {
            "total_leads": _count(db, user_id),
            "leads_this_week": _count(db, user_id, Lead.created_at >= now - timedelta(weeks=1)),
            "leads_this_month": this_month,
            "leads_last_3_months": last_3_months,
            "growth_rate": growth_rate(this_month, last_3_months),
        },
        "status_breakdown": status_breakdown(db, user_id),
        "conversion_metrics": conversion_metrics(db, user_id),
        "activity_metrics": activity_metrics(db, user_id, now),
        "followup_health": followup_health(db, user_id),
        "recent_wins": _count(
            db, user_id, Lead.status == LeadStatus.CLOSED_WON.value, Lead.updated_at >= last_month
        ),
        "pipeline_value": pipeline_value(db, user_id),
        "timeframe": {"analyzed": now.date().isoformat(), "period": "3 months"},
    }


def basic_progress_report(data: dict) -> ProgressReport:
    """Rule-based report used when the AI report is unavailable."""
    insights: list[str] = []
    recommendations: list[Recommendation] = []
    trends = Trends()

    growth = data["overview"]["growth_rate"]
    if growth > 20:
        insights.append(f"Strong growth with {growth}% increase in new leads")
        trends.positive.append("Lead generation is accelerating")
    elif growth < -10:
        insights.append(f"Lead generation has slowed by {abs(growth)}%")
        trends.concerning.append("Declining lead acquisition")
        recommendations.append(
            Recommendation(
                action="Increase prospecting activities",
                priority="high",
                reason="Lead generation is below previous period",
                expected_impact="Restore pipeline growth",
            )
        )

    win_rate = data["conversion_metrics"]["win_rate"]
    if win_rate > 15:
        trends.positive.append("High conversion rate to wins")
    elif win_rate < 5:
        trends.concerning.append("Low win rate needs improvement")
        recommendations.append(
            Recommendation(
                action="Review and improve sales process",
                priority="high",
                reason="Win rate is below optimal levels",
                expected_impact="Increase deal closure rate",
            )
        )

    return ProgressReport(
        type="sales",
        summary=(
            f"Pipeline analysis shows {data['overview']['total_leads']} total leads "
            f"with {growth}% growth rate"
        ),
        metrics=data,
        insights=insights,
        recommendations=recommendations,
        trends=trends,
        next_steps=["Focus on overdue follow-ups", "Maintain consistent prospecting", "Track conversion improvements"],
    )
