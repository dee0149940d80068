import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from assistant.models import Account, Transaction
from assistant.models.enums import EXPENSE_CATEGORIES, AccountType, TransactionCategory
from assistant.schemas.intents import ProgressReport, Recommendation, Trends
from assistant.services.clock import to_utc, utcnow

ASSET_TYPES = (AccountType.ASSET.value, AccountType.INVESTMENT.value, AccountType.EMERGENCY_FUND.value)
MONTHLY_OUTGOING_CATEGORIES = EXPENSE_CATEGORIES + (TransactionCategory.DEBT_PAYMENT.value,)
TREND_MONTHS = 6


def _month_start(dt: datetime, months_back: int = 0) -> datetime:
    year, month = dt.year, dt.month - months_back
    while month <= 0:
        month += 12
        year -= 1
    return datetime(year, month, 1, tzinfo=timezone.utc)


def _next_month(start: datetime) -> datetime:
    return _month_start(start.replace(day=28) + timedelta(days=4))


def _sum_amount(db: Session, user_id, *criteria) -> float:
    total = db.query(func.sum(Transaction.amount)).filter(Transaction.user_id == user_id, *criteria).scalar()
    return float(total or 0.0)


def _sum_balance(db: Session, user_id, *criteria) -> float:
    total = db.query(func.sum(Account.current_balance)).filter(Account.user_id == user_id, *criteria).scalar()
    return float(total or 0.0)


def income_between(db: Session, user_id, start: datetime, end: Optional[datetime] = None) -> float:
    criteria = [Transaction.category == TransactionCategory.INCOME.value, Transaction.created_at >= start]
    if end is not None:
        criteria.append(Transaction.created_at < end)
    return _sum_amount(db, user_id, *criteria)


def expenses_between(
    db: Session, user_id, start: datetime, end: Optional[datetime] = None, categories=EXPENSE_CATEGORIES
) -> float:
    criteria = [Transaction.category.in_(categories), Transaction.created_at >= start]
    if end is not None:
        criteria.append(Transaction.created_at < end)
    return abs(_sum_amount(db, user_id, *criteria))


def monthly_income(db: Session, user_id, now: datetime) -> float:
    return income_between(db, user_id, to_utc(now) - timedelta(days=30))


def monthly_expenses(db: Session, user_id, now: datetime) -> float:
    return expenses_between(db, user_id, to_utc(now) - timedelta(days=30), categories=MONTHLY_OUTGOING_CATEGORIES)


def savings_rate(income: float, expenses: float) -> int:
    return round((income - expenses) / income * 100) if income > 0 else 0


def health_snapshot(db: Session, user_id, now: datetime) -> dict:
    assets = _sum_balance(db, user_id, Account.type.in_(ASSET_TYPES))
    liabilities = abs(_sum_balance(db, user_id, Account.type == AccountType.LIABILITY.value))
    investments = _sum_balance(db, user_id, Account.type == AccountType.INVESTMENT.value)
    emergency = _sum_balance(db, user_id, Account.type == AccountType.EMERGENCY_FUND.value)
    income = monthly_income(db, user_id, now)
    count = db.query(func.count(Transaction.id)).filter(Transaction.user_id == user_id).scalar() or 0

    return {
        "net_worth": assets - liabilities,
        "total_assets": assets,
        "total_liabilities": liabilities,
        "investment_percentage": round(investments / assets * 100) if assets > 0 else 0,
        "emergency_fund_months": round(emergency / (income / 12)) if income > 0 else 0,
        "debt_to_income_ratio": round(liabilities / (income * 12) * 100) if income > 0 else 0,
        "transaction_count": count,
    }


def monthly_trends(db: Session, user_id, now: datetime) -> list[dict]:
    now = to_utc(now)
    trends = []
    for months_back in reversed(range(TREND_MONTHS)):
        start = _month_start(now, months_back)
        end = _next_month(start)
        income = income_between(db, user_id, start, end)
        expenses = expenses_between(db, user_id, start, end)
        trends.append(
            {
                "month": start.strftime("%Y-%m"),
                "income": income,
                "expenses": expenses,
                "savings": income - expenses,
                "savings_rate": savings_rate(income, expenses),
            }
        )
    return trends


def average_monthly_savings(db: Session, user_id, now: datetime) -> float:
    since = to_utc(now) - timedelta(days=90)
    return (income_between(db, user_id, since) - expenses_between(db, user_id, since)) / 3


def months_to_goal(current: float, target: float, monthly_savings: float) -> Optional[int]:
    """None when the goal is unreachable at the current savings pace."""
    if current >= target:
        return 0
    if monthly_savings <= 0:
        return None
    return math.ceil((target - current) / monthly_savings)


def goal_progress(db: Session, user_id, now: Optional[datetime] = None, asset_types_only: bool = False) -> list[dict]:
    query = db.query(Account).filter(Account.user_id == user_id, Account.target_amount.isnot(None))
    if asset_types_only:
        query = query.filter(Account.type.in_(ASSET_TYPES))
    accounts = query.order_by(Account.name).all()
    pace = average_monthly_savings(db, user_id, now) if now is not None and accounts else 0.0

    goals = []
    for account in accounts:
        target = account.target_amount or 0.0
        goal = {
            "name": account.name,
            "type": account.type,
            "current": account.current_balance,
            "target": target,
            "progress": round(account.current_balance / target * 100) if target else 0,
            "remaining": target - account.current_balance,
        }
        if now is not None:
            goal["months_to_goal"] = months_to_goal(account.current_balance, target, pace)
        goals.append(goal)
    return goals


def spending_breakdown(db: Session, user_id, now: datetime) -> list[dict]:
    rows = (
        db.query(Transaction.category, func.sum(Transaction.amount), func.count(Transaction.id))
        .filter(
            Transaction.user_id == user_id,
            Transaction.amount < 0,
            Transaction.created_at >= to_utc(now) - timedelta(days=30),
        )
        .group_by(Transaction.category)
        .all()
    )
    return [
        {
            "category": category,
            "amount": abs(total or 0.0),
            "transactions": count,
            "average_per_transaction": abs((total or 0.0) / count) if count else 0.0,
        }
        for category, total, count in rows
    ]


def income_trend(incomes: list[float]) -> str:
    """incomes is newest first."""
    if len(incomes) < 4:
        return "stable"
    recent = sum(incomes[:3]) / 3
    older = sum(incomes[3:]) / len(incomes[3:])
    if older == 0:
        return "stable"
    change = (recent - older) / older
    if change > 0.1:
        return "increasing"
    if change < -0.1:
        return "decreasing"
    return "stable"


def income_stability(db: Session, user_id, now: datetime) -> dict:
    now = to_utc(now)
    incomes = []
    for months_back in range(TREND_MONTHS):
        start = _month_start(now, months_back)
        incomes.append(income_between(db, user_id, start, _next_month(start)))

    average = sum(incomes) / len(incomes)
    deviation = math.sqrt(sum((income - average) ** 2 for income in incomes) / len(incomes))
    stability = max(0.0, 100 - deviation / average * 100) if average > 0 else 0.0
    return {
        "average_monthly_income": round(average),
        "stability_score": round(stability),
        "monthly_incomes": incomes,
        "trend": income_trend(incomes),
    }


def investment_growth(db: Session, user_id) -> dict:
    accounts = db.query(Account).filter(Account.user_id == user_id, Account.type == AccountType.INVESTMENT.value).all()
    total = sum(account.current_balance for account in accounts)
    if len(accounts) >= 3:
        diversification = "good"
    elif len(accounts) == 2:
        diversification = "moderate"
    else:
        diversification = "low"
    return {
        "total_value": total,
        "accounts": len(accounts),
        "average_account_value": total / len(accounts) if accounts else 0.0,
        "diversification": diversification,
    }


def expense_control_score(db: Session, user_id, now: datetime) -> float:
    now = to_utc(now)
    recent = expenses_between(db, user_id, now - timedelta(days=90)) / 3
    previous = expenses_between(db, user_id, now - timedelta(days=180), now - timedelta(days=90)) / 3
    if previous == 0:
        return 50.0
    change = (recent - previous) / previous * 100
    return max(0.0, 100 - max(0.0, change))


def babylon_score(db: Session, user_id, now: datetime) -> dict:
    now = to_utc(now)
    income = monthly_income(db, user_id, now)
    expenses = monthly_expenses(db, user_id, now)
    rate = (income - expenses) / income * 100 if income > 0 else 0.0

    emergency = _sum_balance(db, user_id, Account.type == AccountType.EMERGENCY_FUND.value)
    has_emergency_fund = emergency > 0 and emergency >= expenses * 3
    has_investments = (
        db.query(func.count(Account.id))
        .filter(
            Account.user_id == user_id,
            Account.type == AccountType.INVESTMENT.value,
            Account.current_balance > 0,
        )
        .scalar()
        or 0
    ) > 0

    last_month_start = _month_start(now, 1)
    last_month_income = income_between(db, user_id, last_month_start, _month_start(now))
    income_growth = (income - last_month_income) / last_month_income * 100 if last_month_income > 0 else 0.0

    principles = {
        "pay_yourself_first": 100.0 if rate >= 10 else max(0.0, rate / 10 * 100),
        "control_expenses": expense_control_score(db, user_id, now),
        "make_money_work": 100.0 if has_investments else 0.0,
        "guard_against_loss": 100.0 if has_emergency_fund else 0.0,
        "increase_earning": 100.0 if income_growth >= 0 else 50.0,
    }
    overall = sum(principles.values()) / len(principles)
    return {
        "overall_score": round(overall),
        "principles": {name: round(score) for name, score in principles.items()},
        "strengths": [name for name, score in principles.items() if score >= 80],
        "improvements": [name for name, score in principles.items() if score < 60],
    }


def gather_progress_data(db: Session, user_id, now: Optional[datetime] = None) -> dict:
    now = to_utc(now or utcnow())
    return {
        "snapshot": health_snapshot(db, user_id, now),
        "trends": monthly_trends(db, user_id, now),
        "goals": goal_progress(db, user_id, now, asset_types_only=True),
        "spending": spending_breakdown(db, user_id, now),
        "income": income_stability(db, user_id, now),
        "investments": investment_growth(db, user_id),
        "babylon_score": babylon_score(db, user_id, now),
        "timeframe": {"analyzed": now.date().isoformat(), "period": "12 months"},
    }


def basic_progress_report(data: dict) -> ProgressReport:
    """Rule-based report used when the AI report is unavailable."""
    insights: list[str] = []
    recommendations: list[Recommendation] = []
    trends = Trends()

    score = data["babylon_score"]["overall_score"]
    if score >= 80:
        insights.append(f"Excellent adherence to Babylon principles with {score}% score")
        trends.positive.append("Strong financial foundation following ancient wisdom")
    elif score < 60:
        insights.append(f"Room for improvement in Babylon principles ({score}% score)")
        trends.concerning.append("Financial habits need strengthening")

    latest_rate = data["trends"][-1]["savings_rate"] if data["trends"] else 0
    if latest_rate >= 20:
        trends.positive.append("Excellent savings rate above 20%")
    elif latest_rate < 10:
        trends.concerning.append("Savings rate below recommended 10%")
        recommendations.append(
            Recommendation(
                action="Increase savings rate to at least 10% of income",
                priority="high",
                reason="Babylon principle: Pay yourself first",
                expected_impact="Build long-term wealth foundation",
            )
        )

    net_worth = data["snapshot"]["net_worth"]
    if net_worth > 0:
        trends.positive.append("Positive net worth indicates good financial health")
    else:
        trends.concerning.append("Negative net worth needs attention")
        recommendations.append(
            Recommendation(
                action="Focus on debt reduction and asset building",
                priority="high",
                reason="Negative net worth limits financial options",
                expected_impact="Achieve financial stability",
            )
        )

    return ProgressReport(
        type="finance",
        summary=f"Financial health analysis shows {score}% Babylon score with R{net_worth:,.0f} net worth",
        metrics=data,
        insights=insights,
        recommendations=recommendations,
        trends=trends,
        next_steps=[
            "Review and optimize spending categories",
            "Increase emergency fund if needed",
            "Consider investment diversification",
            "Track progress monthly",
        ],
    )
