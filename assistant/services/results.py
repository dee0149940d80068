"""Outcomes of domain actions.

Each action produces exactly one of these variants; the domain formatter
turns it into the reply text.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from assistant.models import Account, Lead, Transaction
from assistant.schemas.confirmation import ClassifierVerdict
from assistant.schemas.intents import ProgressReport


@dataclass(frozen=True)
class LeadCreated:
    lead: Lead
    was_existing: bool = False
    verdict: Optional[ClassifierVerdict] = None


@dataclass(frozen=True)
class LeadUpdated:
    lead: Lead
    was_existing: bool = True


@dataclass(frozen=True)
class LeadViewed:
    lead: Lead


@dataclass(frozen=True)
class LeadsQueried:
    leads: list[Lead]
    query_type: str = "all"


@dataclass(frozen=True)
class LeadDeleted:
    name: str


@dataclass(frozen=True)
class SalesSummary:
    total: int
    by_status: dict[str, int]
    today_followups: int
    overdue_followups: int
    recent: list[Lead] = field(default_factory=list)


@dataclass(frozen=True)
class DuplicatePrompt:
    message: str


@dataclass(frozen=True)
class ProgressReportResult:
    report: ProgressReport
    metrics: dict[str, Any]


@dataclass(frozen=True)
class ConversationReply:
    response: str
    user_data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransactionAdded:
    transaction: Transaction
    verdict: Optional[ClassifierVerdict] = None


@dataclass(frozen=True)
class AccountUpdated:
    account: Account
    created: bool = False


@dataclass(frozen=True)
class GoalProgress:
    goals: list[dict[str, Any]]


@dataclass(frozen=True)
class FinanceSummary:
    total_transactions: int
    monthly_income: float
    monthly_expenses: float
    savings_rate: int
    net_worth: float
    goals: list[dict[str, Any]] = field(default_factory=list)
    accounts: list[Account] = field(default_factory=list)


@dataclass(frozen=True)
class TransactionDeleted:
    description: str
    amount: float


@dataclass(frozen=True)
class AccountDeleted:
    name: str


@dataclass(frozen=True)
class Timeline:
    grouping: str
    buckets: list[dict[str, Any]]


@dataclass(frozen=True)
class TransactionEdited:
    transaction: Transaction
    changes: list[str] = field(default_factory=list)


SalesResult = Union[
    LeadCreated,
    LeadUpdated,
    LeadViewed,
    LeadsQueried,
    LeadDeleted,
    SalesSummary,
    DuplicatePrompt,
    ProgressReportResult,
    ConversationReply,
]

FinanceResult = Union[
    TransactionAdded,
    AccountUpdated,
    GoalProgress,
    FinanceSummary,
    TransactionDeleted,
    AccountDeleted,
    Timeline,
    TransactionEdited,
    DuplicatePrompt,
    ProgressReportResult,
    ConversationReply,
]
