import json
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from assistant.logging_config import get_logger, redact_id
from assistant.models import Account, Transaction
from assistant.models.enums import AccountType, BabylonPrinciple, TransactionCategory
from assistant.schemas.confirmation import Candidate, ClassifierVerdict, PendingConfirmation
from assistant.schemas.intents import (
    AccountFields,
    FinanceUpdate,
    ProgressDetection,
    ProgressReport,
    TransactionFields,
)
from assistant.services import finance_metrics
from assistant.services.ai_executor import optional_complete_json
from assistant.services.clock import ensure_timezone, from_local, local_time, to_utc
from assistant.services.confirmation_flow import ConfirmationFlow, new_pending
from assistant.services.duplicate_classifier import unique_fallback
from assistant.services.entity_matcher import clean_name, find_existing_account, find_existing_transaction
from assistant.services.error_messages import log_and_format
from assistant.services.errors import EntityNotFoundError, InvalidIntentError
from assistant.services.prompts import finance_intent_prompt, progress_detection_prompt, progress_report_prompt
from assistant.services.results import (
    AccountDeleted,
    AccountUpdated,
    ConversationReply,
    DuplicatePrompt,
    FinanceResult,
    FinanceSummary,
    GoalProgress,
    ProgressReportResult,
    Timeline,
    TransactionAdded,
    TransactionDeleted,
    TransactionEdited,
)

logger = get_logger("finance_service")

PROGRESS_CONFIDENCE_THRESHOLD = 0.7
TIMELINE_DAYS = 30
CONTEXT_TRANSACTION_LIMIT = 10


def money(amount: Optional[float]) -> str:
    """R89.50, -R12 style amounts."""
    amount = float(amount or 0.0)
    text = f"{abs(amount):,.2f}".rstrip("0").rstrip(".")
    return f"-R{text}" if amount < 0 else f"R{text}"


def _match_enum(value: Optional[str], enum_cls) -> Optional[str]:
    if not value:
        return None
    wanted = value.strip().lower()
    for member in enum_cls:
        if member.value.lower() == wanted:
            return member.value
    return None


def normalize_category(value: Optional[str], amount: Optional[float] = None) -> str:
    category = _match_enum(value, TransactionCategory)
    if category:
        return category
    if amount is not None and amount > 0:
        return TransactionCategory.INCOME.value
    return TransactionCategory.VARIABLE_EXPENSES.value


def format_duplicate_prompt(verdict: ClassifierVerdict, proposed: dict) -> str:
    lines = ["🤔 **Potential Duplicate Transaction!**", ""]
    if verdict.matched_label:
        lines.append(f"I found a similar transaction: **{verdict.matched_label}**")
    lines.append(f"📊 Confidence: {verdict.confidence_percent}%")
    lines.append(f"💭 Reasoning: {verdict.rationale}")
    lines += [
        "",
        "**What you wanted to add:**",
        f"💰 **{proposed.get('description')}** {money(proposed.get('amount'))}",
        f"📁 Category: {proposed.get('category')}",
        "",
        "**What would you like to do?**",
        '• Reply **"yes"** - Add as new transaction anyway',
        '• Reply **"update"** - Update the existing transaction instead',
        '• Reply **"show"** - Show me more details about the existing transaction',
        '• Reply **"cancel"** - Cancel this action',
    ]
    return "\n".join(lines)


def format_transaction_details(transaction: Transaction, tz_name: str) -> str:
    date = local_time(transaction.date or transaction.created_at, tz_name)
    response = "💰 **Transaction Details:**\n"
    response += f"• Description: {transaction.description}\n"
    response += f"• Amount: {money(transaction.amount)}\n"
    response += f"• Category: {transaction.category}\n"
    response += f"• Date: {date.strftime('%d/%m/%Y')}"
    if transaction.babylon_principle:
        response += f"\n• Babylon Principle: {transaction.babylon_principle}"
    return response


def format_with_extras(response: str, update: FinanceUpdate) -> str:
    if update.babylon_wisdom:
        response += f"\n\n🏛️ **Babylon Wisdom:** {update.babylon_wisdom}"
    if update.suggestions:
        response += "\n\n💡 **AI Suggestions:**\n"
        for i, suggestion in enumerate(update.suggestions, start=1):
            response += f"{i}. {suggestion.action}\n"
            if suggestion.reason:
                response += f"   *{suggestion.reason}*\n"
    if update.smart_advice:
        response += "\n\n🎯 **Smart Advice:**\n"
        for tip in update.smart_advice:
            response += f"• {tip}\n"
    return response.strip()


def format_progress_report(report: ProgressReport, data: dict) -> str:
    babylon = data["babylon_score"]
    snapshot = data["snapshot"]

    response = "💰 **Financial Health Report**\n\n"
    response += f"🏛️ **Babylon Principles Score: {babylon['overall_score']}%**\n"
    if babylon["strengths"]:
        response += f"✅ Strengths: {', '.join(babylon['strengths'])}\n"
    if babylon["improvements"]:
        response += f"🎯 Areas to improve: {', '.join(babylon['improvements'])}\n"

    response += "\n📊 **Financial Snapshot:**\n"
    response += f"• Net Worth: {money(snapshot['net_worth'])}\n"
    response += f"• Assets: {money(snapshot['total_assets'])}\n"
    response += f"• Emergency Fund: {snapshot['emergency_fund_months']} months coverage\n"
    response += f"• Investment Allocation: {snapshot['investment_percentage']}%\n\n"

    if data["trends"]:
        latest = data["trends"][-1]
        response += "💹 **Latest Month Performance:**\n"
        response += f"• Income: {money(latest['income'])}\n"
        response += f"• Expenses: {money(latest['expenses'])}\n"
        response += f"• Savings: {money(latest['savings'])}\n"
        response += f"• Savings Rate: {latest['savings_rate']}%\n\n"

    if data["goals"]:
        response += "🎯 **Savings Goals Progress:**\n"
        for goal in data["goals"]:
            response += f"• {goal['name']}: {goal['progress']}% ({money(goal['current'])} / {money(goal['target'])})\n"
        response += "\n"

    if report.insights:
        response += "🧠 **Key Insights:**\n" + "".join(f"• {insight}\n" for insight in report.insights) + "\n"
    if report.recommendations:
        response += "💡 **Recommendations:**\n"
        for i, rec in enumerate(report.recommendations, start=1):
            priority = {"high": "🔴", "medium": "🟡"}.get(rec.priority, "🟢")
            response += f"{i}. {priority} {rec.action}\n"
            if rec.reason:
                response += f"   *{rec.reason}*\n"
    return response.rstrip()


def format_finance_result(result: FinanceResult, update: FinanceUpdate, tz_name: str) -> str:
    """Render a finance action outcome. Every variant has a branch."""
    if isinstance(result, DuplicatePrompt):
        return result.message

    if isinstance(result, ProgressReportResult):
        return format_progress_report(result.report, result.metrics)

    response = update.contextual_opening or ""

    if isinstance(result, TransactionAdded):
        tx = result.transaction
        response += f"\n\n💰 **Transaction recorded**: {tx.description} {money(tx.amount)}"
        response += f"\n📁 Category: {tx.category}"
        if tx.babylon_principle:
            response += f"\n🏛️ Principle: {tx.babylon_principle}"
        if result.verdict is not None and not result.verdict.is_duplicate:
            response += (
                f"\n\n🧠 **AI confirmed unique transaction** ({result.verdict.confidence_percent}% confidence)"
            )

    elif isinstance(result, AccountUpdated):
        account = result.account
        verb = "created" if result.created else "updated"
        response += f"\n\n🏦 **Account {verb}**: {account.name}"
        response += f"\n💰 Balance: {money(account.current_balance)}"
        if account.target_amount:
            progress = round(account.current_balance / account.target_amount * 100)
            response += f"\n🎯 Progress: {progress}% of {money(account.target_amount)} goal"

    elif isinstance(result, GoalProgress):
        response += "\n\n📊 **Goal Progress:**\n"
        if result.goals:
            for goal in result.goals:
                response += f"• {goal['name']}: {goal['progress']}% ({money(goal['current'])} / {money(goal['target'])})\n"
                if goal["remaining"] > 0:
                    response += f"  Still need: {money(goal['remaining'])}\n"
        else:
            response += "No active savings goals. Want to set one up?"

    elif isinstance(result, FinanceSummary):
        response += (
            "\n\n📈 **Financial Summary:**\n"
            f"• Net Worth: {money(result.net_worth)}\n"
            f"• Monthly Income: {money(result.monthly_income)}\n"
            f"• Monthly Expenses: {money(result.monthly_expenses)}\n"
            f"• Savings Rate: {result.savings_rate}%\n"
            f"• Active Goals: {len(result.goals)}\n"
            f"• Total Transactions: {result.total_transactions}"
        )
        if result.accounts:
            response += "\n\n💳 **Accounts:**"
            for account in result.accounts:
                response += f"\n• {account.name}: {money(account.current_balance)}"

    elif isinstance(result, TransactionDeleted):
        response += f"\n\n🗑️ **Transaction deleted**: {result.description} {money(result.amount)}"

    elif isinstance(result, AccountDeleted):
        response += f"\n\n🗑️ **Account deleted**: {result.name}"

    elif isinstance(result, Timeline):
        response += "\n\n📅 **Recent Financial Activity:**\n"
        if result.buckets:
            for bucket in result.buckets:
                response += (
                    f"\n**{bucket['label']}** (in {money(bucket['income'])}, out {money(bucket['expenses'])})\n"
                )
                for tx in bucket["transactions"]:
                    date = local_time(tx.date or tx.created_at, tz_name).strftime("%d/%m")
                    sign = "+" if tx.amount > 0 else ""
                    response += f"• {date}: {tx.description} {sign}{money(tx.amount)}\n"
        else:
            response += "No recent transactions found."

    elif isinstance(result, TransactionEdited):
        tx = result.transaction
        response += f"\n\n✏️ **Transaction updated**: {tx.description} {money(tx.amount)}"
        if result.changes:
            response += f"\n🔄 Changed: {', '.join(result.changes)}"

    elif isinstance(result, ConversationReply):
        response = result.response
        data = result.user_data
        if data.get("total_transactions") == 0:
            response += "\n\n💡 *Ready to start tracking your finances? Try telling me about a recent expense or income.*"
        elif data.get("savings_rate", 0) > 15:
            response += f"\n\n🎉 *You're doing amazing with a {data['savings_rate']}% savings rate!*"
        elif data.get("savings_rate", 0) < 5:
            response += (
                "\n\n💪 *There's room to improve your savings rate. "
                "The Babylonians recommend saving at least 10%.*"
            )
        if data.get("net_worth", 0) > 0:
            response += (
                f"\n\n💎 *Your positive net worth of {money(data['net_worth'])} shows good financial health!*"
            )

    else:
        raise TypeError(f"Unhandled finance result: {type(result).__name__}")

    return format_with_extras(response, update)


class FinanceService:
    """Ledger of transactions, accounts and savings goals.

    Mirrors SalesService: the same confirmation flow guards duplicate
    transactions, and this class is the finance confirmation handler.
    """

    domain = "finance"
    entity_noun = "transaction"
    show_hint = "💭 *Reply with 'update' to merge with this transaction, or 'yes' to add separately*"

    def __init__(self, ctx):
        self.ctx = ctx
        self.executor = ctx.executor
        self.classifier = ctx.classifier
        self.tz_name = ctx.settings.timezone
        self.confirmations = ConfirmationFlow(ctx.confirmations, self, self.domain)

    def process_message(self, db: Session, user_id, message: str, conversation_history: Optional[str] = None) -> str:
        """Handle one finance message end to end. Never raises."""
        try:
            reply = self.confirmations.handle(db, user_id, message)
            if reply is not None:
                return reply

            now = self.ctx.now()
            prompt = finance_intent_prompt(self.user_context(db, user_id, now), conversation_history, now, self.tz_name)
            update = self.executor.complete_json(prompt, message, FinanceUpdate, label="finance", user_id=user_id)
            result = self.dispatch(db, user_id, update, message)
            return format_finance_result(result, update, self.tz_name)
        except (EntityNotFoundError, InvalidIntentError) as exc:
            db.rollback()
            logger.info(f"Finance request rejected: {exc}", extra={"context": {"user_id": redact_id(user_id)}})
            return f"❌ {exc}"
        except Exception as exc:
            db.rollback()
            return log_and_format(exc, "Finance", user_id)

    def dispatch(self, db: Session, user_id, update: FinanceUpdate, message: str) -> FinanceResult:
        if update.action == "add_transaction":
            return self.add_transaction(db, user_id, update.transaction)
        if update.action == "update_account":
            return self.update_account(db, user_id, update.account)
        if update.action == "check_goal":
            return GoalProgress(finance_metrics.goal_progress(db, user_id))
        if update.action == "summary":
            return self.summary(db, user_id)
        if update.action == "delete_transaction":
            return self.delete_transaction(db, user_id, update.transaction)
        if update.action == "delete_account":
            return self.delete_account(db, user_id, update.account)
        if update.action == "timeline":
            return self.timeline(db, user_id, update.grouping)
        if update.action == "edit_transaction":
            return self.edit_transaction(db, user_id, update.transaction)
        return self.conversation(db, user_id, update, message)

    def add_transaction(self, db: Session, user_id, fields: Optional[TransactionFields]) -> FinanceResult:
        # No exact-match short circuit: the same spend twice is often legitimate.
        if fields is None or not clean_name(fields.description) or fields.amount is None:
            raise InvalidIntentError("I need a description and an amount to record that transaction.")

        proposed = self._proposed_transaction(fields)
        now = self.ctx.now()
        verdict = self.classifier.check_transaction(db, user_id, proposed, now)
        if verdict.is_duplicate:
            candidates = self.classifier.transaction_candidates(db, user_id, verdict, proposed, now)
            if self.confirmations.begin(user_id, new_pending("duplicate_transaction", proposed, verdict, candidates)):
                return DuplicatePrompt(format_duplicate_prompt(verdict, proposed))
            logger.warning(
                "Could not park duplicate transaction question, saving as unique",
                extra={"context": {"user_id": redact_id(user_id)}},
            )
            verdict = unique_fallback()

        transaction = self._insert_transaction(db, user_id, proposed)
        return TransactionAdded(transaction, verdict)

    def update_account(self, db: Session, user_id, fields: Optional[AccountFields]) -> AccountUpdated:
        name = clean_name(fields.name if fields else None)
        if not name:
            raise InvalidIntentError("Which account should I update? Please give it a name.")

        account_type = _match_enum(fields.type, AccountType)
        account = (
            db.query(Account)
            .filter(Account.user_id == user_id, func.lower(Account.name) == name.lower())
            .first()
        )
        created = account is None
        if created:
            account = Account(
                user_id=user_id,
                name=name,
                type=account_type or AccountType.ASSET.value,
                current_balance=fields.current_balance or 0.0,
                target_amount=fields.target_amount,
            )
            db.add(account)
        else:
            if fields.current_balance is not None:
                account.current_balance = fields.current_balance
            if fields.target_amount is not None:
                account.target_amount = fields.target_amount
            if account_type:
                account.type = account_type
        db.commit()
        logger.info(
            f"Account {'created' if created else 'updated'}",
            extra={"context": {"user_id": redact_id(user_id), "account_id": redact_id(account.id)}},
        )
        return AccountUpdated(account, created=created)

    def summary(self, db: Session, user_id) -> FinanceSummary:
        now = self.ctx.now()
        income = finance_metrics.monthly_income(db, user_id, now)
        expenses = finance_metrics.monthly_expenses(db, user_id, now)
        snapshot = finance_metrics.health_snapshot(db, user_id, now)
        return FinanceSummary(
            total_transactions=snapshot["transaction_count"],
            monthly_income=income,
            monthly_expenses=expenses,
            savings_rate=finance_metrics.savings_rate(income, expenses),
            net_worth=snapshot["net_worth"],
            goals=finance_metrics.goal_progress(db, user_id),
            accounts=db.query(Account).filter(Account.user_id == user_id).order_by(Account.name).all(),
        )

    def delete_transaction(self, db: Session, user_id, fields: Optional[TransactionFields]) -> TransactionDeleted:
        transaction = self._require_transaction(db, user_id, fields)
        description, amount = transaction.description, transaction.amount
        db.delete(transaction)
        db.commit()
        return TransactionDeleted(description, amount)

    def delete_account(self, db: Session, user_id, fields: Optional[AccountFields]) -> AccountDeleted:
        if fields is None or not (fields.id or clean_name(fields.name)):
            raise InvalidIntentError("Which account should I delete? Please give me its name.")
        account = None
        if fields.id:
            account = self._by_id(db, Account, user_id, fields.id)
        if account is None:
            account = find_existing_account(db, user_id, fields.name)
        if account is None:
            raise EntityNotFoundError(f'Account "{clean_name(fields.name) or fields.id}" not found')
        name = account.name
        db.delete(account)
        db.commit()
        return AccountDeleted(name)

    def timeline(self, db: Session, user_id, grouping: str = "week") -> Timeline:
        since = to_utc(self.ctx.now()) - timedelta(days=TIMELINE_DAYS)
        transactions = (
            db.query(Transaction)
            .filter(Transaction.user_id == user_id, Transaction.created_at >= since)
            .order_by(Transaction.date.desc())
            .all()
        )
        buckets: "OrderedDict[str, dict]" = OrderedDict()
        for tx in transactions:
            local = local_time(tx.date or tx.created_at, self.tz_name)
            if grouping == "month":
                label = local.strftime("%B %Y")
            else:
                week_start = (local - timedelta(days=local.weekday())).date()
                label = f"Week of {week_start.strftime('%d %b')}"
            bucket = buckets.setdefault(label, {"label": label, "income": 0.0, "expenses": 0.0, "transactions": []})
            if tx.amount > 0:
                bucket["income"] += tx.amount
            else:
                bucket["expenses"] += abs(tx.amount)
            bucket["transactions"].append(tx)
        return Timeline(grouping, list(buckets.values()))

    def edit_transaction(self, db: Session, user_id, fields: Optional[TransactionFields]) -> TransactionEdited:
        transaction = self._require_transaction(db, user_id, fields)
        proposed = self._proposed_transaction(fields, partial=True)
        if not fields.id:
            # without an id the description only located the transaction
            proposed.pop("description", None)
        changes = self._apply_transaction_fields(transaction, proposed)
        db.commit()
        return TransactionEdited(transaction, changes)

    def conversation(self, db: Session, user_id, update: FinanceUpdate, message: str) -> FinanceResult:
        detection = optional_complete_json(
            self.executor,
            progress_detection_prompt("finance", message),
            "",
            ProgressDetection,
            label="finance_progress_detection",
            user_id=user_id,
        )
        if (
            detection is not None
            and detection.is_progress_request
            and detection.confidence > PROGRESS_CONFIDENCE_THRESHOLD
        ):
            return self.progress_report(db, user_id)

        summary = self.summary(db, user_id)
        return ConversationReply(
            response=update.contextual_opening or "I'm here to help with your finances!",
            user_data={
                "total_transactions": summary.total_transactions,
                "savings_rate": summary.savings_rate,
                "net_worth": summary.net_worth,
                "has_goals": bool(summary.goals),
            },
        )

    def progress_report(self, db: Session, user_id) -> ProgressReportResult:
        data = finance_metrics.gather_progress_data(db, user_id, self.ctx.now())
        report = optional_complete_json(
            self.executor,
            progress_report_prompt("finance"),
            json.dumps(data, default=str),
            ProgressReport,
            label="finance_progress_report",
            user_id=user_id,
        )
        return ProgressReportResult(report or finance_metrics.basic_progress_report(data), data)

    def user_context(self, db: Session, user_id, now: datetime) -> str:
        income = finance_metrics.monthly_income(db, user_id, now)
        expenses = finance_metrics.monthly_expenses(db, user_id, now)
        snapshot = finance_metrics.health_snapshot(db, user_id, now)
        lines = ["", "USER FINANCIAL CONTEXT:"]

        accounts = db.query(Account).filter(Account.user_id == user_id).order_by(Account.name).all()
        if accounts:
            lines.append("ACCOUNTS:")
            for account in accounts:
                goal = ""
                if account.target_amount:
                    goal = (
                        f" ({round(account.current_balance / account.target_amount * 100)}% "
                        f"of {money(account.target_amount)} goal)"
                    )
                lines.append(f"- {account.name} [{account.type}]: {money(account.current_balance)}{goal}")
        else:
            lines.append("ACCOUNTS: None created yet")

        lines += [
            "MONTHLY SUMMARY:",
            f"- Income: {money(income)}",
            f"- Expenses: {money(expenses)}",
            f"- Savings Rate: {finance_metrics.savings_rate(income, expenses)}%",
            f"- Net Worth: {money(snapshot['net_worth'])}",
        ]

        recent = (
            db.query(Transaction)
            .filter(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc())
            .limit(CONTEXT_TRANSACTION_LIMIT)
            .all()
        )
        if recent:
            lines.append("RECENT ACTIVITY (id | date | description | amount | category):")
            for tx in recent:
                date = local_time(tx.date or tx.created_at, self.tz_name).strftime("%Y-%m-%d")
                lines.append(f"- {tx.id} | {date} | {tx.description} | {money(tx.amount)} | {tx.category}")
        else:
            lines.append("RECENT ACTIVITY: No transactions tracked yet")

        if snapshot["transaction_count"] > 10:
            lines += [
                "FINANCIAL HEALTH:",
                f"- Emergency fund coverage: {snapshot['emergency_fund_months']} months",
                f"- Debt-to-income ratio: {snapshot['debt_to_income_ratio']}%",
                f"- Investment allocation: {snapshot['investment_percentage']}%",
            ]
        return "\n".join(lines)

    # Confirmation handler

    def create_from_pending(self, db: Session, user_id, pending: PendingConfirmation) -> str:
        transaction = self._insert_transaction(db, user_id, pending.proposed_entity)
        return (
            f"✅ **Added new transaction: {transaction.description}** {money(transaction.amount)}\n\n"
            "💡 *You chose to add as separate from similar transaction*"
        )

    def merge_into_candidate(self, db: Session, user_id, pending: PendingConfirmation, candidate: Candidate) -> str:
        transaction = self._by_id(db, Transaction, user_id, candidate.id)
        if transaction is None:
            raise EntityNotFoundError("Transaction no longer exists")
        self._apply_transaction_fields(transaction, pending.proposed_entity)
        db.commit()
        return (
            f"✅ **Updated existing transaction: {transaction.description}** {money(transaction.amount)}\n\n"
            "💡 *Merged with previous transaction as requested*"
        )

    def describe_candidate(self, db: Session, user_id, candidate: Candidate) -> str:
        transaction = self._by_id(db, Transaction, user_id, candidate.id)
        if transaction is None:
            raise EntityNotFoundError("Transaction no longer exists")
        return format_transaction_details(transaction, self.tz_name)

    # Persistence helpers

    def _proposed_transaction(self, fields: TransactionFields, partial: bool = False) -> dict:
        proposed = {
            "description": clean_name(fields.description) or None,
            "amount": fields.amount,
            "category": (
                _match_enum(fields.category, TransactionCategory)
                if partial
                else normalize_category(fields.category, fields.amount)
            ),
            "babylon_principle": _match_enum(fields.babylon_principle, BabylonPrinciple),
            "date": from_local(fields.date, self.tz_name).isoformat() if fields.date else None,
        }
        return {key: value for key, value in proposed.items() if value is not None}

    def _insert_transaction(self, db: Session, user_id, proposed: dict) -> Transaction:
        date = proposed.get("date")
        transaction = Transaction(
            user_id=user_id,
            description=proposed["description"],
            amount=float(proposed["amount"]),
            category=normalize_category(proposed.get("category"), proposed.get("amount")),
            babylon_principle=proposed.get("babylon_principle"),
        )
        if date:
            transaction.date = to_utc(datetime.fromisoformat(date))
        db.add(transaction)
        db.commit()
        logger.info(
            "Transaction recorded",
            extra={"context": {"user_id": redact_id(user_id), "transaction_id": redact_id(transaction.id)}},
        )
        return transaction

    def _apply_transaction_fields(self, transaction: Transaction, proposed: dict) -> list[str]:
        changes = []
        for key in ("description", "amount", "category", "babylon_principle"):
            value = proposed.get(key)
            if value is not None and value != getattr(transaction, key):
                setattr(transaction, key, value)
                changes.append(key.replace("_", " "))
        if proposed.get("date"):
            new_date = to_utc(datetime.fromisoformat(proposed["date"]))
            if ensure_timezone(transaction.date) != new_date:
                transaction.date = new_date
                changes.append("date")
        return changes

    def _require_transaction(self, db: Session, user_id, fields: Optional[TransactionFields]) -> Transaction:
        if fields is None or not (fields.id or clean_name(fields.description)):
            raise InvalidIntentError("Which transaction do you mean? Please describe it.")
        transaction = None
        if fields.id:
            transaction = self._by_id(db, Transaction, user_id, fields.id)
        if transaction is None:
            transaction = find_existing_transaction(db, user_id, fields.description)
        if transaction is None:
            raise EntityNotFoundError(f'Transaction "{clean_name(fields.description) or fields.id}" not found')
        return transaction

    @staticmethod
    def _by_id(db: Session, model, user_id, record_id: Optional[str]):
        try:
            key = uuid.UUID(str(record_id))
        except (TypeError, ValueError):
            return None
        return db.query(model).filter(model.user_id == user_id, model.id == key).first()
