import json
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from assistant.logging_config import get_logger, redact_id
from assistant.models import Lead, Transaction
from assistant.schemas.confirmation import Candidate, ClassifierVerdict
from assistant.schemas.intents import DuplicateDetection
from assistant.services.ai_executor import AIRequestExecutor
from assistant.services.clock import ensure_timezone, to_utc, utcnow
from assistant.services.entity_matcher import (
    SIMILAR_CANDIDATE_LIMIT,
    find_similar_leads,
    find_similar_transactions,
)
from assistant.services.prompts import finance_duplicate_prompt, sales_duplicate_prompt

logger = get_logger("duplicate_classifier")

LEAD_SHORTLIST_SIZE = 15
TRANSACTION_SHORTLIST_SIZE = 20
TRANSACTION_LOOKBACK_DAYS = 14
FALLBACK_CONFIDENCE = 0.5
FALLBACK_RATIONALE = "AI detection failed, assuming unique to be safe"
AMOUNT_TOLERANCE = 0.01


def unique_fallback() -> ClassifierVerdict:
    """Verdict used whenever a duplicate check cannot be completed."""
    return ClassifierVerdict(verdict="UNIQUE", confidence=FALLBACK_CONFIDENCE, rationale=FALLBACK_RATIONALE)


def lead_candidate(lead: Lead) -> Candidate:
    return Candidate(
        id=str(lead.id),
        label=lead.name,
        fields={
            "phone": lead.phone,
            "status": lead.status,
            "next_step": lead.next_step,
            "notes": lead.notes,
        },
        created_at=ensure_timezone(lead.created_at),
    )


def transaction_candidate(transaction: Transaction) -> Candidate:
    return Candidate(
        id=str(transaction.id),
        label=transaction.description,
        fields={
            "amount": transaction.amount,
            "category": transaction.category,
            "date": ensure_timezone(transaction.date).isoformat() if transaction.date else None,
        },
        created_at=ensure_timezone(transaction.created_at),
    )


class DuplicateClassifier:
    """Asks the AI whether a proposed record repeats one the user already has.

    Only a short, recent slice of the user's data is sent. The classifier
    never writes anything and never raises: when the AI cannot answer it
    reports UNIQUE at 0.5 so the record still gets created.
    """

    def __init__(self, executor: AIRequestExecutor):
        self.executor = executor

    def recent_leads(self, db: Session, user_id) -> list[Lead]:
        return (
            db.query(Lead)
            .filter(Lead.user_id == user_id)
            .order_by(Lead.updated_at.desc())
            .limit(LEAD_SHORTLIST_SIZE)
            .all()
        )

    def recent_transactions(self, db: Session, user_id, now: Optional[datetime] = None) -> list[Transaction]:
        since = to_utc(now or utcnow()) - timedelta(days=TRANSACTION_LOOKBACK_DAYS)
        return (
            db.query(Transaction)
            .filter(Transaction.user_id == user_id, Transaction.created_at >= since)
            .order_by(Transaction.created_at.desc())
            .limit(TRANSACTION_SHORTLIST_SIZE)
            .all()
        )

    def check_lead(self, db: Session, user_id, name: str, phone: Optional[str] = None) -> ClassifierVerdict:
        try:
            shortlist = self.recent_leads(db, user_id)
            if not shortlist:
                return ClassifierVerdict(verdict="UNIQUE", confidence=1.0, rationale="No existing leads to compare")

            existing = "\n".join(
                f"- {lead.name}" + (f" (Phone: {lead.phone})" if lead.phone else "") for lead in shortlist
            )
            new_lead = name + (f" (Phone: {phone})" if phone else "")
            detection = self.executor.complete_json(
                sales_duplicate_prompt(),
                f"NEW LEAD: {new_lead}\n\nEXISTING LEADS:\n{existing}",
                DuplicateDetection,
                label="lead_duplicate_check",
                user_id=user_id,
            )
            verdict = ClassifierVerdict(
                verdict=detection.result,
                confidence=detection.confidence,
                rationale=detection.reasoning,
                matched_label=detection.matched_lead,
            )
        except Exception as exc:
            return self._fallback(exc, user_id, "lead")

        self._log_verdict(verdict, user_id, "lead", len(shortlist))
        return verdict

    def check_transaction(
        self, db: Session, user_id, fields: dict[str, Any], now: Optional[datetime] = None
    ) -> ClassifierVerdict:
        try:
            shortlist = self.recent_transactions(db, user_id, now)
            if not shortlist:
                return ClassifierVerdict(
                    verdict="UNIQUE", confidence=1.0, rationale="No recent transactions to compare"
                )

            recent = [
                {
                    "description": tx.description,
                    "amount": tx.amount,
                    "category": tx.category,
                    "date": ensure_timezone(tx.date).date().isoformat(),
                }
                for tx in shortlist
            ]
            proposed = {
                "description": fields.get("description"),
                "amount": fields.get("amount"),
                "category": fields.get("category"),
            }
            detection = self.executor.complete_json(
                finance_duplicate_prompt(),
                f"NEW TRANSACTION: {json.dumps(proposed)}\n\nRECENT TRANSACTIONS:\n{json.dumps(recent, indent=2)}",
                DuplicateDetection,
                label="transaction_duplicate_check",
                user_id=user_id,
            )
            verdict = ClassifierVerdict(
                verdict=detection.result,
                confidence=detection.confidence,
                rationale=detection.reasoning,
                matched_label=detection.matched_transaction or detection.matched_lead,
            )
        except Exception as exc:
            return self._fallback(exc, user_id, "transaction")

        self._log_verdict(verdict, user_id, "transaction", len(shortlist))
        return verdict

    def lead_candidates(self, db: Session, user_id, verdict: ClassifierVerdict) -> list[Candidate]:
        leads = find_similar_leads(db, user_id, verdict.matched_label)
        if not leads and verdict.matched_label:
            label = verdict.matched_label.lower()
            leads = [lead for lead in self.recent_leads(db, user_id) if lead.name.lower() in label]
        return [lead_candidate(lead) for lead in leads[:SIMILAR_CANDIDATE_LIMIT]]

    def transaction_candidates(
        self,
        db: Session,
        user_id,
        verdict: ClassifierVerdict,
        fields: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> list[Candidate]:
        transactions = find_similar_transactions(db, user_id, verdict.matched_label)
        if not transactions:
            shortlist = self.recent_transactions(db, user_id, now)
            label = (verdict.matched_label or "").lower()
            amount = fields.get("amount")
            transactions = [
                tx
                for tx in shortlist
                if (label and tx.description.lower() in label)
                or (amount is not None and abs(abs(tx.amount) - abs(amount)) < AMOUNT_TOLERANCE)
            ]
        return [transaction_candidate(tx) for tx in transactions[:SIMILAR_CANDIDATE_LIMIT]]

    def _fallback(self, exc: Exception, user_id, kind: str) -> ClassifierVerdict:
        logger.warning(
            f"{kind} duplicate detection failed, treating as unique: {exc}",
            extra={"context": {"user_id": redact_id(user_id), "kind": kind}},
        )
        return unique_fallback()

    def _log_verdict(self, verdict: ClassifierVerdict, user_id, kind: str, shortlist_size: int) -> None:
        logger.info(
            f"{kind} duplicate check: {verdict.verdict}",
            extra={
                "context": {
                    "user_id": redact_id(user_id),
                    "confidence": verdict.confidence,
                    "shortlist_size": shortlist_size,
                }
            },
        )
