import re
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from assistant.models import Account, Lead, Transaction

SIMILAR_CANDIDATE_LIMIT = 3


def clean_name(name: Optional[str]) -> str:
    """Trim and collapse whitespace. Case is preserved for storage."""
    return re.sub(r"\s+", " ", (name or "").strip())


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _contains(column, value: str):
    return func.lower(column).like(f"%{_escape_like(value.lower())}%", escape="\\")


def find_existing_lead(db: Session, user_id, name: Optional[str], phone: Optional[str] = None) -> Optional[Lead]:
    """Resolve a lead deterministically: exact name, then phone, then substring."""
    name = clean_name(name)
    base = db.query(Lead).filter(Lead.user_id == user_id)

    strategies = []
    if name:
        strategies.append(func.lower(Lead.name) == name.lower())
    if phone:
        strategies.append(Lead.phone == phone.strip())
    if name:
        strategies.append(_contains(Lead.name, name))

    for clause in strategies:
        lead = base.filter(clause).order_by(Lead.updated_at.desc()).first()
        if lead:
            return lead
    return None


def find_existing_account(db: Session, user_id, name: Optional[str]) -> Optional[Account]:
    name = clean_name(name)
    if not name:
        return None
    base = db.query(Account).filter(Account.user_id == user_id)
    for clause in (func.lower(Account.name) == name.lower(), _contains(Account.name, name)):
        account = base.filter(clause).order_by(Account.updated_at.desc()).first()
        if account:
            return account
    return None


def find_existing_transaction(db: Session, user_id, description: Optional[str]) -> Optional[Transaction]:
    description = clean_name(description)
    if not description:
        return None
    base = db.query(Transaction).filter(Transaction.user_id == user_id)
    for clause in (
        func.lower(Transaction.description) == description.lower(),
        _contains(Transaction.description, description),
    ):
        transaction = base.filter(clause).order_by(Transaction.created_at.desc()).first()
        if transaction:
            return transaction
    return None


def find_similar_leads(db: Session, user_id, label: Optional[str], limit: int = SIMILAR_CANDIDATE_LIMIT) -> list[Lead]:
    label = clean_name(label)
    if not label:
        return []
    return (
        db.query(Lead)
        .filter(Lead.user_id == user_id, _contains(Lead.name, label))
        .order_by(Lead.updated_at.desc())
        .limit(limit)
        .all()
    )


def find_similar_transactions(
    db: Session, user_id, label: Optional[str], limit: int = SIMILAR_CANDIDATE_LIMIT
) -> list[Transaction]:
    label = clean_name(label)
    if not label:
        return []
    return (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id, _contains(Transaction.description, label))
        .order_by(Transaction.created_at.desc())
        .limit(limit)
        .all()
    )
