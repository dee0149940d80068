from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from assistant.context import AppContext, get_context
from assistant.database import get_db
from assistant.logging_config import get_logger
from assistant.models import Lead, Transaction, User
from assistant.schemas.api import HealthResponse, UserSummary, UsersResponse

logger = get_logger("health")

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health(db: Session = Depends(get_db), ctx: AppContext = Depends(get_context)):
    try:
        db.execute(text("SELECT 1"))
        stats = {
            "users": db.query(func.count(User.id)).scalar() or 0,
            "leads": db.query(func.count(Lead.id)).scalar() or 0,
            "transactions": db.query(func.count(Transaction.id)).scalar() or 0,
        }
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse({"status": "unhealthy", "error": "Database connection failed"}, status_code=500)

    return HealthResponse(
        status="healthy",
        timestamp=ctx.now(),
        services={"database": "connected", "ai": ctx.executor.provider_name},
        stats=stats,
    )


@router.get("/users", response_model=UsersResponse)
def list_users(db: Session = Depends(get_db)):
    lead_counts = dict(db.query(Lead.user_id, func.count(Lead.id)).group_by(Lead.user_id).all())
    transaction_counts = dict(
        db.query(Transaction.user_id, func.count(Transaction.id)).group_by(Transaction.user_id).all()
    )
    users = db.query(User).order_by(User.created_at.desc()).all()
    return UsersResponse(
        users=[
            UserSummary.model_validate(user).model_copy(
                update={
                    "lead_count": lead_counts.get(user.id, 0),
                    "transaction_count": transaction_counts.get(user.id, 0),
                }
            )
            for user in users
        ]
    )
