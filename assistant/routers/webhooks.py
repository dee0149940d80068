import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from assistant.context import AppContext, get_context
from assistant.database import get_db
from assistant.logging_config import get_logger
from assistant.schemas.api import WebhookResponse
from assistant.services.message_router import route_incoming

logger = get_logger("webhooks")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def parse_json_body(request: Request) -> Optional[Any]:
    """
    Parse a JSON webhook with tolerant decoding to avoid utf-8 crashes.
    Returns the payload or None.
    """
    try:
        return await request.json()
    except Exception as e:
        logger.warning(f"Standard request.json() failed: {e}, fallback decoding")

    raw = await request.body()
    for enc in ("utf-8", "latin-1"):
        try:
            return json.loads(raw.decode(enc, errors="replace"))
        except ValueError:
            continue

    logger.error("Failed to decode webhook payload after fallbacks")
    return None


async def _dispatch(ctx: AppContext, db: Session, platform: str, body: Any) -> WebhookResponse:
    if body is None:
        return WebhookResponse(success=False, message="Invalid payload")
    try:
        result = await run_in_threadpool(route_incoming, ctx, db, platform, body)
    except Exception as e:
        logger.error(f"{platform} webhook error: {e}", exc_info=e)
        return WebhookResponse(success=False, message="Internal error")
    if not result.ok:
        return WebhookResponse(success=False, message=result.error)
    return WebhookResponse(success=True, message=None if result.value else "No message")


@router.post("/telegram", response_model=WebhookResponse)
async def telegram_webhook(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    logger.info("Telegram webhook received")
    return await _dispatch(ctx, db, "telegram", await parse_json_body(request))


@router.post("/whatsapp", response_model=WebhookResponse)
async def whatsapp_webhook(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    logger.info("WhatsApp webhook received")
    return await _dispatch(ctx, db, "whatsapp", await parse_json_body(request))


@router.get("/whatsapp")
def whatsapp_verify(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    ctx: AppContext = Depends(get_context),
):
    expected = ctx.settings.whatsapp_verify_token
    if mode == "subscribe" and expected and token == expected:
        return PlainTextResponse(challenge or "")
    return JSONResponse({"error": "Forbidden"}, status_code=403)


@router.post("/sms", response_model=WebhookResponse)
async def sms_webhook(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    logger.info("SMS webhook received")
    try:
        form = dict(await request.form())
    except Exception as e:
        logger.warning(f"SMS form parse failed: {e}")
        form = None
    return await _dispatch(ctx, db, "sms", form)
