"""LINE webhook：驗章 → 解析 JSON → 立即回 200，事件交給背景工作處理（回覆走 reply API，不走 HTTP 回應）"""
import json
import logging
from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from fastapi.responses import PlainTextResponse
from typing import Optional

from fieldops.config import settings
from fieldops.database import AsyncSessionLocal
from fieldops.services.line_api import LineApiClient
from fieldops.services.line_dispatcher import LineWebhookDispatcher
from fieldops.services.storage import LocalObjectStorage
from fieldops.utils.line_signature import verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api-line-webhook", tags=["line-webhook"])


def get_dispatcher() -> LineWebhookDispatcher:
    return LineWebhookDispatcher(AsyncSessionLocal, LineApiClient(), LocalObjectStorage())


@router.post("")
async def line_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_line_signature: Optional[str] = Header(None, alias="X-Line-Signature"),
    dispatcher: LineWebhookDispatcher = Depends(get_dispatcher),
):
    raw = await request.body()
    if not x_line_signature:
        return PlainTextResponse("Missing signature", status_code=401)
    if not verify_signature(settings.line_channel_secret, raw, x_line_signature):
        logger.warning("LINE webhook signature mismatch")
        return PlainTextResponse("Invalid signature", status_code=401)

    try:
        body = json.loads(raw)
    except ValueError:
        return PlainTextResponse("Invalid JSON", status_code=400)
    events = body.get("events") if isinstance(body, dict) else None
    if not isinstance(events, list):
        events = []

    if events:
        background_tasks.add_task(dispatcher.process_events, events)
    return PlainTextResponse("OK")
