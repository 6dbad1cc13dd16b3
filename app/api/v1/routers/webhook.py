import hmac
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.settings import settings
from app.schemas.loan import WebhookAck
from app.services import loan_lifecycle

router = APIRouter(prefix="/webhook", tags=["webhook"])


def _verify_secret(provided: str | None) -> None:
    expected = settings.webhook_secret
    if not expected:
        return
    if not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")


@router.post("/form-entries", response_model=WebhookAck)
async def receive_form_entry(
    payload: dict[str, Any] = Body(...),
    webhook_secret: str | None = Header(default=None, alias="X-Webhook-Secret"),
    db: AsyncSession = Depends(deps.get_db_session),
) -> WebhookAck:
    _verify_secret(webhook_secret)
    loan = await loan_lifecycle.ingest_submission(db, payload)
    return WebhookAck(id=loan.id, wp_entry_id=loan.wp_entry_id)
