"""Inbound Thinkific webhook endpoint."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from .config import Settings, get_settings
from .engine import SyncEngine
from .errors import InvalidSignature, InvalidWebhookPayload
from .events import WebhookEnvelope
from .runtime import get_sync_engine
from .thinkific import SIGNATURE_HEADER, verify_signature

router = APIRouter(tags=["webhooks"])
logger = logging.getLogger(__name__)

INVALID_PAYLOAD = "Invalid webhook payload"


@router.post("/api/webhooks/thinkific")
@router.post("/api/ortto", include_in_schema=False)
async def receive_webhook(
    request: Request,
    engine: SyncEngine = Depends(get_sync_engine),
    settings: Settings = Depends(get_settings),
) -> PlainTextResponse:
    body = await request.body()
    secret = settings.thinkific_webhook_secret
    if secret:
        try:
            verify_signature(body, request.headers.get(SIGNATURE_HEADER), secret)
        except InvalidSignature as exc:
            logger.warning("Rejected webhook: %s", exc)
            return PlainTextResponse(str(exc), status_code=status.HTTP_401_UNAUTHORIZED)

    try:
        envelope = WebhookEnvelope.parse(json.loads(body or b"null"))
    except (ValueError, InvalidWebhookPayload) as exc:
        logger.warning("Rejected malformed webhook body: %s", exc)
        return PlainTextResponse(INVALID_PAYLOAD, status_code=status.HTTP_400_BAD_REQUEST)

    try:
        result = await engine.dispatch(envelope)
    except ValidationError as exc:
        logger.warning("Rejected %s payload: %s", envelope.handler_key, exc)
        return PlainTextResponse(INVALID_PAYLOAD, status_code=status.HTTP_400_BAD_REQUEST)
    except Exception:  # noqa: BLE001
        logger.exception("Error processing webhook %s", envelope.handler_key)
        return PlainTextResponse("Error processing webhook", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.debug("Webhook %s handled: %s", envelope.handler_key, result.outcome.value)
    return PlainTextResponse(result.message, status_code=status.HTTP_200_OK)
