from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse

from chatcommerce.dependencies import get_engine
from chatcommerce.logging_config import get_logger
from chatcommerce.schemas.webhook import WebhookPayload, WebhookResponse, extract_inbound_messages
from chatcommerce.services.engine import Engine

logger = get_logger("webhook")

router = APIRouter(tags=["webhook"])


def _verify(engine: Engine, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> PlainTextResponse:
    if mode == "subscribe" and token == engine.settings.whatsapp_verify_token:
        return PlainTextResponse(challenge or "")
    raise HTTPException(status_code=403, detail="Verification failed")


def _process(payload: WebhookPayload, engine: Engine, routing_path: Optional[str]) -> WebhookResponse:
    messages = extract_inbound_messages(payload)
    processed = 0
    for message in messages:
        try:
            engine.dispatcher.dispatch(message, routing_path=routing_path)
            processed += 1
        except Exception as e:
            logger.error(
                f"Dispatch failed: {e}",
                exc_info=True,
                extra={"context": {"from": message.from_, "routing_path": routing_path}},
            )
    if not messages:
        return WebhookResponse(success=True, processed=0, message="no messages")
    return WebhookResponse(success=processed == len(messages), processed=processed)


@router.get("/webhook")
def verify_shared(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    engine: Engine = Depends(get_engine),
):
    return _verify(engine, mode, token, challenge)


@router.get("/webhook/{path}")
def verify_tenant(
    path: str,
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    engine: Engine = Depends(get_engine),
):
    return _verify(engine, mode, token, challenge)


@router.post("/webhook", response_model=WebhookResponse)
def receive_shared(payload: WebhookPayload, engine: Engine = Depends(get_engine)):
    """Messages on the shared number; the tenant comes from the user's selection."""
    return _process(payload, engine, routing_path=None)


@router.post("/webhook/{path}", response_model=WebhookResponse)
def receive_tenant(path: str, payload: WebhookPayload, engine: Engine = Depends(get_engine)):
    return _process(payload, engine, routing_path=f"/webhook/{path}")
