"""Admin API for operators: advisor replies, releases, reloads and order status."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from chatcommerce.dependencies import get_engine, verify_admin_token
from chatcommerce.logging_config import get_logger
from chatcommerce.schemas.admin import AdvisorReplyRequest, ConversationOut, OrderStatusUpdate
from chatcommerce.services.advisor_state_machine import AdvisorState, parse_state
from chatcommerce.services.dispatcher import ADVISOR_EXIT_REPLY
from chatcommerce.services.engine import Engine
from chatcommerce.services.outbound import text_reply
from chatcommerce.services.phone import normalize_phone
from chatcommerce.services.tenant_registry import Tenant

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(verify_admin_token)])


def _tenant(engine: Engine, tenant_id: str) -> Tenant:
    tenant = engine.registry.get_by_id(tenant_id)
    if tenant is None:
        raise HTTPException(status_code=404, detail=f"Tenant '{tenant_id}' not found")
    return tenant


@router.post("/tenants/reload")
def reload_tenants(engine: Engine = Depends(get_engine)):
    count = engine.reload()
    return {"status": "ok", "tenants": count}


@router.get("/stats")
def stats(engine: Engine = Depends(get_engine)):
    return {
        "status": "ok",
        "tenants": len(engine.registry.all()),
        "bindings": engine.binder.count(),
        **engine.sessions.stats(),
    }


@router.get("/advisor/{tenant_id}/conversations", response_model=List[ConversationOut])
def list_conversations(tenant_id: str, state: Optional[str] = None, engine: Engine = Depends(get_engine)):
    tenant = _tenant(engine, tenant_id)
    wanted = parse_state(state) if state else None
    return [
        ConversationOut(
            id=c.id,
            user=c.user,
            customer_name=c.customer_name,
            state=c.state.value,
            last_activity=c.last_activity,
            handoff_count=c.handoff_count,
        )
        for c in engine.advisor.list_conversations(tenant, wanted)
    ]


@router.get("/advisor/{tenant_id}/conversations/{conversation_id}/messages")
def conversation_messages(tenant_id: str, conversation_id: str, engine: Engine = Depends(get_engine)):
    tenant = _tenant(engine, tenant_id)
    return {"conversation_id": conversation_id, "messages": engine.advisor.get_messages(tenant, conversation_id)}


@router.post("/advisor/{tenant_id}/{user}/reply")
def advisor_reply(tenant_id: str, user: str, request: AdvisorReplyRequest, engine: Engine = Depends(get_engine)):
    tenant = _tenant(engine, tenant_id)
    user = normalize_phone(user)
    if engine.advisor.verify_state(user, tenant) != AdvisorState.ACTIVE:
        raise HTTPException(status_code=409, detail="Advisor mode is not active for this user")

    delivery = engine.dispatcher.channel_for(tenant).deliver(user, text_reply(request.text))
    logged = engine.message_logger.log_advisor(user, tenant, request.text)
    if not logged.ok:
        logger.warning(f"Advisor reply not logged for {user}: {logged.error}")
    return {"ok": bool(delivery.get("ok")), "logged": logged.ok}


@router.post("/advisor/{tenant_id}/{user}/release")
def advisor_release(tenant_id: str, user: str, engine: Engine = Depends(get_engine)):
    tenant = _tenant(engine, tenant_id)
    user = normalize_phone(user)
    with engine.dispatcher.locks.lock((user, tenant.id)):
        result = engine.advisor.deactivate(user, tenant)
        if not result.ok:
            status_code = 404 if result.error_code == "not_found" else 502
            raise HTTPException(status_code=status_code, detail=result.error)
        engine.sessions.reset_state(user, tenant.id)
    engine.dispatcher.channel_for(tenant).deliver(user, text_reply(ADVISOR_EXIT_REPLY))
    return {"status": "ok", "state": result.value.value}


@router.delete("/sessions/{tenant_id}/{user}")
def reset_session(tenant_id: str, user: str, engine: Engine = Depends(get_engine)):
    tenant = _tenant(engine, tenant_id)
    user = normalize_phone(user)
    with engine.dispatcher.locks.lock((user, tenant.id)):
        engine.sessions.reset_state(user, tenant.id)
    return {"status": "ok"}


@router.post("/orders/{tenant_id}/{order_id}/status")
def update_order_status(tenant_id: str, order_id: str, update: OrderStatusUpdate, engine: Engine = Depends(get_engine)):
    tenant = _tenant(engine, tenant_id)
    result = engine.records_for(tenant).update_order_status(order_id, update.status)
    if not result.ok:
        status_code = 404 if result.error_code == "not_found" else 502
        raise HTTPException(status_code=status_code, detail=result.error)
    return {"status": "ok", "order_id": order_id, "order_status": result.value}
