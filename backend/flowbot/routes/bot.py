# /flowbot/routes/bot.py

from typing import Any, Dict, List, Optional
import structlog
from fastapi import APIRouter, Body, Depends, HTTPException

from flowbot.config.settings import settings
from flowbot.models.api import APIResponse, ProcessMessageResult
from flowbot.models.messages import BotIncomingMessage
from flowbot.services.flow_cache import FlowFetchError
from flowbot.services.flow_store import flow_store
from flowbot.services.response_builder import build_payloads
from flowbot.utils.dependencies import verify_api_key
from flowbot.workflows.engine import bot_engine

# Endpoints used by the channel integration: run one conversation turn, and
# manage the tenant flows the engine triggers.

router = APIRouter(
    prefix="/bot",
    tags=["Bot"],
    dependencies=[Depends(verify_api_key)],
)
log = structlog.get_logger(__name__)


@router.post("/messages", response_model=ProcessMessageResult)
async def process_message(message: BotIncomingMessage, include_payloads: bool = False):
    """
    Run one turn for an inbound message. The caller sends the returned
    messages, stores `contextUpdates` and carries out the actions.
    """
    try:
        response = await bot_engine.process_message(message)
    except FlowFetchError as e:
        log.error("flow_fetch_unavailable", tenant_id=e.tenant_id, error=str(e))
        raise HTTPException(status_code=503, detail="Flow definitions are temporarily unavailable")

    payloads = build_payloads(message.contact.phone, response.messages) if include_payloads else None
    return ProcessMessageResult(response=response, payloads=payloads)


@router.put("/tenants/{tenant_id}/flows", response_model=APIResponse)
async def replace_tenant_flows(tenant_id: str, raw_flows: List[Dict[str, Any]] = Body(...)):
    """Replace a tenant's flows. Invalid flows are reported and skipped."""
    flows = flow_store.replace_flows(tenant_id, raw_flows)
    bot_engine.clear_flow_cache(tenant_id)

    accepted = [flow.id for flow in flows]
    rejected = [raw.get("id") for raw in raw_flows if raw.get("id") not in accepted]
    return APIResponse(
        success=not rejected,
        message=f"Stored {len(accepted)} of {len(raw_flows)} flows.",
        data={"accepted": accepted, "rejected": rejected},
        version=settings.api_version,
    )


@router.delete("/cache", response_model=APIResponse)
async def clear_flow_cache(tenant_id: Optional[str] = None):
    bot_engine.clear_flow_cache(tenant_id)
    return APIResponse(
        success=True,
        message=f"Flow cache cleared for {tenant_id or 'all tenants'}.",
        version=settings.api_version,
    )
