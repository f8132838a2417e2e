import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import Field

from harmony_ai.context import GenerationContext
from harmony_ai.models.generation import GenerationStatus
from harmony_ai.quota.tiers import DEFAULT_TIER
from harmony_ai.schemas.generation import CamelModel, GenerationOptions, GenerationRequest, HistoryFilters
from harmony_ai.schemas.operations import Operation
from harmony_ai.service import GenerationService

router = APIRouter()
logger = logging.getLogger(__name__)

DISCONNECT_POLL_SEC = 0.5


class GenerationBody(CamelModel):
    operation: Operation
    payload: Dict[str, Any] = Field(default_factory=dict)
    preferred_providers: List[str] = Field(default_factory=list)
    options: GenerationOptions = Field(default_factory=GenerationOptions)
    artist_id: Optional[str] = None


def envelope(data: Any) -> Dict[str, Any]:
    return {"success": True, "data": data}


def get_service(request: Request) -> GenerationService:
    return request.app.state.service


def get_context(
    x_user_id: Optional[str] = Header(None),
    x_subscription_tier: Optional[str] = Header(None),
) -> GenerationContext:
    """Identity is resolved upstream; we only read the forwarded headers."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return GenerationContext(
        user_id=x_user_id.strip(),
        tier=(x_subscription_tier or DEFAULT_TIER).strip().lower(),
    )


@router.post("/generations", status_code=status.HTTP_201_CREATED)
async def create_generation(
    body: GenerationBody,
    request: Request,
    ctx: GenerationContext = Depends(get_context),
    service: GenerationService = Depends(get_service),
):
    """
    Run one generation.

    The orchestrator is synchronous and runs on the thread pool; while it
    works we watch for the client going away and cancel the context.
    """
    generation_request = GenerationRequest(
        operation=body.operation,
        user_id=ctx.user_id,
        payload=body.payload,
        preferred_providers=tuple(body.preferred_providers),
        options=body.options,
        artist_id=body.artist_id,
    )

    task = asyncio.ensure_future(run_in_threadpool(service.generate, ctx, generation_request))
    while not task.done():
        done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SEC)
        if not done and not ctx.cancelled and await request.is_disconnected():
            logger.info(f"Client disconnected; cancelling {body.operation.value} for user {ctx.user_id}")
            ctx.cancel()

    result = task.result()
    return envelope(result.model_dump(mode="json"))


@router.get("/generations")
def list_generations(
    operation: Optional[Operation] = None,
    provider: Optional[str] = None,
    status_filter: Optional[GenerationStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    ctx: GenerationContext = Depends(get_context),
    service: GenerationService = Depends(get_service),
):
    filters = HistoryFilters(operation=operation, provider=provider, status=status_filter)
    history = service.get_generation_history(ctx.user_id, filters, page=page, limit=limit)
    return envelope({
        "items": [item.model_dump(mode="json") for item in history.items],
        "pagination": {
            "page": history.page,
            "limit": history.limit,
            "total": history.total,
            "pages": history.pages,
        },
    })


@router.get("/generations/{generation_id}")
def get_generation(
    generation_id: str,
    ctx: GenerationContext = Depends(get_context),
    service: GenerationService = Depends(get_service),
):
    return envelope(service.get_generation(generation_id, ctx.user_id).model_dump(mode="json"))


@router.delete("/generations/{generation_id}")
def delete_generation(
    generation_id: str,
    ctx: GenerationContext = Depends(get_context),
    service: GenerationService = Depends(get_service),
):
    service.delete_generation(generation_id, ctx.user_id)
    return {"success": True, "message": "Generation deleted"}


@router.get("/stats")
def get_stats(
    ctx: GenerationContext = Depends(get_context),
    service: GenerationService = Depends(get_service),
):
    return envelope(service.get_service_stats(ctx.user_id))


@router.get("/usage")
def get_usage(
    ctx: GenerationContext = Depends(get_context),
    service: GenerationService = Depends(get_service),
):
    return envelope(service.get_usage(ctx))


# Administration

@router.get("/admin/cache")
def get_cache_stats(
    ctx: GenerationContext = Depends(get_context),
    service: GenerationService = Depends(get_service),
):
    return envelope(service.get_cache_stats())


@router.delete("/admin/cache")
def clear_caches(
    ctx: GenerationContext = Depends(get_context),
    service: GenerationService = Depends(get_service),
):
    logger.info(f"Cache clear requested by {ctx.user_id}")
    return envelope(service.clear_all_caches())


@router.get("/admin/quotas")
def get_service_quotas(
    ctx: GenerationContext = Depends(get_context),
    service: GenerationService = Depends(get_service),
):
    return envelope(service.get_service_quotas())


@router.get("/admin/services")
def get_service_availability(
    ctx: GenerationContext = Depends(get_context),
    service: GenerationService = Depends(get_service),
):
    return envelope(service.check_service_availability())


@router.get("/admin/metrics")
def get_metrics(
    ctx: GenerationContext = Depends(get_context),
    service: GenerationService = Depends(get_service),
):
    return envelope(service.get_metrics())
