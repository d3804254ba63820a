import json
import time
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse
from models.requests import AccountBriefRequest, RegenerateInsightsRequest
from models.responses import ErrorResponse, RegenerateInsightsResponse
from services.ai_gateway import AIGatewayClient
from services.errors import (
    AccountNotFound,
    AIRoundTripError,
    HistoryUnavailable,
    SnapshotWriteFailed,
    UpstreamQuotaExceeded,
    UpstreamRateLimited,
)
from services.orchestrator import prepare_brief, regenerate_account_insights
from services.rate_limiter import RateLimiter
from database import SqliteRecordStore
from utils.auth import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["insights"])

DEFAULT_RETRY_AFTER = 60
GENERIC_FAILURE = "Something went wrong. Please try again."

_store = SqliteRecordStore()
_gateway = AIGatewayClient()
_rate_limiter = RateLimiter()


def get_store():
    return _store


def get_gateway():
    return _gateway


def get_rate_limiter() -> RateLimiter:
    return _rate_limiter


def _respond(status_code: int, headers: Optional[dict] = None, **fields) -> JSONResponse:
    body = RegenerateInsightsResponse(**fields)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        headers=headers,
    )


def _rate_limited(retry_after: Optional[int]) -> JSONResponse:
    retry_after = retry_after or DEFAULT_RETRY_AFTER
    return _respond(
        429,
        headers={"Retry-After": str(retry_after)},
        success=False,
        error="Rate limit exceeded. Please try again later.",
        is_rate_limited=True,
        retry_after=retry_after,
    )


@router.post(
    "/insights/regenerate",
    response_model=RegenerateInsightsResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    responses={
        401: {"model": ErrorResponse, "description": "Missing or invalid token"},
        402: {"model": RegenerateInsightsResponse, "description": "AI credits exhausted"},
        404: {"model": RegenerateInsightsResponse, "description": "Account not found"},
        429: {"model": RegenerateInsightsResponse, "description": "Rate limited"},
        502: {"model": RegenerateInsightsResponse, "description": "AI round trip failed"},
        503: {"model": RegenerateInsightsResponse, "description": "Call or email history unreadable"},
    },
    summary="Regenerate account insights",
    description=(
        "Recomputes the account's insight snapshot from every call, email and "
        "stakeholder on record, persists it and returns it."
    ),
)
async def regenerate(
    request: RegenerateInsightsRequest,
    user: dict = Depends(get_current_user),
    store=Depends(get_store),
    gateway=Depends(get_gateway),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    account_id = str(request.account_id)
    decision = limiter.check(user["sub"])
    if not decision.allowed:
        return _rate_limited(decision.retry_after)

    start_time = time.time()
    try:
        result = await regenerate_account_insights(account_id, store, gateway)
    except AccountNotFound:
        logger.info(f"Regeneration requested for unknown account {account_id}")
        return _respond(404, success=False, error="Account not found")
    except UpstreamRateLimited as e:
        logger.warning(f"AI gateway rate limited regeneration for {account_id}")
        return _rate_limited(e.retry_after)
    except UpstreamQuotaExceeded:
        logger.error(f"AI credits exhausted while regenerating {account_id}")
        return _respond(402, success=False, error="AI credits exhausted. Please add credits to continue.")
    except AIRoundTripError as e:
        logger.error(f"AI round trip failed for {account_id} after {time.time() - start_time:.1f}s: {e}")
        return _respond(502, success=False, error=GENERIC_FAILURE)
    except HistoryUnavailable as e:
        logger.error(f"Regeneration for {account_id} could not read history: {e.sections}")
        return _respond(503, success=False, error="Account history is temporarily unavailable. Please try again.")
    except SnapshotWriteFailed:
        return _respond(500, success=False, error="Failed to save insights. Please try again.")
    except Exception as e:
        logger.error(
            f"Regeneration failed for {account_id} after {time.time() - start_time:.1f}s: {e}",
            exc_info=True,
        )
        return _respond(500, success=False, error=GENERIC_FAILURE)

    elapsed = time.time() - start_time
    if result.status == "unchanged":
        logger.info(f"No data to analyze for {account_id} ({elapsed:.1f}s)")
        return _respond(200, success=True, insights=result.snapshot, message="No data to analyze")

    logger.info(f"Insights regenerated for {account_id} in {elapsed:.1f}s")
    return _respond(200, success=True, insights=result.snapshot)


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


@router.post("/insights/brief-stream", summary="Stream a pre-call account brief over SSE")
async def brief_stream(
    request: AccountBriefRequest,
    user: dict = Depends(get_current_user),
    store=Depends(get_store),
    gateway=Depends(get_gateway),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    account_id = str(request.account_id)
    decision = limiter.check(user["sub"])
    if not decision.allowed:
        return _rate_limited(decision.retry_after)

    try:
        _, deltas = await prepare_brief(account_id, store, gateway)
    except AccountNotFound:
        return _respond(404, success=False, error="Account not found")

    async def generate():
        start_time = time.time()
        try:
            async for delta in deltas:
                yield _sse({"type": "delta", "content": delta})
            yield _sse({"type": "done"})
        except UpstreamRateLimited:
            logger.warning(f"Brief stream rate limited upstream for {account_id}")
            yield _sse({"type": "error", "message": "Rate limit exceeded. Please try again later."})
        except AIRoundTripError as e:
            elapsed = round(time.time() - start_time, 1)
            logger.error(f"Brief stream failed for {account_id} after {elapsed}s: {e}")
            yield _sse({"type": "error", "message": GENERIC_FAILURE})
        finally:
            await deltas.aclose()

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/health")
async def health():
    return {"status": "ok"}
