"""Application entrypoint for the FastAPI service."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Query
from pydantic import BaseModel, Field, ValidationError

from hybridrec.config import config
from hybridrec.core.contracts import ActionKind, RecommendationOptions
from hybridrec.errors import InvalidInteraction
from hybridrec.jobs import setup_all_jobs, shutdown_scheduler, start_scheduler
from hybridrec.logging import get_logger, setup_logging
from hybridrec.runtime import get_runtime, prepare_model

setup_logging(config.log_level)
logger = get_logger(__name__)


class RatingIn(BaseModel):
    """Rating ingestion payload."""

    user_id: str = Field(min_length=1)
    item_id: str = Field(min_length=1)
    rating: float
    session_id: str | None = None


class InteractionIn(BaseModel):
    """Non-rating interaction payload."""

    user_id: str = Field(min_length=1)
    item_id: str = Field(min_length=1)
    action: ActionKind
    value: float = 1.0
    session_id: str | None = None


async def verify_admin_token(
    authorization: str | None = Header(None, alias="Authorization"),
) -> None:
    """Verify admin token for protected endpoints.

    Args:
        authorization: Authorization header value

    Raises:
        HTTPException: If token is invalid or missing
    """
    if not config.admin_token:
        raise HTTPException(
            status_code=503,
            detail="Admin endpoints not configured (ADMIN_TOKEN not set)",
        )

    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    # Support "Bearer <token>" or just "<token>"
    token = authorization
    if authorization.startswith("Bearer "):
        token = authorization[7:]

    if token != config.admin_token:
        raise HTTPException(status_code=403, detail="Invalid admin token")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting application")

    from hybridrec.storage import close_engine, ensure_schema
    await ensure_schema()

    runtime = get_runtime()
    prepare_model(runtime.model, config)

    start_scheduler()
    setup_all_jobs()

    yield

    logger.info("Shutting down application")
    shutdown_scheduler()
    await runtime.pipeline.wait_for_background()
    await runtime.redis.aclose()
    await close_engine()


app = FastAPI(
    title="hybridrec",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"ok": True}


@app.get("/users/{user_id}/recommendations")
async def get_recommendations(
    user_id: str,
    count: int = Query(25),
    min_score: float = Query(0.5),
    diversity_factor: float = Query(0.3),
    exclude_rated: bool = Query(True),
    exclude_watchlisted: bool = Query(True),
    include_explanations: bool = Query(False),
    genres: list[str] | None = Query(None),
    year_min: int | None = Query(None),
    year_max: int | None = Query(None),
    language: str | None = Query(None),
    min_vote_average: float = Query(0.0),
    min_vote_count: int = Query(0),
) -> dict:
    """Ranked recommendations for a user."""
    try:
        options = RecommendationOptions(
            count=count,
            min_score=min_score,
            diversity_factor=diversity_factor,
            exclude_rated=exclude_rated,
            exclude_watchlisted=exclude_watchlisted,
            include_explanations=include_explanations,
            genres=tuple(genres) if genres else None,
            year_min=year_min,
            year_max=year_max,
            language=language,
            min_vote_average=min_vote_average,
            min_vote_count=min_vote_count,
        )
    except ValidationError as e:
        detail = [
            {"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()
        ]
        raise HTTPException(status_code=422, detail=detail)

    items = await get_runtime().engine.generate_recommendations(user_id, options)
    return {
        "user_id": user_id,
        "count": len(items),
        "items": [item.to_dict() for item in items],
    }


@app.post("/ratings")
async def post_rating(payload: RatingIn) -> dict:
    """Record a rating and queue it for online learning."""
    try:
        result = await get_runtime().engine.record_rating(
            payload.user_id,
            payload.item_id,
            payload.rating,
            session_id=payload.session_id,
        )
    except InvalidInteraction as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "ok": True,
        "priority": result.update.priority if result.update else None,
    }


@app.post("/interactions")
async def post_interaction(payload: InteractionIn) -> dict:
    """Record a view, click, watch time or watchlist change."""
    try:
        await get_runtime().engine.record_interaction(
            payload.user_id,
            payload.item_id,
            payload.action,
            payload.value,
            session_id=payload.session_id,
        )
    except InvalidInteraction as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"ok": True}


@app.post("/admin/learning/flush", dependencies=[Depends(verify_admin_token)])
async def admin_flush_learning() -> dict:
    """Process one learning batch now (no-op when idle or busy)."""
    result = await get_runtime().pipeline.force_flush()
    if result is None:
        return {"ok": True, "processed": 0}
    return {
        "ok": result.success,
        "processed": result.size if result.success else 0,
        "dropped": 0 if result.success else result.size,
        "loss": result.loss,
        "error": result.error,
    }


@app.post("/admin/learning/clear", dependencies=[Depends(verify_admin_token)])
async def admin_clear_learning() -> dict:
    """Drop all pending learning updates."""
    dropped = await get_runtime().pipeline.clear()
    return {"ok": True, "dropped": dropped}


@app.get("/admin/learning/metrics", dependencies=[Depends(verify_admin_token)])
async def admin_learning_metrics() -> dict:
    """Pipeline counters, queue health and the latest batches."""
    pipeline = get_runtime().pipeline
    return {
        "metrics": pipeline.get_metrics().to_dict(),
        "queue": pipeline.get_queue_status().to_dict(),
        "learning_rate": pipeline.current_learning_rate(),
        "recent_batches": await pipeline.recent_batches(),
    }


@app.get("/admin/metrics", dependencies=[Depends(verify_admin_token)])
async def admin_metrics() -> dict:
    """Request, cache and model metrics."""
    return get_runtime().engine.get_metrics()


@app.post("/admin/model/train", dependencies=[Depends(verify_admin_token)])
async def admin_train_model() -> dict:
    """Retrain the embedding model from all stored ratings."""
    from hybridrec.jobs.train_model import run_model_training

    try:
        summary = await run_model_training()
        return {"ok": True, **summary}
    except Exception as e:
        logger.error(f"Model training failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Training failed: {str(e)[:200]}")


def main() -> None:
    """Run the API server."""
    logger.info(f"Starting hybridrec on {config.host}:{config.port}")
    uvicorn.run(
        "hybridrec.main:app",
        host=config.host,
        port=config.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
