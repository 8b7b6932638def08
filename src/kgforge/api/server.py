"""FastAPI control server for the knowledge graph engine."""
import json
import logging
from contextlib import aclosing, asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from ..core.config import Settings, load_settings
from ..core.log import setup_logging
from ..pipeline.engine import Engine
from ..pipeline.models import QueueName

logger = logging.getLogger(__name__)

# Rate limiter configuration
limiter = Limiter(key_func=get_remote_address)

router = APIRouter()

# Idle seconds between SSE keep-alive comments; each one also checks for a disconnect
SSE_HEARTBEAT_SECONDS = 15.0


# --- Request/Response Models ---

class ConceptsCreate(BaseModel):
    """Request model for adding concepts."""
    concepts: list[str] = Field(..., min_length=1, max_length=500)


class ConceptsAdded(BaseModel):
    """Response model for enqueue operations."""
    added: int
    generation_queue: int


class EngineStateResponse(BaseModel):
    """Response model for lifecycle commands."""
    status: str
    status_line: str


class StatusResponse(BaseModel):
    """Response model for the full engine status."""
    status: str
    status_line: str
    counts: dict[str, int]
    queues: dict
    credentials: dict


def get_engine(request: Request) -> Engine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


def _engine_state(engine: Engine) -> EngineStateResponse:
    return EngineStateResponse(
        status=engine.status.value,
        status_line=engine.state.status_line(),
    )


# --- Endpoints ---

@router.get("/")
@router.get("/health")
@limiter.limit("300/minute")
async def health_check(request: Request):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "kgforge",
        "version": "1.0.0",
    }


@router.get("/status", response_model=StatusResponse)
@limiter.limit("120/minute")
async def get_status(request: Request):
    """Status line, queue counts, queue contents and credential state."""
    return get_engine(request).summary()


@router.post("/engine/start", response_model=EngineStateResponse)
@limiter.limit("30/minute")
async def start_engine(request: Request):
    engine = get_engine(request)
    await engine.start()
    return _engine_state(engine)


@router.post("/engine/pause", response_model=EngineStateResponse)
@limiter.limit("30/minute")
async def pause_engine(request: Request):
    engine = get_engine(request)
    await engine.pause()
    return _engine_state(engine)


@router.post("/engine/toggle", response_model=EngineStateResponse)
@limiter.limit("30/minute")
async def toggle_engine(request: Request):
    engine = get_engine(request)
    await engine.toggle()
    return _engine_state(engine)


@router.post("/concepts", response_model=ConceptsAdded)
@limiter.limit("60/minute")
async def add_concepts(request: Request, body: ConceptsCreate):
    """Add concepts to the generation queue, skipping known ones."""
    engine = get_engine(request)
    if len(body.concepts) == 1:
        added = int(await engine.add_concept(body.concepts[0]))
    else:
        added = await engine.add_concepts(body.concepts)
    return ConceptsAdded(added=added, generation_queue=len(engine.state.generation_queue))


@router.post("/concepts/seed", response_model=ConceptsAdded)
@limiter.limit("10/minute")
async def seed_concepts(request: Request):
    """Queue every concept from the configured seed box."""
    engine = get_engine(request)
    added = await engine.enqueue_seed_concepts()
    return ConceptsAdded(added=added, generation_queue=len(engine.state.generation_queue))


@router.delete("/concepts/{concept}")
@limiter.limit("60/minute")
async def remove_concept(request: Request, concept: str):
    engine = get_engine(request)
    if not await engine.remove_concept(concept):
        raise HTTPException(404, f"Concept not queued: {concept}")
    return {"removed": concept}


@router.post("/tasks/{idea}/discard")
@limiter.limit("60/minute")
async def discard_task(
    request: Request,
    idea: str,
    queue: QueueName = Query(QueueName.REVIEW, description="review or revision"),
):
    """Manually move a task to the discard pile."""
    engine = get_engine(request)
    if queue not in (QueueName.REVIEW, QueueName.REVISION):
        raise HTTPException(400, f"Cannot discard from the {queue.value} queue")

    if not await engine.discard_task(idea, queue):
        raise HTTPException(404, f"Task not found in the {queue.value} queue: {idea}")
    return {"discarded": idea}


@router.post("/discarded/{idea}/requeue")
@limiter.limit("60/minute")
async def requeue_discarded(request: Request, idea: str):
    """Send a discarded idea back to the generation queue."""
    engine = get_engine(request)
    if not await engine.requeue_discarded(idea):
        raise HTTPException(404, f"Task not found in the discard pile: {idea}")
    return {"requeued": idea}


@router.get("/events")
async def stream_events(request: Request):
    """Server-sent event stream of engine events."""
    engine = get_engine(request)

    async def event_source() -> AsyncIterator[str]:
        async with aclosing(engine.events.subscribe(heartbeat=SSE_HEARTBEAT_SECONDS)) as events:
            async for event in events:
                if await request.is_disconnected():
                    break
                if event is None:
                    yield ": keep-alive\n\n"
                    continue
                yield f"event: {event.event_type.value}\ndata: {json.dumps(event.to_dict())}\n\n"

    return StreamingResponse(event_source(), media_type="text/event-stream")


# --- Application ---

def create_app(engine: Optional[Engine] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        engine: Pre-built engine. When omitted one is built from settings on startup.
        settings: Settings used to build the engine. Defaults to load_settings().

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.engine is None
        if owned:
            app.state.engine = Engine.from_settings(settings or load_settings())
            await app.state.engine.load()
            logger.info("kgforge engine initialized")

        try:
            yield
        finally:
            logger.info("kgforge shutting down")
            if owned:
                await app.state.engine.aclose()
                app.state.engine = None

    app = FastAPI(
        title="kgforge API",
        description="Control surface for the knowledge graph generation pipeline",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    # Add rate limiter to app state and exception handler
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.include_router(router)
    return app


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    settings = load_settings()
    setup_logging(settings.debug_mode)
    uvicorn.run(
        create_app(settings=settings),
        host=settings.api_host,
        port=settings.api_port,
    )


if __name__ == "__main__":
    run()
