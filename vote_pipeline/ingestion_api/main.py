"""
FastAPI application for vote ingestion and results.

Votes are either queued on RabbitMQ for the consumer workers (queue mode) or
recorded synchronously through the coordinator (direct mode). Results are
always served from the published snapshot, never from the shard counters.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from ..coordinator import VoteCoordinator
from ..shared.models import VoteMessage, VoteOutcome, get_current_timestamp
from ..snapshot.publisher import create_snapshot_store
from ..storage import create_storage
from .config import settings
from .models import ErrorResponse, HealthResponse, ResultsResponse, CandidateResult, VoteRequest, VoteResponse
from .publisher import RabbitMQPublisher
from .results_cache import ResultsCache, SnapshotUnavailable

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Prometheus metrics
votes_received = Counter(
    "api_votes_received_total",
    "Votes received by the API by result",
    ["result"]
)
vote_errors = Counter(
    "api_vote_errors_total",
    "Vote submission errors",
    ["error_type"]
)
request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"]
)

# Rate limiter
limiter = Limiter(key_func=get_remote_address)

API_PREFIX = f"/api/{settings.API_VERSION}"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info(f"Starting {settings.SERVICE_NAME} service in {settings.INGESTION_MODE} mode...")

    app.state.publisher = None
    app.state.coordinator = None
    vote_store = None
    redis_client = None

    try:
        if settings.INGESTION_MODE == "queue":
            app.state.publisher = RabbitMQPublisher()
            await app.state.publisher.initialize()
        else:
            vote_store, _ = create_storage(settings)
            redis_client = getattr(vote_store, "client", None)
            app.state.coordinator = VoteCoordinator(
                vote_store,
                shard_count=settings.SHARD_COUNT,
                timeout=settings.STORAGE_TIMEOUT_SECONDS
            )

        snapshot_store = create_snapshot_store(settings, redis_client)
        app.state.results_cache = ResultsCache(snapshot_store, ttl=settings.RESULTS_CACHE_TTL_SECONDS)

        logger.info(f"{settings.SERVICE_NAME} started successfully")

    except Exception as e:
        logger.error(f"Failed to start {settings.SERVICE_NAME}: {e}")
        raise

    yield

    logger.info(f"Shutting down {settings.SERVICE_NAME} service...")

    if app.state.publisher:
        await app.state.publisher.close()
    if vote_store:
        await vote_store.close()
    elif getattr(snapshot_store, "client", None) is not None:
        await snapshot_store.client.aclose()
    logger.info(f"{settings.SERVICE_NAME} shut down successfully")


def get_publisher(request: Request) -> Optional[RabbitMQPublisher]:
    return getattr(request.app.state, "publisher", None)


def get_coordinator(request: Request) -> Optional[VoteCoordinator]:
    return getattr(request.app.state, "coordinator", None)


def get_results_cache(request: Request) -> ResultsCache:
    return request.app.state.results_cache


# Create FastAPI app
app = FastAPI(
    title="Vote Ingestion API",
    description="API for submitting votes and reading aggregated results",
    version=settings.API_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed requests as 400 with a flat list of field errors."""
    vote_errors.labels(error_type="validation_error").inc()
    details = [
        {"field": ".".join(str(part) for part in error["loc"] if part != "body"), "message": error["msg"]}
        for error in exc.errors()
    ]
    body = ErrorResponse(error="invalid_request", message="Request validation failed", details=details)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump())


@app.middleware("http")
async def prometheus_middleware(request: Request, call_next):
    """Middleware to track request duration."""
    start_time = time.perf_counter()
    response = await call_next(request)

    route = request.scope.get("route")
    endpoint = route.path if route is not None else request.url.path
    request_duration.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).observe(time.perf_counter() - start_time)

    return response


@app.post(
    f"{API_PREFIX}/vote",
    response_model=VoteResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        200: {"model": VoteResponse, "description": "Vote recorded (direct mode)"},
        400: {"model": ErrorResponse, "description": "Invalid vote format"},
        409: {"description": "Voter has already voted (direct mode)"},
        429: {"description": "Rate limit exceeded"},
        503: {"description": "Vote could not be recorded, retry later"}
    }
)
@limiter.limit(settings.RATE_LIMIT)
async def submit_vote(
    request: Request,
    vote: VoteRequest,
    publisher: Optional[RabbitMQPublisher] = Depends(get_publisher),
    coordinator: Optional[VoteCoordinator] = Depends(get_coordinator)
):
    """
    Submit a vote for a candidate.

    - **voterId**: Authenticated voter identity
    - **candidateId**: Candidate identifier

    In queue mode the vote is accepted for processing (202). In direct mode
    it is recorded before responding (200), or rejected with 409 when the
    voter has already voted.
    """
    if settings.INGESTION_MODE == "direct":
        if coordinator is None:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Vote storage not initialized")

        outcome = await coordinator.submit_vote(vote.voter_id, vote.candidate_id)
        votes_received.labels(result=outcome.value).inc()

        if outcome is VoteOutcome.ALREADY_VOTED:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Voter has already voted")
        if outcome is VoteOutcome.TRANSIENT_FAILURE:
            vote_errors.labels(error_type="storage_unavailable").inc()
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Vote could not be recorded, retry later"
            )

        body = VoteResponse(status="accepted", message="Vote recorded successfully")
        return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump())

    if publisher is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Message queue not initialized")

    message = VoteMessage(
        voter_id=vote.voter_id,
        candidate_id=vote.candidate_id,
        submitted_at=get_current_timestamp()
    )
    if not await publisher.publish_vote(message):
        vote_errors.labels(error_type="publish_failed").inc()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to publish vote to message queue"
        )

    votes_received.labels(result="queued").inc()
    return VoteResponse(status="queued", message="Vote queued for processing")


@app.get(
    f"{API_PREFIX}/results",
    response_model=ResultsResponse,
    responses={
        503: {"model": ErrorResponse, "description": "No results published yet"}
    }
)
async def get_results(cache: ResultsCache = Depends(get_results_cache)):
    """
    Get aggregated results for all candidates.

    Served from the latest published snapshot, which may lag recent votes
    by up to one build interval plus the cache TTL.
    """
    try:
        snapshot = await cache.get_results()
    except SnapshotUnavailable as e:
        logger.warning(f"Results requested before any snapshot: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Results not available yet")

    return JSONResponse(
        content=snapshot.to_dict(),
        headers={"Cache-Control": cache.cache_control}
    )


@app.get(
    f"{API_PREFIX}/candidates/{{candidate_id}}",
    response_model=CandidateResult,
    responses={
        404: {"model": ErrorResponse, "description": "Candidate not found"},
        503: {"model": ErrorResponse, "description": "No results published yet"}
    }
)
async def get_candidate(candidate_id: str, cache: ResultsCache = Depends(get_results_cache)):
    """Get one candidate with its vote total from the latest snapshot."""
    try:
        tally = await cache.get_candidate(candidate_id)
    except SnapshotUnavailable:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Results not available yet")

    if tally is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Candidate {candidate_id} not found")

    return JSONResponse(
        content=tally.to_dict(),
        headers={"Cache-Control": cache.cache_control}
    )


@app.get(
    f"{API_PREFIX}/health",
    response_model=HealthResponse,
    responses={
        503: {"model": HealthResponse, "description": "Service unhealthy"}
    }
)
async def health_check(
    publisher: Optional[RabbitMQPublisher] = Depends(get_publisher),
    coordinator: Optional[VoteCoordinator] = Depends(get_coordinator),
    cache: ResultsCache = Depends(get_results_cache)
):
    """
    Check health of the service and its dependencies.

    Reports the vote path (RabbitMQ in queue mode, storage in direct mode)
    and whether a results snapshot is available.
    """
    services = {}

    if settings.INGESTION_MODE == "queue":
        healthy = publisher is not None and await publisher.check_health()
        services["rabbitmq"] = "connected" if healthy else "disconnected"
    else:
        services["storage"] = "connected" if coordinator is not None else "disconnected"

    try:
        await cache.get_results()
        services["snapshot"] = "connected"
    except SnapshotUnavailable as e:
        logger.warning(f"Snapshot health check failed: {e}")
        services["snapshot"] = "disconnected"

    all_healthy = all(state == "connected" for state in services.values())

    response = HealthResponse(
        status="healthy" if all_healthy else "unhealthy",
        services=services,
        timestamp=datetime.now(timezone.utc)
    )

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response.model_dump(mode="json")
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.SERVICE_NAME,
        "version": settings.API_VERSION,
        "mode": settings.INGESTION_MODE,
        "status": "running",
        "endpoints": {
            "submit_vote": f"{API_PREFIX}/vote",
            "get_results": f"{API_PREFIX}/results",
            "get_candidate": f"{API_PREFIX}/candidates/{{candidate_id}}",
            "health": f"{API_PREFIX}/health",
            "metrics": "/metrics"
        }
    }


def run():
    """Console script entry point."""
    import uvicorn

    uvicorn.run(
        "vote_pipeline.ingestion_api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )


if __name__ == "__main__":
    run()
