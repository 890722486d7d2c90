"""Main FastAPI application for the Orbit backend."""
from fastapi import FastAPI, Request

from app.api.errors import register_exception_handlers
from app.api.routes.chat import router as chat_router
from app.api.routes.habits import router as habits_router
from app.api.routes.habits_bulk import router as habits_bulk_router
from app.api.routes.profile import router as profile_router
from app.api.routes.tags import router as tags_router
from app.api.routes.user_facts import router as user_facts_router
from app.core.config import settings
from app.core.logging import configure_logging
from app.core.middleware import RequestContextMiddleware
from app.observability.client import flush_opik, init_opik
from app.observability.tracing import trace

configure_logging(log_level=settings.log_level)

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(RequestContextMiddleware)
register_exception_handlers(app)
app.include_router(chat_router)
# Registered before the habit routes so /habits/bulk never reaches /habits/{habit_id}.
app.include_router(habits_bulk_router)
app.include_router(habits_router)
app.include_router(tags_router)
app.include_router(user_facts_router)
app.include_router(profile_router)


@app.on_event("startup")
async def startup_observability() -> None:
    """Initialize observability backends after the event loop starts."""
    init_opik()


@app.on_event("shutdown")
async def shutdown_observability() -> None:
    flush_opik()


@app.get("/health", tags=["health"], summary="Readiness probe")
async def health_check(request: Request) -> dict[str, str]:
    """Return a simple status payload so automation can probe the API."""
    with trace("http.health_check", metadata={"route": "/health"}, request_id=request.state.request_id):
        return {"status": "ok"}
