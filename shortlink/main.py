"""FastAPI application entry point for the shortlink service.

This module configures the FastAPI application with middleware, lifecycle
management and route registration.

Application Lifecycle Diagram
===========================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌──────────────────┐
    │ lifespan()       │
    │ startup:         │
    │ init_db()        │
    │ ServiceManager   │
    │  .initialize()   │
    └──────┬───────────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌──────────────────┐
    │ lifespan()       │
    │ shutdown:        │
    │ drain clicks     │
    │ stop dispatcher  │
    │ close_redis()    │
    │ close_db()       │
    └──────────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortlink.main:app --host 0.0.0.0 --port 8000 --reload

**Step 2 — Make API calls**::
    # Shorten URL
    curl -X POST http://localhost:8000/api/shorten \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com", "custom_alias": "my-link"}'

    # Follow it
    curl -i http://localhost:8000/my-link

Key Behaviours
===============
- Database tables are created automatically on startup.
- Click events still queued at shutdown get a bounded drain window.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from shortlink.config import get_settings
from shortlink.database import close_db, init_db
from shortlink.dependencies import _service_manager
from shortlink.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="URL shortener with custom aliases, expiry and click analytics",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
