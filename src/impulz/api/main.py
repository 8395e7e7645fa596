from __future__ import annotations

import os
from datetime import UTC, datetime
from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from ..config import AppConfig
from .routers.chat import router as chat_router
from .routers.projects import router as projects_router
from .routers.topics import router as topics_router
from .routers.conversations import router as conversations_router
from .routers.challenges import router as challenges_router
from .routers.memory import router as memory_router
from .routers.prompts import router as prompts_router
from ..observability.metrics import metrics_middleware_factory

load_dotenv()  # Load environment variables from .env if present (ANTHROPIC_API_KEY, SUPABASE_URL, NOTION_API_KEY, ...)

APP_NAME = "Impulz Coaching API"
APP_VERSION = "0.1.0"

app = FastAPI(title=APP_NAME, version=APP_VERSION)

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

_ROUTERS = (
    chat_router,
    projects_router,
    topics_router,
    conversations_router,
    challenges_router,
    memory_router,
    prompts_router,
)

for _router in _ROUTERS:
    app.include_router(_router)

# Same routers under /api, which is where the web client calls them
for _router in _ROUTERS:
    app.include_router(_router, prefix="/api")

app.add_middleware(
    CORSMiddleware,
    allow_origins=AppConfig.from_env().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _health() -> dict:
    cfg = AppConfig.from_env()
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "store": os.getenv("IMPULZ_STORE_IMPL", "memory").lower(),
            "llm": "configured" if cfg.anthropic_api_key else "missing_api_key",
            "prompts": "notion" if cfg.notion_configured else "built-in",
        },
    }


@app.get("/")
def root():
    return {"name": APP_NAME, "version": APP_VERSION}


@app.get("/health")
def health():
    return _health()


@app.get("/api/health")
def api_health():
    return _health()


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
