import asyncio
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatcommerce.config import settings
from chatcommerce.database import SessionLocal, init_db
from chatcommerce.logging_config import get_logger, setup_logging
from chatcommerce.routers import admin, catalog, webhook
from chatcommerce.services.engine import Engine, build_engine
from chatcommerce.services.storage import SqlBooks

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="Chatcommerce Orchestrator",
    description="Routes WhatsApp conversations to per-tenant sales flows",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(admin.router)
app.include_router(catalog.router)


@app.on_event("startup")
def start_engine() -> None:
    init_db()
    engine = build_engine(settings, SqlBooks(SessionLocal))
    engine.init()
    app.state.engine = engine
    logger.info("Engine started", extra={"context": {"tenants": len(engine.registry.all())}})


@app.on_event("shutdown")
def stop_engine() -> None:
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        engine.teardown()
        app.state.engine = None


sweeper_logger = get_logger("session_sweeper")
_sweeper_task: asyncio.Task | None = None


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_sweeper_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(os.environ.get("SESSION_SWEEPER_ENABLED"), default=True)


def _get_sweeper_settings() -> tuple[float, float]:
    interval_seconds = float(os.environ.get("SESSION_SWEEP_INTERVAL_SECONDS", "600"))
    interval_seconds = max(interval_seconds, 1.0)
    max_age_seconds = float(os.environ.get("SESSION_MAX_IDLE_SECONDS", str(24 * 3600)))
    return interval_seconds, max_age_seconds


async def _session_sweeper_loop(engine: Engine) -> None:
    while True:
        try:
            interval_seconds, max_age_seconds = _get_sweeper_settings()
            await asyncio.sleep(interval_seconds)
            engine.sweep(max_age_seconds)
        except asyncio.CancelledError:
            break
        except Exception as exc:
            sweeper_logger.error(
                "Session sweeper failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def start_session_sweeper() -> None:
    global _sweeper_task
    engine = getattr(app.state, "engine", None)
    if engine is None or not _is_sweeper_enabled():
        return
    if _sweeper_task is None or _sweeper_task.done():
        _sweeper_task = asyncio.create_task(_session_sweeper_loop(engine))
        sweeper_logger.info("Session sweeper started")


@app.on_event("shutdown")
async def stop_session_sweeper() -> None:
    global _sweeper_task
    if _sweeper_task is None:
        return
    _sweeper_task.cancel()
    try:
        await _sweeper_task
    except asyncio.CancelledError:
        pass
    _sweeper_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}
