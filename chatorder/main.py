import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatorder.core.config import AUTO_APPLY_MIGRATIONS, CORS_ORIGINS, DATABASE_URL, IS_PROD
from chatorder.core.database import Base, engine
from chatorder.core.logging_setup import configure_logging
from chatorder.core.startup_checks import ensure_migrations_applied, validate_database_environment
from chatorder.middleware.observability import ObservabilityMiddleware
import chatorder.models  # models must be imported before create_all

from chatorder.routers.internal_metrics import router as internal_metrics_router
from chatorder.routers.simulator import router as simulator_router
from chatorder.routers.webhook import router as webhook_router

configure_logging()

logger = logging.getLogger(__name__)
STARTUP_PREFIX = "[STARTUP]"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(
    os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini"))
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Messenger Ordering API",
    lifespan=lifespan,
    docs_url=None if IS_PROD else "/docs",
    redoc_url=None,
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)


def _apply_migrations() -> None:
    from alembic import command
    from alembic.config import Config

    logger.info("%s applying migrations", STARTUP_PREFIX)
    command.upgrade(Config(str(ALEMBIC_CONFIG_PATH)), "head")


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        if AUTO_APPLY_MIGRATIONS:
            _apply_migrations()
        elif DATABASE_URL.startswith("sqlite"):
            Base.metadata.create_all(bind=engine)
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
    except Exception:
        logger.exception("%s ERROR startup failed", STARTUP_PREFIX)
        raise


# Routers
app.include_router(webhook_router)
app.include_router(simulator_router)
app.include_router(internal_metrics_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
