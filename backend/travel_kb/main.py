import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from travel_kb.config import settings
from travel_kb.routers import knowledge_base, vector
from travel_kb.services.container import ServiceContainer

LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
NOISY_LOGGERS = ("httpcore", "httpx", "apscheduler", "openai", "anthropic", "uvicorn.access")

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Console plus rotating file output; third-party chatter capped at WARNING."""
    LOG_DIR.mkdir(exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(),
            RotatingFileHandler(
                LOG_DIR / settings.log_file,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backup_count,
                encoding="utf-8",
            ),
        ],
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests install their own container before startup
    services = getattr(app.state, "services", None) or ServiceContainer.build(settings)
    app.state.services = services

    if settings.scheduler_enabled:
        try:
            services.pipeline.start_schedule()
        except Exception as e:
            logger.error(f"Scheduler failed to start: {e}")

    yield

    await services.close()
    logger.info("Services closed")


app = FastAPI(
    title="Travel Knowledge Base",
    description="Destination knowledge pipeline and intelligent search",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(knowledge_base.router, prefix="/api/knowledge-base", tags=["knowledge-base"])
app.include_router(vector.router, prefix="/api/vector", tags=["vector"])


@app.get("/api/health")
async def health_check():
    return {"status": "ok", "service": "travel-kb"}
