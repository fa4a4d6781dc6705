import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import Base, SessionLocal, engine

# Import all models so they are registered with Base.metadata before create_all
import app.models  # noqa: F401

from app.api.routes import app_routes, risk_events, risk_profiles, ws
from app.core.risk_classifier import RiskClassifier
from app.data.manager import build_risk_factor_provider
from app.services.db_event_channel import DatabaseEventChannel
from app.services.risk_pipeline import RiskAssessmentPipeline
from app.services.websocket_manager import broadcast_risk_assessed

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)
# Suppress SQL echo/logging (engine already has echo=False)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def build_pipeline() -> RiskAssessmentPipeline:
    channel = DatabaseEventChannel(
        SessionLocal,
        poll_interval_seconds=settings.pipeline_poll_interval_seconds,
        lease_seconds=settings.pipeline_lease_seconds,
        listener_timeout_seconds=settings.pipeline_listener_timeout_seconds,
    )
    channel.add_publish_listener(broadcast_risk_assessed)
    return RiskAssessmentPipeline(
        RiskClassifier(),
        build_risk_factor_provider(settings, SessionLocal),
        channel,
        lookup_timeout_seconds=settings.factor_lookup_timeout_seconds,
        max_concurrency=settings.pipeline_max_concurrency,
        max_delivery_attempts=settings.pipeline_max_delivery_attempts,
        unhealthy_after_publish_failures=settings.pipeline_unhealthy_after_publish_failures,
        receive_retry_seconds=settings.pipeline_receive_retry_seconds,
        unhealthy_after_receive_failures=settings.pipeline_unhealthy_after_receive_failures,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.warning(
            "Database not available (tables not created): %s. "
            "Set DATABASE_URL or db_* env vars and ensure PostgreSQL is running.",
            e,
        )
    try:
        from app.seed import seed_all_if_empty
        seed_all_if_empty()
    except Exception as e:
        logger.warning("Seed skipped (non-fatal): %s", e)

    pipeline = None
    task = None
    if settings.pipeline_enabled:
        pipeline = build_pipeline()
        task = asyncio.create_task(pipeline.run(), name="risk-assessment-pipeline")
    app.state.pipeline = pipeline
    app.state.pipeline_task = task
    yield
    if task is not None:
        # In-flight events are released uncommitted and redelivered on next start
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Risk assessment pipeline exited with an error")
    if pipeline is not None:
        await pipeline.provider.aclose()
        await pipeline.channel.aclose()


app = FastAPI(
    title="Delay Risk Assessment API",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url, "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(app_routes.router)
app.include_router(risk_events.router)
app.include_router(risk_profiles.router)
app.include_router(ws.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.env == "development",
    )
