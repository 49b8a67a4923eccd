from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from estate_api.api.router import api_router
from estate_api.core.clock import Clock, utc_now
from estate_api.core.config import Settings, get_settings
from estate_api.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from estate_api.jobs.payment_expiry import PaymentExpiryEngine
from estate_api.jobs.post_expiry import PostExpiryEngine
from estate_api.jobs.scheduler import JobScheduler
from estate_api.services.notifications import NotificationService
from estate_api.services.posts import PostService
from estate_api.services.repository import PostgresRepository

logger = logging.getLogger(__name__)


def build_components(app: FastAPI, settings: Settings, repository, clock: Clock) -> None:
    """Wire the lifecycle components onto ``app.state``."""
    notifications = NotificationService(repository)
    post_expiry_engine = PostExpiryEngine(repository, notifications, clock=clock)
    payment_expiry_engine = PaymentExpiryEngine(
        repository,
        grace_hours=settings.payment_grace_hours,
        clock=clock,
    )

    scheduler = JobScheduler(clock=clock)
    scheduler.add_daily(
        "post_expiry",
        post_expiry_engine.check_and_update_expired_posts,
        hour=settings.post_expiry_hour,
        minute=settings.post_expiry_minute,
        run_on_start=True,
    )
    scheduler.add_interval(
        "payment_expiry",
        payment_expiry_engine.cancel_expired_payments,
        seconds=settings.payment_expiry_interval_seconds,
        initial_delay=settings.payment_expiry_startup_delay_seconds,
    )

    app.state.repository = repository
    app.state.notifications = notifications
    app.state.post_service = PostService(
        repository,
        notifications,
        clock=clock,
        default_duration_days=settings.default_package_duration_days,
    )
    app.state.post_expiry_engine = post_expiry_engine
    app.state.payment_expiry_engine = payment_expiry_engine
    app.state.scheduler = scheduler


def create_app(
    settings: Settings | None = None,
    *,
    repository=None,
    clock: Clock = utc_now,
) -> FastAPI:
    settings = settings or get_settings()
    if repository is None:
        repository = PostgresRepository(
            database_url=settings.database_url,
            min_pool_size=settings.database_pool_min_size,
            max_pool_size=settings.database_pool_max_size,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler: JobScheduler = app.state.scheduler
        if settings.scheduler_enabled:
            scheduler.start()
        else:
            logger.info("scheduler disabled by configuration")
        try:
            yield
        finally:
            await scheduler.stop()
            shutdown_telemetry(app, telemetry_runtime)
            # Ensure asyncpg pool shuts down on app teardown.
            await repository.close()

    configure_logging()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    # Request dependencies (bearer auth) must see the same settings as the components.
    app.dependency_overrides[get_settings] = lambda: settings
    build_components(app, settings, repository, clock)
    telemetry_runtime = setup_telemetry(app, settings, [job.name for job in app.state.scheduler.jobs])

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        started_at = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started_at) * 1000.0
        logger.info(
            "http request method=%s path=%s status=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response

    app.include_router(api_router)
    return app


app = create_app()
