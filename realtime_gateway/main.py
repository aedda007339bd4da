"""
Realtime Gateway main application.

Live order tracking, courier location and push notifications for the
delivery platform. One WebSocket endpoint (`/ws`) serves every role; the
mobile REST API and the order-service ingress live in routers/mobile.py.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi.errors import RateLimitExceeded

from shared.config.logging import gateway_logger as logger, setup_logging
from shared.config.settings import Settings, get_settings
from shared.infrastructure.correlation import CorrelationIdMiddleware
from shared.security.rate_limit import limiter, rate_limit_exceeded_handler
from realtime_gateway.components.auth.strategies import AuthStrategy, JWTAuthStrategy
from realtime_gateway.components.broadcast.broadcaster import EventBroadcaster
from realtime_gateway.components.connection.registry import ConnectionRegistry
from realtime_gateway.components.core.constants import DEFAULT_ALLOWED_ORIGINS
from realtime_gateway.components.endpoints.gateway import ConnectionGateway
from realtime_gateway.components.endpoints.session import GatewaySession
from realtime_gateway.components.location.broadcast import LocationBroadcast
from realtime_gateway.components.metrics.collector import MetricsCollector
from realtime_gateway.components.metrics.prometheus import PrometheusFormatter
from realtime_gateway.components.notifications.dispatcher import NotificationDispatcher
from realtime_gateway.components.notifications.providers import PushProvider, create_push_provider
from realtime_gateway.components.orders.repository import (
    HttpOrderRepository,
    InMemoryOrderRepository,
    OrderRepository,
)
from realtime_gateway.core.subscriber import OrderEventSubscriber
from realtime_gateway.orchestrator import RealtimeOrchestrator
from realtime_gateway.routers.mobile import router as mobile_router

VERSION = "1.0.0"


# =============================================================================
# Background tasks
# =============================================================================


async def run_heartbeat_sweep(gateway: ConnectionGateway, interval: float) -> None:
    """Close connections that stopped sending anything within the heartbeat timeout."""
    while True:
        try:
            await asyncio.sleep(interval)
            closed = await gateway.sweep_stale_connections()
            if closed > 0:
                logger.info("Closed stale connections", count=closed)
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error("Error in heartbeat sweep", error=str(e))


async def run_event_subscriber(subscriber: OrderEventSubscriber) -> None:
    try:
        await subscriber.run()
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.error("Redis subscriber error", error=str(e), exc_info=True)


async def _cancel(task: asyncio.Task | None) -> None:
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Starts:
    - Heartbeat sweep for stale connections
    - Redis inbound event subscriber (when enabled)
    """
    settings: Settings = app.state.settings
    setup_logging()

    errors = settings.validate_production_secrets()
    if errors:
        for error in errors:
            logger.critical("Configuration error", error=error)
        raise RuntimeError("Invalid production configuration: " + "; ".join(errors))

    logger.info(
        "Starting Realtime Gateway",
        port=settings.ws_gateway_port,
        env=settings.environment,
        push_mode=settings.push_mode,
    )

    sweep_task = asyncio.create_task(
        run_heartbeat_sweep(app.state.gateway, settings.ws_heartbeat_sweep_interval),
        name="heartbeat_sweep",
    )
    subscriber_task = None
    if settings.redis_events_enabled:
        subscriber_task = asyncio.create_task(
            run_event_subscriber(app.state.subscriber),
            name="redis_subscriber",
        )

    yield

    logger.info("Shutting down Realtime Gateway")
    await _cancel(subscriber_task)
    await _cancel(sweep_task)

    closed = await app.state.gateway.close_all()
    logger.info("Closed connections on shutdown", count=closed)
    await app.state.orchestrator.shutdown()

    if isinstance(app.state.orders, HttpOrderRepository):
        await app.state.orders.close()


# =============================================================================
# Application factory
# =============================================================================


def _allowed_origins(settings: Settings) -> list[str]:
    if settings.allowed_origins:
        return [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    return list(DEFAULT_ALLOWED_ORIGINS) + [
        origin.replace("http://", "https://") for origin in DEFAULT_ALLOWED_ORIGINS
    ]


def create_app(
    settings: Settings | None = None,
    auth_strategy: AuthStrategy | None = None,
    push_provider: PushProvider | None = None,
    order_repository: OrderRepository | None = None,
) -> FastAPI:
    """
    Build the application with all components wired onto app.state.

    Every argument defaults to the production choice for the loaded settings.
    """
    settings = settings or get_settings()

    if order_repository is None:
        if settings.order_service_url:
            order_repository = HttpOrderRepository(
                settings.order_service_url,
                timeout=settings.order_service_timeout,
            )
        else:
            order_repository = InMemoryOrderRepository()

    metrics = MetricsCollector()
    registry = ConnectionRegistry()
    broadcaster = EventBroadcaster(registry, send_timeout=settings.ws_send_timeout, metrics=metrics)
    location = LocationBroadcast(broadcaster, metrics=metrics)
    dispatcher = NotificationDispatcher(
        push_provider or create_push_provider(settings),
        history_size=settings.notification_history_size,
        metrics=metrics,
    )
    auth_strategy = auth_strategy or JWTAuthStrategy(settings)
    gateway = ConnectionGateway(
        registry,
        auth_strategy,
        broadcaster,
        location,
        order_repository,
        settings=settings,
        metrics=metrics,
    )
    broadcaster.set_failure_handler(gateway.close_failed_connection)
    orchestrator = RealtimeOrchestrator(
        gateway,
        broadcaster,
        location,
        dispatcher,
        orders=order_repository,
        settings=settings,
        metrics=metrics,
    )

    app = FastAPI(
        title="Realtime Gateway",
        description="Live order tracking, courier location and push notifications",
        version=VERSION,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.metrics = metrics
    app.state.registry = registry
    app.state.broadcaster = broadcaster
    app.state.location = location
    app.state.dispatcher = dispatcher
    app.state.auth_strategy = auth_strategy
    app.state.gateway = gateway
    app.state.orders = order_repository
    app.state.orchestrator = orchestrator
    app.state.subscriber = OrderEventSubscriber(orchestrator, settings=settings)
    app.state.limiter = limiter

    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    app.include_router(mobile_router)

    # =========================================================================
    # Health and metrics
    # =========================================================================

    @app.get("/ws/health")
    def health_check():
        """Basic health check endpoint."""
        return {
            "status": "healthy",
            "service": "realtime-gateway",
            "version": app.version,
            "environment": settings.environment,
            **registry.get_stats(),
        }

    @app.get("/ws/health/detailed")
    async def detailed_health_check():
        """Component statistics, including the Redis subscriber when enabled."""
        checks = {
            "status": "healthy",
            "service": "realtime-gateway",
            "environment": settings.environment,
            **orchestrator.get_statistics(),
        }
        if settings.redis_events_enabled:
            checks["subscriber"] = app.state.subscriber.get_stats()

        limit = settings.ws_max_total_connections
        if limit and registry.total_connections >= limit:
            checks["status"] = "degraded"
            return JSONResponse(content=checks, status_code=503)
        return checks

    @app.get("/ws/metrics")
    async def prometheus_metrics():
        """
        Prometheus-compatible metrics endpoint.

        Configure Prometheus scrape:
            scrape_configs:
              - job_name: 'realtime-gateway'
                static_configs:
                  - targets: ['localhost:8001']
                metrics_path: '/ws/metrics'
        """
        output = PrometheusFormatter().format_all_metrics(orchestrator.get_statistics())
        return PlainTextResponse(
            content=output,
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    # =========================================================================
    # WebSocket endpoint
    # =========================================================================

    @app.websocket("/ws")
    async def realtime_websocket(websocket: WebSocket):
        """
        Single endpoint for customers, couriers, restaurant staff and admins.

        The token is read from ?token=, an Authorization header or a cookie.
        """
        session = GatewaySession(websocket, gateway, orchestrator, settings=settings, endpoint="/ws")
        await session.run()

    return app


app = create_app()


# =============================================================================
# Development entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "realtime_gateway.main:app",
        host="0.0.0.0",
        port=settings.ws_gateway_port,
        reload=settings.debug,
    )
