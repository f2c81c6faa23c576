"""aiohttp application entrypoint."""
from __future__ import annotations

from aiohttp import web

from webhook_service.aiohttp_app import add_cors_to_routes, add_healthcheck, create_base_app
from webhook_service.api.router import setup_routes
from webhook_service.db.migrations import apply_migrations_on_startup
from webhook_service.db.pool import close_pool, init_pool
from webhook_service.logging_config import configure_logging
from webhook_service.otel import setup_otel, shutdown_otel
from webhook_service.runtime import REPOSITORIES_KEY, Repositories, start_runtime, stop_runtime
from webhook_service.settings import settings
from webhook_service.workers import maintenance_worker, retry_scheduler

configure_logging()


def create_app(repositories: Repositories | None = None) -> web.Application:
    """Build the application.

    Without ``repositories`` the app owns a PostgreSQL pool and applies
    migrations on startup; passing them in skips both.
    """
    app, cors = create_base_app(settings)
    setup_otel(app)

    add_healthcheck(app, settings)
    setup_routes(app)

    if repositories is None:
        app.on_startup.append(init_pool)
        app.on_startup.append(apply_migrations_on_startup)
    else:
        app[REPOSITORIES_KEY] = repositories
    app.on_startup.append(start_runtime)
    app.on_startup.append(retry_scheduler.start)
    app.on_startup.append(maintenance_worker.start)

    # cleanup signals run in registration order: workers first, pool last
    app.on_cleanup.append(retry_scheduler.stop)
    app.on_cleanup.append(maintenance_worker.stop)
    app.on_cleanup.append(stop_runtime)
    app.on_cleanup.append(shutdown_otel)
    if repositories is None:
        app.on_cleanup.append(close_pool)

    add_cors_to_routes(app, cors)
    return app


def main() -> None:
    web.run_app(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
