from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import asyncpg  # type: ignore[import-untyped]
import pytest
from aiohttp import ClientSession, web
from multidict import CIMultiDict
from testsuite.databases.pgsql import discover

from webhook_service.main import create_app
from webhook_service.repositories.webhook_events import WebhookEventRepository
from webhook_service.repositories.webhooks import WebhookRepository
from webhook_service.runtime import Repositories
from webhook_service.services.delivery import DeliveryExecutor
from webhook_service.services.statistics import StatisticsAggregator
from webhook_service.settings import settings

from tests.fakes import FakeWebhookEventRepository, FakeWebhookRepository

pytest_plugins = (
    "testsuite.pytest_plugin",
    "testsuite.databases.pgsql.pytest_plugin",
)

PG_SCHEMAS_PATH = Path(__file__).parent / "schemas" / "postgresql"


@dataclass
class ReceivedRequest:
    method: str
    headers: dict[str, str]
    body: bytes


@dataclass
class Receiver:
    """Local webhook endpoint. ``statuses`` are answered in order, then 200."""

    url: str = ""
    statuses: list[int] = field(default_factory=list)
    delay: float = 0.0
    response_headers: list[tuple[str, str]] = field(default_factory=list)
    requests: list[ReceivedRequest] = field(default_factory=list)

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.read()
        self.requests.append(
            ReceivedRequest(method=request.method, headers=dict(request.headers), body=body)
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        status = self.statuses.pop(0) if self.statuses else 200
        return web.Response(
            status=status,
            text="accepted" if status < 400 else "rejected",
            headers=CIMultiDict(self.response_headers),
        )


@pytest.fixture
async def receiver(aiohttp_server) -> Receiver:
    recv = Receiver()
    app = web.Application()
    app.router.add_route("*", "/hook", recv.handle)
    server = await aiohttp_server(app)
    recv.url = str(server.make_url("/hook"))
    return recv


@pytest.fixture
def webhooks_repo() -> FakeWebhookRepository:
    return FakeWebhookRepository()


@pytest.fixture
def events_repo(webhooks_repo) -> FakeWebhookEventRepository:
    return FakeWebhookEventRepository(webhooks_repo)


@pytest.fixture
async def http_session():
    async with ClientSession() as session:
        yield session


@pytest.fixture
def executor(http_session, webhooks_repo, events_repo) -> DeliveryExecutor:
    return DeliveryExecutor(http_session, events_repo, StatisticsAggregator(webhooks_repo))


@pytest.fixture
async def service_client(aiohttp_client, webhooks_repo, events_repo):
    """API client backed by the in-memory repositories."""
    app = create_app(Repositories(webhooks=webhooks_repo, events=events_repo))
    return await aiohttp_client(app)


@pytest.fixture(scope="session")
def pgsql_local(pgsql_local_create):
    databases = discover.find_schemas(
        service_name=None,
        schema_dirs=[PG_SCHEMAS_PATH],
    )
    return pgsql_local_create(list(databases.values()))


@pytest.fixture
def database_uri(pgsql) -> str:
    return pgsql["webhook_service"].conninfo.get_uri()


@pytest.fixture
async def pg_pool(database_uri):
    pool = await asyncpg.create_pool(dsn=database_uri, max_size=5)
    yield pool
    await pool.close()


@pytest.fixture
def pg_webhooks(pg_pool) -> WebhookRepository:
    return WebhookRepository(pg_pool)


@pytest.fixture
def pg_events(pg_pool) -> WebhookEventRepository:
    return WebhookEventRepository(pg_pool)


@pytest.fixture
def pg_executor(http_session, pg_webhooks, pg_events) -> DeliveryExecutor:
    return DeliveryExecutor(http_session, pg_events, StatisticsAggregator(pg_webhooks))


@pytest.fixture
async def pg_service_client(aiohttp_client, database_uri, monkeypatch):
    """Testsuite-style client for calling the service API against PostgreSQL."""
    monkeypatch.setattr(settings, "database_url", database_uri)
    app = create_app()
    return await aiohttp_client(app)
