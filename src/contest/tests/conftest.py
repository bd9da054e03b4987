import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from contest.config import ContestConfig
from contest.endpoints import create_app
from contest.service import ContestService
from contest.tests.factories import TEST_JWT_SECRET


@pytest.fixture
def database_url(tmp_path):
    """A fresh SQLite database file per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'contest.db'}"


@pytest.fixture
def contest_config(database_url):
    return ContestConfig(
        argv=[
            "--database-url",
            database_url,
            "--auto-create-tables",
            "true",
            "--jwt-secret",
            TEST_JWT_SECRET,
            "--run-scheduler",
            "false",
        ]
    )


@pytest_asyncio.fixture
async def service(contest_config):
    contest_service = ContestService(contest_config)
    await contest_service.startup()
    yield contest_service
    await contest_service.shutdown()


@pytest_asyncio.fixture
async def client(service):
    app = create_app(service, manage_lifecycle=False)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as http_client:
        yield http_client
