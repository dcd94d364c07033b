import httpx
import pytest

from books_api.app import create_app
from books_api.config import Settings
from books_api.repository import BookRepository


@pytest.fixture()
def settings() -> Settings:
    return Settings(environment="test", database_url=None, _env_file=None)


@pytest.fixture()
def app(settings):
    application = create_app(settings)
    yield application
    application.state.database.dispose()


@pytest.fixture()
def db_session(app):
    session = app.state.database.session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def repository(db_session) -> BookRepository:
    return BookRepository(db_session)


@pytest.fixture()
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
