import pytest


@pytest.fixture()
def anyio_backend():
    # These tests drive concurrency with asyncio.gather, so they need the asyncio loop.
    return "asyncio"
