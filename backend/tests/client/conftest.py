"""Test fixtures for sync client tests."""
from collections.abc import AsyncGenerator, Generator

import httpx
import pytest
import respx

from client_helpers import API_URL


@pytest.fixture
def mock_api() -> Generator[respx.MockRouter]:
    """Context manager for mocking API responses."""
    with respx.mock(base_url=API_URL, assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.fixture
async def http_client() -> AsyncGenerator[httpx.AsyncClient]:
    async with httpx.AsyncClient(base_url=API_URL) as client:
        yield client
