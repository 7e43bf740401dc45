"""
Client test fixtures: a scripted aiohttp session and a mocked AsyncWeb3.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock


class MockResponse:
    """Async context manager standing in for an aiohttp response."""

    def __init__(self, status=200, payload=None, text=""):
        self.status = status
        self._payload = payload if payload is not None else {}
        self._text = text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass

    async def json(self):
        return self._payload

    async def text(self):
        return self._text


@pytest.fixture
def mock_session():
    """
    aiohttp session whose request() replays a scripted list.

    Items are MockResponse instances or exceptions to raise.
    """
    session = MagicMock()
    session.script = []
    session.close = AsyncMock()

    def request(method, url, **kwargs):
        item = session.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    session.request = MagicMock(side_effect=request)
    return session


@pytest.fixture
def mock_w3():
    w3 = MagicMock()
    w3.is_connected = AsyncMock(return_value=True)
    w3.eth.get_block = AsyncMock()
    w3.eth.get_transaction = AsyncMock()
    w3.eth.send_raw_transaction = AsyncMock(return_value=b"\xbe\xef")
    return w3


@pytest.fixture
def respond():
    """Factory for MockResponse objects."""
    return MockResponse
