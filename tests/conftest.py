"""Shared fixtures: fake HTTP responses, XML payloads and a mocked server client."""

from typing import Dict, Iterable, Optional
from unittest.mock import MagicMock

import pytest

from converters.xml_records import parse_document
from logger import TaskStatusLogs
from server_urls import ServerUrls

API_NAMESPACE = 'http://tableau.com/api'


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(
        self,
        status_code: int = 200,
        content: bytes = b'',
        headers: Optional[Dict[str, str]] = None,
        chunks: Optional[Iterable[bytes]] = None
    ):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self._chunks = list(chunks) if chunks is not None else [content]
        self.closed = False

    @property
    def text(self) -> str:
        return self.content.decode('utf-8', errors='replace')

    def iter_content(self, chunk_size: int = 1):
        for chunk in self._chunks:
            yield chunk

    def close(self) -> None:
        self.closed = True


def _ts_response(body: str) -> str:
    return f'<?xml version="1.0" encoding="UTF-8"?><tsResponse xmlns="{API_NAMESPACE}">{body}</tsResponse>'


@pytest.fixture
def ts_response():
    """Wrap body XML in a namespaced tsResponse document string."""
    return _ts_response


@pytest.fixture
def ts_document():
    """Parse body XML wrapped in a tsResponse into a soup."""
    def build(body: str):
        return parse_document(_ts_response(body))
    return build


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def urls() -> ServerUrls:
    return ServerUrls('https://', 'tableau.example.com', 'sales', page_size=2)


@pytest.fixture
def status_log() -> TaskStatusLogs:
    return TaskStatusLogs()


@pytest.fixture
def client(urls):
    """Signed-in client double with real URL building."""
    client = MagicMock()
    client.urls = urls
    client.site_id = 'site-1'
    client.user_id = 'user-1'
    return client
