from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, List, Union

import pytest
import requests

from mdx_mirror.config import SyncConfig
from mdx_mirror.images import AssetDownloader

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 64
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 64

Route = Union[bytes, int, Exception]


class FakeResponse:
    def __init__(self, url: str, status_code: int = 200, content: bytes = b"") -> None:
        self.url = url
        self.status_code = status_code
        self.content = content
        self.headers: Dict[str, str] = {}

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error for url: {self.url}", response=self)


class FakeSession:
    """Stand-in for requests.Session serving canned responses per URL."""

    def __init__(self, routes: Dict[str, Route] | None = None) -> None:
        self.routes: Dict[str, Route] = dict(routes or {})
        self.headers: Dict[str, str] = {}
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def get(self, url: str, timeout: float | None = None) -> FakeResponse:
        with self._lock:
            self.calls.append(url)
        route = self.routes.get(url)
        if route is None:
            raise requests.ConnectionError(f"connection refused: {url}")
        if isinstance(route, Exception):
            raise route
        if isinstance(route, int):
            return FakeResponse(url, status_code=route)
        return FakeResponse(url, content=route)


@pytest.fixture
def config(tmp_path: Path) -> SyncConfig:
    return SyncConfig(
        input_root=tmp_path / "downloads",
        output_root=tmp_path / "downloads-with-images",
        retry_count=2,
        retry_delay=0.5,
        request_delay=0.0,
        max_concurrent=2,
        enable_file_logging=False,
        log_dir=tmp_path / "log",
    )


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def downloader(config: SyncConfig, session: FakeSession, sleeps: List[float]) -> AssetDownloader:
    return AssetDownloader(config, session=session, sleep=sleeps.append)
