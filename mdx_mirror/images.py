"""Image downloading, cache checks and bounded concurrent retrieval."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import requests
from filetype import guess

from .config import SyncConfig

logger = logging.getLogger("mdx_mirror")

USER_AGENT = "mdx-mirror/0.1"


class FetchError(RuntimeError):
    """Raised when an asset could not be downloaded within the retry budget."""

    def __init__(self, url: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"download failed after {attempts} attempt(s): {last_error}")
        self.url = url
        self.attempts = attempts
        self.last_error = last_error


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        if ext == "jpeg":
            return "jpg"
        return ext
    return None


def _looks_like_svg(data: bytes) -> bool:
    head = data[:512].lstrip().lower()
    return head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head)


class AssetDownloader:
    """Fetch single remote assets to local paths with linear-backoff retries."""

    def __init__(
        self,
        config: SyncConfig,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger = logger,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.sleep = sleep
        self.logger = logger

    def is_cached(self, local_path: Path) -> bool:
        """Return whether ``local_path`` can be used without a network call."""
        if not local_path.exists():
            return False
        if not self.config.verify_cached:
            return True
        data = local_path.read_bytes()
        if data and (detect_image_format(data) or _looks_like_svg(data)):
            return True
        self.logger.warning("Discarding cached file %s: not a recognizable image", local_path)
        local_path.unlink()
        return False

    def fetch(self, url: str, local_path: Path) -> bool:
        """Download ``url`` to ``local_path`` unless it is already present.

        Raises FetchError once every attempt has failed.
        """
        if self.is_cached(local_path):
            return True

        attempts = self.config.retry_count
        last_error: BaseException = RuntimeError("no download attempts were made")
        for attempt in range(1, attempts + 1):
            try:
                resp = self.session.get(url, timeout=self.config.network_timeout)
                resp.raise_for_status()
                data = resp.content
                _write_atomic(local_path, data)
                return True
            except (requests.RequestException, OSError) as exc:
                last_error = exc
                self.logger.debug(
                    "Attempt %d/%d for %s failed: %s", attempt, attempts, url, exc
                )
                if attempt < attempts:
                    self.sleep(attempt * self.config.retry_delay)
        raise FetchError(url, attempts, last_error)


def _write_atomic(destination: Path, data: bytes) -> None:
    """Write bytes so that ``destination`` only ever appears complete."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".partial-", dir=destination.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_name, destination)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


@dataclass
class DownloadJob:
    """A single asset scheduled for retrieval."""

    url: str
    local_path: Path


@dataclass
class DownloadOutcome:
    """Result of a scheduled download; ``error`` is None on success."""

    job: DownloadJob
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def _run_job(fetch: Callable[[str, Path], bool], job: DownloadJob) -> DownloadOutcome:
    try:
        await asyncio.to_thread(fetch, job.url, job.local_path)
    except FetchError as exc:
        return DownloadOutcome(job=job, error=exc)
    return DownloadOutcome(job=job)


async def download_in_batches(
    jobs: Sequence[DownloadJob],
    fetch: Callable[[str, Path], bool],
    max_concurrent: int,
) -> List[DownloadOutcome]:
    """Run downloads in waves of at most ``max_concurrent`` concurrent fetches.

    Each wave is awaited completely before the next starts. Outcomes are
    returned in the order of ``jobs``.
    """
    if not jobs:
        return []
    batch_size = max(1, max_concurrent)
    outcomes: List[DownloadOutcome] = []

    for i in range(0, len(jobs), batch_size):
        batch = jobs[i : i + batch_size]
        logger.debug(
            "Downloading batch %d of %d (size: %d)",
            (i // batch_size) + 1,
            (len(jobs) + batch_size - 1) // batch_size,
            len(batch),
        )
        results = await asyncio.gather(*(_run_job(fetch, job) for job in batch))
        outcomes.extend(results)
    return outcomes
