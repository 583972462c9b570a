"""High-level orchestration for syncing Markdown collections and their images."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple

from .config import MAPPING_FILE_NAME, MISSING_FILE_NAME, SyncConfig
from .images import AssetDownloader, DownloadJob, download_in_batches
from .markdown import extract_asset_references, rewrite_references
from .models import (
    AssetReference,
    CollectionResult,
    DocumentResult,
    MappingRecord,
    MissingAssetRecord,
    SourceDocument,
)
from .store import FailureLedger, MappingStore
from .utils import fingerprint, local_asset_name

logger = logging.getLogger("mdx_mirror")

DOCUMENT_SUFFIX = ".md"


def utc_timestamp() -> str:
    return (
        dt.datetime.now(dt.timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def read_document(path: Path) -> SourceDocument:
    """Read a source document; the fingerprint covers its raw bytes."""
    content = path.read_bytes().decode("utf-8")
    return SourceDocument(
        name=path.name,
        path=path,
        content=content,
        fingerprint=fingerprint(content),
    )


@dataclass
class CollectionPass:
    """Mutable state shared by every document synced into one output collection."""

    output_dir: Path
    images_dir: Path
    mapping: MappingStore
    ledger: FailureLedger
    used_assets: Set[str] = field(default_factory=set)
    documents: Set[str] = field(default_factory=set)


def cleanup_collection(
    images_dir: Path,
    used_assets: Set[str],
    mapping: MappingStore,
    logger: logging.Logger = logger,
) -> Tuple[int, int]:
    """Delete image files and mapping entries the current pass did not use.

    Returns the number of files removed and the bytes reclaimed.
    Collection metadata is left untouched.
    """
    cleaned_count = 0
    cleaned_bytes = 0
    if images_dir.exists():
        for entry in sorted(images_dir.iterdir()):
            if not entry.is_file() or entry.name in used_assets:
                continue
            try:
                size = entry.stat().st_size
                entry.unlink()
            except OSError as exc:
                logger.warning("  Failed to remove unused image %s: %s", entry.name, exc)
                continue
            cleaned_count += 1
            cleaned_bytes += size
            logger.info("  Removed unused image: %s", entry.name)

    for name in mapping.retain(used_assets):
        logger.debug("  Pruned mapping entry: %s", name)
    return cleaned_count, cleaned_bytes


class SyncEngine:
    """Incrementally mirror Markdown documents and localize their images."""

    def __init__(
        self,
        config: SyncConfig,
        downloader: Optional[AssetDownloader] = None,
        logger: logging.Logger = logger,
        clock: Callable[[], str] = utc_timestamp,
    ) -> None:
        self.config = config
        self.downloader = downloader or AssetDownloader(config, logger=logger)
        self.logger = logger
        self.clock = clock
        self._passes: Dict[Path, CollectionPass] = {}

    def open_collection(self, output_dir: Path) -> CollectionPass:
        """Return the pass for ``output_dir``, loading persisted state on first use."""
        existing = self._passes.get(output_dir)
        if existing:
            return existing
        collection = CollectionPass(
            output_dir=output_dir,
            images_dir=output_dir / self.config.images_dir_name,
            mapping=MappingStore(output_dir / MAPPING_FILE_NAME, logger=self.logger).load(),
            ledger=FailureLedger(output_dir / MISSING_FILE_NAME, logger=self.logger),
        )
        if collection.mapping.assets:
            self.logger.debug(
                "Loaded %d existing mapping record(s) for %s",
                len(collection.mapping.assets),
                output_dir.name,
            )
        self._passes[output_dir] = collection
        return collection

    def _relative_path(self, name: str) -> str:
        return f"{self.config.images_dir_name}/{name}"

    def _is_up_to_date(
        self,
        document: SourceDocument,
        output_path: Path,
        collection: CollectionPass,
        references: List[AssetReference],
    ) -> bool:
        if not output_path.exists():
            return False
        metadata = collection.mapping.metadata
        if metadata.hash_for(document.name) != document.fingerprint:
            return False
        if not metadata.is_complete(document.name):
            return False
        for reference in references:
            local_path = collection.images_dir / local_asset_name(reference.url)
            if not self.downloader.is_cached(local_path):
                return False
        return True

    async def sync(self, document: SourceDocument, output_dir: Path) -> DocumentResult:
        """Bring the mirrored copy of ``document`` in ``output_dir`` up to date."""
        collection = self.open_collection(output_dir)
        collection.documents.add(document.name)
        try:
            return await self._sync_document(document, collection)
        except (OSError, UnicodeError, ValueError) as exc:
            self.logger.error("Failed to process %s: %s", document.name, exc)
            self._keep_previous_output(collection, document.name)
            return DocumentResult(name=document.name, processed=False, error=str(exc))

    def _keep_previous_output(self, collection: CollectionPass, name: str) -> None:
        """Protect the images a failed document's last written output links to."""
        collection.documents.add(name)
        collection.used_assets.update(collection.mapping.metadata.assets_for(name))

    async def _sync_document(
        self, document: SourceDocument, collection: CollectionPass
    ) -> DocumentResult:
        output_path = collection.output_dir / document.name
        references = extract_asset_references(document.content)
        names = [local_asset_name(ref.url) for ref in references]
        collection.used_assets.update(names)

        if self._is_up_to_date(document, output_path, collection, references):
            self.logger.info("%s: already up to date, skipping", document.name)
            for reference, name in zip(references, names):
                if collection.mapping.get(name) is None:
                    collection.mapping.upsert_asset(
                        name, MappingRecord(reference.url, self._relative_path(name))
                    )
            return DocumentResult(
                name=document.name,
                processed=True,
                skipped=True,
                image_count=len(references),
            )

        if output_path.exists():
            self.logger.info("%s: content changed or incomplete, reprocessing", document.name)

        output_path.parent.mkdir(parents=True, exist_ok=True)
        if not references:
            self.logger.info("%s: no images found, copying as-is", document.name)
            output_path.write_bytes(document.content.encode("utf-8"))
            collection.mapping.set_metadata(document.name, document.fingerprint, self.clock())
            return DocumentResult(name=document.name, processed=True)

        self.logger.info("%s: found %d image(s)", document.name, len(references))
        resolved, cache_hits, fresh = await self._retrieve(
            document, collection, references, names
        )

        content = rewrite_references(document.content, references, resolved)
        output_path.write_bytes(content.encode("utf-8"))
        failed_count = sum(1 for ref in references if ref.url not in resolved)
        collection.mapping.set_metadata(
            document.name,
            document.fingerprint,
            self.clock(),
            assets=[name for ref, name in zip(references, names) if ref.url in resolved],
            complete=not failed_count,
        )

        self.logger.info(
            "%s: done, %d/%d image(s) available (%d downloaded, %d cached)",
            document.name,
            len(references) - failed_count,
            len(references),
            fresh,
            cache_hits,
        )
        if failed_count:
            self.logger.warning("%s: %d image(s) failed to download", document.name, failed_count)
        return DocumentResult(
            name=document.name,
            processed=True,
            image_count=len(references),
            downloaded_count=fresh,
            failed_count=failed_count,
            cache_hits=cache_hits,
        )

    async def _retrieve(
        self,
        document: SourceDocument,
        collection: CollectionPass,
        references: List[AssetReference],
        names: List[str],
    ) -> Tuple[Dict[str, str], int, int]:
        """Download every referenced image and update the mapping and ledger.

        Returns the URL to local path map of available images, the number
        of cache-hit and freshly downloaded references.
        """
        cached: Set[str] = set()
        jobs: Dict[str, DownloadJob] = {}
        for reference, name in zip(references, names):
            if name in cached or name in jobs:
                continue
            known = collection.mapping.get(name)
            if known and known.original_url != reference.url:
                self.logger.warning(
                    "  %s is shared by %s and %s", name, known.original_url, reference.url
                )
            local_path = collection.images_dir / name
            if self.downloader.is_cached(local_path):
                self.logger.info("  Using cached image: %s", name)
                cached.add(name)
            else:
                jobs[name] = DownloadJob(url=reference.url, local_path=local_path)

        outcomes = await download_in_batches(
            list(jobs.values()), self.downloader.fetch, self.config.max_concurrent
        )
        errors: Dict[str, str] = {}
        for name, outcome in zip(jobs, outcomes):
            if outcome.ok:
                self.logger.info("  Downloaded: %s", name)
            else:
                errors[name] = str(outcome.error)
                self.logger.error("  Failed to download %s: %s", name, outcome.error)

        resolved: Dict[str, str] = {}
        cache_hits = 0
        fresh = 0
        for reference, name in zip(references, names):
            relative_path = self._relative_path(name)
            if name in errors:
                collection.ledger.record(
                    name,
                    MissingAssetRecord(
                        original_url=reference.url,
                        expected_path=relative_path,
                        local_file_path=str(collection.images_dir / name),
                        error=errors[name],
                        source_file=document.name,
                    ),
                )
                continue
            if name in cached:
                cache_hits += 1
            else:
                fresh += 1
            resolved[reference.url] = relative_path
            collection.mapping.upsert_asset(name, MappingRecord(reference.url, relative_path))
            collection.ledger.discard(name)
        return resolved, cache_hits, fresh

    def finish_collection(self, output_dir: Path) -> Tuple[int, int]:
        """Run the cleanup pass and persist the collection's mapping and ledger."""
        collection = self._passes.pop(output_dir)
        cleaned = cleanup_collection(
            collection.images_dir, collection.used_assets, collection.mapping, self.logger
        )
        collection.mapping.retain_documents(collection.documents)
        collection.mapping.persist()
        collection.ledger.persist()
        return cleaned

    async def sync_collection(self, input_dir: Path, output_root: Path) -> CollectionResult:
        """Sync every Markdown document of one input collection directory."""
        name = input_dir.name
        output_dir = output_root / name
        result = CollectionResult(name=name)
        self.logger.info("Processing collection: %s", name)

        files = sorted(
            path for path in input_dir.iterdir()
            if path.is_file() and path.suffix == DOCUMENT_SUFFIX
        )
        result.total = len(files)
        if not files:
            self.logger.warning("%s: no Markdown documents found", name)
            return result

        self.logger.info("%s: found %d document(s)", name, len(files))
        output_dir.mkdir(parents=True, exist_ok=True)
        (output_dir / self.config.images_dir_name).mkdir(parents=True, exist_ok=True)
        collection = self.open_collection(output_dir)

        for path in files:
            try:
                document = read_document(path)
            except (OSError, UnicodeDecodeError) as exc:
                self.logger.error("Failed to read %s: %s", path.name, exc)
                self._keep_previous_output(collection, path.name)
                doc_result = DocumentResult(name=path.name, processed=False, error=str(exc))
            else:
                doc_result = await self.sync(document, output_dir)
            result.documents.append(doc_result)
            if not doc_result.processed:
                continue
            result.processed += 1
            result.skipped += int(doc_result.skipped)
            result.image_count += doc_result.image_count
            result.downloaded_count += doc_result.downloaded_count
            result.failed_count += doc_result.failed_count

        result.cleaned_count, result.cleaned_bytes = self.finish_collection(output_dir)
        if result.cleaned_count:
            self.logger.info(
                "Removed %d unused image(s), reclaimed %.2f MB",
                result.cleaned_count,
                result.cleaned_bytes / 1024 / 1024,
            )
        self.logger.info(
            "%s: finished (processed %d/%d, skipped %d, images %d, downloaded %d, failed %d)",
            name,
            result.processed,
            result.total,
            result.skipped,
            result.image_count,
            result.downloaded_count,
            result.failed_count,
        )
        return result


async def run_sync(
    config: SyncConfig,
    engine: Optional[SyncEngine] = None,
) -> List[CollectionResult]:
    """Sync every collection directory below ``config.input_root``."""
    input_root = config.input_root
    if not input_root.is_dir():
        raise FileNotFoundError(f"Input directory does not exist: {input_root}")

    engine = engine or SyncEngine(config)
    folders = sorted(path for path in input_root.iterdir() if path.is_dir())
    if not folders:
        logger.warning("No collection directories found in %s", input_root)
        return []

    logger.info("Found %d collection(s) to process", len(folders))
    config.output_root.mkdir(parents=True, exist_ok=True)
    start = time.perf_counter()
    results: List[CollectionResult] = []
    for index, folder in enumerate(folders, start=1):
        logger.info("Progress: %d/%d", index, len(folders))
        results.append(await engine.sync_collection(folder, config.output_root))
        if index < len(folders) and config.request_delay:
            await asyncio.sleep(config.request_delay)

    failed = sum(result.failed_count for result in results)
    logger.info(
        "Sync finished in %.2fs: %d collection(s), %d document(s) processed, %d skipped, "
        "%d image(s) downloaded, %d failed",
        time.perf_counter() - start,
        len(results),
        sum(result.processed for result in results),
        sum(result.skipped for result in results),
        sum(result.downloaded_count for result in results),
        failed,
    )
    if failed:
        logger.warning(
            "%d image(s) could not be downloaded; see missing-images.json in each collection "
            "and run `mdx-mirror recover` to retry",
            failed,
        )
    return results
