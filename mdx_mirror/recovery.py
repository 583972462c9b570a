"""Retry failed image downloads and report unmapped files in synced collections."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import List, Optional, Tuple

from .config import MAPPING_FILE_NAME, MISSING_FILE_NAME, SyncConfig
from .images import AssetDownloader, FetchError
from .models import MappingRecord, MissingAsset, MissingAssetRecord, OrphanedAsset, RecoveryResult
from .store import FailureLedger, MappingStore

logger = logging.getLogger("mdx_mirror")

UNKNOWN_SOURCE = "unknown"


class RecoveryScanner:
    """Fill gaps in a collection's image directory without touching documents."""

    def __init__(
        self,
        config: SyncConfig,
        downloader: Optional[AssetDownloader] = None,
        logger: logging.Logger = logger,
    ) -> None:
        self.config = config
        self.downloader = downloader or AssetDownloader(config, logger=logger)
        self.logger = logger

    def _load_state(self, collection_dir: Path) -> Tuple[MappingStore, FailureLedger]:
        mapping = MappingStore(collection_dir / MAPPING_FILE_NAME, logger=self.logger).load()
        ledger = FailureLedger(collection_dir / MISSING_FILE_NAME, logger=self.logger).load()
        return mapping, ledger

    def scan(
        self,
        collection_dir: Path,
        mapping: Optional[MappingStore] = None,
        ledger: Optional[FailureLedger] = None,
    ) -> Tuple[List[MissingAsset], List[OrphanedAsset]]:
        """Find referenced-but-absent assets and present-but-unmapped files."""
        if mapping is None or ledger is None:
            mapping, ledger = self._load_state(collection_dir)
        images_dir = collection_dir / self.config.images_dir_name

        missing: List[MissingAsset] = []
        for name, entry in ledger.entries.items():
            if (images_dir / name).exists():
                continue
            missing.append(
                MissingAsset(
                    file_name=name,
                    original_url=entry.original_url,
                    local_file_path=images_dir / name,
                    error=entry.error,
                    source_file=entry.source_file,
                )
            )

        listed = {item.file_name for item in missing}
        for name, record in mapping.assets.items():
            if name in listed or (images_dir / name).exists():
                continue
            missing.append(
                MissingAsset(
                    file_name=name,
                    original_url=record.original_url,
                    local_file_path=images_dir / name,
                    error="file not found",
                    source_file=UNKNOWN_SOURCE,
                )
            )

        orphaned: List[OrphanedAsset] = []
        if images_dir.is_dir():
            for entry in sorted(images_dir.iterdir()):
                if entry.is_file() and mapping.get(entry.name) is None:
                    orphaned.append(OrphanedAsset(file_name=entry.name, file_path=entry))
        return missing, orphaned

    def recover_collection(self, collection_dir: Path) -> RecoveryResult:
        """Retry every missing asset of one collection and update its ledger."""
        name = collection_dir.name
        result = RecoveryResult(name=name)
        self.logger.info("Checking collection: %s", name)

        mapping, ledger = self._load_state(collection_dir)
        missing, orphaned = self.scan(collection_dir, mapping, ledger)
        result.orphaned = orphaned
        listed = {item.file_name for item in missing}
        for stale in [entry for entry in ledger.entries if entry not in listed]:
            self.logger.debug("  %s is present on disk; dropping its ledger entry", stale)
            ledger.discard(stale)
        if not missing and not orphaned:
            self.logger.info("  No missing or unmapped images")
            ledger.persist()
            return result

        if missing:
            self.logger.info("  Found %d missing image(s), retrying", len(missing))
        for item in missing:
            self.logger.info("  Retrying %s (%s)", item.file_name, item.original_url)
            try:
                self.downloader.fetch(item.original_url, item.local_file_path)
            except FetchError as exc:
                self.logger.error("  Still failing: %s - %s", item.file_name, exc)
                result.failed += 1
                ledger.record(
                    item.file_name,
                    MissingAssetRecord(
                        original_url=item.original_url,
                        expected_path=f"{self.config.images_dir_name}/{item.file_name}",
                        local_file_path=str(item.local_file_path),
                        error=str(exc),
                        source_file=item.source_file,
                    ),
                )
                continue
            self.logger.info("  Recovered: %s", item.file_name)
            result.fixed += 1
            ledger.discard(item.file_name)
            if mapping.get(item.file_name) is None:
                mapping.upsert_asset(
                    item.file_name,
                    MappingRecord(item.original_url, f"{self.config.images_dir_name}/{item.file_name}"),
                )

        if orphaned:
            self.logger.info(
                "  Found %d unmapped image(s), possibly added by hand:", len(orphaned)
            )
            for item in orphaned:
                self.logger.info("    - %s (%s)", item.file_name, item.file_path)
            self.logger.info("  These files are kept; add them to %s if they are needed", MAPPING_FILE_NAME)

        if result.fixed:
            mapping.persist()
        ledger.persist()
        self.logger.info(
            "%s: recovered %d, still failing %d, unmapped %d",
            name,
            result.fixed,
            result.failed,
            len(result.orphaned),
        )
        return result


def run_recovery(
    config: SyncConfig,
    scanner: Optional[RecoveryScanner] = None,
) -> List[RecoveryResult]:
    """Run a recovery pass over every collection below ``config.output_root``."""
    output_root = config.output_root
    if not output_root.is_dir():
        raise FileNotFoundError(
            f"Output directory does not exist: {output_root} (run `mdx-mirror sync` first)"
        )

    scanner = scanner or RecoveryScanner(config)
    folders = sorted(path for path in output_root.iterdir() if path.is_dir())
    if not folders:
        logger.warning("No collection directories found in %s", output_root)
        return []

    logger.info("Found %d collection(s) to check", len(folders))
    start = time.perf_counter()
    results: List[RecoveryResult] = []
    for index, folder in enumerate(folders, start=1):
        logger.info("Progress: %d/%d", index, len(folders))
        results.append(scanner.recover_collection(folder))

    failed = sum(result.failed for result in results)
    orphaned = sum(len(result.orphaned) for result in results)
    logger.info(
        "Recovery finished in %.2fs: %d recovered, %d still failing, %d unmapped",
        time.perf_counter() - start,
        sum(result.fixed for result in results),
        failed,
        orphaned,
    )
    if failed:
        logger.warning("%d image(s) still cannot be downloaded; check the network or fetch them by hand", failed)
    if orphaned:
        logger.warning("%d unmapped image(s) found; review them manually", orphaned)
    return results
