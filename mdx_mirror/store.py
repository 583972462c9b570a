"""Persistent per-collection state: asset mapping and failure ledger."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional

from .config import METADATA_KEY
from .models import CollectionMetadata, DocumentState, MappingRecord, MissingAssetRecord

logger = logging.getLogger("mdx_mirror")


def _read_json_object(path: Path, log: logging.Logger) -> Optional[dict]:
    """Load a JSON object from ``path``; None when absent or unreadable."""
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        log.warning("Ignoring unreadable state file %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        log.warning("Ignoring state file %s: expected a JSON object", path)
        return None
    return data


def _write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


class MappingStore:
    """Key-value store of downloaded assets for one output collection.

    Asset entries are keyed by local file name. Collection metadata lives
    in a separate field and is written under the reserved ``_metadata``
    key. :meth:`persist` always rewrites the whole file.
    """

    def __init__(self, path: Path, logger: logging.Logger = logger) -> None:
        self.path = path
        self.logger = logger
        self.assets: Dict[str, MappingRecord] = {}
        self.metadata = CollectionMetadata()

    def load(self) -> "MappingStore":
        self.assets = {}
        self.metadata = CollectionMetadata()
        data = _read_json_object(self.path, self.logger)
        if data is None:
            return self
        try:
            assets: Dict[str, MappingRecord] = {}
            metadata = CollectionMetadata()
            for key, value in data.items():
                if key == METADATA_KEY:
                    metadata = CollectionMetadata.from_json(value)
                elif not key.startswith("_"):
                    assets[key] = MappingRecord.from_json(value)
        except (AttributeError, KeyError, TypeError) as exc:
            self.logger.warning("Ignoring malformed mapping %s: %s", self.path, exc)
            return self
        self.assets = assets
        self.metadata = metadata
        self.logger.debug("Loaded %d mapping record(s) from %s", len(assets), self.path)
        return self

    def upsert_asset(self, name: str, record: MappingRecord) -> None:
        self.assets[name] = record

    def get(self, name: str) -> Optional[MappingRecord]:
        return self.assets.get(name)

    def set_metadata(
        self,
        document_name: str,
        source_hash: str,
        timestamp: str,
        assets: Iterable[str] = (),
        complete: bool = True,
    ) -> None:
        self.metadata.source_file_hash = source_hash
        self.metadata.last_processed = timestamp
        self.metadata.documents[document_name] = DocumentState(
            source_file_hash=source_hash,
            last_processed=timestamp,
            assets=sorted(set(assets)),
            complete=complete,
        )

    def retain(self, names: Iterable[str]) -> list:
        """Drop asset entries not in ``names``; returns the removed names."""
        keep = set(names)
        removed = sorted(name for name in self.assets if name not in keep)
        for name in removed:
            del self.assets[name]
        return removed

    def retain_documents(self, names: Iterable[str]) -> None:
        keep = set(names)
        for name in [doc for doc in self.metadata.documents if doc not in keep]:
            del self.metadata.documents[name]

    def to_json(self) -> dict:
        data: dict = {METADATA_KEY: self.metadata.to_json()}
        for name in sorted(self.assets):
            data[name] = self.assets[name].to_json()
        return data

    def persist(self) -> None:
        _write_json(self.path, self.to_json())
        self.logger.debug("Saved mapping to %s", self.path)


class FailureLedger:
    """Assets whose download failed, keyed by local file name.

    The backing file only exists while at least one entry is pending.
    """

    def __init__(self, path: Path, logger: logging.Logger = logger) -> None:
        self.path = path
        self.logger = logger
        self.entries: Dict[str, MissingAssetRecord] = {}

    def load(self) -> "FailureLedger":
        self.entries = {}
        data = _read_json_object(self.path, self.logger)
        if data is None:
            return self
        try:
            self.entries = {
                name: MissingAssetRecord.from_json(value) for name, value in data.items()
            }
        except (AttributeError, KeyError, TypeError) as exc:
            self.logger.warning("Ignoring malformed ledger %s: %s", self.path, exc)
            self.entries = {}
        return self

    def __contains__(self, name: str) -> bool:
        return name in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def record(self, name: str, record: MissingAssetRecord) -> None:
        self.entries[name] = record

    def discard(self, name: str) -> None:
        self.entries.pop(name, None)

    def persist(self) -> None:
        if not self.entries:
            if self.path.exists():
                self.path.unlink()
                self.logger.info("All images present; removed %s", self.path)
            return
        _write_json(
            self.path,
            {name: self.entries[name].to_json() for name in sorted(self.entries)},
        )
        self.logger.info("Saved %d missing image record(s) to %s", len(self.entries), self.path)
