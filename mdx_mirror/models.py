"""Data models used throughout the sync pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional


class ReferenceSyntax(str, enum.Enum):
    """Surface syntax an asset reference was written in."""

    INLINE_LINK = "inline-link"
    TAG_ATTRIBUTE = "tag-attribute"


@dataclass(frozen=True)
class SourceDocument:
    """A Markdown document read from an input collection."""

    name: str
    path: Path
    content: str
    fingerprint: str


@dataclass(frozen=True)
class AssetReference:
    """Remote image reference discovered while scanning a document."""

    url: str
    syntax: ReferenceSyntax
    source_text: str
    alt_text: str = ""
    title: str = ""


@dataclass
class MappingRecord:
    """Downloaded asset stored in a collection's image directory."""

    original_url: str
    local_path: str

    def to_json(self) -> Dict[str, str]:
        return {"originalUrl": self.original_url, "localPath": self.local_path}

    @classmethod
    def from_json(cls, data: Dict[str, str]) -> "MappingRecord":
        return cls(original_url=data["originalUrl"], local_path=data["localPath"])


@dataclass
class DocumentState:
    """Fingerprint of a document at the time it was last processed.

    ``assets`` lists the image files the written output links to and
    ``complete`` is False while any of its downloads are still failing.
    """

    source_file_hash: str
    last_processed: str
    assets: List[str] = field(default_factory=list)
    complete: bool = True


@dataclass
class CollectionMetadata:
    """Collection-level bookkeeping kept apart from the asset entries."""

    source_file_hash: Optional[str] = None
    last_processed: Optional[str] = None
    documents: Dict[str, DocumentState] = field(default_factory=dict)

    def hash_for(self, document_name: str) -> Optional[str]:
        state = self.documents.get(document_name)
        if state:
            return state.source_file_hash
        # Only files written before per-document state existed fall back to
        # the collection-wide hash.
        if self.documents:
            return None
        return self.source_file_hash

    def is_complete(self, document_name: str) -> bool:
        state = self.documents.get(document_name)
        return state.complete if state else True

    def assets_for(self, document_name: str) -> List[str]:
        state = self.documents.get(document_name)
        return list(state.assets) if state else []

    def to_json(self) -> Dict[str, object]:
        return {
            "sourceFileHash": self.source_file_hash,
            "lastProcessed": self.last_processed,
            "documents": {
                name: {
                    "sourceFileHash": state.source_file_hash,
                    "lastProcessed": state.last_processed,
                    "assets": sorted(state.assets),
                    "complete": state.complete,
                }
                for name, state in sorted(self.documents.items())
            },
        }

    @classmethod
    def from_json(cls, data: Dict[str, object]) -> "CollectionMetadata":
        documents = {
            name: DocumentState(
                source_file_hash=state["sourceFileHash"],
                last_processed=state.get("lastProcessed", ""),
                assets=[str(asset) for asset in state.get("assets") or []],
                complete=bool(state.get("complete", True)),
            )
            for name, state in (data.get("documents") or {}).items()
        }
        return cls(
            source_file_hash=data.get("sourceFileHash"),
            last_processed=data.get("lastProcessed"),
            documents=documents,
        )


@dataclass
class MissingAssetRecord:
    """Asset whose download failed and which is still absent on disk."""

    original_url: str
    expected_path: str
    local_file_path: str
    error: str
    source_file: str

    def to_json(self) -> Dict[str, str]:
        return {
            "originalUrl": self.original_url,
            "expectedPath": self.expected_path,
            "localFilePath": self.local_file_path,
            "error": self.error,
            "sourceFile": self.source_file,
        }

    @classmethod
    def from_json(cls, data: Dict[str, str]) -> "MissingAssetRecord":
        return cls(
            original_url=data["originalUrl"],
            expected_path=data.get("expectedPath", ""),
            local_file_path=data.get("localFilePath", ""),
            error=data.get("error", ""),
            source_file=data.get("sourceFile", ""),
        )


@dataclass
class DocumentResult:
    """Outcome of syncing a single document."""

    name: str
    processed: bool
    skipped: bool = False
    image_count: int = 0
    downloaded_count: int = 0
    failed_count: int = 0
    cache_hits: int = 0
    error: Optional[str] = None


@dataclass
class CollectionResult:
    """Aggregate counters for one synced collection."""

    name: str
    total: int = 0
    processed: int = 0
    skipped: int = 0
    image_count: int = 0
    downloaded_count: int = 0
    failed_count: int = 0
    cleaned_count: int = 0
    cleaned_bytes: int = 0
    documents: List[DocumentResult] = field(default_factory=list)


@dataclass
class OrphanedAsset:
    """File present in an image directory without a mapping entry."""

    file_name: str
    file_path: Path


@dataclass
class MissingAsset:
    """Referenced asset that is absent from disk and due for a retry."""

    file_name: str
    original_url: str
    local_file_path: Path
    error: str
    source_file: str


@dataclass
class RecoveryResult:
    """Outcome of a recovery pass over one collection."""

    name: str
    fixed: int = 0
    failed: int = 0
    orphaned: List[OrphanedAsset] = field(default_factory=list)
