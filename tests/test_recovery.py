from __future__ import annotations

import json

import pytest

from conftest import PNG_BYTES
from mdx_mirror.models import MappingRecord, MissingAssetRecord
from mdx_mirror.recovery import RecoveryScanner, run_recovery
from mdx_mirror.store import FailureLedger, MappingStore

U = "https://cdn.example.com/img/h1.png"
W = "https://cdn.example.com/img/w3.png"


def make_collection(config, name: str = "book"):
    out_dir = config.output_root / name
    images = out_dir / "images"
    images.mkdir(parents=True)
    return out_dir, images


def add_ledger_entry(out_dir, file_name: str, url: str, error: str = "download failed") -> None:
    ledger = FailureLedger(out_dir / "missing-images.json").load()
    ledger.record(
        file_name,
        MissingAssetRecord(
            original_url=url,
            expected_path=f"images/{file_name}",
            local_file_path=str(out_dir / "images" / file_name),
            error=error,
            source_file="01.md",
        ),
    )
    ledger.persist()


def add_mapping_entry(out_dir, file_name: str, url: str) -> None:
    store = MappingStore(out_dir / "mapping.json").load()
    store.upsert_asset(file_name, MappingRecord(url, f"images/{file_name}"))
    store.set_metadata("01.md", "hash", "2026-10-18T00:00:00Z")
    store.persist()


def test_scan_reports_missing_and_orphaned(config, downloader):
    out_dir, images = make_collection(config)
    add_ledger_entry(out_dir, "w3.png", W)
    add_mapping_entry(out_dir, "h1.png", U)
    (images / "manual.png").write_bytes(PNG_BYTES)

    missing, orphaned = RecoveryScanner(config, downloader=downloader).scan(out_dir)

    assert [(item.file_name, item.source_file) for item in missing] == [
        ("w3.png", "01.md"),
        ("h1.png", "unknown"),
    ]
    assert missing[1].error == "file not found"
    assert [item.file_name for item in orphaned] == ["manual.png"]


def test_recovery_downloads_missing_assets_and_clears_ledger(config, session, downloader):
    out_dir, images = make_collection(config)
    session.routes[W] = PNG_BYTES
    add_mapping_entry(out_dir, "h1.png", U)
    (images / "h1.png").write_bytes(PNG_BYTES)
    add_ledger_entry(out_dir, "w3.png", W)

    result = RecoveryScanner(config, downloader=downloader).recover_collection(out_dir)

    assert (result.fixed, result.failed, result.orphaned) == (1, 0, [])
    assert (images / "w3.png").read_bytes() == PNG_BYTES
    assert not (out_dir / "missing-images.json").exists()
    mapping = json.loads((out_dir / "mapping.json").read_text(encoding="utf-8"))
    assert mapping["w3.png"] == {"originalUrl": W, "localPath": "images/w3.png"}
    assert session.calls == [W]


def test_recovery_failure_updates_error(config, session, downloader):
    out_dir, _ = make_collection(config)
    session.routes[W] = 403
    add_ledger_entry(out_dir, "w3.png", W, error="old error")

    result = RecoveryScanner(config, downloader=downloader).recover_collection(out_dir)

    assert (result.fixed, result.failed) == (0, 1)
    ledger = json.loads((out_dir / "missing-images.json").read_text(encoding="utf-8"))
    assert "403" in ledger["w3.png"]["error"]
    assert ledger["w3.png"]["sourceFile"] == "01.md"


def test_mapping_only_miss_is_ledgered_when_retry_fails(config, session, downloader):
    out_dir, _ = make_collection(config)
    add_mapping_entry(out_dir, "h1.png", U)

    result = RecoveryScanner(config, downloader=downloader).recover_collection(out_dir)

    assert result.failed == 1
    ledger = json.loads((out_dir / "missing-images.json").read_text(encoding="utf-8"))
    assert ledger["h1.png"]["originalUrl"] == U
    assert ledger["h1.png"]["sourceFile"] == "unknown"


def test_orphans_are_reported_but_kept(config, session, downloader):
    out_dir, images = make_collection(config)
    add_mapping_entry(out_dir, "h1.png", U)
    (images / "h1.png").write_bytes(PNG_BYTES)
    (images / "restored.jpg").write_bytes(b"jpeg")

    result = RecoveryScanner(config, downloader=downloader).recover_collection(out_dir)

    assert [item.file_name for item in result.orphaned] == ["restored.jpg"]
    assert (images / "restored.jpg").exists()
    assert session.calls == []


def test_stale_ledger_entries_are_dropped(config, session, downloader):
    out_dir, images = make_collection(config)
    add_mapping_entry(out_dir, "w3.png", W)
    add_ledger_entry(out_dir, "w3.png", W)
    (images / "w3.png").write_bytes(PNG_BYTES)

    RecoveryScanner(config, downloader=downloader).recover_collection(out_dir)

    assert not (out_dir / "missing-images.json").exists()
    assert session.calls == []


def test_recovery_never_touches_documents(config, session, downloader):
    out_dir, _ = make_collection(config)
    session.routes[W] = PNG_BYTES
    document = out_dir / "01.md"
    document.write_text(f"![w]({W})\n", encoding="utf-8")
    add_ledger_entry(out_dir, "w3.png", W)

    RecoveryScanner(config, downloader=downloader).recover_collection(out_dir)

    assert document.read_text(encoding="utf-8") == f"![w]({W})\n"


def test_run_recovery_requires_output_directory(config):
    with pytest.raises(FileNotFoundError):
        run_recovery(config)


def test_run_recovery_visits_every_collection(config, session, downloader):
    session.routes[W] = PNG_BYTES
    first, _ = make_collection(config, "alpha")
    make_collection(config, "beta")
    add_ledger_entry(first, "w3.png", W)

    scanner = RecoveryScanner(config, downloader=downloader)
    results = run_recovery(config, scanner)

    assert [(r.name, r.fixed) for r in results] == [("alpha", 1), ("beta", 0)]
