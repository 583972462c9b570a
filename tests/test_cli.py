from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path

from mdx_mirror import cli
from mdx_mirror.config import SyncConfig
from mdx_mirror.logs import configure_logging, log_file_path, resolve_level


def test_config_defaults():
    config = SyncConfig.from_env({})
    assert config.network_timeout == 30.0
    assert config.retry_count == 3
    assert config.retry_delay == 1.0
    assert config.request_delay == 1.0
    assert config.max_concurrent == 5
    assert config.log_level == "INFO"
    assert config.enable_file_logging is True
    assert config.images_dir_name == "images"


def test_config_reads_environment_overrides():
    config = SyncConfig.from_env(
        {
            "NETWORK_TIMEOUT": "5000",
            "RETRY_COUNT": "4",
            "RETRY_DELAY": "250",
            "REQUEST_DELAY": "0",
            "MAX_CONCURRENT": "8",
            "LOG_LEVEL": "debug",
            "ENABLE_FILE_LOGGING": "false",
            "OUTPUT_DIR": "/data/mirror",
            "VERIFY_CACHED": "true",
        }
    )
    assert config.network_timeout == 5.0
    assert config.retry_count == 4
    assert config.retry_delay == 0.25
    assert config.request_delay == 0.0
    assert config.max_concurrent == 8
    assert config.log_level == "DEBUG"
    assert config.enable_file_logging is False
    assert config.output_root == Path("/data/mirror")
    assert config.verify_cached is True


def test_config_ignores_invalid_values(caplog):
    config = SyncConfig.from_env({"MAX_CONCURRENT": "lots", "RETRY_COUNT": "0"})
    assert config.max_concurrent == 5
    assert config.retry_count == 3
    assert "MAX_CONCURRENT" in caplog.text


def test_parse_args_defaults_to_sync():
    args = cli.parse_args(["--input", "in", "--max-concurrent", "2"])
    assert args.command == "sync"
    assert args.input == Path("in")
    assert args.max_concurrent == 2

    assert cli.parse_args([]).command == "sync"
    assert cli.parse_args(["recover", "--output", "out"]).output == Path("out")


def test_build_config_applies_cli_overrides(tmp_path):
    args = cli.parse_args(
        ["sync", "--input", str(tmp_path), "--retries", "5", "--timeout", "2.5", "--no-log-file"]
    )
    config = cli.build_config(args, base=SyncConfig())
    assert config.input_root == tmp_path
    assert config.retry_count == 5
    assert config.network_timeout == 2.5
    assert config.enable_file_logging is False
    assert config.max_concurrent == 5


def test_main_returns_error_when_input_missing(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
    code = cli.main(["sync", "--input", str(tmp_path / "nope"), "--output", str(tmp_path / "out")])
    assert code == 1


def test_main_recover_returns_error_when_output_missing(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
    assert cli.main(["recover", "--output", str(tmp_path / "out")]) == 1


def test_main_succeeds_on_empty_input(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
    (tmp_path / "in").mkdir()
    assert cli.main(["sync", "--input", str(tmp_path / "in"), "--output", str(tmp_path / "out")]) == 0


def test_resolve_level_accepts_aliases():
    assert resolve_level("WARN") == logging.WARNING
    assert resolve_level("error") == logging.ERROR
    assert resolve_level("bogus") == logging.INFO


def test_log_file_path_is_dated(tmp_path):
    path = log_file_path(tmp_path, "process-images", dt.date(2026, 10, 18))
    assert path == tmp_path / "process-images-2026-10-18.log"


def test_configure_logging_writes_to_file(tmp_path):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        config = SyncConfig(log_dir=tmp_path / "log", log_level="INFO")
        path = configure_logging(config, "fix-images")
        logging.getLogger("mdx_mirror").info("hello file")
        for handler in root.handlers:
            handler.flush()
        assert path is not None
        assert "hello file" in path.read_text(encoding="utf-8")
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
