"""Configuration objects and constants for the sync pipeline."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger("mdx_mirror")

MAPPING_FILE_NAME = "mapping.json"
MISSING_FILE_NAME = "missing-images.json"
METADATA_KEY = "_metadata"


@dataclass(frozen=True)
class SyncConfig:
    """Settings that control downloading, retries and logging."""

    input_root: Path = Path("downloads")
    output_root: Path = Path("downloads-with-images")
    images_dir_name: str = "images"
    network_timeout: float = 30.0
    retry_count: int = 3
    retry_delay: float = 1.0
    request_delay: float = 1.0
    max_concurrent: int = 5
    verify_cached: bool = False
    log_level: str = "INFO"
    enable_file_logging: bool = True
    log_dir: Path = Path("log")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SyncConfig":
        """Build a config from defaults overridden by environment variables.

        Durations are read in milliseconds.
        """
        env = os.environ if environ is None else environ
        config = cls()
        overrides = {}

        for env_var, attr in (
            ("NETWORK_TIMEOUT", "network_timeout"),
            ("RETRY_DELAY", "retry_delay"),
            ("REQUEST_DELAY", "request_delay"),
        ):
            millis = _read_int(env, env_var)
            if millis is not None:
                overrides[attr] = millis / 1000.0

        for env_var, attr in (("RETRY_COUNT", "retry_count"), ("MAX_CONCURRENT", "max_concurrent")):
            value = _read_int(env, env_var)
            if value is not None:
                if value < 1:
                    logger.warning("%s must be at least 1; ignoring %s", env_var, value)
                    continue
                overrides[attr] = value

        for env_var, attr in (
            ("DOWNLOADS_DIR", "input_root"),
            ("OUTPUT_DIR", "output_root"),
            ("LOG_DIR", "log_dir"),
        ):
            if env.get(env_var):
                overrides[attr] = Path(env[env_var]).expanduser()

        if env.get("IMAGES_DIR_NAME"):
            overrides["images_dir_name"] = env["IMAGES_DIR_NAME"]
        if env.get("LOG_LEVEL"):
            overrides["log_level"] = env["LOG_LEVEL"].upper()
        if env.get("ENABLE_FILE_LOGGING", "").lower() == "false":
            overrides["enable_file_logging"] = False
        if env.get("VERIFY_CACHED", "").lower() in ("1", "true", "yes"):
            overrides["verify_cached"] = True

        return replace(config, **overrides)


def _read_int(env: Mapping[str, str], name: str) -> Optional[int]:
    raw = env.get(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s is set to %r which is not an integer; using the default", name, raw)
        return None
