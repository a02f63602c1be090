import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import dacite
import yaml

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://mempool-dumpster.flashbots.net/ethereum/mainnet"
DEFAULT_INDEX_URL = "https://mempool-dumpster.flashbots.net/index.html"


class Compression(str, Enum):
    GZIP = "gzip"
    SNAPPY = "snappy"
    ZSTD = "zstd"
    NONE = "none"


@dataclass
class CatalogConfig:
    base_url: str = DEFAULT_BASE_URL
    index_url: str = DEFAULT_INDEX_URL
    http_req_timeout_millis: int = 30_000

    def __post_init__(self):
        self.base_url = self.base_url.rstrip("/")
        if self.http_req_timeout_millis <= 0:
            raise ValueError("http_req_timeout_millis must be positive")


@dataclass
class FetchConfig:
    """Retry and transfer settings for a single remote file.

    Backoff for attempt ``n`` (0 based) is
    ``min(retry_ceiling_ms, retry_base_ms * 2**n)`` milliseconds.
    The timeout applies to each attempt, not to the whole fetch.
    """

    max_num_retries: int = 5
    retry_base_ms: int = 500
    retry_ceiling_ms: int = 30_000
    http_req_timeout_millis: int = 60_000
    chunk_size: int = 1024 * 1024

    def __post_init__(self):
        if self.max_num_retries < 0:
            raise ValueError("max_num_retries must not be negative")
        if self.retry_base_ms < 0 or self.retry_ceiling_ms < 0:
            raise ValueError("retry backoff values must not be negative")
        if self.http_req_timeout_millis <= 0:
            raise ValueError("http_req_timeout_millis must be positive")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")


@dataclass
class ConvertConfig:
    # fraction of malformed records tolerated before a conversion is rejected
    max_skipped_fraction: float = 0.05
    compression: Compression = Compression.GZIP

    def __post_init__(self):
        if not 0.0 <= self.max_skipped_fraction <= 1.0:
            raise ValueError("max_skipped_fraction must be between 0 and 1")


@dataclass
class SyncConfig:
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    convert: ConvertConfig = field(default_factory=ConvertConfig)
    max_concurrency: int = 4
    # age after which leftover staging files are swept at the start of a run
    stale_staging_seconds: float = 24 * 60 * 60

    def __post_init__(self):
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.stale_staging_seconds < 0:
            raise ValueError("stale_staging_seconds must not be negative")


def parse_config(config_path: Optional[Union[str, Path]]) -> SyncConfig:
    """Parse configuration from YAML file, falling back to defaults"""

    if config_path is None:
        return SyncConfig()

    try:
        with open(config_path, "r") as f:
            raw_config = yaml.safe_load(f) or {}

        config = dacite.from_dict(
            data_class=SyncConfig,
            data=raw_config,
            config=dacite.Config(cast=[Enum, float], strict=True),
        )

        logger.debug(f"Parsed config: {config}")

        return config

    except Exception as e:
        logger.error(f"Error parsing config file {config_path}: {e}")
        raise


__all__ = [
    "Compression",
    "CatalogConfig",
    "FetchConfig",
    "ConvertConfig",
    "SyncConfig",
    "parse_config",
]
