import logging
from pathlib import Path

import polars as pl

from ..config import ConvertConfig
from ..schemas import SOURCELOG_SCHEMA
from ..types import Category
from .util import (
    HASH_RE,
    ConversionStats,
    drop_invalid,
    order_rows,
    read_zipped_csv,
    rename_columns,
    require_columns,
    timestamp_valid,
    write_parquet,
)

logger = logging.getLogger(__name__)

CSV_COLUMNS = {
    "timestamp_ms": "timestamp",
    "hash": "hash",
    "source": "source",
}


def execute(raw_path: Path, out_path: Path, day: str, config: ConvertConfig) -> ConversionStats:
    category = Category.SOURCELOG

    df = rename_columns(read_zipped_csv(raw_path), CSV_COLUMNS)
    require_columns(df, SOURCELOG_SCHEMA.names, category)
    df = df.select(SOURCELOG_SCHEMA.names).with_columns(
        pl.col("source").fill_null("").str.strip_chars()
    )

    stats = ConversionStats(category=category, day=day, total_rows=df.height)

    valid = (
        timestamp_valid()
        & pl.col("hash").str.contains(HASH_RE)
        & (pl.col("source").str.len_chars() > 0)
    )
    df, stats.skipped_rows = drop_invalid(df, valid, config, category, day)

    df = df.with_columns(pl.col("hash").str.to_lowercase())
    # one row per (hash, source) observation, so no dedupe on hash alone
    df, _ = order_rows(df, unique_hash=False)

    write_parquet(df, SOURCELOG_SCHEMA, out_path, config.compression)
    stats.written_rows = df.height

    logger.debug(f"Converted {stats}")
    return stats
