import logging
from pathlib import Path

import polars as pl

from ..config import ConvertConfig
from ..schemas import DECIMAL_COLUMNS, TRANSACTION_DATA_SCHEMA
from ..types import Category
from .util import (
    ADDRESS_RE,
    DECIMAL_RE,
    HASH_RE,
    HEX_RE,
    UNSIGNED_RE,
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
    "chain_id": "chainId",
    "from": "from",
    "to": "to",
    "value": "value",
    "nonce": "nonce",
    "gas": "gas",
    "gas_price": "gasPrice",
    "gas_tip_cap": "gasTipCap",
    "gas_fee_cap": "gasFeeCap",
    "data_size": "dataSize",
    "data_4bytes": "data4Bytes",
}


def transaction_valid() -> pl.Expr:
    """Row predicate shared by ``transaction-data`` and ``transactions``"""
    size = pl.col("dataSize").cast(pl.Int64, strict=False)
    selector = pl.col("data4Bytes")
    selector_bytes = (selector.str.len_bytes().cast(pl.Int64) - 2) // 2

    valid = (
        timestamp_valid()
        & pl.col("hash").str.contains(HASH_RE)
        & pl.col("from").str.contains(ADDRESS_RE)
        & ((pl.col("to") == "") | pl.col("to").str.contains(ADDRESS_RE))
        & pl.col("dataSize").str.contains(UNSIGNED_RE)
        & size.is_not_null()
        & (
            pl.when(size == 0)
            .then(selector == "")
            .otherwise(
                selector.str.contains(HEX_RE)
                & (selector_bytes == pl.min_horizontal(size, pl.lit(4, dtype=pl.Int64)))
            )
        )
    )
    for column in DECIMAL_COLUMNS:
        valid = valid & pl.col(column).str.contains(DECIMAL_RE)

    return valid


def normalize(df: pl.DataFrame) -> pl.DataFrame:
    return df.with_columns(
        pl.col("hash").str.to_lowercase(),
        pl.col("from").str.to_lowercase(),
        pl.col("to").str.to_lowercase(),
        pl.col("data4Bytes").str.to_lowercase(),
        pl.col("dataSize").cast(pl.Int64),
    )


def prepare_text_columns(df: pl.DataFrame) -> pl.DataFrame:
    """Strip surrounding whitespace and treat missing optional fields as empty"""
    return df.with_columns(
        pl.col(TRANSACTION_DATA_SCHEMA.names).str.strip_chars(),
    ).with_columns(
        pl.col("to").fill_null(""),
        pl.col("data4Bytes").fill_null(""),
    )


def execute(raw_path: Path, out_path: Path, day: str, config: ConvertConfig) -> ConversionStats:
    category = Category.TRANSACTION_DATA

    df = rename_columns(read_zipped_csv(raw_path), CSV_COLUMNS)
    require_columns(df, TRANSACTION_DATA_SCHEMA.names, category)
    df = prepare_text_columns(df.select(TRANSACTION_DATA_SCHEMA.names))

    stats = ConversionStats(category=category, day=day, total_rows=df.height)

    df, stats.skipped_rows = drop_invalid(df, transaction_valid(), config, category, day)
    df, stats.duplicate_rows = order_rows(normalize(df), unique_hash=True)
    if stats.duplicate_rows:
        logger.info(f"{category.value} {day}: dropped {stats.duplicate_rows} duplicate hashes")

    write_parquet(df, TRANSACTION_DATA_SCHEMA, out_path, config.compression)
    stats.written_rows = df.height

    logger.debug(f"Converted {stats}")
    return stats
