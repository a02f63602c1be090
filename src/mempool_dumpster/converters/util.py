import io
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

import polars as pl
import pyarrow as pa
import pyarrow.parquet as pq

from ..config import Compression, ConvertConfig
from ..errors import SchemaValidationError
from ..types import Category

logger = logging.getLogger(__name__)

HASH_RE = r"^0x[0-9a-fA-F]{64}$"
ADDRESS_RE = r"^0x[0-9a-fA-F]{40}$"
DECIMAL_RE = r"^(0|[1-9][0-9]*)$"
UNSIGNED_RE = r"^[0-9]+$"
HEX_RE = r"^0x(?:[0-9a-fA-F]{2})*$"

VALID = "__valid"


@dataclass
class ConversionStats:
    category: Category
    day: str
    total_rows: int = 0
    written_rows: int = 0
    skipped_rows: int = 0
    duplicate_rows: int = 0


def read_zipped_csv(path: Path) -> pl.DataFrame:
    """Read the single CSV member of a zip archive with every column as text"""
    try:
        with zipfile.ZipFile(path) as archive:
            members = [m for m in archive.namelist() if not m.endswith("/")]
            if not members:
                raise SchemaValidationError(f"{path.name} contains no files")
            if len(members) > 1:
                logger.warning(f"{path.name} holds {len(members)} files, reading {members[0]}")
            payload = archive.read(members[0])
    except zipfile.BadZipFile as e:
        raise SchemaValidationError(f"{path.name} is not a valid zip archive: {e}") from e

    try:
        return pl.read_csv(
            io.BytesIO(payload),
            infer_schema=False,
            truncate_ragged_lines=True,
        )
    except (pl.exceptions.ComputeError, pl.exceptions.NoDataError) as e:
        raise SchemaValidationError(f"{path.name} is not a readable CSV: {e}") from e


def rename_columns(df: pl.DataFrame, mapping: Dict[str, str]) -> pl.DataFrame:
    present = {k: v for k, v in mapping.items() if k in df.columns and k != v}
    return df.rename(present)


def require_columns(df: pl.DataFrame, columns: List[str], category: Category) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise SchemaValidationError(
            f"{category.value} input is missing columns {missing}, found {df.columns}"
        )


def timestamp_valid(col: str = "timestamp") -> pl.Expr:
    return pl.col(col).str.contains(UNSIGNED_RE) & pl.col(col).cast(pl.Int64, strict=False).is_not_null()


def drop_invalid(
    df: pl.DataFrame,
    valid: pl.Expr,
    config: ConvertConfig,
    category: Category,
    day: str,
) -> Tuple[pl.DataFrame, int]:
    """Drop rows failing ``valid`` and enforce the malformed-record threshold"""
    total = df.height
    df = df.with_columns(valid.fill_null(False).alias(VALID))
    skipped = total - int(df[VALID].sum())

    if skipped:
        fraction = skipped / total
        if fraction > config.max_skipped_fraction:
            raise SchemaValidationError(
                f"{category.value} {day}: {skipped} of {total} records malformed "
                f"({fraction:.2%} > {config.max_skipped_fraction:.2%})",
                total=total,
                skipped=skipped,
            )
        logger.warning(f"{category.value} {day}: skipped {skipped} of {total} malformed records")
        logger.debug(f"First malformed records:\n{df.filter(~pl.col(VALID)).head(5)}")

    return df.filter(pl.col(VALID)).drop(VALID), skipped


def order_rows(df: pl.DataFrame, unique_hash: bool) -> Tuple[pl.DataFrame, int]:
    df = df.with_columns(pl.col("timestamp").cast(pl.Int64).cast(pl.Datetime("ms")))
    df = df.sort("timestamp", maintain_order=True)

    if not unique_hash:
        return df, 0

    before = df.height
    df = df.unique(subset=["hash"], keep="first", maintain_order=True)
    return df, before - df.height


def write_parquet(df: pl.DataFrame, schema: pa.Schema, path: Path, compression: Compression) -> None:
    table = df.select(schema.names).to_arrow().cast(schema)
    pq.write_table(
        table,
        path,
        compression=None if compression == Compression.NONE else compression.value,
        write_statistics=True,
    )
