import logging
from pathlib import Path
from typing import NamedTuple, Optional

import polars as pl
import pyarrow as pa
import pyarrow.parquet as pq
import rlp
from rlp.exceptions import DecodingError

from ..config import ConvertConfig
from ..errors import SchemaValidationError
from ..schemas import TRANSACTION_DATA_SCHEMA, TRANSACTIONS_SCHEMA
from ..types import Category
from .transaction_data import CSV_COLUMNS, normalize, prepare_text_columns, transaction_valid
from .util import ConversionStats, drop_invalid, order_rows, rename_columns, require_columns, write_parquet

logger = logging.getLogger(__name__)

INPUT_COLUMNS = {**CSV_COLUMNS, "raw_tx": "rawTx"}

# (to, data) positions in the signed field list, keyed by EIP-2718 type
LEGACY_FIELDS = (3, 5)
TYPED_FIELDS = {
    0x01: (4, 6),
    0x02: (5, 7),
    0x03: (5, 7),
    0x04: (5, 7),
}
BLOB_TX_TYPE = 0x03

RAW_TO = "__raw_to"
RAW_SIZE = "__raw_size"
RAW_4BYTES = "__raw_4bytes"


class RawTxPayload(NamedTuple):
    to: str
    data_size: int
    data_4bytes: str


def decode_raw_tx(raw: Optional[bytes]) -> Optional[RawTxPayload]:
    """Recipient and calldata of a signed transaction, ``None`` if it does not decode"""
    if not raw:
        return None

    tx_type = raw[0]
    try:
        if tx_type >= 0xC0:
            fields = rlp.decode(raw)
            positions = LEGACY_FIELDS
        elif tx_type in TYPED_FIELDS:
            fields = rlp.decode(raw[1:])
            positions = TYPED_FIELDS[tx_type]
            # network form of a blob transaction wraps the body together with its sidecar
            if tx_type == BLOB_TX_TYPE and fields and isinstance(fields[0], (list, tuple)):
                fields = fields[0]
        else:
            return None
    except DecodingError:
        return None

    to_pos, data_pos = positions
    if not isinstance(fields, (list, tuple)) or len(fields) <= data_pos:
        return None

    to, data = fields[to_pos], fields[data_pos]
    if not isinstance(to, bytes) or not isinstance(data, bytes) or len(to) not in (0, 20):
        return None

    return RawTxPayload(
        to="0x" + to.hex() if to else "",
        data_size=len(data),
        data_4bytes="0x" + data[:4].hex() if data else "",
    )


def with_raw_payload(df: pl.DataFrame) -> pl.DataFrame:
    decoded = [decode_raw_tx(raw) for raw in df["rawTx"].to_list()]
    return df.with_columns(
        pl.Series(RAW_TO, [d.to if d else None for d in decoded], dtype=pl.String),
        pl.Series(RAW_SIZE, [d.data_size if d else None for d in decoded], dtype=pl.Int64),
        pl.Series(RAW_4BYTES, [d.data_4bytes if d else None for d in decoded], dtype=pl.String),
    )


def raw_payload_matches() -> pl.Expr:
    """Row metadata agrees with what the signed transaction actually carries"""
    return (
        (pl.col(RAW_SIZE) == pl.col("dataSize").cast(pl.Int64, strict=False))
        & (pl.col(RAW_TO) == pl.col("to").str.to_lowercase())
        & (pl.col(RAW_4BYTES) == pl.col("data4Bytes").str.to_lowercase())
    )


def read_provider_parquet(path: Path) -> pl.DataFrame:
    try:
        table = pq.read_table(path)
    except (pa.ArrowException, OSError) as e:
        raise SchemaValidationError(f"{path.name} is not a readable parquet file: {e}") from e
    return pl.from_arrow(table)


def as_text(df: pl.DataFrame) -> pl.DataFrame:
    """Bring typed provider columns to the text form the validators expect"""
    exprs = []
    for name in TRANSACTION_DATA_SCHEMA.names:
        dtype = df.schema[name]
        if isinstance(dtype, pl.Datetime):
            exprs.append(pl.col(name).dt.epoch("ms").cast(pl.String))
        elif dtype == pl.Binary:
            exprs.append(pl.lit("0x") + pl.col(name).bin.encode("hex"))
        elif dtype != pl.String:
            exprs.append(pl.col(name).cast(pl.String))

    raw_type = df.schema["rawTx"]
    if raw_type == pl.String:
        exprs.append(
            pl.col("rawTx")
            .str.strip_chars()
            .str.strip_prefix("0x")
            .str.decode("hex", strict=False)
        )
    elif raw_type != pl.Binary:
        raise SchemaValidationError(f"rawTx has unsupported type {raw_type}")

    return df.with_columns(exprs) if exprs else df


def execute(raw_path: Path, out_path: Path, day: str, config: ConvertConfig) -> ConversionStats:
    category = Category.TRANSACTIONS

    df = rename_columns(read_provider_parquet(raw_path), INPUT_COLUMNS)
    require_columns(df, TRANSACTIONS_SCHEMA.names, category)
    df = prepare_text_columns(as_text(df.select(TRANSACTIONS_SCHEMA.names)))

    stats = ConversionStats(category=category, day=day, total_rows=df.height)

    df = with_raw_payload(df)
    valid = transaction_valid() & raw_payload_matches()
    df, stats.skipped_rows = drop_invalid(df, valid, config, category, day)
    df = df.drop([RAW_TO, RAW_SIZE, RAW_4BYTES])
    df, stats.duplicate_rows = order_rows(normalize(df), unique_hash=True)
    if stats.duplicate_rows:
        logger.info(f"{category.value} {day}: dropped {stats.duplicate_rows} duplicate hashes")

    write_parquet(df, TRANSACTIONS_SCHEMA, out_path, config.compression)
    stats.written_rows = df.height

    logger.debug(f"Converted {stats}")
    return stats
