import pyarrow as pa

from .types import Category

# Shared leading columns of every category
BASE_FIELDS = [
    pa.field("timestamp", pa.timestamp("ms"), nullable=False),
    pa.field("hash", pa.string(), nullable=False),
]

SOURCELOG_SCHEMA = pa.schema(
    BASE_FIELDS
    + [
        pa.field("source", pa.string(), nullable=False),
    ]
)

# Numeric fields stay decimal strings, values can exceed 64 bits
TRANSACTION_DATA_SCHEMA = pa.schema(
    BASE_FIELDS
    + [
        pa.field("chainId", pa.string(), nullable=False),
        pa.field("from", pa.string(), nullable=False),
        pa.field("to", pa.string(), nullable=False),
        pa.field("value", pa.string(), nullable=False),
        pa.field("nonce", pa.string(), nullable=False),
        pa.field("gas", pa.string(), nullable=False),
        pa.field("gasPrice", pa.string(), nullable=False),
        pa.field("gasTipCap", pa.string(), nullable=False),
        pa.field("gasFeeCap", pa.string(), nullable=False),
        pa.field("dataSize", pa.int64(), nullable=False),
        pa.field("data4Bytes", pa.string(), nullable=False),
    ]
)

TRANSACTIONS_SCHEMA = TRANSACTION_DATA_SCHEMA.append(
    pa.field("rawTx", pa.binary(), nullable=False)
)

DECIMAL_COLUMNS = ["chainId", "value", "nonce", "gas", "gasPrice", "gasTipCap", "gasFeeCap"]


def schema_for(category: Category) -> pa.Schema:
    match Category(category):
        case Category.SOURCELOG:
            return SOURCELOG_SCHEMA
        case Category.TRANSACTION_DATA:
            return TRANSACTION_DATA_SCHEMA
        case Category.TRANSACTIONS:
            return TRANSACTIONS_SCHEMA
        case _:
            raise ValueError(f"Invalid category: {category}")


__all__ = [
    "SOURCELOG_SCHEMA",
    "TRANSACTION_DATA_SCHEMA",
    "TRANSACTIONS_SCHEMA",
    "DECIMAL_COLUMNS",
    "schema_for",
]
