from pathlib import Path

from ..config import ConvertConfig
from ..types import Category
from . import sourcelog, transaction_data, transactions, util
from .util import ConversionStats


def convert(
    category: Category,
    raw_path: Path,
    out_path: Path,
    day: str,
    config: ConvertConfig,
) -> ConversionStats:
    match Category(category):
        case Category.SOURCELOG:
            return sourcelog.execute(raw_path, out_path, day, config)
        case Category.TRANSACTION_DATA:
            return transaction_data.execute(raw_path, out_path, day, config)
        case Category.TRANSACTIONS:
            return transactions.execute(raw_path, out_path, day, config)
        case _:
            raise ValueError(f"Invalid category: {category}")


__all__ = [
    "convert",
    "ConversionStats",
    "sourcelog",
    "transaction_data",
    "transactions",
    "util",
]
