import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional

from .errors import InvalidDateKey

_DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_MONTH_RE = re.compile(r"^\d{4}-\d{2}$")


class Category(str, Enum):
    SOURCELOG = "sourcelog"
    TRANSACTION_DATA = "transaction-data"
    TRANSACTIONS = "transactions"

    def output_filename(self, day: str) -> str:
        match self:
            case Category.SOURCELOG:
                return f"{day}_sourcelog.parquet"
            case Category.TRANSACTION_DATA:
                return f"{day}_transaction-data.parquet"
            case Category.TRANSACTIONS:
                return f"{day}.parquet"


DEFAULT_CATEGORIES = (Category.SOURCELOG, Category.TRANSACTION_DATA)


@dataclass(frozen=True)
class DateKey:
    value: str
    is_month: bool

    @property
    def month(self) -> str:
        return self.value[:7]

    def __str__(self) -> str:
        return self.value


def parse_date_key(key: str) -> DateKey:
    key = key.strip()

    if _DAY_RE.match(key):
        try:
            date.fromisoformat(key)
        except ValueError:
            raise InvalidDateKey(key)
        return DateKey(value=key, is_month=False)

    if _MONTH_RE.match(key):
        month = int(key[5:7])
        if not 1 <= month <= 12:
            raise InvalidDateKey(key)
        return DateKey(value=key, is_month=True)

    raise InvalidDateKey(key)


def month_of(day: str) -> str:
    return day[:7]


@dataclass(frozen=True)
class RemoteFileRef:
    category: Category
    day: str
    url: str
    expected_size: Optional[int] = None


__all__ = [
    "Category",
    "DEFAULT_CATEGORIES",
    "DateKey",
    "parse_date_key",
    "month_of",
    "RemoteFileRef",
]
