import asyncio
import logging
import re
from typing import Dict, List, Optional

import aiohttp
from bs4 import BeautifulSoup

from .config import CatalogConfig
from .errors import CatalogUnavailable, NotFound
from .types import Category, DateKey, RemoteFileRef, month_of, parse_date_key

logger = logging.getLogger(__name__)

_MONTH_RE = re.compile(r"^\d{4}-\d{2}$")
_DAY_FILE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})\.csv\.zip$")


def parse_month_list(html: str) -> List[str]:
    soup = BeautifulSoup(html, "html.parser")
    months = {
        a.get_text(strip=True)
        for a in soup.select("ul.root-months li a")
        if _MONTH_RE.match(a.get_text(strip=True))
    }
    return sorted(months)


def parse_day_list(html: str) -> List[str]:
    soup = BeautifulSoup(html, "html.parser")
    days = set()
    for a in soup.select("td.fn a"):
        m = _DAY_FILE_RE.match(a.get_text(strip=True))
        if m is not None:
            days.add(m.group(1))
    return sorted(days)


def file_url(base_url: str, category: Category, day: str) -> str:
    month = month_of(day)
    match category:
        case Category.SOURCELOG:
            return f"{base_url}/{month}/{day}_sourcelog.csv.zip"
        case Category.TRANSACTION_DATA:
            return f"{base_url}/{month}/{day}.csv.zip"
        case Category.TRANSACTIONS:
            return f"{base_url}/{month}/{day}.parquet"
        case _:
            raise ValueError(f"Invalid category: {category}")


class Catalog:
    """Index of the months and days published by the provider.

    Index pages are requested at most once per instance; concurrent
    callers asking for the same page wait on a shared lock and reuse
    the first answer.
    """

    def __init__(self, config: CatalogConfig, session: aiohttp.ClientSession):
        self.config = config
        self._session = session
        self._months: Optional[List[str]] = None
        self._days: Dict[str, List[str]] = {}
        # months found unpublished, with the reason
        self._missing: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    async def _get_text(self, url: str) -> str:
        logger.debug(f"Fetching index page {url}")
        timeout = aiohttp.ClientTimeout(total=self.config.http_req_timeout_millis / 1000)
        try:
            async with self._session.get(url, timeout=timeout) as response:
                if response.status == 404:
                    raise NotFound(f"{url} is not published")
                if response.status != 200:
                    raise CatalogUnavailable(f"HTTP {response.status} fetching {url}")
                return await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise CatalogUnavailable(f"failed to fetch {url}: {e!r}") from e

    async def list_months(self) -> List[str]:
        async with self._lock("__months__"):
            if self._months is not None:
                return list(self._months)

            try:
                html = await self._get_text(self.config.index_url)
            except NotFound as e:
                raise CatalogUnavailable(f"provider index missing: {e}") from e

            months = parse_month_list(html)
            if not months:
                raise CatalogUnavailable("failed to get month list")

            logger.info(f"Provider publishes {len(months)} months")
            self._months = months
            return list(months)

    async def list_days(self, month: str) -> List[str]:
        key = parse_date_key(month)
        if not key.is_month:
            raise NotFound(f"{month} is not a month key")

        async with self._lock(month):
            if month in self._days:
                return list(self._days[month])
            if month in self._missing:
                raise NotFound(self._missing[month])

            try:
                html = await self._get_text(f"{self.config.base_url}/{month}/index.html")
            except NotFound as e:
                self._missing[month] = str(e)
                raise

            days = [d for d in parse_day_list(html) if month_of(d) == month]
            if not days:
                self._missing[month] = f"no days published for {month}"
                raise NotFound(self._missing[month])

            logger.debug(f"Month {month} has {len(days)} published days")
            self._days[month] = days
            return list(days)

    async def expand(self, date_key: DateKey) -> List[str]:
        if date_key.is_month:
            return await self.list_days(date_key.value)

        days = await self.list_days(date_key.month)
        if date_key.value not in days:
            raise NotFound(f"{date_key.value} is not published")
        return [date_key.value]

    async def resolve(self, category: Category, day: str) -> RemoteFileRef:
        category = Category(category)
        key = parse_date_key(day)
        if key.is_month:
            raise ValueError(f"resolve needs a day key, got month {day}")

        (resolved,) = await self.expand(key)
        return RemoteFileRef(
            category=category,
            day=resolved,
            url=file_url(self.config.base_url, category, resolved),
        )


__all__ = ["Catalog", "parse_month_list", "parse_day_list", "file_url"]
