import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

import aiohttp

from .cancellation import CancellationToken
from .catalog import Catalog
from .config import SyncConfig
from .converters import ConversionStats, convert
from .errors import MempoolDumpsterError, SyncCancelled
from .fetcher import Fetcher
from .store import LocalStore
from .types import Category, DateKey, parse_date_key

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    SKIPPED = "skipped"
    DOWNLOADED = "downloaded"
    FAILED = "failed"


@dataclass
class PairOutcome:
    category: Category
    day: str
    status: OutcomeStatus
    reason: Optional[str] = None
    path: Optional[Path] = None
    stats: Optional[ConversionStats] = None


@dataclass
class SyncReport:
    outcomes: List[PairOutcome] = field(default_factory=list)

    def _with_status(self, status: OutcomeStatus) -> List[PairOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def downloaded(self) -> List[PairOutcome]:
        return self._with_status(OutcomeStatus.DOWNLOADED)

    @property
    def skipped(self) -> List[PairOutcome]:
        return self._with_status(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> List[PairOutcome]:
        return self._with_status(OutcomeStatus.FAILED)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        return (
            f"{len(self.downloaded)} downloaded, {len(self.skipped)} skipped, "
            f"{len(self.failed)} failed"
        )


def _ordered(values: Iterable, key=None) -> list:
    if isinstance(values, str):
        values = [values]
    # sets carry no caller order, so fall back to a stable one
    elif isinstance(values, (set, frozenset)):
        values = sorted(values, key=key)
    return list(dict.fromkeys(values))


_CATEGORY_ORDER = {c: i for i, c in enumerate(Category)}


class Syncer:
    def __init__(
        self,
        store: LocalStore,
        catalog: Catalog,
        fetcher: Fetcher,
        config: SyncConfig,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.fetcher = fetcher
        self.config = config
        self.cancel_token = cancel_token or CancellationToken()

    async def run(
        self,
        categories: Iterable[Union[Category, str]],
        date_keys: Iterable[str],
        force: bool = False,
    ) -> SyncReport:
        categories = _ordered(
            Category(c) for c in _ordered(categories, key=lambda c: _CATEGORY_ORDER[Category(c)])
        )
        report = SyncReport()

        self.store.ensure_layout(categories)
        for category in categories:
            self.store.sweep_staging(category, self.config.stale_staging_seconds)

        pairs: List[Tuple[Category, str]] = []
        for raw_key in _ordered(date_keys):
            try:
                days = await self._expand(parse_date_key(raw_key))
            except MempoolDumpsterError as e:
                logger.error(f"Cannot resolve {raw_key}: {e}")
                report.outcomes.extend(
                    PairOutcome(c, raw_key, OutcomeStatus.FAILED, reason=str(e)) for c in categories
                )
                continue
            pairs.extend((c, day) for day in days for c in categories)

        pairs = list(dict.fromkeys(pairs))
        logger.info(f"Syncing {len(pairs)} files with up to {self.config.max_concurrency} workers")

        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def bounded(category: Category, day: str) -> PairOutcome:
            async with semaphore:
                return await self.process_pair(category, day, force)

        outcomes = await asyncio.gather(*(bounded(c, d) for c, d in pairs))
        report.outcomes.extend(outcomes)

        logger.info(f"Sync finished: {report.summary()}")
        return report

    async def _expand(self, key: DateKey) -> List[str]:
        # single days are checked against the index lazily, when they need fetching
        if not key.is_month:
            return [key.value]
        return await self.catalog.expand(key)

    async def process_pair(self, category: Category, day: str, force: bool) -> PairOutcome:
        path = self.store.output_path(category, day)

        if self.cancel_token.is_cancelled():
            return PairOutcome(category, day, OutcomeStatus.FAILED, reason="cancelled")

        if not force and self.store.exists(category, day):
            logger.info(f"File {path} already exists, skipping download")
            return PairOutcome(category, day, OutcomeStatus.SKIPPED, path=path)

        logger.info(f"Downloading {category.value} file for {day}")

        raw: Optional[Path] = None
        staged: Optional[Path] = None
        try:
            ref = await self.catalog.resolve(category, day)

            raw = self.store.staging_path(category, day, suffix=".download")
            await self.fetcher.fetch(ref, raw)
            self.cancel_token.raise_if_cancelled()

            staged = self.store.staging_path(category, day, suffix=".parquet")
            stats = await asyncio.to_thread(
                convert, category, raw, staged, day, self.config.convert
            )
            self.cancel_token.raise_if_cancelled()

            path = self.store.commit(staged, category, day)
            staged = None

            logger.info(
                f"Wrote {stats.written_rows} rows to {path} "
                f"({stats.skipped_rows} malformed, {stats.duplicate_rows} duplicates)"
            )
            return PairOutcome(category, day, OutcomeStatus.DOWNLOADED, path=path, stats=stats)

        except SyncCancelled:
            logger.warning(f"Cancelled {category.value} {day} before commit")
            return PairOutcome(category, day, OutcomeStatus.FAILED, reason="cancelled")
        except MempoolDumpsterError as e:
            logger.error(f"Failed {category.value} {day}: {e}")
            return PairOutcome(category, day, OutcomeStatus.FAILED, reason=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error for {category.value} {day}")
            return PairOutcome(
                category, day, OutcomeStatus.FAILED, reason=f"unexpected error: {e!r}"
            )
        finally:
            for leftover in (raw, staged):
                if leftover is not None:
                    self.store.discard(leftover)


async def sync(
    categories: Iterable[Union[Category, str]],
    date_keys: Iterable[str],
    datadir: Union[str, Path],
    force: bool = False,
    config: Optional[SyncConfig] = None,
    cancel_token: Optional[CancellationToken] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> SyncReport:
    """Make sure every requested (category, day) file exists under ``datadir``.

    Failures are confined to their pair and show up in the returned report;
    the caller decides whether a non-empty ``report.failed`` is fatal.
    """
    config = config or SyncConfig()
    store = LocalStore(datadir)

    async def run(session: aiohttp.ClientSession) -> SyncReport:
        syncer = Syncer(
            store=store,
            catalog=Catalog(config.catalog, session),
            fetcher=Fetcher(config.fetch, session),
            config=config,
            cancel_token=cancel_token,
        )
        return await syncer.run(categories, date_keys, force)

    if session is not None:
        return await run(session)

    async with aiohttp.ClientSession() as own_session:
        return await run(own_session)


async def list_months(
    config: Optional[SyncConfig] = None, session: Optional[aiohttp.ClientSession] = None
) -> List[str]:
    config = config or SyncConfig()
    if session is not None:
        return await Catalog(config.catalog, session).list_months()

    async with aiohttp.ClientSession() as own_session:
        return await Catalog(config.catalog, own_session).list_months()


async def list_days(
    month: str,
    config: Optional[SyncConfig] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> List[str]:
    config = config or SyncConfig()
    if session is not None:
        return await Catalog(config.catalog, session).list_days(month)

    async with aiohttp.ClientSession() as own_session:
        return await Catalog(config.catalog, own_session).list_days(month)


__all__ = [
    "OutcomeStatus",
    "PairOutcome",
    "SyncReport",
    "Syncer",
    "sync",
    "list_months",
    "list_days",
]
