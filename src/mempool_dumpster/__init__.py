from . import config, converters, errors
from .cancellation import CancellationToken
from .catalog import Catalog
from .config import CatalogConfig, ConvertConfig, FetchConfig, SyncConfig, parse_config
from .fetcher import Fetcher
from .store import LocalStore
from .sync import OutcomeStatus, PairOutcome, SyncReport, Syncer, list_days, list_months, sync
from .types import Category, DateKey, RemoteFileRef, parse_date_key

__all__ = [
    "config",
    "converters",
    "errors",
    "CancellationToken",
    "Catalog",
    "CatalogConfig",
    "ConvertConfig",
    "FetchConfig",
    "SyncConfig",
    "parse_config",
    "Fetcher",
    "LocalStore",
    "OutcomeStatus",
    "PairOutcome",
    "SyncReport",
    "Syncer",
    "sync",
    "list_months",
    "list_days",
    "Category",
    "DateKey",
    "RemoteFileRef",
    "parse_date_key",
]
