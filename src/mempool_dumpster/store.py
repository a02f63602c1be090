import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Iterable, Union

from .errors import StoreIOError
from .types import Category

logger = logging.getLogger(__name__)

PARQUET_MAGIC = b"PAR1"
STAGING_SUFFIX = ".tmp"
# staging files untouched for this long belong to a run that is gone
STALE_STAGING_SECONDS = 24 * 60 * 60


class LocalStore:
    """On-disk layout of converted files under a data directory.

    Staging files live next to their final location (hidden, ``.tmp``
    suffix) so that ``commit`` is a same-filesystem ``os.replace``.
    """

    def __init__(self, datadir: Union[str, Path]):
        self.datadir = Path(datadir)
        if not self.datadir.is_dir():
            raise StoreIOError(f"datadir does not exist: {self.datadir}")

    def category_dir(self, category: Category) -> Path:
        return self.datadir / Category(category).value

    def ensure_layout(self, categories: Iterable[Category]) -> None:
        for category in categories:
            try:
                self.category_dir(category).mkdir(exist_ok=True)
            except OSError as e:
                raise StoreIOError(f"failed to create {self.category_dir(category)}: {e}") from e

    def output_path(self, category: Category, day: str) -> Path:
        category = Category(category)
        return self.category_dir(category) / category.output_filename(day)

    def exists(self, category: Category, day: str) -> bool:
        path = self.output_path(category, day)
        try:
            size = path.stat().st_size
            if not path.is_file() or size < 2 * len(PARQUET_MAGIC):
                return False
            with open(path, "rb") as f:
                f.seek(-len(PARQUET_MAGIC), os.SEEK_END)
                return f.read(len(PARQUET_MAGIC)) == PARQUET_MAGIC
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Cannot inspect {path}, treating as missing: {e}")
            return False

    def staging_path(self, category: Category, day: str, suffix: str = "") -> Path:
        directory = self.category_dir(category)
        try:
            directory.mkdir(exist_ok=True)
            fd, name = tempfile.mkstemp(
                prefix=f".{day}.", suffix=f"{suffix}{STAGING_SUFFIX}", dir=directory
            )
            os.close(fd)
        except OSError as e:
            raise StoreIOError(f"failed to create staging file in {directory}: {e}") from e
        return Path(name)

    def commit(self, staging: Path, category: Category, day: str) -> Path:
        final = self.output_path(category, day)
        try:
            if staging.stat().st_size == 0:
                raise StoreIOError(f"refusing to commit empty file {staging} to {final}")

            with open(staging, "rb+") as f:
                os.fsync(f.fileno())

            os.replace(staging, final)
        except StoreIOError:
            raise
        except OSError as e:
            raise StoreIOError(f"failed to commit {staging} to {final}: {e}") from e

        logger.debug(f"Committed {final}")
        return final

    def discard(self, staging: Path) -> None:
        try:
            staging.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove staging file {staging}: {e}")

    def sweep_staging(
        self, category: Category, max_age_seconds: float = STALE_STAGING_SECONDS
    ) -> int:
        """Remove staging leftovers of aborted runs.

        Only files not modified for ``max_age_seconds`` are removed, so staging
        files of another run working on the same datadir are left alone.
        """
        directory = self.category_dir(category)
        if not directory.is_dir():
            return 0

        cutoff = time.time() - max_age_seconds
        removed = 0
        for path in directory.glob(f".*{STAGING_SUFFIX}"):
            try:
                if path.stat().st_mtime > cutoff:
                    continue
            except FileNotFoundError:
                continue
            self.discard(path)
            removed += 1

        if removed:
            logger.info(f"Removed {removed} stale staging files from {directory}")
        return removed


__all__ = ["LocalStore", "PARQUET_MAGIC", "STALE_STAGING_SECONDS"]
