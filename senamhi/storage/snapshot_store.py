"""JSON file store for the last successful forecast snapshot."""

import json
import logging
import os
import tempfile
from pathlib import Path

from senamhi.ingest.errors import PersistError
from senamhi.models.common import EpochMillis, now_ms
from senamhi.models.forecast import Snapshot

logger = logging.getLogger(__name__)


class CorruptCacheError(Exception):
    """The cache file exists but cannot be turned into a Snapshot."""


class SnapshotStore:
    """Reads and atomically replaces a single snapshot file.

    A file that is unreadable or malformed is reported as absent, so callers
    can always fall through to a fresh fetch.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> Snapshot | None:
        """Return the persisted snapshot, or None if missing or corrupt."""
        try:
            return self._read()
        except FileNotFoundError:
            return None
        except CorruptCacheError as e:
            logger.warning("Ignoring corrupt cache file %s: %s", self.path, e)
            return None

    def save(self, snapshot: Snapshot) -> None:
        """Atomically replace the cache file with ``snapshot``.

        The payload goes to a temp file in the same directory, is fsynced, and
        is then renamed over the target, so readers only ever see a complete
        old or new file.
        """
        payload = json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False)
        directory = self.path.parent
        tmp_name: str | None = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise PersistError(f"Could not write cache file {self.path}: {e}") from e

        logger.debug(
            "Saved snapshot with %d locations to %s",
            len(snapshot.locations), self.path,
        )

    def _read(self) -> Snapshot:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise
        except (OSError, UnicodeDecodeError) as e:
            raise CorruptCacheError(f"unreadable: {e}") from e

        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            raise CorruptCacheError(f"invalid JSON: {e}") from e
        except RecursionError as e:
            raise CorruptCacheError("JSON nested too deeply") from e

        try:
            return Snapshot.from_dict(raw)
        except (ValueError, RecursionError) as e:
            raise CorruptCacheError(str(e) or type(e).__name__) from e


def is_fresh(
    snapshot: Snapshot, ttl_ms: int, now: EpochMillis | None = None
) -> bool:
    """A snapshot is fresh while its age is strictly below the TTL."""
    if now is None:
        now = now_ms()
    return now - snapshot.captured_at < ttl_ms


def age_ms(snapshot: Snapshot, now: EpochMillis | None = None) -> EpochMillis:
    if now is None:
        now = now_ms()
    return now - snapshot.captured_at
