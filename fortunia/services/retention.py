"""Retention sweep: removes aged readings and their stored images.

One sweep:
1. Selects reading rows created before the cutoff and the object keys their
   image_url / share_card_url point to in our bucket
2. Lists share_cards/ (oldest first) and adds objects created before the cutoff
3. Deletes the collected keys in bounded batches; a failed batch is logged
   and the sweep continues
4. Deletes the expired rows whose objects are all gone. A row with a key in
   a failed batch is kept so the next run retries it
5. Clears share_card_url on surviving rows whose object no longer exists

Re-running with the same cutoff finds nothing left to delete.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from fortunia.db.models import Reading
from fortunia.db.session import transaction
from fortunia.logging import get_logger
from fortunia.services.clock import Clock, utc_now
from fortunia.storage.client import StorageClientBase, StorageError
from fortunia.storage.paths import SHARE_CARDS_FOLDER, folder_path, path_in_bucket_from_url

logger = get_logger(__name__)

DEFAULT_RETENTION_DAYS = 30
DEFAULT_BATCH_SIZE = 100
DEFAULT_LIST_LIMIT = 1000


def default_cutoff(now: datetime, retention_days: int = DEFAULT_RETENTION_DAYS) -> datetime:
    return now - timedelta(days=retention_days)


@dataclass
class SweepSummary:
    cutoff: datetime
    deleted_readings: int = 0
    deleted_files: int = 0
    repaired_references: int = 0
    failed_batches: int = 0
    finished_at: datetime | None = field(default=None)

    def to_summary(self) -> dict:
        return {
            "timestamp": (self.finished_at or utc_now()).isoformat(),
            "deletedReadings": self.deleted_readings,
            "deletedShareCards": self.deleted_files,
            "repairedReferences": self.repaired_references,
            "failedBatches": self.failed_batches,
            "cutoffDate": self.cutoff.isoformat(),
            "status": "success" if self.failed_batches == 0 else "partial",
        }


class RetentionSweeper:
    """Deletes readings and stored objects older than a cutoff."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        storage: StorageClientBase,
        *,
        folder: str = SHARE_CARDS_FOLDER,
        batch_size: int = DEFAULT_BATCH_SIZE,
        list_limit: int = DEFAULT_LIST_LIMIT,
        clock: Clock = utc_now,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._session_factory = session_factory
        self._storage = storage
        self._folder = folder
        self._batch_size = batch_size
        self._list_limit = list_limit
        self._clock = clock

    def sweep(self, cutoff: datetime) -> SweepSummary:
        """Run one sweep.

        Raises:
            SQLAlchemyError: Reading selection or deletion failed. No row was
                deleted; objects already removed are skipped on the next run.
            StorageError: Listing the share card folder failed.
        """
        summary = SweepSummary(cutoff=cutoff)
        logger.info("retention.sweep_started", cutoff=cutoff.isoformat())

        expired = self._expired_readings(cutoff)
        paths = [path for _, row_paths in expired for path in row_paths]
        for obj in self._storage.list_objects(folder_path(self._folder), limit=self._list_limit):
            if obj.created_at is not None and obj.created_at < cutoff:
                paths.append(obj.path)

        unique_paths = list(dict.fromkeys(paths))
        failed_paths: set[str] = set()
        for start in range(0, len(unique_paths), self._batch_size):
            batch = unique_paths[start : start + self._batch_size]
            try:
                self._storage.delete_objects(batch)
            except StorageError as e:
                summary.failed_batches += 1
                failed_paths.update(batch)
                logger.warning(
                    "retention.batch_failed",
                    batch_start=start,
                    batch_size=len(batch),
                    error=e.message,
                )
                continue
            summary.deleted_files += len(batch)

        removable = [
            reading_id for reading_id, row_paths in expired if failed_paths.isdisjoint(row_paths)
        ]
        summary.deleted_readings = self._delete_readings(removable)
        logger.info(
            "retention.readings_deleted",
            count=summary.deleted_readings,
            retained=len(expired) - len(removable),
        )

        summary.repaired_references = self._repair_orphans()
        summary.finished_at = self._clock()

        logger.info(
            "retention.sweep_completed",
            deleted_readings=summary.deleted_readings,
            deleted_files=summary.deleted_files,
            repaired_references=summary.repaired_references,
            failed_batches=summary.failed_batches,
        )
        return summary

    def _expired_readings(self, cutoff: datetime) -> list[tuple[UUID, list[str]]]:
        bucket = self._storage.bucket
        with self._session_factory() as db:
            rows = db.execute(
                select(Reading.id, Reading.image_url, Reading.share_card_url).where(
                    Reading.created_at < cutoff
                )
            ).all()

        expired = []
        for row in rows:
            paths = [
                path
                for path in (
                    path_in_bucket_from_url(row.image_url, bucket),
                    path_in_bucket_from_url(row.share_card_url, bucket),
                )
                if path
            ]
            expired.append((row.id, paths))
        return expired

    def _delete_readings(self, ids: list[UUID]) -> int:
        if not ids:
            return 0
        with self._session_factory() as db, transaction(db):
            db.execute(delete(Reading).where(Reading.id.in_(ids)))
        return len(ids)

    def _share_card_path(self, url: str) -> str | None:
        path = path_in_bucket_from_url(url, self._storage.bucket)
        if path:
            return path
        name = url.rstrip("/").rsplit("/", 1)[-1]
        return f"{folder_path(self._folder)}/{name}" if name else None

    def _repair_orphans(self) -> int:
        with self._session_factory() as db:
            rows = db.execute(
                select(Reading.id, Reading.share_card_url).where(
                    Reading.share_card_url.is_not(None)
                )
            ).all()

            orphaned = []
            for row in rows:
                path = self._share_card_path(row.share_card_url)
                try:
                    exists = path is not None and self._storage.object_exists(path)
                except StorageError as e:
                    logger.warning("retention.exists_check_failed", error=e.message)
                    continue
                if not exists:
                    orphaned.append(row.id)

            if orphaned:
                with transaction(db):
                    db.execute(
                        update(Reading).where(Reading.id.in_(orphaned)).values(share_card_url=None)
                    )

        if orphaned:
            logger.info("retention.orphans_repaired", count=len(orphaned))
        return len(orphaned)
