from collections import Counter, OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.logger import get_logger
from ..models.dataset import DatasetStatus
from ..models.resource import CacheResource
from ..services import dataset_manager, storage
from .base_job import BaseJob, JobResult

logger = get_logger(__name__)

GIGABYTE = 1024 * 1024 * 1024


def _plural(count) -> str:
    return "" if count == 1 else "s"


@dataclass(frozen=True)
class EvictionCandidate:
    dataset_id: str
    resource_id: str
    type: str
    created_at: datetime


class CleanupCycle:
    """
    State of one cleanup run, built from a single read of the Downloaded
    datasets.

    remaining[resource_id] starts at the number of Downloaded datasets of the
    resource and drops by one per eviction, so both policies see the effect
    of earlier evictions without querying the store again.
    """

    def __init__(self, datasets):
        self.candidates: List[EvictionCandidate] = [
            EvictionCandidate(ds.dataset_id, ds.resource_id, ds.type, ds.created_at)
            for ds in sorted(datasets, key=lambda d: d.created_at)
        ]
        self.remaining: Counter = Counter(c.resource_id for c in self.candidates)
        # Newest Downloaded dataset per resource owns the current file pair
        self.current_ids: Dict[str, str] = {c.resource_id: c.dataset_id for c in self.candidates}
        self.evicted: List[str] = []
        self.deleted_files = 0
        self.freed_bytes = 0
        self.errors: List[dict] = []

    def open_candidates(self) -> List[EvictionCandidate]:
        evicted = set(self.evicted)
        return [c for c in self.candidates if c.dataset_id not in evicted]

    def record_deleted(self, files: int, freed: int) -> None:
        self.deleted_files += files
        self.freed_bytes += freed

    def record_eviction(self, candidate: EvictionCandidate) -> None:
        self.evicted.append(candidate.dataset_id)
        self.remaining[candidate.resource_id] -= 1


class RetentionCleanupJob(BaseJob):
    """
    Evicts Downloaded datasets by age, then by total directory size.

    Evicting a dataset deletes its raw and compressed files (missing files
    are skipped) and marks it Deleted. Resources with retain_last_file keep
    at least one Downloaded dataset through both policies.
    """

    name = "retention_cleanup"

    def __init__(
        self,
        resources: List[CacheResource],
        downloads_dir: Path,
        retention_days: int,
        retention_size_bytes: int,
        notifier=None,
    ):
        self.resources = {r.resource_id: r for r in resources}
        self.downloads_dir = Path(downloads_dir)
        self.retention_days = retention_days
        self.retention_size_bytes = retention_size_bytes
        self.notifier = notifier

    def run(self, db: Session, now: Optional[datetime] = None) -> JobResult:
        now = now or datetime.now()
        cycle = CleanupCycle(dataset_manager.get_datasets_by_status(db, DatasetStatus.DOWNLOADED))

        age_evicted = self.age_threshold_cleanup(db, cycle, now)
        size_evicted = self.size_threshold_cleanup(db, cycle)

        logger.info(
            f"Finished cleanup. Deleted {cycle.deleted_files} file{_plural(cycle.deleted_files)}",
            extra={"evicted": len(cycle.evicted), "freed_bytes": cycle.freed_bytes},
        )
        return JobResult(
            data=list(cycle.evicted),
            metadata={
                "age_evicted": age_evicted,
                "size_evicted": size_evicted,
                "deleted_files": cycle.deleted_files,
                "freed_bytes": cycle.freed_bytes,
                "errors": cycle.errors,
            },
        )

    def retains_last_file(self, resource_id: str) -> bool:
        resource = self.resources.get(resource_id)
        return bool(resource and resource.retain_last_file)

    def age_threshold_cleanup(self, db: Session, cycle: CleanupCycle, now: datetime) -> int:
        max_age = timedelta(days=self.retention_days)
        logger.info(
            f"Cleaning up files older than {self.retention_days} day{_plural(self.retention_days)}"
        )

        by_resource: "OrderedDict[str, List[EvictionCandidate]]" = OrderedDict()
        for candidate in cycle.open_candidates():
            if now - candidate.created_at > max_age:
                by_resource.setdefault(candidate.resource_id, []).append(candidate)

        found = sum(len(group) for group in by_resource.values())
        logger.info(
            f"Found {found} dataset{_plural(found)} older than "
            f"{self.retention_days} day{_plural(self.retention_days)}"
        )

        evicted = 0
        for resource_id, group in by_resource.items():
            if self.retains_last_file(resource_id):
                # Oldest first, never below one downloaded dataset
                group = group[: max(0, cycle.remaining[resource_id] - 1)]

            for candidate in group:
                logger.debug(
                    f"Deleting dataset {resource_id}-{candidate.dataset_id} "
                    f"({(now - candidate.created_at).total_seconds() / 86400:.2f} days old)",
                    extra={"resource_id": resource_id, "dataset_id": candidate.dataset_id},
                )
                if self.evict(db, cycle, candidate):
                    evicted += 1
        return evicted

    def size_threshold_cleanup(self, db: Session, cycle: CleanupCycle) -> int:
        cap = self.retention_size_bytes
        logger.info(
            f"Cleaning up files which are outside total size of {cap / GIGABYTE:g} Gigabyte{_plural(cap / GIGABYTE)}"
        )

        total = storage.directory_size(self.downloads_dir)
        logger.info(
            f"Total size of files in directory: {total / GIGABYTE:.3f} GB - "
            f"Over threshold: {max(0, total - cap) / GIGABYTE:.3f} GB",
            extra={"total_bytes": total, "cap_bytes": cap},
        )
        if total <= cap:
            logger.info("Datasets volume not exceeding retention size threshold")
            return 0

        freed = 0
        evicted = 0
        for candidate in cycle.open_candidates():
            if total - freed <= cap:
                logger.info("Dataset volume not exceeding retention size threshold anymore")
                break

            if self.retains_last_file(candidate.resource_id) and cycle.remaining[candidate.resource_id] <= 1:
                logger.debug(
                    f"Keeping last file of resource {candidate.resource_id}",
                    extra={"resource_id": candidate.resource_id, "dataset_id": candidate.dataset_id},
                )
                continue

            freed_before = cycle.freed_bytes
            result = self.evict(db, cycle, candidate)
            # Files removed before a failure still count towards the cap
            freed += cycle.freed_bytes - freed_before
            if result is not None:
                evicted += 1

        logger.info(f"Deleted {freed / (1024 * 1024):.1f} MB", extra={"freed_bytes": freed})
        return evicted

    def artifact_files(self, cycle: CleanupCycle, candidate: EvictionCandidate) -> List[Path]:
        paths = storage.ArtifactPaths.build(
            self.downloads_dir, candidate.resource_id, candidate.dataset_id, candidate.type
        )
        files = [paths.staging, paths.staging_compressed]
        if cycle.current_ids.get(candidate.resource_id) == candidate.dataset_id:
            files = [paths.current, paths.current_compressed] + files
        return files

    def evict(self, db: Session, cycle: CleanupCycle, candidate: EvictionCandidate) -> Optional[Tuple[int, int]]:
        """
        Delete a dataset's files and mark it Deleted.

        Returns (files deleted, bytes freed), or None when a file could not be
        deleted or the status update failed; the dataset then stays counted
        as downloaded.
        Files removed before a failure are still added to the cycle totals.
        """
        extra = {"resource_id": candidate.resource_id, "dataset_id": candidate.dataset_id}
        files = 0
        freed = 0
        for path in self.artifact_files(cycle, candidate):
            try:
                size = storage.delete_if_exists(path)
            except OSError as e:
                logger.error(f"Could not delete {path.name}: {e}", extra=extra)
                cycle.errors.append({**extra, "error": str(e)})
                cycle.record_deleted(files, freed)
                return None
            if size is not None:
                files += 1
                freed += size
        cycle.record_deleted(files, freed)

        try:
            dataset_manager.update_dataset_status(
                db, candidate.dataset_id, DatasetStatus.DELETED, notifier=self.notifier
            )
        except Exception as e:
            db.rollback()
            logger.exception(f"Could not mark dataset {candidate.dataset_id} as deleted", extra=extra)
            cycle.errors.append({**extra, "error": str(e)})
            return None

        cycle.record_eviction(candidate)
        return files, freed
