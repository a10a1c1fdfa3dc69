from contextlib import closing
from pathlib import Path
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.logger import get_logger
from ..models.dataset import Dataset, DatasetStatus
from ..models.resource import CacheResource
from ..services import dataset_manager, storage
from .base_job import BaseJob, JobResult

logger = get_logger(__name__)


class DownloadPendingDatasetsJob(BaseJob):
    """
    Downloads the Pending dataset of each resource and publishes it as the
    resource's current raw + compressed files.

    Steps per resource:
        1. Pending -> Downloading
        2. stream the export into {resource_id}-{dataset_id}.{type}
        3. rename it over {resource_id}.{type}
        4. gzip the current file into the staging .gz and rename it over
           {resource_id}.{type}.gz
        5. Downloading -> Downloaded
    Any failure after step 1 marks the dataset Failed. Leftover staging files
    of a failed attempt are not removed here.
    """

    name = "download_pending_datasets"

    def __init__(self, resources: List[CacheResource], client, downloads_dir: Path, notifier=None):
        self.resources = resources
        self.client = client
        self.downloads_dir = Path(downloads_dir)
        self.notifier = notifier

    def run(self, db: Session) -> JobResult:
        downloaded: List[str] = []
        failed: List[str] = []
        errors: List[dict] = []

        storage.ensure_directory(self.downloads_dir)

        for resource in self.resources:
            pending = dataset_manager.get_dataset_by_status(db, DatasetStatus.PENDING, resource.resource_id)
            if pending is None:
                logger.info(
                    f"Resource {resource.resource_id} has no pending dataset.",
                    extra={"resource_id": resource.resource_id},
                )
                continue

            dataset_id = pending.dataset_id
            try:
                self.publish(db, resource, pending)
            except Exception as e:
                db.rollback()
                logger.exception(
                    f"Error downloading dataset {resource.resource_id}-{dataset_id}",
                    extra={"resource_id": resource.resource_id, "dataset_id": dataset_id},
                )
                errors.append({"resource_id": resource.resource_id, "dataset_id": dataset_id, "error": str(e)})
                if self._mark_failed(db, dataset_id):
                    failed.append(dataset_id)
                continue

            downloaded.append(dataset_id)

        return JobResult(
            data=downloaded,
            metadata={"downloaded": len(downloaded), "failed": failed, "errors": errors},
        )

    def publish(self, db: Session, resource: CacheResource, ds: Dataset) -> Dataset:
        extra = {"resource_id": resource.resource_id, "dataset_id": ds.dataset_id}
        paths = storage.ArtifactPaths.build(self.downloads_dir, resource.resource_id, ds.dataset_id, ds.type)

        logger.info(f"Downloading dataset for {resource.resource_id}", extra=extra)
        dataset_manager.update_dataset_status(db, ds.dataset_id, DatasetStatus.DOWNLOADING, notifier=self.notifier)

        columns = self.client.get_columns(resource)
        with closing(self.client.open_download_stream(resource, columns)) as chunks:
            size = storage.write_stream(chunks, paths.staging)
        logger.info(f"Downloaded {size} bytes", extra=extra)

        storage.promote(paths.staging, paths.current)

        logger.info("Compressing download", extra=extra)
        storage.compress(paths.current, paths.staging_compressed)
        storage.promote(paths.staging_compressed, paths.current_compressed)

        ds = dataset_manager.update_dataset_status(db, ds.dataset_id, DatasetStatus.DOWNLOADED, notifier=self.notifier)
        logger.info("Compressing complete", extra=extra)
        return ds

    def _mark_failed(self, db: Session, dataset_id: str) -> bool:
        ds: Optional[Dataset] = db.get(Dataset, dataset_id)
        # Step 1 itself failed; nothing was started for this dataset
        if ds is None or ds.status != DatasetStatus.DOWNLOADING:
            logger.error(
                f"Dataset {dataset_id} not marked as failed (status: {ds.status.label if ds else 'missing'})",
                extra={"dataset_id": dataset_id},
            )
            return False

        try:
            dataset_manager.update_dataset_status(db, dataset_id, DatasetStatus.FAILED, notifier=self.notifier)
        except Exception:
            db.rollback()
            logger.exception(f"Could not mark dataset {dataset_id} as failed", extra={"dataset_id": dataset_id})
            return False
        return True
