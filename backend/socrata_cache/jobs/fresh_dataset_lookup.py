from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.logger import get_logger
from ..models.dataset import Dataset, DatasetStatus
from ..models.resource import CacheResource
from ..services import dataset_manager
from .base_job import BaseJob, JobResult

logger = get_logger(__name__)


class FreshDatasetLookupJob(BaseJob):
    """
    Registers a Pending dataset whenever the source reports a version the
    cache doesn't know yet:

    - asks the source for the resource's last-modified timestamp
    - if the version is new, demotes older Pending datasets to Obsolete and
      inserts a new Pending one
    - for retain_last_file resources, registers the known version again when
      no Downloaded dataset is left (its file was evicted)
    """

    name = "fresh_dataset_lookup"

    def __init__(self, resources: List[CacheResource], client, notifier=None):
        self.resources = resources
        self.client = client
        self.notifier = notifier

    def run(self, db: Session) -> JobResult:
        registered: List[str] = []
        errors: List[dict] = []

        for resource in self.resources:
            try:
                ds = self.lookup_resource(db, resource)
            except Exception as e:
                db.rollback()
                logger.exception(
                    f"Fresh dataset lookup failed for resource {resource.resource_id}",
                    extra={"resource_id": resource.resource_id},
                )
                errors.append({"resource_id": resource.resource_id, "error": str(e)})
                continue

            if ds is not None:
                registered.append(ds.dataset_id)

        return JobResult(
            data=registered,
            metadata={"registered": len(registered), "errors": errors},
        )

    def lookup_resource(self, db: Session, resource: CacheResource) -> Optional[Dataset]:
        extra = {"resource_id": resource.resource_id}

        last_updated = self.client.get_last_updated(resource)
        logger.info(
            f"Resource {resource.resource_id} ({resource.socrata_id}) was last updated on "
            f"{last_updated:%Y-%m-%d %H:%M:%S}",
            extra=extra,
        )

        downloading = dataset_manager.get_dataset_by_status(db, DatasetStatus.DOWNLOADING, resource.resource_id)
        if downloading is not None:
            logger.info(
                f"Dataset {resource.resource_id}-{downloading.dataset_id} is downloading, deferring lookup.",
                extra=extra,
            )
            return None

        if dataset_manager.is_fresh_dataset_known(db, last_updated, resource.resource_id):
            if not self._needs_reregistration(db, resource):
                logger.info(f"Dataset {resource.resource_id} is already known with date.", extra=extra)
                return None
            logger.info(
                f"Dataset {resource.resource_id} is known but its last file was deleted. Retaining last file.",
                extra=extra,
            )

        obsolete = dataset_manager.get_datasets_by_status(db, DatasetStatus.PENDING, resource.resource_id)
        for ds in obsolete:
            dataset_manager.update_dataset_status(db, ds.dataset_id, DatasetStatus.OBSOLETE, notifier=self.notifier)
        logger.info(f"Marked {len(obsolete)} dataset(s) as obsolete.", extra=extra)

        ds = dataset_manager.register_fresh_dataset(
            db,
            reference_date=last_updated,
            resource_id=resource.resource_id,
            dataset_type=resource.type,
            notifier=self.notifier,
        )
        logger.info(
            f"Registered dataset {resource.resource_id}-{ds.dataset_id} as pending.",
            extra={**extra, "dataset_id": ds.dataset_id},
        )
        return ds

    @staticmethod
    def _needs_reregistration(db: Session, resource: CacheResource) -> bool:
        if not resource.retain_last_file:
            return False
        if dataset_manager.count_datasets_by_status(db, DatasetStatus.DOWNLOADED, resource.resource_id) > 0:
            return False
        # A pending copy is already on its way
        pending = dataset_manager.get_dataset_by_status(db, DatasetStatus.PENDING, resource.resource_id)
        return pending is None
