from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.errors import InvalidStatusTransition, RecordNotFound
from ..core.logger import get_logger
from ..models.dataset import Dataset, DatasetStatus, can_transition, new_dataset_id

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now()


def _notify(notifier, ds: Dataset) -> None:
    # The status is already committed; a broken sink must not undo or mask that
    if notifier is None:
        return
    try:
        notifier.notify(ds)
    except Exception as e:
        logger.warning(
            f"Notification for dataset {ds.resource_id}-{ds.dataset_id} failed: {e}",
            extra={"resource_id": ds.resource_id, "dataset_id": ds.dataset_id},
        )


def register_fresh_dataset(
    db: Session,
    reference_date: datetime,
    resource_id: str,
    dataset_type: str,
    notifier=None,
) -> Dataset:
    """
    Insert a new Pending dataset for a resource version and commit it.
    """
    now = _now()
    ds = Dataset(
        dataset_id=new_dataset_id(),
        resource_id=resource_id,
        reference_date=reference_date,
        status=DatasetStatus.PENDING,
        type=dataset_type,
        created_at=now,
        updated_at=now,
    )
    db.add(ds)
    db.commit()
    db.refresh(ds)

    _notify(notifier, ds)
    return ds


def update_dataset_status(
    db: Session,
    dataset_id: str,
    status: DatasetStatus,
    notifier=None,
) -> Dataset:
    """
    Move a dataset to a new status, bump updated_at and commit.

    The commit happens before the notification is queued; the notifier never
    influences the stored status.

    Raises:
        RecordNotFound: no dataset with this id exists
        InvalidStatusTransition: the move is not part of the lifecycle
    """
    ds = db.get(Dataset, dataset_id)
    if ds is None:
        raise RecordNotFound(dataset_id)

    if not can_transition(ds.status, status):
        raise InvalidStatusTransition(dataset_id, ds.status, status)

    previous = ds.status
    ds.status = status
    ds.updated_at = _now()
    db.commit()
    db.refresh(ds)

    logger.debug(
        f"Dataset {ds.resource_id}-{ds.dataset_id} {previous.label} -> {status.label}",
        extra={"resource_id": ds.resource_id, "dataset_id": ds.dataset_id},
    )

    _notify(notifier, ds)
    return ds


def is_fresh_dataset_known(db: Session, reference_date: datetime, resource_id: str) -> bool:
    """
    True if this resource version was already registered.

    Failed and Obsolete attempts don't count, so a version whose download
    failed is registered again on the next lookup.
    """
    ds = (
        db.query(Dataset)
        .filter(
            Dataset.resource_id == resource_id,
            Dataset.reference_date == reference_date,
            Dataset.status.notin_([DatasetStatus.FAILED, DatasetStatus.OBSOLETE]),
        )
        .first()
    )
    return ds is not None


def get_datasets_by_status(
    db: Session,
    status: DatasetStatus,
    resource_id: Optional[str] = None,
) -> List[Dataset]:
    query = db.query(Dataset).filter(Dataset.status == status)
    if resource_id is not None:
        query = query.filter(Dataset.resource_id == resource_id)
    return query.order_by(Dataset.created_at).all()


def get_dataset_by_status(db: Session, status: DatasetStatus, resource_id: str) -> Optional[Dataset]:
    """Oldest dataset of a resource in the given status, if any."""
    return (
        db.query(Dataset)
        .filter(Dataset.status == status, Dataset.resource_id == resource_id)
        .order_by(Dataset.created_at)
        .first()
    )


def count_datasets_by_status(db: Session, status: DatasetStatus, resource_id: str) -> int:
    return (
        db.query(Dataset)
        .filter(Dataset.status == status, Dataset.resource_id == resource_id)
        .count()
    )


def get_datasets(db: Session) -> List[Dataset]:
    return db.query(Dataset).order_by(Dataset.created_at).all()
