import enum
import uuid

from sqlalchemy import Column, String, DateTime, Enum

from ..core.db import Base


class DatasetStatus(enum.Enum):
    PENDING = 0
    DOWNLOADING = 1
    DOWNLOADED = 2
    OBSOLETE = 3
    FAILED = 4
    DELETED = 5

    @property
    def label(self) -> str:
        """Lowercase text used by the API and webhook payloads."""
        return self.name.lower()


# Pending -> Downloading -> Downloaded, Downloading -> Failed,
# Pending -> Obsolete, Downloaded -> Deleted
ALLOWED_TRANSITIONS = {
    DatasetStatus.PENDING: {DatasetStatus.DOWNLOADING, DatasetStatus.OBSOLETE},
    DatasetStatus.DOWNLOADING: {DatasetStatus.DOWNLOADED, DatasetStatus.FAILED},
    DatasetStatus.DOWNLOADED: {DatasetStatus.DELETED},
    DatasetStatus.OBSOLETE: set(),
    DatasetStatus.FAILED: set(),
    DatasetStatus.DELETED: set(),
}


def can_transition(current: DatasetStatus, target: DatasetStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def new_dataset_id() -> str:
    return str(uuid.uuid4())


class Dataset(Base):
    __tablename__ = "datasets"

    dataset_id = Column(String, primary_key=True, default=new_dataset_id)
    resource_id = Column(String, nullable=False, index=True)
    status = Column(Enum(DatasetStatus), nullable=False, default=DatasetStatus.PENDING, index=True)

    # Source's last-modified marker for this version
    reference_date = Column(DateTime, nullable=False)
    # csv / json / xml, used to derive the artifact file names
    type = Column(String, nullable=False, default="csv")

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Dataset {self.resource_id}-{self.dataset_id} "
            f"status={self.status.label if self.status else None} created_at={self.created_at}>"
        )
