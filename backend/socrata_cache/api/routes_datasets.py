# backend/socrata_cache/api/routes_datasets.py

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..models.dataset import Dataset
from ..services.dataset_manager import get_datasets


router = APIRouter(prefix="/api", tags=["datasets"])


def dataset_to_dict(ds: Dataset) -> dict:
    return {
        "datasetId": ds.dataset_id,
        "resourceId": ds.resource_id,
        "status": ds.status.label,
        "type": ds.type,
        "referenceDate": ds.reference_date,
        "createdAt": ds.created_at,
        "updatedAt": ds.updated_at,
    }


# ------------------------------------------------------
# LIST ALL DATASETS (read-only)
# ------------------------------------------------------
@router.get("/datasets", response_model=List[dict])
def list_datasets(db: Session = Depends(get_db)):
    return [dataset_to_dict(ds) for ds in get_datasets(db)]
