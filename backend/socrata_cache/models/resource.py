import json
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..core.errors import ConfigError

SUPPORTED_TYPES = ("csv", "json", "xml")

# Effectively "all rows" for a single SODA export
DOWNLOAD_ROW_LIMIT = 100000000


class CacheResource(BaseModel):
    """
    One remote Socrata dataset the cache keeps a local copy of.

    Keys may be given in camelCase (resourceId, socrataId, ...) or snake_case.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    resource_id: str
    socrata_id: str
    type: str = "csv"
    excluded_columns: List[str] = Field(default_factory=list)
    # Extra SoQL/query parameters merged into the download URL
    query: Dict[str, str] = Field(default_factory=dict)
    retain_last_file: bool = False

    @field_validator("type")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        return value.lower()

    @field_validator("excluded_columns", mode="before")
    @classmethod
    def _none_means_empty(cls, value):
        return value or []

    def updated_at_url(self, base_url: str) -> str:
        return f"{base_url.rstrip('/')}/resource/{self.socrata_id}.json"

    def updated_at_params(self) -> Dict[str, str]:
        return {
            "$select": "max(:updated_at) as updated_at",
            "$limit": "1",
            "$group": ":updated_at",
            "$order": ":updated_at DESC",
        }

    def columns_url(self, base_url: str) -> str:
        return f"{base_url.rstrip('/')}/resource/{self.socrata_id}.csv"

    def columns_params(self) -> Dict[str, str]:
        return {"$select": "*", "$limit": "0"}

    def download_url(self, base_url: str) -> str:
        return f"{base_url.rstrip('/')}/resource/{self.socrata_id}.{self.type}"

    def download_params(self, columns: List[str]) -> Dict[str, str]:
        params = {
            "$limit": str(DOWNLOAD_ROW_LIMIT),
            "$select": ",".join(columns),
        }
        params.update(self.query)
        return params

    def select_columns(self, columns: List[str]) -> List[str]:
        """Drop excluded columns, keeping the source order."""
        excluded = set(self.excluded_columns)
        return [column for column in columns if column not in excluded]


class CacheConfig(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    base_url: str
    resources: List[CacheResource] = Field(default_factory=list)
    # Gigabytes
    retention_size: float = 50
    retention_days: int = 14
    webhook_url: Optional[str] = None

    @model_validator(mode="after")
    def _check_resources(self) -> "CacheConfig":
        seen = set()
        duplicates = []
        for resource in self.resources:
            if resource.resource_id in seen and resource.resource_id not in duplicates:
                duplicates.append(resource.resource_id)
            seen.add(resource.resource_id)
        if duplicates:
            raise ValueError(f"Duplicate resource IDs found: {', '.join(duplicates)}")

        for resource in self.resources:
            if resource.type not in SUPPORTED_TYPES:
                raise ValueError(
                    f"Invalid file type '{resource.type}' for resource {resource.resource_id}. "
                    f"Must be one of: {', '.join(SUPPORTED_TYPES)}"
                )
        return self

    @property
    def retention_size_bytes(self) -> int:
        return int(self.retention_size * 1024 * 1024 * 1024)


def load_cache_config(path: Path) -> CacheConfig:
    """
    Read and validate the JSON resource configuration.
    Raises ConfigError if the file is missing, not JSON, or invalid.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"The config file could not be found: {path}")

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e

    try:
        return CacheConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e
