from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class JobResult:
    def __init__(self, data: Any, metadata: Optional[Dict] = None):
        self.data = data
        self.metadata = metadata or {}

    @property
    def errors(self) -> list:
        return self.metadata.get("errors", [])


class BaseJob(ABC):
    name: str = "base_job"

    @abstractmethod
    def run(self, **kwargs) -> JobResult:
        """
        Run one cycle of the job with given keyword arguments.
        Must return a JobResult; per-resource failures go to metadata['errors'].
        """
        ...
