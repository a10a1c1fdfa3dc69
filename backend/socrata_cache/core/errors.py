class SocrataCacheError(Exception):
    """Base class for all errors raised by the cache."""


class ConfigError(SocrataCacheError):
    """The resource configuration file is missing or invalid."""


class SourceUnavailable(SocrataCacheError):
    """
    The Socrata source could not answer a freshness, column or download
    request (network failure, HTTP error, empty or malformed response).
    """

    def __init__(self, resource_id: str, message: str):
        super().__init__(f"Source unavailable for resource {resource_id}: {message}")
        self.resource_id = resource_id


class RecordNotFound(SocrataCacheError):
    def __init__(self, dataset_id: str):
        super().__init__(f"Dataset not found: {dataset_id}")
        self.dataset_id = dataset_id


class InvalidStatusTransition(SocrataCacheError):
    def __init__(self, dataset_id: str, current, target):
        super().__init__(
            f"Dataset {dataset_id} cannot move from {current.label} to {target.label}"
        )
        self.dataset_id = dataset_id
        self.current = current
        self.target = target
