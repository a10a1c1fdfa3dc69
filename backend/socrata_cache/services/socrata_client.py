# backend/socrata_cache/services/socrata_client.py

import csv
from datetime import datetime, timezone
from typing import Iterator, List, Optional

import requests

from ..core.errors import SourceUnavailable
from ..core.logger import get_logger
from ..models.resource import CacheResource

logger = get_logger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024


def parse_updated_at(value: str) -> datetime:
    """
    Parse Socrata's ":updated_at" value (ISO-8601).

    Aware timestamps are converted to naive UTC so they compare equal to the
    values stored in the record store.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class SocrataClient:
    """
    Thin client for the Socrata SODA endpoints the cache needs.

    - last modified timestamp of a resource
    - header (column list) of a resource
    - streamed export of a resource restricted to the selected columns

    Every failure is raised as SourceUnavailable.
    """

    def __init__(self, base_url: str, timeout: float = 60.0, session: Optional[requests.Session] = None):
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, resource: CacheResource, url: str, params: dict, stream: bool = False) -> requests.Response:
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout, stream=stream)
        except requests.RequestException as e:
            raise SourceUnavailable(resource.resource_id, f"request to {url} failed: {e}") from e

        if resp.status_code != 200:
            body = resp.text[:500] if not stream else ""
            resp.close()
            raise SourceUnavailable(
                resource.resource_id,
                f"HTTP {resp.status_code} from {url}: {body}",
            )
        return resp

    def get_last_updated(self, resource: CacheResource) -> datetime:
        resp = self._get(resource, resource.updated_at_url(self.base_url), resource.updated_at_params())

        try:
            data = resp.json()
        except ValueError as e:
            raise SourceUnavailable(resource.resource_id, f"invalid JSON in check response: {e}") from e

        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            raise SourceUnavailable(
                resource.resource_id,
                f"check response is invalid for dataset {resource.resource_id} ({resource.socrata_id})",
            )

        raw_value = data[0].get("updated_at")
        if not raw_value:
            raise SourceUnavailable(resource.resource_id, "check response has no updated_at")

        try:
            return parse_updated_at(str(raw_value))
        except ValueError as e:
            raise SourceUnavailable(resource.resource_id, f"unparsable updated_at '{raw_value}'") from e

    def get_columns(self, resource: CacheResource) -> List[str]:
        resp = self._get(resource, resource.columns_url(self.base_url), resource.columns_params())

        lines = resp.text.splitlines()
        if not lines or not lines[0].strip():
            raise SourceUnavailable(resource.resource_id, "empty column header")

        header = next(csv.reader([lines[0]]))
        columns = resource.select_columns([c.strip() for c in header if c.strip()])
        if not columns:
            raise SourceUnavailable(resource.resource_id, "no columns left after exclusions")
        return columns

    def open_download_stream(self, resource: CacheResource, columns: List[str]) -> "DownloadStream":
        """
        Start the export request and return an iterable over its body.

        The HTTP status is checked before returning. The connection is
        released once the body is exhausted or the stream is closed, even if
        iteration never started.
        """
        resp = self._get(
            resource,
            resource.download_url(self.base_url),
            resource.download_params(columns),
            stream=True,
        )
        return DownloadStream(resource.resource_id, resp)


class DownloadStream:
    """Body of a streamed export; iterate once, close when done."""

    def __init__(self, resource_id: str, resp: requests.Response):
        self.resource_id = resource_id
        self.resp = resp
        self.closed = False

    def __iter__(self) -> Iterator[bytes]:
        try:
            for chunk in self.resp.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                yield chunk
        except requests.RequestException as e:
            raise SourceUnavailable(self.resource_id, f"download interrupted: {e}") from e
        finally:
            self.close()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.resp.close()
