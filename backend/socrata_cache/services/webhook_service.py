from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Optional

import requests

from ..core.logger import get_logger
from ..models.dataset import Dataset

logger = get_logger(__name__)


def build_payload(ds: Dataset) -> Dict[str, Any]:
    return {
        "DatasetId": ds.dataset_id,
        "ResourceId": ds.resource_id,
        "Status": ds.status.label,
        "UpdatedAt": ds.updated_at.isoformat() if ds.updated_at else None,
    }


class WebhookService:
    """
    Posts dataset status changes to a webhook, best effort.

    notify() only builds the payload and queues it; the POST happens on a
    single background worker so callers never wait on the webhook. Failures
    are logged and dropped.
    """

    def __init__(self, webhook_url: Optional[str], timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._executor: Optional[ThreadPoolExecutor] = None
        if webhook_url:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="webhook")

    @property
    def enabled(self) -> bool:
        return self._executor is not None

    def notify(self, ds: Dataset) -> Optional[Future]:
        if not self.enabled:
            return None

        # Read the row now; the ORM object may be expired or detached later
        payload = build_payload(ds)
        try:
            return self._executor.submit(self._send, payload)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning(f"Failed to queue webhook notification: {e}", extra={"dataset_id": payload["DatasetId"]})
            return None

    def _send(self, payload: Dict[str, Any]) -> bool:
        try:
            resp = self.session.post(self.webhook_url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning(
                f"Failed to send webhook notification: {e}",
                extra={"dataset_id": payload["DatasetId"], "resource_id": payload["ResourceId"]},
            )
            return False
        except Exception:
            logger.exception("Unexpected error sending webhook notification", extra={"dataset_id": payload["DatasetId"]})
            return False
        return True

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
