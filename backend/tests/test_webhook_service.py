from datetime import datetime
from unittest.mock import MagicMock

import requests

from socrata_cache.models.dataset import Dataset, DatasetStatus
from socrata_cache.services.webhook_service import WebhookService, build_payload


def sample_dataset():
    return Dataset(
        dataset_id="d-1",
        resource_id="R1",
        status=DatasetStatus.DOWNLOADED,
        type="csv",
        reference_date=datetime(2025, 1, 1),
        created_at=datetime(2025, 1, 1, 10),
        updated_at=datetime(2025, 1, 1, 11, 30),
    )


def test_payload_shape():
    assert build_payload(sample_dataset()) == {
        "DatasetId": "d-1",
        "ResourceId": "R1",
        "Status": "downloaded",
        "UpdatedAt": "2025-01-01T11:30:00",
    }


def test_disabled_without_url():
    session = MagicMock(spec=requests.Session)
    service = WebhookService(None, session=session)

    assert service.notify(sample_dataset()) is None
    assert not service.enabled
    session.post.assert_not_called()
    service.shutdown()


def test_posts_in_background():
    session = MagicMock(spec=requests.Session)
    service = WebhookService("https://hooks.example.org", timeout=3, session=session)

    future = service.notify(sample_dataset())

    assert future.result(timeout=5) is True
    session.post.assert_called_once_with(
        "https://hooks.example.org",
        json=build_payload(sample_dataset()),
        timeout=3,
    )
    service.shutdown()


def test_failures_are_swallowed():
    session = MagicMock(spec=requests.Session)
    session.post.side_effect = requests.ConnectionError("down")
    service = WebhookService("https://hooks.example.org", session=session)

    future = service.notify(sample_dataset())

    assert future.result(timeout=5) is False
    service.shutdown()


def test_http_error_status_is_swallowed():
    session = MagicMock(spec=requests.Session)
    response = MagicMock()
    response.raise_for_status.side_effect = requests.HTTPError("500")
    session.post.return_value = response
    service = WebhookService("https://hooks.example.org", session=session)

    assert service.notify(sample_dataset()).result(timeout=5) is False
    service.shutdown()


def test_notify_after_shutdown_does_not_raise():
    service = WebhookService("https://hooks.example.org", session=MagicMock(spec=requests.Session))
    service.shutdown()

    assert service.notify(sample_dataset()) is None
