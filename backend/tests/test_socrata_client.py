from datetime import datetime
from unittest.mock import MagicMock

import pytest
import requests

from conftest import make_resource
from socrata_cache.core.errors import SourceUnavailable
from socrata_cache.services.socrata_client import SocrataClient, parse_updated_at


def make_response(status_code=200, json_data=None, text="", chunks=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    if isinstance(json_data, Exception):
        resp.json.side_effect = json_data
    else:
        resp.json.return_value = json_data
    resp.iter_content.return_value = iter(chunks or [])
    return resp


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(session):
    return SocrataClient("https://data.example.org", timeout=5, session=session)


class TestParseUpdatedAt:
    def test_naive_timestamp(self):
        assert parse_updated_at("2025-01-05T12:34:56.000") == datetime(2025, 1, 5, 12, 34, 56)

    def test_zulu_is_normalized_to_naive_utc(self):
        assert parse_updated_at("2025-01-05T12:34:56Z") == datetime(2025, 1, 5, 12, 34, 56)

    def test_offset_is_converted(self):
        assert parse_updated_at("2025-01-05T14:34:56+02:00") == datetime(2025, 1, 5, 12, 34, 56)


class TestGetLastUpdated:
    def test_returns_first_row_timestamp(self, client, session):
        session.get.return_value = make_response(json_data=[{"updated_at": "2025-02-01T00:00:00.000"}])

        assert client.get_last_updated(make_resource("R1")) == datetime(2025, 2, 1)

        args, kwargs = session.get.call_args
        assert args[0] == "https://data.example.org/resource/r1-abcd.json"
        assert kwargs["params"]["$limit"] == "1"
        assert kwargs["timeout"] == 5

    @pytest.mark.parametrize("payload", [[], {}, [{}], [{"updated_at": "not a date"}], ["x"]])
    def test_malformed_response(self, client, session, payload):
        session.get.return_value = make_response(json_data=payload)

        with pytest.raises(SourceUnavailable):
            client.get_last_updated(make_resource("R1"))

    def test_invalid_json(self, client, session):
        session.get.return_value = make_response(json_data=ValueError("no json"))

        with pytest.raises(SourceUnavailable):
            client.get_last_updated(make_resource("R1"))

    def test_http_error(self, client, session):
        session.get.return_value = make_response(status_code=503, text="unavailable")

        with pytest.raises(SourceUnavailable, match="HTTP 503"):
            client.get_last_updated(make_resource("R1"))

    def test_network_error(self, client, session):
        session.get.side_effect = requests.ConnectionError("refused")

        with pytest.raises(SourceUnavailable) as exc_info:
            client.get_last_updated(make_resource("R1"))
        assert exc_info.value.resource_id == "R1"


class TestGetColumns:
    def test_parses_header_and_drops_excluded(self, client, session):
        session.get.return_value = make_response(text='"id","name","location"\n')

        columns = client.get_columns(make_resource("R1", excluded_columns=["location"]))

        assert columns == ["id", "name"]

    def test_empty_header(self, client, session):
        session.get.return_value = make_response(text="")

        with pytest.raises(SourceUnavailable):
            client.get_columns(make_resource("R1"))


class TestDownloadStream:
    def test_streams_chunks_and_closes(self, client, session):
        resp = make_response(chunks=[b"a,b\n", b"1,2\n"])
        session.get.return_value = resp

        chunks = list(client.open_download_stream(make_resource("R1", type="csv"), ["a", "b"]))

        assert chunks == [b"a,b\n", b"1,2\n"]
        resp.close.assert_called_once()
        args, kwargs = session.get.call_args
        assert args[0] == "https://data.example.org/resource/r1-abcd.csv"
        assert kwargs["params"]["$select"] == "a,b"
        assert kwargs["stream"] is True

    def test_close_without_reading_releases_connection(self, client, session):
        resp = make_response(chunks=[b"a\n"])
        session.get.return_value = resp

        stream = client.open_download_stream(make_resource("R1"), ["a"])
        stream.close()
        stream.close()

        resp.close.assert_called_once()
        resp.iter_content.assert_not_called()

    def test_http_error_raises_before_streaming(self, client, session):
        session.get.return_value = make_response(status_code=404)

        with pytest.raises(SourceUnavailable, match="HTTP 404"):
            client.open_download_stream(make_resource("R1"), ["a"])

    def test_interrupted_stream(self, client, session):
        resp = make_response()
        resp.iter_content.side_effect = requests.ConnectionError("reset")
        session.get.return_value = resp

        with pytest.raises(SourceUnavailable, match="download interrupted"):
            list(client.open_download_stream(make_resource("R1"), ["a"]))
        resp.close.assert_called_once()
