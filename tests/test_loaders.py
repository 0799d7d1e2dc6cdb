"""
Unit tests for destination loaders.
"""

import json
from pathlib import Path
from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest
import requests
from pytest_mock import MockerFixture

from hookline.etl.loaders import DestinationLoader, FileLoader, serialize
from hookline.exceptions import LoadError, UnsupportedOperationError
from hookline.models import (
    ApiDestination,
    DatabaseDestination,
    EmailDestination,
    FileDestination,
    WebhookDestination,
)

RECORDS: List[Dict[str, Any]] = [{"id": 1, "method": "POST"}, {"id": 2, "method": "POST"}, {"id": 3, "method": "GET"}]


@pytest.fixture
def mock_request(mocker: MockerFixture) -> MagicMock:
    return mocker.patch("hookline.etl.loaders.requests.request")


@pytest.fixture
def loader(output_dir: Path) -> DestinationLoader:
    return DestinationLoader(timeout=5.0, file_output_dir=output_dir)


class TestWebhookLoader:
    """Test cases for per-record webhook delivery."""

    @pytest.mark.asyncio
    async def test_sends_one_request_per_record(self, loader: DestinationLoader, mock_request: MagicMock) -> None:
        destination = WebhookDestination(config={"url": "https://example.com/hook"})

        delivered = await loader.load(RECORDS, destination)

        assert delivered == 3
        assert mock_request.call_count == 3
        mock_request.assert_any_call(
            "POST",
            "https://example.com/hook",
            headers={"Content-Type": "application/json"},
            data=serialize(RECORDS[1]),
            timeout=5.0,
        )

    @pytest.mark.asyncio
    async def test_stops_at_first_failure(self, loader: DestinationLoader, mock_request: MagicMock) -> None:
        mock_request.side_effect = [MagicMock(), requests.ConnectionError("refused"), MagicMock()]
        destination = WebhookDestination(config={"url": "https://example.com/hook", "method": "PUT"})

        with pytest.raises(LoadError) as exc_info:
            await loader.load(RECORDS, destination)

        assert exc_info.value.delivered == 1
        assert exc_info.value.phase == "load"
        assert mock_request.call_count == 2

    @pytest.mark.asyncio
    async def test_non_2xx_status_is_a_failure(self, loader: DestinationLoader, mock_request: MagicMock) -> None:
        mock_request.return_value.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        destination = WebhookDestination(config={"url": "https://example.com/hook"})

        with pytest.raises(LoadError, match="500 Server Error"):
            await loader.load(RECORDS, destination)


class TestApiLoader:
    """Test cases for batch API delivery."""

    @pytest.mark.asyncio
    async def test_sends_all_records_in_one_request(self, loader: DestinationLoader, mock_request: MagicMock) -> None:
        destination = ApiDestination(
            config={"url": "https://api.example.com/ingest", "headers": {"Authorization": "Bearer token"}}
        )

        delivered = await loader.load(RECORDS, destination)

        assert delivered == 3
        mock_request.assert_called_once_with(
            "POST",
            "https://api.example.com/ingest",
            headers={"Authorization": "Bearer token"},
            data=serialize(RECORDS),
            timeout=5.0,
        )

    @pytest.mark.asyncio
    async def test_failure_delivers_nothing(self, loader: DestinationLoader, mock_request: MagicMock) -> None:
        mock_request.side_effect = requests.Timeout("timed out")
        destination = ApiDestination(config={"url": "https://api.example.com/ingest"})

        with pytest.raises(LoadError) as exc_info:
            await loader.load(RECORDS, destination)

        assert exc_info.value.delivered == 0
        assert isinstance(exc_info.value.cause, requests.Timeout)


class TestFileLoader:
    """Test cases for file output."""

    @pytest.mark.asyncio
    async def test_writes_json_under_output_dir(self, loader: DestinationLoader, output_dir: Path) -> None:
        delivered = await loader.load(RECORDS, FileDestination(config={"filename": "export.json"}))

        assert delivered == 3
        assert json.loads((output_dir / "export.json").read_text(encoding="utf-8")) == RECORDS

    @pytest.mark.asyncio
    async def test_only_the_final_path_component_is_used(self, loader: DestinationLoader, output_dir: Path) -> None:
        await loader.load(RECORDS, FileDestination(config={"filename": "../../escape.json"}))

        assert (output_dir / "escape.json").exists()
        assert not (output_dir.parent / "escape.json").exists()

    @pytest.mark.asyncio
    async def test_default_filename(self, loader: DestinationLoader, output_dir: Path) -> None:
        await loader.load(RECORDS, FileDestination())

        assert (output_dir / "etl-output.json").exists()

    @pytest.mark.asyncio
    async def test_without_output_dir_only_logs(self, tmp_path: Path) -> None:
        file_loader = FileLoader()

        delivered = await file_loader.load(RECORDS, FileDestination())

        assert delivered == 3
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_write_failure(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("", encoding="utf-8")
        file_loader = FileLoader(output_dir=blocker)

        with pytest.raises(LoadError):
            await file_loader.load(RECORDS, FileDestination())


class TestDestinationLoader:
    """Test cases for dispatching by destination type."""

    @pytest.mark.asyncio
    async def test_no_destination_loads_nothing(self, loader: DestinationLoader, mock_request: MagicMock) -> None:
        assert await loader.load(RECORDS, None) == 0
        mock_request.assert_not_called()

    @pytest.mark.asyncio
    async def test_email_reports_record_count(self, loader: DestinationLoader) -> None:
        destination = EmailDestination(config={"recipients": ["ops@example.com"]})
        assert await loader.load(RECORDS, destination) == 3

    @pytest.mark.asyncio
    async def test_database_is_unsupported(self, loader: DestinationLoader) -> None:
        with pytest.raises(UnsupportedOperationError, match="Unsupported destination type: database"):
            await loader.load(RECORDS, DatabaseDestination())

    def test_unknown_type(self, loader: DestinationLoader) -> None:
        with pytest.raises(UnsupportedOperationError, match="Unsupported destination type: ftp"):
            loader.get_loader("ftp")
