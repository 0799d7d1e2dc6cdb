from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Type
from unittest.mock import MagicMock, patch
from uuid import uuid4

from fastapi.testclient import TestClient
from polyfactory import Use
from polyfactory.factories.pydantic_factory import ModelFactory
from polyfactory.pytest_plugin import register_fixture
from pytest import fixture
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from hookline.models import CapturedRequest, WebhookConfig, WebhookId
from hookline.settings import (
    CORSSettings,
    ETLSettings,
    GlobalSettings,
    LoggerSettings,
    StorageSettings,
)
from hookline.storage import Base, Storage

SAMPLE_WEBHOOK_ID = "abc123"
SAMPLE_BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "out"


@fixture
def global_settings_factory(tmp_path: Path, output_dir: Path) -> Type[ModelFactory[GlobalSettings]]:
    class GlobalSettingsFactory(ModelFactory[GlobalSettings]):
        __model__ = GlobalSettings

        logger_settings = LoggerSettings(level=20)
        cors_settings = CORSSettings()
        storage_settings = StorageSettings(url=f"sqlite:///{tmp_path / 'hookline-test.db'}")
        etl_settings = ETLSettings(file_output_dir=output_dir)

    return GlobalSettingsFactory


@fixture
def default_settings(
    global_settings_factory: Type[ModelFactory[GlobalSettings]],
) -> Generator[GlobalSettings, None, None]:
    yield global_settings_factory.build()


@register_fixture(name="captured_request_factory")
class CapturedRequestFactory(ModelFactory[CapturedRequest]):
    __model__ = CapturedRequest

    request_id = Use(lambda: uuid4().hex)
    webhook_id = SAMPLE_WEBHOOK_ID
    path = f"/{SAMPLE_WEBHOOK_ID}"
    query_params = Use(dict)


@fixture
def request_samples(
    captured_request_factory: CapturedRequestFactory,
) -> Generator[List[CapturedRequest], None, None]:
    def _post(i: int, event: str) -> CapturedRequest:
        return captured_request_factory.build(
            method="POST",
            headers={"content-type": "application/json", "x-event": event, "user-agent": "curl/8.0"},
            body=f'{{"event": "{event}", "seq": {i}}}',
            timestamp=SAMPLE_BASE_TIME + timedelta(minutes=i),
            ip="10.0.0.1",
            user_agent="curl/8.0",
            content_type="application/json",
            body_size=32,
        )

    def _get(i: int) -> CapturedRequest:
        return captured_request_factory.build(
            method="GET",
            headers={"user-agent": "Mozilla/5.0"},
            body="",
            timestamp=SAMPLE_BASE_TIME + timedelta(minutes=i),
            ip="192.168.1.20",
            user_agent="Mozilla/5.0",
            content_type=None,
            body_size=0,
        )

    yield [
        _post(0, "order.created"),
        _post(1, "order.updated"),
        _get(2),
        _post(3, "order.created"),
        _get(4),
    ]


@fixture
def mock_storage(request_samples: List[CapturedRequest]) -> Generator[MagicMock, None, None]:
    mock = MagicMock(spec=Storage)

    def _get_requests(webhook_id: WebhookId, limit: int) -> List[CapturedRequest]:
        matched = [r for r in request_samples if r.webhook_id == webhook_id]
        return sorted(matched, key=lambda r: r.timestamp, reverse=True)[:limit]

    mock.get_requests.side_effect = _get_requests
    mock.get_all_webhook_configs.return_value = [WebhookConfig(webhook_id=WebhookId(SAMPLE_WEBHOOK_ID))]
    mock.ping.return_value = True
    mock.save_request.side_effect = lambda request: request

    yield mock


@fixture
def client(default_settings: GlobalSettings, mock_storage: MagicMock) -> Generator[TestClient, None, None]:
    from hookline.app import gen_app

    with patch("hookline.app.gen_storage", return_value=mock_storage):
        app = gen_app(settings=default_settings)
        with TestClient(app) as test_client:
            yield test_client


@fixture
def engine_for_test(tmp_path: Path) -> Generator[Engine, None, None]:
    engine = create_engine(f"sqlite:///{tmp_path / 'storage-test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@fixture
def storage(engine_for_test: Engine) -> Storage:
    return Storage(engine=engine_for_test)


@fixture
def sample_base_time() -> datetime:
    return SAMPLE_BASE_TIME
