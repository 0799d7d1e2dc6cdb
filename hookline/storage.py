from datetime import datetime
from typing import List, Union

from sqlalchemy import ForeignKey, create_engine, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column
from sqlalchemy.types import JSON, DateTime, Integer, String, Text

from .models import CapturedRequest, RequestId, WebhookConfig, WebhookId
from .settings import GlobalSettings


class Base(DeclarativeBase):
    type_annotation_map = {
        WebhookId: String(32),
        RequestId: String(32),
        datetime: DateTime(timezone=True),
        dict[str, str]: JSON,
    }


class WebhookConfigRecord(Base):
    __tablename__ = "webhooks"

    webhook_id: Mapped[WebhookId] = mapped_column(primary_key=True)
    name: Mapped[Union[str, None]] = mapped_column(String, nullable=True)
    url: Mapped[str] = mapped_column(String, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    last_request_at: Mapped[Union[datetime, None]] = mapped_column(nullable=True)
    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)


class RequestRecord(Base):
    __tablename__ = "requests"

    request_id: Mapped[RequestId] = mapped_column(primary_key=True)
    webhook_id: Mapped[WebhookId] = mapped_column(ForeignKey("webhooks.webhook_id"), nullable=False, index=True)
    method: Mapped[str] = mapped_column(String(16), nullable=False)
    path: Mapped[str] = mapped_column(String, nullable=False)
    headers: Mapped[dict[str, str]] = mapped_column(nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    query_params: Mapped[dict[str, str]] = mapped_column(nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False, index=True)
    ip: Mapped[Union[str, None]] = mapped_column(String, nullable=True)
    user_agent: Mapped[Union[str, None]] = mapped_column(String, nullable=True)
    content_type: Mapped[Union[str, None]] = mapped_column(String, nullable=True)
    body_size: Mapped[int] = mapped_column(Integer, nullable=False)


class Storage:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    @classmethod
    def _webhook_record_to_model(cls, record: WebhookConfigRecord) -> WebhookConfig:
        return WebhookConfig(
            webhook_id=record.webhook_id,
            name=record.name,
            url=record.url,
            created_at=record.created_at,
            last_request_at=record.last_request_at,
            request_count=record.request_count,
            is_active=record.is_active,
        )

    @classmethod
    def _request_record_to_model(cls, record: RequestRecord) -> CapturedRequest:
        return CapturedRequest(
            request_id=record.request_id,
            webhook_id=record.webhook_id,
            method=record.method,
            path=record.path,
            headers=record.headers,
            body=record.body,
            query_params=record.query_params,
            timestamp=record.timestamp,
            ip=record.ip,
            user_agent=record.user_agent,
            content_type=record.content_type,
            body_size=record.body_size,
        )

    def ping(self) -> bool:
        with Session(self.engine) as sess:
            return sess.execute(text("SELECT 1")).scalar() == 1

    def get_all_webhook_configs(self) -> List[WebhookConfig]:
        with Session(self.engine) as sess:
            records = sess.execute(select(WebhookConfigRecord).order_by(WebhookConfigRecord.created_at)).scalars()
            return [self._webhook_record_to_model(record) for record in records]

    def get_webhook_config(self, webhook_id: WebhookId) -> Union[WebhookConfig, None]:
        with Session(self.engine) as sess:
            record = sess.get(WebhookConfigRecord, webhook_id)
            return self._webhook_record_to_model(record) if record is not None else None

    def save_webhook_config(self, config: WebhookConfig) -> WebhookConfig:
        with Session(self.engine) as sess:
            sess.merge(
                WebhookConfigRecord(
                    webhook_id=config.webhook_id,
                    name=config.name,
                    url=config.url,
                    created_at=config.created_at,
                    last_request_at=config.last_request_at,
                    request_count=config.request_count,
                    is_active=config.is_active,
                )
            )
            sess.commit()
        return config

    def save_request(self, request: CapturedRequest) -> CapturedRequest:
        with Session(self.engine) as sess:
            webhook = sess.get(WebhookConfigRecord, request.webhook_id)
            if webhook is None:
                webhook = WebhookConfigRecord(
                    webhook_id=request.webhook_id,
                    url=f"/api/v1/hooks/{request.webhook_id}",
                    created_at=request.timestamp,
                    request_count=0,
                    is_active=True,
                )
                sess.add(webhook)
            webhook.request_count += 1
            webhook.last_request_at = request.timestamp
            sess.add(
                RequestRecord(
                    request_id=request.request_id,
                    webhook_id=request.webhook_id,
                    method=request.method,
                    path=request.path,
                    headers=dict(request.headers),
                    body=request.body,
                    query_params=dict(request.query_params),
                    timestamp=request.timestamp,
                    ip=request.ip,
                    user_agent=request.user_agent,
                    content_type=request.content_type,
                    body_size=request.body_size,
                )
            )
            sess.commit()
        return request

    def get_requests(self, webhook_id: WebhookId, limit: int) -> List[CapturedRequest]:
        with Session(self.engine) as sess:
            records = sess.execute(
                select(RequestRecord)
                .filter(RequestRecord.webhook_id == webhook_id)
                .order_by(RequestRecord.timestamp.desc())
                .limit(limit)
            ).scalars()
            return [self._request_record_to_model(record) for record in records]


def gen_storage(settings: GlobalSettings) -> Storage:
    engine = create_engine(settings.storage_settings.sqlalchemy_database_url)
    Base.metadata.create_all(engine)
    return Storage(engine=engine)
