import asyncio
from datetime import datetime
from typing import Union

from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from ..logger import get_logger
from ..models import BaseModel, CapturedRequest, RequestId, WebhookId
from ..storage import Storage

CAPTURE_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


class CaptureResponse(BaseModel):
    success: bool = True
    message: str = "Webhook request received successfully"
    webhook_id: WebhookId
    request_id: RequestId
    method: str
    path: str
    content_type: Union[str, None]
    body_size: int
    timestamp: datetime


def get_client_ip(request: Request) -> Union[str, None]:
    headers = request.headers
    if headers.get("cf-connecting-ip"):
        return headers["cf-connecting-ip"]
    if headers.get("x-real-ip"):
        return headers["x-real-ip"]
    if headers.get("x-forwarded-for"):
        return headers["x-forwarded-for"].split(",")[0].strip()
    return request.client.host if request.client else None


async def build_captured_request(webhook_id: str, request: Request, extra_path: str = "") -> CapturedRequest:
    try:
        validated_id = WebhookId.from_str(webhook_id)
    except PydanticValidationError:
        raise HTTPException(status_code=400, detail=f"Invalid webhook ID format: {webhook_id}")

    raw_body = await request.body()
    return CapturedRequest(
        webhook_id=validated_id,
        method=request.method,
        path="/" + "/".join(segment for segment in (webhook_id, extra_path) if segment),
        headers=dict(request.headers),
        body=raw_body.decode("utf-8", errors="replace"),
        query_params=dict(request.query_params),
        ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        content_type=request.headers.get("content-type"),
        body_size=len(raw_body),
    )


def gen_router(storage: Storage) -> APIRouter:
    router = APIRouter()
    logger = get_logger()

    async def capture(webhook_id: str, request: Request, extra_path: str = "") -> CaptureResponse:
        captured = await build_captured_request(webhook_id, request, extra_path)
        try:
            await asyncio.to_thread(storage.save_request, captured)
        except SQLAlchemyError as e:
            logger.error(f"Webhook {webhook_id}: Failed to save to storage: {e}")
            raise HTTPException(status_code=500, detail="Failed to save webhook request")
        return CaptureResponse(
            webhook_id=captured.webhook_id,
            request_id=captured.request_id,
            method=captured.method,
            path=captured.path,
            content_type=captured.content_type,
            body_size=captured.body_size,
            timestamp=captured.timestamp,
        )

    @router.api_route("/{webhook_id}", methods=CAPTURE_METHODS, response_model=CaptureResponse)
    async def capture_root(webhook_id: str, request: Request) -> CaptureResponse:
        return await capture(webhook_id, request)

    @router.api_route("/{webhook_id}/{extra_path:path}", methods=CAPTURE_METHODS, response_model=CaptureResponse)
    async def capture_extra_path(webhook_id: str, extra_path: str, request: Request) -> CaptureResponse:
        return await capture(webhook_id, request, extra_path)

    return router
