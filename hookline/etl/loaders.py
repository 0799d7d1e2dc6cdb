"""
Destination loaders for the final record set of an ETL job.

Each destination ``type`` maps to one Loader. Outbound HTTP calls use
``requests`` and run in a worker thread so the event loop stays free while
a job waits on the network.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from logging import Logger
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, Union

import requests

from hookline.exceptions import LoadError, UnsupportedOperationError
from hookline.logger import get_logger
from hookline.models import (
    ApiDestination,
    BaseDestination,
    DatabaseDestination,
    EmailDestination,
    FileDestination,
    Record,
    WebhookDestination,
)


def serialize(data: Union[Record, List[Record]], indent: Optional[int] = None) -> str:
    return json.dumps(data, indent=indent, default=str)


class Loader(ABC):
    """
    Delivers records to one kind of destination.

    ``load`` returns the number of records delivered.
    """

    destination_type: str

    def __init__(self, logger: Optional[Logger] = None, timeout: Optional[float] = None) -> None:
        self.logger = logger or get_logger()
        self.timeout = timeout

    @abstractmethod
    async def load(self, records: List[Record], destination: Any) -> int:
        pass


class WebhookLoader(Loader):
    """One request per record, sent in order. The first failure stops the rest."""

    destination_type = "webhook"

    def _send(self, record: Record, destination: WebhookDestination) -> None:
        config = destination.config
        response = requests.request(
            config.method,
            config.url,
            headers=config.headers,
            data=serialize(record),
            timeout=self.timeout,
        )
        response.raise_for_status()

    async def load(self, records: List[Record], destination: WebhookDestination) -> int:
        delivered = 0
        for record in records:
            try:
                await asyncio.to_thread(self._send, record, destination)
            except requests.RequestException as e:
                self.logger.error(f"Failed to send to webhook {destination.config.url}: {e}")
                raise LoadError(
                    f"Webhook delivery to {destination.config.url} failed after {delivered} records: {e}",
                    delivered=delivered,
                    cause=e,
                ) from e
            delivered += 1
        return delivered


class ApiLoader(Loader):
    """The whole record set in a single request body."""

    destination_type = "api"

    def _send(self, records: List[Record], destination: ApiDestination) -> None:
        config = destination.config
        response = requests.request(
            config.method,
            config.url,
            headers=config.headers,
            data=serialize(records),
            timeout=self.timeout,
        )
        response.raise_for_status()

    async def load(self, records: List[Record], destination: ApiDestination) -> int:
        try:
            await asyncio.to_thread(self._send, records, destination)
        except requests.RequestException as e:
            self.logger.error(f"Failed to send to API {destination.config.url}: {e}")
            raise LoadError(f"API delivery to {destination.config.url} failed: {e}", cause=e) from e
        return len(records)


class FileLoader(Loader):
    """
    Writes the serialised record set under ``output_dir``.

    Without an output directory the loader runs degraded and only logs what
    it would have written.
    """

    destination_type = "file"

    def __init__(
        self, logger: Optional[Logger] = None, timeout: Optional[float] = None, output_dir: Optional[Path] = None
    ) -> None:
        super().__init__(logger=logger, timeout=timeout)
        self.output_dir = output_dir

    def target_path(self, filename: str) -> Path:
        if self.output_dir is None:
            raise ValueError("FileLoader has no output directory")
        # only the final path component is honoured
        return Path(self.output_dir) / Path(filename).name

    def _write(self, path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(payload, encoding="utf-8")

    async def load(self, records: List[Record], destination: FileDestination) -> int:
        filename = destination.config.filename
        payload = serialize(records, indent=2)
        if self.output_dir is None:
            self.logger.info(f"Loading to file: {filename} (no output directory configured, not persisted)")
            self.logger.debug(f"Data: {payload}")
            return len(records)

        path = self.target_path(filename)
        try:
            await asyncio.to_thread(self._write, path, payload)
        except OSError as e:
            raise LoadError(f"Writing {path} failed: {e}", cause=e) from e
        self.logger.info(f"Wrote {len(records)} records to {path}")
        return len(records)


class EmailLoader(Loader):
    """Sends a notification summarising how many records were processed."""

    destination_type = "email"

    async def load(self, records: List[Record], destination: EmailDestination) -> int:
        config = destination.config
        self.logger.info(
            f"Sending email to: {', '.join(config.recipients)}",
            extra={"subject": config.subject, "summary": f"{len(records)} records processed"},
        )
        return len(records)


class DatabaseLoader(Loader):
    destination_type = "database"

    async def load(self, records: List[Record], destination: DatabaseDestination) -> int:
        raise UnsupportedOperationError("Unsupported destination type: database")


DEFAULT_LOADERS: List[Type[Loader]] = [WebhookLoader, ApiLoader, FileLoader, EmailLoader, DatabaseLoader]


class DestinationLoader:
    """
    Dispatches a record set to the loader registered for the destination type.
    """

    def __init__(
        self,
        logger: Optional[Logger] = None,
        timeout: Optional[float] = None,
        file_output_dir: Optional[Path] = None,
    ) -> None:
        self.logger = logger or get_logger()
        self._loaders: Dict[str, Loader] = {}
        for loader_class in DEFAULT_LOADERS:
            if loader_class is FileLoader:
                loader: Loader = FileLoader(logger=self.logger, timeout=timeout, output_dir=file_output_dir)
            else:
                loader = loader_class(logger=self.logger, timeout=timeout)
            self.register(loader)

    def register(self, loader: Loader) -> None:
        self._loaders[loader.destination_type] = loader

    def get_loader(self, destination_type: str) -> Loader:
        if destination_type not in self._loaders:
            raise UnsupportedOperationError(f"Unsupported destination type: {destination_type}")
        return self._loaders[destination_type]

    async def load(self, records: List[Record], destination: Optional[BaseDestination], job_id: str = "-") -> int:
        if destination is None:
            self.logger.info(f"[ETL:{job_id}] No destination specified, skipping load phase")
            return 0
        destination_type = str(getattr(destination, "type", ""))
        loader = self.get_loader(destination_type)
        self.logger.info(f"[ETL:{job_id}] Loading {len(records)} records to {destination_type}")
        return await loader.load(records, destination)
