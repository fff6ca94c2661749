from abc import ABC, abstractmethod
from typing import Any, List, Optional

import httpx
from pydantic import ValidationError

from app.config.settings import Settings
from app.models.uar_models import SyncSchedule
from app.schemas.uar_pic_schemas import UarPicRecord
from app.utils.errors import SourceFetchError
from app.utils.logging import get_logger

logger = get_logger()


class PicSource(ABC):
    """One upstream system that reports division PICs."""

    name: str

    @abstractmethod
    async def fetch(self, schedule: SyncSchedule) -> List[UarPicRecord]:
        pass


class HttpPicSource(PicSource):
    """
    PIC source served over HTTP as a JSON array, or as an object carrying
    the array under ``data``.
    """

    def __init__(
        self,
        name: str,
        url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.name = name
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def fetch(self, schedule: SyncSchedule) -> List[UarPicRecord]:
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            try:
                response = await client.get(
                    self.url,
                    params={
                        "applicationId": schedule.application_id,
                        "scheduleId": schedule.id,
                    },
                )
            except httpx.RequestError as e:
                raise SourceFetchError(
                    f"Request to {self.url} failed: {e}", source_name=self.name
                ) from e

            if response.status_code != 200:
                raise SourceFetchError(
                    f"Source returned {response.status_code} - {response.text[:200]}",
                    source_name=self.name,
                )

            try:
                payload = response.json()
            except ValueError as e:
                raise SourceFetchError(
                    f"Source returned a non-JSON body: {e}", source_name=self.name
                ) from e

        return self._parse_records(payload)

    def _parse_records(self, payload: Any) -> List[UarPicRecord]:
        items = payload.get("data", []) if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise SourceFetchError(
                "Source payload is not a list of records", source_name=self.name
            )

        records = []
        for item in items:
            try:
                records.append(UarPicRecord.model_validate(item))
            except ValidationError as e:
                record_id = item.get("id") if isinstance(item, dict) else None
                fields = ", ".join(
                    ".".join(str(part) for part in error["loc"]) or "record"
                    for error in e.errors()
                )
                logger.warning(
                    f"Skipping malformed record {record_id} from {self.name}: invalid field {fields}"
                )
        return records


def build_pic_sources(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> List[PicSource]:
    return [
        HttpPicSource(
            name=f"uar_pic_source_{index}",
            url=url,
            timeout=settings.UAR_PIC_SOURCE_TIMEOUT_SECONDS,
            transport=transport,
        )
        for index, url in enumerate(settings.UAR_PIC_SOURCE_URLS, start=1)
    ]
