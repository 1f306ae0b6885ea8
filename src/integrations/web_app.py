"""Resolve which business a call belongs to via the dashboard web app."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from config.settings import Settings, get_settings
from conversation.schemas import BusinessContext

LOGGER = logging.getLogger(__name__)


def _first(parameters: Mapping[str, str], *keys: str) -> str | None:
    for key in keys:
        value = parameters.get(key)
        if value:
            return value
    return None


class BusinessDirectory:
    """Maps media-stream parameters to a ``BusinessContext``.

    Explicit identifiers in the stream parameters win, then the called number
    is looked up in the web app, and the configured default business is the
    fallback for everything else, lookup errors included.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport
        self._timeout = timeout

    def default_context(self) -> BusinessContext:
        settings = self._settings
        return BusinessContext(
            business_id=settings.default_business_id,
            business_name=settings.default_business_name,
            language=settings.default_language,
            timezone=settings.default_timezone,
        )

    async def resolve(self, parameters: Mapping[str, str]) -> BusinessContext:
        business_id = _first(parameters, "businessId", "business_id")
        if business_id:
            default = self.default_context()
            return BusinessContext(
                business_id=business_id,
                business_name=_first(parameters, "businessName", "business_name")
                or default.business_name,
                language=_first(parameters, "language") or default.language,
                timezone=_first(parameters, "timezone") or default.timezone,
                calendar_connection_id=_first(
                    parameters, "calendarConnectionId", "calendar_connection_id"
                ),
            )

        called_number = _first(parameters, "to", "To", "called_number")
        if called_number:
            context = await self.lookup(called_number)
            if context is not None:
                return context
        return self.default_context()

    async def lookup(self, phone_number: str) -> BusinessContext | None:
        if not self._settings.web_app_url:
            return None
        headers = {"Content-Type": "application/json"}
        if self._settings.voice_service_api_key:
            headers["x-api-key"] = self._settings.voice_service_api_key
        url = f"{self._settings.web_app_url.rstrip('/')}/api/voice/lookup"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, json={"phoneNumber": phone_number}, headers=headers)
            response.raise_for_status()
            data: Any = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.warning("Business lookup for %s failed: %s", phone_number, exc)
            return None

        if not isinstance(data, dict) or not data.get("found") or not data.get("businessId"):
            LOGGER.info("No business registered for %s", phone_number)
            return None

        default = self.default_context()
        LOGGER.info("Resolved %s to business %s", phone_number, data["businessId"])
        return BusinessContext(
            business_id=str(data["businessId"]),
            business_name=str(data.get("businessName") or default.business_name),
            language=str(data.get("language") or default.language),
            timezone=str(data.get("timezone") or default.timezone),
            greeting=data.get("greeting") or None,
            personality=data.get("personality") or None,
            calendar_connection_id=data.get("calendarConnectionId") or None,
        )
