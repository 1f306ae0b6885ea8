"""Business knowledge lookup consumed once per caller turn."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from config.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)


class KnowledgeLookup(ABC):
    @abstractmethod
    async def query(self, business_id: str, text: str) -> str:
        """Return context text relevant to ``text``; empty when nothing is known."""


class NullKnowledgeLookup(KnowledgeLookup):
    async def query(self, business_id: str, text: str) -> str:
        return ""


class HttpKnowledgeLookup(KnowledgeLookup):
    """Posts ``{businessId, query}`` and reads the ``context`` field of the reply.

    Retrieval problems never reach the conversation: every failure is logged
    and answered with an empty context.
    """

    def __init__(
        self,
        *,
        url: str,
        api_key: str | None = None,
        timeout: float = 3.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    async def query(self, business_id: str, text: str) -> str:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._url, json={"businessId": business_id, "query": text}, headers=headers
                )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.warning("Knowledge lookup failed for %s: %s", business_id, exc)
            return ""
        if not isinstance(data, dict):
            return ""
        return str(data.get("context") or "")


def build_knowledge_lookup(settings: Settings | None = None) -> KnowledgeLookup:
    settings = settings or get_settings()
    if not settings.knowledge_lookup_url:
        return NullKnowledgeLookup()
    return HttpKnowledgeLookup(url=settings.knowledge_lookup_url, api_key=settings.voice_service_api_key)
