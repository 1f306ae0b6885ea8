from __future__ import annotations

import asyncio
import json

import httpx

from config.settings import Settings
from integrations.knowledge import HttpKnowledgeLookup
from integrations.web_app import BusinessDirectory

SETTINGS = Settings(
    web_app_url="https://app.example.com",
    voice_service_api_key="voice-key",
    default_business_id="default",
    default_business_name="Mi Negocio",
)


def _run(coro):
    return asyncio.run(coro)


def test_explicit_parameters_win_without_lookup() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("lookup should not happen")

    directory = BusinessDirectory(SETTINGS, transport=httpx.MockTransport(handler))
    context = _run(
        directory.resolve(
            {"businessId": "biz-7", "businessName": "Peluquería Ana", "calendarConnectionId": "conn-1"}
        )
    )

    assert context.business_id == "biz-7"
    assert context.business_name == "Peluquería Ana"
    assert context.calendar_connection_id == "conn-1"


def test_called_number_is_looked_up() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "found": True,
                "businessId": "biz-3",
                "businessName": "Dental Norte",
                "calendarConnectionId": "conn-3",
                "greeting": "Dental Norte, buenos días.",
                "language": "es",
                "timezone": "Europe/Madrid",
            },
        )

    context = _run(
        BusinessDirectory(SETTINGS, transport=httpx.MockTransport(handler)).resolve({"to": "+34910000000"})
    )

    assert context.business_id == "biz-3"
    assert context.greeting == "Dental Norte, buenos días."
    assert seen[0].url.path == "/api/voice/lookup"
    assert seen[0].headers["x-api-key"] == "voice-key"
    assert json.loads(seen[0].content) == {"phoneNumber": "+34910000000"}


def test_unknown_number_and_errors_fall_back_to_default() -> None:
    not_found = httpx.MockTransport(lambda request: httpx.Response(200, json={"found": False}))
    unauthorized = httpx.MockTransport(lambda request: httpx.Response(401, json={"error": "Unauthorized"}))

    assert _run(BusinessDirectory(SETTINGS, transport=not_found).resolve({"to": "+1"})).business_id == "default"
    assert _run(BusinessDirectory(SETTINGS, transport=unauthorized).resolve({"to": "+1"})).business_id == "default"
    assert _run(BusinessDirectory(SETTINGS).resolve({})).business_name == "Mi Negocio"


def test_knowledge_lookup_returns_context_or_empty() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"businessId": "biz-1", "query": "¿abrís el sábado?"}
        return httpx.Response(200, json={"context": "Sábados de 10 a 14h."})

    lookup = HttpKnowledgeLookup(url="https://kb.example.com/query", transport=httpx.MockTransport(handler))
    failing = HttpKnowledgeLookup(
        url="https://kb.example.com/query",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )

    assert _run(lookup.query("biz-1", "¿abrís el sábado?")) == "Sábados de 10 a 14h."
    assert _run(failing.query("biz-1", "hola")) == ""
