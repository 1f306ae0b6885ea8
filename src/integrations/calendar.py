"""Calendar capabilities backed by the web app's calendar API."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from config.settings import Settings, get_settings
from conversation.schemas import BusinessContext, CapabilityResult

LOGGER = logging.getLogger(__name__)

CALENDAR_CAPABILITIES: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "check_availability",
            "description": (
                "Comprueba la disponibilidad del calendario para una fecha concreta. "
                "Úsalo cuando el cliente pregunte si hay hueco."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "date": {"type": "string", "description": "Fecha en formato YYYY-MM-DD."},
                    "service_type": {"type": "string", "description": "Tipo de servicio (opcional)."},
                },
                "required": ["date"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "book_appointment",
            "description": "Reserva una cita cuando el cliente confirma un hueco concreto.",
            "parameters": {
                "type": "object",
                "properties": {
                    "date": {"type": "string", "description": "Fecha en formato YYYY-MM-DD."},
                    "time": {"type": "string", "description": "Hora en formato HH:MM (24h)."},
                    "customer_name": {"type": "string", "description": "Nombre del cliente."},
                    "customer_phone": {"type": "string", "description": "Teléfono (opcional)."},
                    "service_type": {"type": "string", "description": "Tipo de servicio."},
                    "notes": {"type": "string", "description": "Notas adicionales (opcional)."},
                },
                "required": ["date", "time", "customer_name"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "get_next_available",
            "description": "Devuelve los próximos huecos libres cuando el cliente no indica fecha.",
            "parameters": {
                "type": "object",
                "properties": {
                    "service_type": {"type": "string", "description": "Tipo de servicio (opcional)."},
                    "preferred_time": {
                        "type": "string",
                        "enum": ["morning", "afternoon", "any"],
                        "description": "Preferencia de horario.",
                    },
                },
                "required": [],
            },
        },
    },
]

NOT_CONNECTED_MESSAGE = (
    "El calendario no está conectado. Indica al cliente que llame más tarde "
    "o que contacte directamente con el negocio."
)
BACKEND_ERROR_MESSAGE = (
    "Ha habido un problema técnico con el calendario. Ofrece al cliente llamar más tarde."
)


class BaseCapabilityExecutor(ABC):
    """Runs named capabilities. Expected failures are returned, never raised."""

    @abstractmethod
    def capabilities_for(self, context: BusinessContext) -> list[dict[str, Any]]:
        """Function schemas offered to the model for this business."""

    @abstractmethod
    async def execute(
        self, name: str, arguments: dict[str, Any], context: BusinessContext
    ) -> CapabilityResult:
        """Run one capability."""


class CalendarCapabilityExecutor(BaseCapabilityExecutor):
    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 8.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    def capabilities_for(self, context: BusinessContext) -> list[dict[str, Any]]:
        if not context.capabilities_enabled:
            return []
        return CALENDAR_CAPABILITIES

    async def execute(
        self, name: str, arguments: dict[str, Any], context: BusinessContext
    ) -> CapabilityResult:
        LOGGER.info("Calendar capability %s for business %s", name, context.business_id)
        if not context.calendar_connection_id:
            return CapabilityResult.failure("not_connected", NOT_CONNECTED_MESSAGE)

        builder = {
            "check_availability": self._availability_payload,
            "book_appointment": self._booking_payload,
            "get_next_available": self._next_available_payload,
        }.get(name)
        if builder is None:
            return CapabilityResult.failure("unknown_capability", f"Herramienta no reconocida: {name}")

        try:
            path, payload = builder(arguments)
        except KeyError as exc:
            return CapabilityResult.failure(
                "invalid_arguments", f"Falta el dato obligatorio {exc.args[0]}."
            )
        payload.update({"businessId": context.business_id, "connectionId": context.calendar_connection_id})
        return await self._post(path, payload)

    async def _post(self, path: str, payload: dict[str, Any]) -> CapabilityResult:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(f"{self._base_url}{path}", json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.warning("Calendar backend call %s failed: %s", path, exc)
            return CapabilityResult.failure("backend_error", BACKEND_ERROR_MESSAGE)

        if not isinstance(data, dict):
            return CapabilityResult.failure("backend_error", BACKEND_ERROR_MESSAGE)
        message = str(data.get("message") or "")
        if data.get("success") is False:
            return CapabilityResult.failure("rejected", message or BACKEND_ERROR_MESSAGE)
        details = {key: value for key, value in data.items() if key not in {"success", "message"}}
        return CapabilityResult.ok(message, details or None)

    @staticmethod
    def _availability_payload(arguments: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        return "/api/calendar/availability", {
            "date": _required(arguments, "date"),
            "serviceType": arguments.get("service_type"),
        }

    @staticmethod
    def _booking_payload(arguments: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        customer_name = arguments.get("customer_name") or arguments.get("name")
        if not customer_name:
            raise KeyError("customer_name")
        return "/api/calendar/book", {
            "date": _required(arguments, "date"),
            "time": _required(arguments, "time"),
            "customerName": customer_name,
            "customerPhone": arguments.get("customer_phone"),
            "serviceType": arguments.get("service_type"),
            "notes": arguments.get("notes"),
        }

    @staticmethod
    def _next_available_payload(arguments: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        preferred = arguments.get("preferred_time") or "any"
        if preferred not in {"morning", "afternoon", "any"}:
            preferred = "any"
        return "/api/calendar/next-available", {
            "preferredTime": preferred,
            "serviceType": arguments.get("service_type"),
        }


class DisabledCapabilityExecutor(BaseCapabilityExecutor):
    """Used when no web app is configured: nothing is offered to the model."""

    def capabilities_for(self, context: BusinessContext) -> list[dict[str, Any]]:
        return []

    async def execute(
        self, name: str, arguments: dict[str, Any], context: BusinessContext
    ) -> CapabilityResult:
        return CapabilityResult.failure("not_connected", NOT_CONNECTED_MESSAGE)


def _required(arguments: dict[str, Any], key: str) -> Any:
    value = arguments.get(key)
    if value in (None, ""):
        raise KeyError(key)
    return value


def build_capability_executor(settings: Settings | None = None) -> BaseCapabilityExecutor:
    settings = settings or get_settings()
    if not settings.web_app_url:
        LOGGER.info("WEB_APP_URL not configured; calendar capabilities disabled")
        return DisabledCapabilityExecutor()
    return CalendarCapabilityExecutor(
        base_url=settings.web_app_url,
        api_key=settings.voice_service_api_key,
        timeout=settings.capability_timeout_seconds,
    )
