"""Explicit registry of the calls this process is currently handling."""

from __future__ import annotations

import asyncio
import logging

from conversation.errors import SessionExistsError
from conversation.schemas import BusinessContext
from conversation.services import ConversationServices
from conversation.session import Session
from conversation.turn_manager import TurnManager
from telephony.protocol import MediaStreamProtocol
from telephony.transport import MediaStreamTransport, SendText

LOGGER = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self, services: ConversationServices) -> None:
        self._services = services
        self._managers: dict[str, TurnManager] = {}

    def __len__(self) -> int:
        return len(self._managers)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._managers

    def create(
        self,
        session_id: str,
        context: BusinessContext,
        protocol: MediaStreamProtocol,
        send_text: SendText,
    ) -> TurnManager:
        """Build the session and its turn manager; one per call id."""

        if session_id in self._managers:
            raise SessionExistsError(f"Session {session_id} already exists.")
        services = self._services
        transport = MediaStreamTransport(
            protocol,
            send_text,
            pace=services.pace_outbound_audio,
            max_queued_frames=services.outbound_queue_frames,
        )
        manager = TurnManager(
            Session(session_id, context),
            transport=transport,
            transcriber=services.transcriber_factory(),
            generator=services.generator,
            executor=services.executor,
            synthesizer=services.synthesizer,
            knowledge=services.knowledge,
            policy=services.policy,
        )
        self._managers[session_id] = manager
        LOGGER.info("Session %s registered (%d active)", session_id, len(self._managers))
        return manager

    def get(self, session_id: str) -> TurnManager | None:
        return self._managers.get(session_id)

    def remove(self, session_id: str) -> TurnManager | None:
        manager = self._managers.pop(session_id, None)
        if manager is not None:
            LOGGER.info("Session %s removed (%d active)", session_id, len(self._managers))
        return manager

    def active(self) -> list[Session]:
        return [manager.session for manager in self._managers.values()]

    async def close_all(self, reason: str = "shutdown") -> None:
        managers = list(self._managers.values())
        self._managers.clear()
        if managers:
            LOGGER.info("Closing %d active sessions", len(managers))
        await asyncio.gather(*(manager.shutdown(reason) for manager in managers))
