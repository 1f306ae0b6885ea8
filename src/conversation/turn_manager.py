"""The per-call conversation orchestrator.

One ``TurnManager`` owns one ``Session``. Every input (vendor stream events,
transcripts, results of spawned work) is delivered as an event to a single
control loop, which is the only code that mutates the session. Blocking work
(knowledge lookup, generation, capability calls, speaking) runs in a task
spawned by the loop; the task reports back with an event tagged with the
token of the cycle that spawned it, and results for a cycle that is no longer
current are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from typing import Any

from conversation.errors import (
    GenerationError,
    InvalidTransitionError,
    SynthesisError,
    TransportError,
)
from conversation.events import (
    CapabilityFinished,
    GenerationFinished,
    LoopEvent,
    SpeechFinished,
    TranscriptReceived,
    TransportFailed,
)
from conversation.generator import CapabilityExchange, ResponseGenerator
from conversation.policy import TurnPolicy
from conversation.schemas import CapabilityRequest, CapabilityResult, GenerationResult, Utterance
from conversation.session import GenerationCycle, Phase, Session
from conversation.state_utils import detect_handoff
from integrations.calendar import BaseCapabilityExecutor
from integrations.knowledge import KnowledgeLookup
from speech.stream import SpeechStream
from speech.transcriber import BaseTranscriber
from speech.tts import BaseSynthesizer
from telephony.events import AudioFrame, Mark, Started, Stopped, StreamError
from telephony.transport import MediaStreamTransport

LOGGER = logging.getLogger(__name__)


class TurnManager:
    def __init__(
        self,
        session: Session,
        *,
        transport: MediaStreamTransport,
        transcriber: BaseTranscriber,
        generator: ResponseGenerator,
        executor: BaseCapabilityExecutor,
        synthesizer: BaseSynthesizer,
        knowledge: KnowledgeLookup,
        policy: TurnPolicy | None = None,
    ) -> None:
        self.session = session
        self.transport = transport
        self._transcriber = transcriber
        self._generator = generator
        self._executor = executor
        self._synthesizer = synthesizer
        self._knowledge = knowledge
        self.policy = policy or TurnPolicy()
        self._events: asyncio.Queue[LoopEvent] = asyncio.Queue()
        self._closed = asyncio.Event()
        self._runner: asyncio.Task | None = None
        transport.set_error_handler(lambda error: self.deliver(TransportFailed(error)))

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------
    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def deliver(self, event: LoopEvent) -> None:
        """Queue an event for the control loop. Never blocks."""

        if self._closed.is_set():
            return
        self._events.put_nowait(event)

    def start(self) -> asyncio.Task:
        if self._runner is None:
            self._runner = asyncio.create_task(self.run(), name=f"turn-manager-{self.session.id}")
        return self._runner

    async def run(self) -> None:
        try:
            while not self.session.closed:
                event = await self._events.get()
                await self._dispatch(event)
        finally:
            await self._close("control loop finished")

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def shutdown(self, reason: str = "shutdown") -> None:
        """Close the session from outside the control loop."""

        if self._runner is None or self._runner.done():
            await self._close(reason)
            return
        self.deliver(Stopped(reason=reason))
        await self._closed.wait()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    async def _dispatch(self, event: LoopEvent) -> None:
        try:
            if isinstance(event, AudioFrame):
                self._on_audio(event)
            elif isinstance(event, TranscriptReceived):
                await self._on_transcript(event)
            elif isinstance(event, GenerationFinished):
                self._on_generation_finished(event)
            elif isinstance(event, CapabilityFinished):
                self._on_capability_finished(event)
            elif isinstance(event, SpeechFinished):
                self._on_speech_finished(event)
            elif isinstance(event, Started):
                await self._on_started(event)
            elif isinstance(event, Mark):
                LOGGER.debug("Session %s: mark %s played", self.session.id, event.name)
            elif isinstance(event, Stopped):
                await self._close(f"stream stopped ({event.reason})")
            elif isinstance(event, StreamError):
                LOGGER.warning("Session %s: stream error: %s", self.session.id, event.message)
                await self._close("stream error")
            elif isinstance(event, TransportFailed):
                LOGGER.warning("Session %s: transport failed: %s", self.session.id, event.error.detail)
                await self._close("transport failure")
        except TransportError as exc:
            LOGGER.warning("Session %s: transport error: %s", self.session.id, exc.detail)
            await self._close("transport failure")
        except InvalidTransitionError:
            LOGGER.exception("Session %s: invalid phase transition", self.session.id)
            await self._close("invalid transition")

    # ------------------------------------------------------------------
    # Stream lifecycle
    # ------------------------------------------------------------------
    async def _on_started(self, event: Started) -> None:
        if self.session.phase is not Phase.IDLE:
            LOGGER.debug("Session %s: duplicate start ignored", self.session.id)
            return
        self.transport.bind(event.stream_id, event.media_format)
        await self._transcriber.start(self._on_recognized)
        self.session.transition(Phase.LISTENING)
        LOGGER.info(
            "Session %s started for business %s (%s)",
            self.session.id,
            self.session.business_context.business_id,
            self.transport.protocol.name,
        )
        self._greet()

    def _greet(self) -> None:
        text = self.policy.greeting_for(self.session.business_context)
        cycle = self.session.begin_generation("greeting", phase=Phase.SPEAKING)
        self.session.append_utterance("assistant", text)
        self._speak(cycle, text)

    def _on_audio(self, event: AudioFrame) -> None:
        if event.track.startswith("outbound"):
            return
        self._transcriber.push_audio(event.payload)

    def _on_recognized(self, text: str, is_final: bool) -> None:
        self.deliver(TranscriptReceived(text=text, is_final=is_final))

    # ------------------------------------------------------------------
    # Transcripts and barge-in
    # ------------------------------------------------------------------
    async def _on_transcript(self, event: TranscriptReceived) -> None:
        session = self.session
        if not event.is_final:
            if session.is_speaking and self.policy.is_barge_in(event.text):
                await self._barge_in()
            return

        if session.phase is not Phase.LISTENING:
            LOGGER.debug(
                "Session %s: final transcript ignored while %s", session.id, session.phase.value
            )
            return
        if not event.text.strip():
            return

        LOGGER.info("Session %s: caller said %r", session.id, event.text)
        utterance = session.append_utterance("user", event.text)
        cycle = session.begin_generation("turn")
        cycle.task = self._spawn(self._generate(cycle.token, session.history, utterance), cycle)

    async def _barge_in(self) -> None:
        session = self.session
        cycle = session.active_generation
        LOGGER.info("Session %s: barge-in, stopping playback", session.id)
        session.cancel_requested = True
        task = cycle.task if cycle is not None else None
        if cycle is not None:
            cycle.cancel()
        session.transition(Phase.LISTENING)
        await self.transport.send_clear()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Generation and capabilities
    # ------------------------------------------------------------------
    async def _generate(
        self, token: int, history: Sequence[Utterance], utterance: Utterance
    ) -> None:
        context = self.session.business_context
        knowledge = await self._lookup_knowledge(context.knowledge_key, utterance.text)
        try:
            result = await self._generator.generate(
                history,
                context,
                knowledge=knowledge,
                capabilities=self._executor.capabilities_for(context) or None,
                timeout=self.policy.generation_timeout,
            )
        except GenerationError as exc:
            self.deliver(GenerationFinished(token, error=exc, knowledge=knowledge))
            return
        self.deliver(GenerationFinished(token, result=result, knowledge=knowledge))

    async def _lookup_knowledge(self, key: str, text: str) -> str:
        try:
            return await self._knowledge.query(key, text)
        except Exception as exc:
            LOGGER.warning("Knowledge lookup failed for %s: %s", key, exc)
            return ""

    def _on_generation_finished(self, event: GenerationFinished) -> None:
        session = self.session
        if not session.is_current(event.token) or session.phase is not Phase.GENERATING:
            LOGGER.debug("Session %s: stale generation result dropped", session.id)
            return
        cycle = session.active_generation
        assert cycle is not None
        if event.knowledge:
            cycle.knowledge = event.knowledge

        if event.error is not None:
            LOGGER.warning("Session %s: generation failed: %s", session.id, event.error.detail)
            self._speak(cycle, self.policy.apology_text)
            return

        result = event.result or GenerationResult()
        request = result.capability_request
        if request is not None and cycle.capability_rounds < self.policy.max_capability_rounds:
            self._request_capability(cycle, request, result.text)
            return
        if request is not None:
            LOGGER.warning(
                "Session %s: capability %s dropped, round limit %d reached",
                session.id,
                request.name,
                self.policy.max_capability_rounds,
            )

        text = " ".join(part for part in [*cycle.prefaces, result.text] if part).strip()
        if not result.text:
            text = self._fallback_text(cycle, text)
        if not text:
            LOGGER.info("Session %s: nothing to say, listening again", session.id)
            session.transition(Phase.LISTENING)
            return
        session.append_utterance("assistant", text)
        self._speak(cycle, text)

    def _fallback_text(self, cycle: GenerationCycle, text: str) -> str:
        """Text to speak when the model returned nothing after a capability round."""

        if not cycle.exchanges:
            return text
        last = cycle.exchanges[-1].result
        fallback = last.message if last.success and last.message else self.policy.capability_failure_text
        return " ".join(part for part in (text, fallback) if part)

    def _request_capability(
        self, cycle: GenerationCycle, request: CapabilityRequest, preface: str
    ) -> None:
        self.session.transition(Phase.AWAITING_CAPABILITY)
        cycle.capability_rounds += 1
        cycle.pending_request = request
        cycle.prefaces.append(preface)
        LOGGER.info(
            "Session %s: capability %s requested (round %d)",
            self.session.id,
            request.name,
            cycle.capability_rounds,
        )
        cycle.task = self._spawn(self._run_capability(cycle.token, request), cycle)

    async def _run_capability(self, token: int, request: CapabilityRequest) -> None:
        context = self.session.business_context
        try:
            result = await asyncio.wait_for(
                self._executor.execute(request.name, request.arguments, context),
                timeout=self.policy.capability_timeout,
            )
        except asyncio.TimeoutError:
            LOGGER.warning("Capability %s timed out", request.name)
            result = CapabilityResult.failure("timeout", "La operación ha tardado demasiado.")
        except Exception as exc:
            LOGGER.exception("Capability %s raised", request.name)
            result = CapabilityResult.failure("error", str(exc))
        self.deliver(CapabilityFinished(token, request, result))

    def _on_capability_finished(self, event: CapabilityFinished) -> None:
        session = self.session
        if not session.is_current(event.token) or session.phase is not Phase.AWAITING_CAPABILITY:
            LOGGER.debug("Session %s: stale capability result dropped", session.id)
            return
        cycle = session.active_generation
        assert cycle is not None
        if event.result.is_failure:
            LOGGER.info(
                "Session %s: capability %s failed (%s)", session.id, event.request.name, event.result.reason
            )
        earlier = list(cycle.exchanges)
        preface = cycle.prefaces[-1] if cycle.prefaces else ""
        cycle.exchanges.append(CapabilityExchange(event.request, event.result, preface))
        cycle.pending_request = None
        session.transition(Phase.GENERATING)

        more_rounds = cycle.capability_rounds < self.policy.max_capability_rounds
        capabilities = self._executor.capabilities_for(session.business_context) if more_rounds else None
        cycle.task = self._spawn(
            self._resume(
                cycle.token,
                session.history,
                event.request,
                event.result,
                knowledge=cycle.knowledge,
                earlier=earlier,
                preface=preface,
                capabilities=capabilities or None,
            ),
            cycle,
        )

    async def _resume(
        self,
        token: int,
        history: Sequence[Utterance],
        request: CapabilityRequest,
        result: CapabilityResult,
        **options: Any,
    ) -> None:
        try:
            reply = await self._generator.resume(
                history,
                self.session.business_context,
                request,
                result,
                timeout=self.policy.generation_timeout,
                **options,
            )
        except GenerationError as exc:
            self.deliver(GenerationFinished(token, error=exc))
            return
        self.deliver(GenerationFinished(token, result=reply))

    # ------------------------------------------------------------------
    # Speaking
    # ------------------------------------------------------------------
    def _speak(self, cycle: GenerationCycle, text: str) -> None:
        self.session.transition(Phase.SPEAKING)
        cycle.spoken_text = text
        speech = self._synthesizer.synthesize(text)
        cycle.speech = speech
        cycle.task = self._spawn(self._play(cycle.token, speech), cycle)

    async def _play(self, token: int, speech: SpeechStream) -> None:
        error: SynthesisError | None = None
        try:
            async for frame in speech:
                await self.transport.send_audio(frame)
            if not speech.stopped:
                await self.transport.send_mark(self.policy.speech_end_mark)
                await self.transport.wait_flushed()
        except SynthesisError as exc:
            error = exc
        except TransportError as exc:
            self.deliver(TransportFailed(exc))
            return
        finally:
            await speech.aclose()
        self.deliver(SpeechFinished(token, error=error))

    def _on_speech_finished(self, event: SpeechFinished) -> None:
        session = self.session
        if not session.is_current(event.token) or session.phase is not Phase.SPEAKING:
            return
        cycle = session.active_generation
        assert cycle is not None
        if event.error is not None:
            LOGGER.warning(
                "Session %s: synthesis failed, listening again: %s", session.id, event.error.detail
            )
        if cycle.kind == "greeting":
            session.greeted = True
        elif detect_handoff(cycle.spoken_text):
            LOGGER.info("Session %s: caller may need a person on the team", session.id)
        session.transition(Phase.LISTENING)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _spawn(self, work: Awaitable[None], cycle: GenerationCycle) -> asyncio.Task:
        return asyncio.create_task(work, name=f"{cycle.kind}-{self.session.id}-{cycle.token}")

    async def _close(self, reason: str) -> None:
        session = self.session
        cycle = session.active_generation
        if not session.close():
            return
        LOGGER.info("Session %s closed: %s", session.id, reason)
        try:
            if cycle is not None:
                cycle.cancel()
                if cycle.task is not None:
                    await asyncio.gather(cycle.task, return_exceptions=True)
            await self._release()
        finally:
            self._closed.set()

    async def _release(self) -> None:
        try:
            await self._transcriber.close()
        except Exception as exc:
            LOGGER.warning("Session %s: recognizer close failed: %s", self.session.id, exc)
        finally:
            await self.transport.close()
