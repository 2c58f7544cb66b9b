"""Session controller for realtime voice session lifecycle management."""

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

from tutor_relay.domain.constants import (
    CLOSE_GOING_AWAY,
    CLOSE_INTERNAL_ERROR,
    CLOSE_NORMAL,
    DEFAULT_SPEECH_SPEED,
    MODEL_SWITCH_CONTEXT_MESSAGES,
    ModelTier,
    NoticeMessages,
)
from tutor_relay.domain.entities.session import VoiceSession
from tutor_relay.domain.services import client_notices
from tutor_relay.domain.services.admission import Admission
from tutor_relay.domain.services.content_sequencer import ContentSequencer
from tutor_relay.domain.services.prompt_assembler import PromptAssembler
from tutor_relay.domain.services.protocol_translator import RESPONSE_CREATE, ProtocolTranslator
from tutor_relay.domain.value_objects.conversation import MessageRole
from tutor_relay.domain.value_objects.effects import (
    CloseSession,
    Effect,
    PersistMessage,
    SendToClient,
    SendToProvider,
    SwitchModel,
)
from tutor_relay.domain.value_objects.session_state import SessionState
from tutor_relay.domain.value_objects.settings import SessionSettings
from tutor_relay.ports.channels import (
    ChannelClosedError,
    ClientChannel,
    ProviderChannel,
    ProviderConnectError,
    ProviderConnector,
    UnsupportedFrameError,
)
from tutor_relay.ports.session_store import SessionStore, SessionStoreError

logger = logging.getLogger(__name__)

UsageRecorder = Callable[[VoiceSession, int, bool], None]


class CloseReason:
    """close_reason values recorded on the session."""

    CLIENT_CLOSED = "client_closed"
    PROVIDER_CLOSED = "provider_closed"
    PROVIDER_CONNECT_FAILED = "provider_connect_failed"
    CLIENT_RECEIVE_FAILED = "client_receive_failed"
    PROVIDER_RECEIVE_FAILED = "provider_receive_failed"
    DURATION_LIMIT = "duration_limit"
    RELAY_SHUTDOWN = "relay_shutdown"


class SessionController:
    """Owns one client/provider channel pair from upgrade to teardown.

    Responsibilities:
    - Open the provider channel and announce the session to the client
    - Pump both channels through the protocol translator, one message at a time
    - Hard duration timer and independent keepalives on both channels
    - Swap the provider channel to the full model when a confused student asks
    - Single, idempotent teardown that logs usage exactly once

    This is the only place that decides whether an error ends the session.
    All state lives on the VoiceSession and is touched only from this
    controller's tasks, which run on one event loop.
    """

    def __init__(
        self,
        admission: Admission,
        client: ClientChannel,
        provider_connector: ProviderConnector,
        session_store: SessionStore,
        settings: SessionSettings | None = None,
        prompt_assembler: PromptAssembler | None = None,
        usage_recorder: UsageRecorder | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize session controller.

        Args:
            admission: Result of the pre-session checks
            client: Accepted client channel
            provider_connector: Opens the provider channel
            session_store: Port for transcripts and usage
            settings: Timers and provider options
            prompt_assembler: Builds provider configuration
            usage_recorder: Optional cost log hook called after usage is logged
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self._client = client
        self._connector = provider_connector
        self._store = session_store
        self._settings = settings or SessionSettings()
        self._usage_recorder = usage_recorder
        self._clock = clock
        self._started = clock()

        self.session = VoiceSession.create(
            conversation_id=admission.conversation.id,
            user_id=admission.user.user_id,
            quota_id=admission.quota.quota_id,
        )
        self.sequencer = ContentSequencer(lesson_plan=admission.lesson_plan)
        self.translator = ProtocolTranslator(
            session=self.session,
            sequencer=self.sequencer,
            prompt_assembler=prompt_assembler or PromptAssembler(self._settings),
            prompt_context=admission.prompt_context,
            settings=self._settings,
            clock=clock,
        )
        self.session.tier_started_at = self._started

        self._provider: ProviderChannel | None = None
        self._tasks: set[asyncio.Task] = set()
        self._closed = asyncio.Event()

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def provider(self) -> ProviderChannel | None:
        return self._provider

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def run(self) -> None:
        """Run the session until it is closed."""
        try:
            await self.start()
            await self._closed.wait()
        finally:
            if not self.session.state.is_shutting_down():
                await self.close(
                    CloseReason.RELAY_SHUTDOWN, was_interrupted=True, code=CLOSE_GOING_AWAY
                )

    async def start(self) -> None:
        """Open the provider channel and start pumps and timers."""
        logger.info(
            f"Session {self.session.id} connecting "
            f"(conversation={self.session.conversation_id}, user={self.session.user_id})"
        )
        try:
            self._provider = await self._connector.connect(model=self._settings.model)
        except ProviderConnectError as e:
            logger.error(f"Session {self.session.id}: provider connect failed: {e}")
            await self.close(
                CloseReason.PROVIDER_CONNECT_FAILED,
                was_interrupted=True,
                notice=client_notices.connection_error(
                    "AI service connection failed",
                    details=str(e),
                    message=NoticeMessages.PROVIDER_UNAVAILABLE,
                ),
                code=CLOSE_INTERNAL_ERROR,
            )
            return

        self.session.transition_to(SessionState.ACTIVE)
        await self._send_client(client_notices.connection_status(self.session.conversation_id))

        self._spawn(self._client_pump(), "client_pump")
        self._spawn(self._provider_pump(), "provider_pump")
        self._spawn(self._duration_timer(), "duration_timer")
        self._spawn(self._client_keepalive(), "client_keepalive")
        self._spawn(self._provider_keepalive(), "provider_keepalive")
        logger.info(f"Session {self.session.id} active")

    async def expire(self) -> None:
        """Hard duration limit reached: notify the client and close."""
        logger.info(f"Session {self.session.id} reached its time limit")
        await self.close(
            CloseReason.DURATION_LIMIT,
            was_interrupted=False,
            notice=client_notices.limit_reached(),
        )

    async def close(
        self,
        reason: str,
        was_interrupted: bool = True,
        notice: dict[str, Any] | None = None,
        code: int = CLOSE_NORMAL,
    ) -> None:
        """Tear the session down. Only the first call has any effect.

        Args:
            reason: Close trigger, recorded on the session
            was_interrupted: Recorded with the usage log
            notice: Final message for the client, sent if it is still open
            code: Close code for the client channel
        """
        if self.session.state.is_shutting_down():
            return

        # Everything up to the first await runs atomically on the event loop
        now = self._clock()
        elapsed = now - self._started
        self.session.transition_to(SessionState.CLOSING)
        self.session.accrue_tier_time(now)
        self.session.close_reason = reason
        self.session.discard_partial_transcripts()

        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            task.cancel()

        logger.info(f"Session {self.session.id} closing: {reason}")

        if notice is not None:
            await self._send_client(notice)
        if self._provider is not None and self._provider.is_open:
            await self._close_channel(self._provider, CLOSE_NORMAL, reason)
        if self._client.is_open:
            await self._close_channel(self._client, code, reason)

        await self._log_usage(elapsed, was_interrupted)

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self.session.transition_to(SessionState.CLOSED)
        self._closed.set()
        logger.info(f"Session {self.session.id} closed: {self.session.get_stats()}")

    async def _log_usage(self, elapsed: float, was_interrupted: bool) -> None:
        if not self.session.claim_usage_log():
            return

        duration = VoiceSession.billable_seconds(elapsed, self._settings.max_session_seconds)
        try:
            await self._store.log_usage(
                self.session.conversation_id,
                self.session.started_at,
                duration,
                was_interrupted,
                quota_id=self.session.quota_id,
            )
            logger.info(
                f"Logged usage for session {self.session.id}: {duration}s "
                f"(interrupted={was_interrupted})"
            )
        except SessionStoreError as e:
            logger.error(f"Failed to log usage for session {self.session.id}: {e}")

        if self._usage_recorder is not None:
            self._usage_recorder(self.session, duration, was_interrupted)

    # =========================================================================
    # Pumps
    # =========================================================================

    async def _client_pump(self) -> None:
        while self.session.state.is_active():
            try:
                raw = await self._client.receive_text()
            except ChannelClosedError as e:
                logger.info(f"Session {self.session.id}: client disconnected (code={e.code})")
                await self.close(CloseReason.CLIENT_CLOSED, was_interrupted=True)
                return
            except UnsupportedFrameError as e:
                logger.warning(f"Session {self.session.id}: ignoring client frame: {e}")
                await self._send_client(
                    client_notices.server_error(
                        "Unsupported frame", message=NoticeMessages.BINARY_UNSUPPORTED
                    )
                )
                continue
            except Exception:
                logger.exception(f"Session {self.session.id}: client receive failed")
                await self._fail(CloseReason.CLIENT_RECEIVE_FAILED)
                return
            if not self.session.state.is_active():
                return
            await self._process(self.translator.translate_client_message, raw, "client")

    async def _provider_pump(self) -> None:
        """Read whichever provider channel is current.

        A model switch replaces `self._provider` and then closes the old
        channel; the close and any late events from it are ignored.
        """
        while self.session.state.is_active():
            channel = self._provider
            try:
                raw = await channel.receive()
            except ChannelClosedError as e:
                if channel is not self._provider:
                    continue
                await self._on_provider_closed(e)
                return
            except Exception:
                if channel is not self._provider:
                    continue
                logger.exception(f"Session {self.session.id}: provider receive failed")
                await self._fail(CloseReason.PROVIDER_RECEIVE_FAILED)
                return
            if not self.session.state.is_active():
                return
            if channel is not self._provider:
                continue
            await self._process(self.translator.translate_provider_message, raw, "provider")

    async def _fail(self, reason: str) -> None:
        """Close after a channel fault the session cannot recover from."""
        await self.close(
            reason,
            was_interrupted=True,
            notice=client_notices.server_error(
                "Connection error", message=NoticeMessages.SESSION_FAILED, fatal=True
            ),
            code=CLOSE_INTERNAL_ERROR,
        )

    async def _on_provider_closed(self, error: ChannelClosedError) -> None:
        if self.session.state.is_shutting_down():
            return
        logger.warning(
            f"Session {self.session.id}: provider closed "
            f"(code={error.code}, reason={error.reason!r}, clean={error.was_clean})"
        )
        if not error.was_clean:
            await self._send_client(
                client_notices.connection_error(
                    "AI service connection failed",
                    details="The connection to the AI service was lost",
                )
            )
        await self.close(
            CloseReason.PROVIDER_CLOSED,
            was_interrupted=False,
            notice=client_notices.connection_closed(error.code, error.reason, error.was_clean),
        )

    async def _process(self, translate: Callable[[Any], list[Effect]], raw: Any, source: str) -> None:
        """Translate and apply one message. Faults stay inside this message."""
        try:
            await self._apply(translate(raw))
        except Exception:
            logger.exception(f"Session {self.session.id}: failed to process {source} message")
            await self._send_client(client_notices.server_error("Error processing message"))

    async def _apply(self, effects: list[Effect]) -> None:
        for effect in effects:
            match effect:
                case SendToClient(message=message):
                    await self._send_client(message)
                case SendToProvider(event=event):
                    await self._send_provider(event)
                case PersistMessage(role=role, content=content):
                    await self._persist(role, content)
                case SwitchModel(question=question):
                    await self._switch_model(question)
                case CloseSession(reason=reason, was_interrupted=was_interrupted):
                    await self.close(reason, was_interrupted=was_interrupted, code=CLOSE_INTERNAL_ERROR)
                    return

    async def _persist(self, role: MessageRole, content: str) -> None:
        try:
            await self._store.append_message(self.session.conversation_id, role, content)
        except SessionStoreError as e:
            logger.warning(f"Session {self.session.id}: failed to save {role} message: {e}")
            await self._send_client(
                client_notices.server_error("Failed to save message", message=NoticeMessages.SAVE_FAILED)
            )

    # =========================================================================
    # Model switching
    # =========================================================================

    async def _switch_model(self, question: str) -> None:
        """Move the session to the full model and answer `question` there.

        The new channel gets a deep-explanation configuration built from the
        last few stored turns. If it cannot be opened the question goes to
        the current channel instead and the session carries on.
        """
        from_tier = self.session.model_tier
        model = self._settings.model_for(ModelTier.FULL)
        logger.info(f"Session {self.session.id}: switching {from_tier} -> {ModelTier.FULL} ({model})")
        await self._send_client(client_notices.model_switching(from_tier, ModelTier.FULL))

        history = await self._recent_history()
        try:
            channel = await self._connector.connect(model=model)
        except ProviderConnectError as e:
            logger.error(f"Session {self.session.id}: model switch failed: {e}")
            # Restarts the cooldown so the next confused turn does not retry at once
            self.session.accrue_tier_time(self._clock())
            await self._send_client(
                client_notices.server_error(
                    "Model switch failed",
                    message=NoticeMessages.SWITCH_FAILED,
                    details={"reason": str(e)},
                )
            )
            await self._send_provider(PromptAssembler.build_user_turn(question))
            await self._send_provider(dict(RESPONSE_CREATE))
            return

        if not self.session.state.is_active():
            await self._close_channel(channel, CLOSE_NORMAL, "Session closed")
            return

        previous, self._provider = self._provider, channel
        self.session.switch_tier(ModelTier.FULL, self._clock())
        self.session.mark_response_finished()
        self.session.pending_tool_calls.clear()
        if previous is not None:
            await self._close_channel(previous, CLOSE_NORMAL, "Model switch")

        assembler = self.translator.prompt_assembler
        await self._send_provider(
            assembler.build_deep_explanation_update(self.translator.prompt_context, question, history)
        )
        if self.session.speech_speed != DEFAULT_SPEECH_SPEED:
            await self._send_provider(PromptAssembler.build_speed_update(self.session.speech_speed))
        await self._send_provider(PromptAssembler.build_user_turn(question))
        await self._send_provider(dict(RESPONSE_CREATE))
        await self._send_client(client_notices.model_switched(ModelTier.FULL))

    async def _recent_history(self) -> list[tuple[str, str]]:
        try:
            return await self._store.get_recent_messages(
                self.session.conversation_id, MODEL_SWITCH_CONTEXT_MESSAGES
            )
        except SessionStoreError as e:
            logger.warning(f"Session {self.session.id}: no context for model switch: {e}")
            return []

    # =========================================================================
    # Timers
    # =========================================================================

    async def _duration_timer(self) -> None:
        await asyncio.sleep(self._settings.max_session_seconds)
        await self.expire()

    async def _client_keepalive(self) -> None:
        while True:
            await asyncio.sleep(self._settings.client_keepalive_seconds)
            if not self._client.is_open:
                return
            try:
                await self._client.send_json(client_notices.keepalive())
            except ChannelClosedError:
                logger.debug(f"Session {self.session.id}: client keepalive stopped")
                return

    async def _provider_keepalive(self) -> None:
        while True:
            await asyncio.sleep(self._settings.provider_keepalive_seconds)
            if self._provider is None or not self._provider.is_open:
                return
            try:
                await self._provider.ping()
            except ChannelClosedError:
                logger.debug(f"Session {self.session.id}: provider keepalive stopped")
                return

    # =========================================================================
    # Channel helpers
    # =========================================================================

    async def _send_client(self, message: dict[str, Any] | str) -> None:
        if not self._client.is_open:
            return
        try:
            if isinstance(message, str):
                await self._client.send_text(message)
            else:
                await self._client.send_json(message)
        except ChannelClosedError:
            logger.debug(f"Session {self.session.id}: client gone, dropped outbound message")

    async def _send_provider(self, event: dict[str, Any] | str) -> None:
        if self._provider is None or not self._provider.is_open:
            logger.warning(f"Session {self.session.id}: provider not open, message dropped")
            return
        try:
            await self._provider.send(event)
        except ChannelClosedError:
            logger.debug(f"Session {self.session.id}: provider gone, dropped outbound event")

    async def _close_channel(self, channel: ClientChannel | ProviderChannel, code: int, reason: str) -> None:
        try:
            await channel.close(code=code, reason=reason)
        except ChannelClosedError:
            pass

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task:
        """Create a task owned by this session (cancelled on close)."""
        task = asyncio.create_task(coro, name=f"{name}:{self.session.id}")
        self._tasks.add(task)

        def cleanup(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(f"Task {t.get_name()} failed: {t.exception()}")

        task.add_done_callback(cleanup)
        return task
