"""Tests for SessionController - lifecycle, teardown and usage logging."""

import asyncio
import json

import pytest

from tests.conftest import (
    FakeClientChannel,
    FakeConnector,
    FakeProviderChannel,
    ManualClock,
    RecordingStore,
    wait_until,
)
from tutor_relay.domain.constants import (
    DEFAULT_ESCALATION_MODEL,
    DEFAULT_REALTIME_MODEL,
    ClientMessageType,
    MarkerType,
    ModelTier,
    NoticeMessages,
    ProviderEventType,
)
from tutor_relay.domain.services.admission import Admission
from tutor_relay.domain.services.session_controller import CloseReason, SessionController
from tutor_relay.domain.value_objects.conversation import MessageRole
from tutor_relay.domain.value_objects.session_state import SessionState
from tutor_relay.domain.value_objects.settings import SessionSettings
from tutor_relay.ports.channels import UnsupportedFrameError


@pytest.fixture
async def make_controller(
    client: FakeClientChannel,
    connector: FakeConnector,
    store: RecordingStore,
    clock: ManualClock,
    quiet_settings: SessionSettings,
    admission: Admission,
):
    controllers: list[SessionController] = []

    def factory(**overrides) -> SessionController:
        kwargs = {
            "admission": admission,
            "client": client,
            "provider_connector": connector,
            "session_store": store,
            "settings": quiet_settings,
            "clock": clock,
        }
        kwargs.update(overrides)
        controller = SessionController(**kwargs)
        controllers.append(controller)
        return controller

    yield factory

    for controller in controllers:
        await controller.close("test_teardown")


async def started(factory, **overrides) -> SessionController:
    controller = factory(**overrides)
    await controller.start()
    return controller


class TestStart:
    async def test_announces_connection_and_becomes_active(self, make_controller, client, connector):
        controller = await started(make_controller)

        assert controller.state == SessionState.ACTIVE
        assert connector.connect_calls == 1
        assert client.messages()[0] == {
            "type": ClientMessageType.CONNECTION_STATUS,
            "status": "connected",
            "conversationId": "conv-1",
        }

    async def test_provider_connect_failure_closes_with_reason(self, make_controller, client, store):
        controller = make_controller(provider_connector=FakeConnector(fail=True))

        await controller.run()

        assert controller.state == SessionState.CLOSED
        assert controller.session.close_reason == CloseReason.PROVIDER_CONNECT_FAILED
        error = client.of_type(ClientMessageType.CONNECTION_ERROR)[0]
        assert error["fatal"] is True
        assert error["message"] == NoticeMessages.PROVIDER_UNAVAILABLE
        assert client.close_calls == [(1011, CloseReason.PROVIDER_CONNECT_FAILED)]
        assert len(store.usage_logs) == 1
        assert store.usage_logs[0]["duration_seconds"] == 0


class TestRelay:
    async def test_session_created_configures_provider_and_greets(
        self, make_controller, provider, store, lesson_admission, client
    ):
        await started(make_controller, admission=lesson_admission)

        provider.push({"type": ProviderEventType.SESSION_CREATED})
        await wait_until(lambda: len(store.messages) == 1)

        sent_types = [e["type"] for e in provider.events()]
        assert sent_types == [
            ProviderEventType.SESSION_UPDATE,
            ProviderEventType.CONVERSATION_ITEM_CREATE,
            ProviderEventType.RESPONSE_CREATE,
        ]
        marker = client.of_type(ClientMessageType.CONTENT_MARKER)[0]
        assert marker["data"]["type"] == MarkerType.MOVE_TO_STEP
        assert marker["data"]["stepId"] == "s1"
        assert store.messages[0][1] == MessageRole.SYSTEM

    async def test_transcript_forwarded_raw_and_persisted(self, make_controller, provider, client, store):
        await started(make_controller)
        delta = json.dumps({"type": "response.audio_transcript.delta", "delta": "Half of "})
        done = json.dumps({"type": "response.audio_transcript.done", "transcript": "Half of eight"})

        provider.push(delta)
        provider.push(json.dumps({"type": "response.audio_transcript.delta", "delta": "eight"}))
        provider.push(done)
        await wait_until(lambda: done in client.sent)

        assert delta in client.sent
        assert store.contents(MessageRole.ASSISTANT) == ["Half of eight"]

    async def test_tool_call_round_trip(self, make_controller, provider, client, lesson_admission):
        await started(make_controller, admission=lesson_admission)

        provider.push(
            {
                "type": ProviderEventType.FUNCTION_CALL_DONE,
                "call_id": "call-1",
                "name": "move_to_step",
                "arguments": json.dumps({"stepId": "s1", "stepTitle": "Intro"}),
            }
        )
        await wait_until(lambda: len(provider.of_type(ProviderEventType.RESPONSE_CREATE)) == 1)

        outputs = provider.of_type(ProviderEventType.CONVERSATION_ITEM_CREATE)
        assert outputs[0]["item"]["call_id"] == "call-1"
        marker = client.of_type(ClientMessageType.CONTENT_MARKER)[0]
        assert marker["data"]["stepTitle"] == "Intro"

    async def test_user_message_from_client(self, make_controller, provider, client, store):
        await started(make_controller)

        client.push({"type": "user_message", "text": "Why is 1/2 bigger than 1/3?"})
        await wait_until(lambda: len(provider.of_type(ProviderEventType.RESPONSE_CREATE)) == 1)

        assert store.contents(MessageRole.USER) == ["Why is 1/2 bigger than 1/3?"]

    async def test_client_passthrough_forwarded_verbatim(self, make_controller, provider, client):
        await started(make_controller)
        audio = '{"type": "input_audio_buffer.append", "audio": "UklGR"}'

        client.push(audio)
        await wait_until(lambda: audio in provider.sent)

    async def test_barge_in_cancels_once(self, make_controller, provider):
        controller = await started(make_controller)

        provider.push({"type": ProviderEventType.RESPONSE_CREATED})
        provider.push({"type": ProviderEventType.SPEECH_STARTED})
        provider.push({"type": ProviderEventType.SPEECH_STARTED})
        provider.push({"type": ProviderEventType.RESPONSE_CANCELLED})
        await wait_until(lambda: not controller.session.is_provider_responding)
        await wait_until(lambda: provider._inbox.empty())

        assert len(provider.of_type(ProviderEventType.RESPONSE_CANCEL)) == 1


class TestRecoverableFaults:
    async def test_store_write_failure_keeps_session_active(self, make_controller, client, store):
        controller = await started(make_controller)
        store.fail_appends = True

        client.push({"type": "user_message", "text": "hello"})
        await wait_until(lambda: client.of_type(ClientMessageType.SERVER_ERROR))

        notice = client.of_type(ClientMessageType.SERVER_ERROR)[0]
        assert notice["fatal"] is False
        assert notice["message"] == NoticeMessages.SAVE_FAILED
        assert controller.state == SessionState.ACTIVE

    async def test_processing_exception_stays_in_message(self, make_controller, client, monkeypatch):
        controller = await started(make_controller)

        def explode(raw):
            raise RuntimeError("translator bug")

        monkeypatch.setattr(controller.translator, "translate_client_message", explode)
        client.push({"type": "user_message", "text": "hello"})
        await wait_until(lambda: client.of_type(ClientMessageType.SERVER_ERROR))

        notice = client.of_type(ClientMessageType.SERVER_ERROR)[0]
        assert "translator bug" not in json.dumps(notice)
        assert controller.state == SessionState.ACTIVE

    async def test_recoverable_provider_error_is_forwarded_as_notice(self, make_controller, provider, client):
        controller = await started(make_controller)

        provider.push({"type": "error", "error": {"type": "invalid_request_error", "message": "Bad"}})
        await wait_until(lambda: client.of_type(ClientMessageType.SERVER_ERROR))

        assert controller.state == SessionState.ACTIVE
        assert not client.of_type("error")

    async def test_undecodable_provider_frame_keeps_pump_running(self, make_controller, provider, client):
        controller = await started(make_controller)

        provider.push(b'{"type": "\xff\xfe"}')
        await wait_until(lambda: client.of_type(ClientMessageType.SERVER_ERROR))
        provider.push({"type": "response.created"})
        await wait_until(lambda: controller.session.is_provider_responding)

        assert client.of_type(ClientMessageType.SERVER_ERROR)[0]["error"] == "Malformed provider event"
        assert controller.state == SessionState.ACTIVE

    async def test_binary_client_frame_keeps_pump_running(self, make_controller, provider, client):
        controller = await started(make_controller)

        client.fail(UnsupportedFrameError("Binary frame of 4 bytes"))
        await wait_until(lambda: client.of_type(ClientMessageType.SERVER_ERROR))
        client.push('{"type":"input_audio_buffer.commit"}')
        await wait_until(lambda: provider.sent)

        notice = client.of_type(ClientMessageType.SERVER_ERROR)[0]
        assert notice["message"] == NoticeMessages.BINARY_UNSUPPORTED
        assert notice["fatal"] is False
        assert provider.sent == ['{"type":"input_audio_buffer.commit"}']
        assert controller.state == SessionState.ACTIVE

    async def test_unexpected_client_receive_error_ends_session(self, make_controller, client, store):
        controller = await started(make_controller)

        client.fail(ValueError("socket state corrupted"))
        await wait_until(lambda: controller.state == SessionState.CLOSED)

        assert controller.session.close_reason == CloseReason.CLIENT_RECEIVE_FAILED
        assert client.of_type(ClientMessageType.SERVER_ERROR)[0]["fatal"] is True
        assert client.close_calls == [(1011, CloseReason.CLIENT_RECEIVE_FAILED)]
        assert len(store.usage_logs) == 1
        assert store.usage_logs[0]["was_interrupted"] is True

    async def test_unexpected_provider_receive_error_ends_session(self, make_controller, provider, store):
        controller = await started(make_controller)

        provider.fail(ValueError("frame too large"))
        await wait_until(lambda: controller.state == SessionState.CLOSED)

        assert controller.session.close_reason == CloseReason.PROVIDER_RECEIVE_FAILED
        assert len(store.usage_logs) == 1


class TestTeardown:
    async def test_client_drop_after_90_seconds(self, make_controller, client, provider, store, clock):
        controller = await started(make_controller)
        clock.advance(90.4)

        client.disconnect()
        await wait_until(lambda: controller.state == SessionState.CLOSED)

        assert store.usage_logs == [
            {
                "conversation_id": "conv-1",
                "started_at": controller.session.started_at,
                "duration_seconds": 90,
                "was_interrupted": True,
                "quota_id": "quota-1",
            }
        ]
        assert provider.close_calls == [(1000, CloseReason.CLIENT_CLOSED)]
        assert client.close_calls == []

    async def test_duration_cap_with_slow_teardown(self, make_controller, client, provider, store, clock):
        controller = await started(make_controller)
        clock.advance(330)

        await controller.expire()

        assert client.of_type(ClientMessageType.LIMIT_REACHED)[0]["message"] == NoticeMessages.LIMIT_REACHED
        assert client.close_calls == [(1000, CloseReason.DURATION_LIMIT)]
        assert provider.close_calls == [(1000, CloseReason.DURATION_LIMIT)]
        assert len(store.usage_logs) == 1
        assert store.usage_logs[0]["duration_seconds"] == 300
        assert store.usage_logs[0]["was_interrupted"] is False

    async def test_duration_timer_fires(self, make_controller, client, store):
        settings = SessionSettings(max_session_seconds=1, client_keepalive_seconds=600, provider_keepalive_seconds=600)
        controller = await started(make_controller, settings=settings)

        await wait_until(lambda: controller.state == SessionState.CLOSED, timeout=3.0)

        assert controller.session.close_reason == CloseReason.DURATION_LIMIT
        assert client.of_type(ClientMessageType.LIMIT_REACHED)
        assert len(store.usage_logs) == 1

    async def test_partial_transcript_discarded_when_timer_wins(self, make_controller, provider, store):
        controller = await started(make_controller)

        provider.push({"type": "response.audio_transcript.delta", "delta": "The answer is"})
        await wait_until(lambda: controller.session.accumulated_assistant_text != "")
        await controller.expire()

        assert store.contents(MessageRole.ASSISTANT) == []
        assert controller.session.accumulated_assistant_text == ""

    async def test_concurrent_close_triggers_log_once(self, make_controller, client, provider, store):
        controller = await started(make_controller)

        client.disconnect()
        provider.drop(code=1000, was_clean=True)
        await asyncio.gather(
            controller.expire(),
            controller.close(CloseReason.CLIENT_CLOSED),
            controller.close(CloseReason.PROVIDER_CLOSED, was_interrupted=False),
        )
        await wait_until(lambda: controller.state == SessionState.CLOSED)

        assert len(store.usage_logs) == 1
        assert len(client.close_calls) <= 1
        assert len(provider.close_calls) <= 1
        assert controller.session.close_reason in (
            CloseReason.DURATION_LIMIT,
            CloseReason.CLIENT_CLOSED,
            CloseReason.PROVIDER_CLOSED,
        )

    async def test_unclean_provider_drop(self, make_controller, client, provider, store):
        controller = await started(make_controller)

        provider.drop(code=1006, was_clean=False)
        await wait_until(lambda: controller.state == SessionState.CLOSED)

        types = [m["type"] for m in client.messages()]
        assert types[-2:] == [ClientMessageType.CONNECTION_ERROR, ClientMessageType.CONNECTION_CLOSED]
        closed = client.of_type(ClientMessageType.CONNECTION_CLOSED)[0]
        assert closed["code"] == 1006
        assert closed["wasClean"] is False
        assert store.usage_logs[0]["was_interrupted"] is False
        assert provider.close_calls == []

    async def test_clean_provider_close(self, make_controller, client, provider):
        controller = await started(make_controller)

        provider.drop(code=1000, reason="done", was_clean=True)
        await wait_until(lambda: controller.state == SessionState.CLOSED)

        assert not client.of_type(ClientMessageType.CONNECTION_ERROR)
        closed = client.of_type(ClientMessageType.CONNECTION_CLOSED)[0]
        assert closed["reason"] == "done"
        assert closed["message"] == NoticeMessages.CLOSED_CLEAN

    async def test_fatal_provider_error_closes_session(self, make_controller, client, provider, store):
        controller = await started(make_controller)

        provider.push({"type": "error", "error": {"type": "authentication_error", "message": "Bad key"}})
        await wait_until(lambda: controller.state == SessionState.CLOSED)

        notice = client.of_type(ClientMessageType.SERVER_ERROR)[0]
        assert notice["fatal"] is True
        assert client.close_calls == [(1011, "provider_error:authentication_error")]
        assert provider.close_calls == [(1000, "provider_error:authentication_error")]
        assert store.usage_logs[0]["was_interrupted"] is True

    async def test_relay_shutdown_cancels_run(self, make_controller, store):
        controller = make_controller()
        task = asyncio.create_task(controller.run())
        await wait_until(lambda: controller.state == SessionState.ACTIVE)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert controller.state == SessionState.CLOSED
        assert controller.session.close_reason == CloseReason.RELAY_SHUTDOWN
        assert len(store.usage_logs) == 1

    async def test_no_traffic_after_close(self, make_controller, client, provider, store):
        controller = await started(make_controller)
        await controller.expire()
        sent_before = len(provider.sent)

        await controller.close(CloseReason.CLIENT_CLOSED)

        assert len(provider.sent) == sent_before
        assert len(store.usage_logs) == 1

    async def test_usage_recorder_called_once(self, make_controller, clock):
        recorded = []
        controller = await started(
            make_controller, usage_recorder=lambda session, seconds, interrupted: recorded.append((seconds, interrupted))
        )
        clock.advance(42.9)

        await controller.expire()
        await controller.close(CloseReason.CLIENT_CLOSED)

        assert recorded == [(42, False)]


class TestKeepalive:
    async def test_keepalives_on_both_channels(self, make_controller, client, provider):
        settings = SessionSettings(client_keepalive_seconds=0.01, provider_keepalive_seconds=0.01)
        await started(make_controller, settings=settings)

        await wait_until(lambda: client.of_type(ClientMessageType.KEEPALIVE) and provider.pings > 0)

        assert "timestamp" in client.of_type(ClientMessageType.KEEPALIVE)[0]

    async def test_keepalive_failure_does_not_close_session(self, make_controller, provider):
        settings = SessionSettings(client_keepalive_seconds=600, provider_keepalive_seconds=0.01)
        controller = await started(make_controller, settings=settings)

        provider._open = False
        await asyncio.sleep(0.05)

        assert controller.state == SessionState.ACTIVE


class TestModelSwitch:
    @pytest.fixture
    def full_channel(self) -> FakeProviderChannel:
        return FakeProviderChannel()

    @pytest.fixture
    def switching_connector(self, provider, full_channel) -> FakeConnector:
        return FakeConnector(provider, spares=[full_channel])

    async def test_confused_student_moves_to_full_model(
        self, make_controller, switching_connector, provider, full_channel, client, clock
    ):
        controller = await started(make_controller, provider_connector=switching_connector)
        client.push({"type": "user_message", "text": "What is hamartia?"})
        await wait_until(lambda: provider.of_type(ProviderEventType.RESPONSE_CREATE))

        clock.advance(31)
        client.push({"type": "user_message", "text": "I don't understand"})
        await wait_until(lambda: client.of_type(ClientMessageType.MODEL_SWITCHED))

        assert switching_connector.models == [DEFAULT_REALTIME_MODEL, DEFAULT_ESCALATION_MODEL]
        assert client.of_type(ClientMessageType.MODEL_SWITCHING)[0] == {
            "type": ClientMessageType.MODEL_SWITCHING,
            "fromModel": ModelTier.MINI,
            "toModel": ModelTier.FULL,
            "reason": "confusion_detected",
        }
        assert client.of_type(ClientMessageType.MODEL_SWITCHED)[0]["model"] == ModelTier.FULL
        assert provider.close_calls == [(1000, "Model switch")]
        assert len(provider.of_type(ProviderEventType.CONVERSATION_ITEM_CREATE)) == 1
        assert controller.provider is full_channel

        sent_types = [e["type"] for e in full_channel.events()]
        assert sent_types == [
            ProviderEventType.SESSION_UPDATE,
            ProviderEventType.CONVERSATION_ITEM_CREATE,
            ProviderEventType.RESPONSE_CREATE,
        ]
        instructions = full_channel.events()[0]["session"]["instructions"]
        assert "DEEP EXPLANATION MODE" in instructions
        assert "Student: What is hamartia?" in instructions
        assert full_channel.events()[1]["item"]["content"][0]["text"] == "I don't understand"

        assert controller.session.model_tier == ModelTier.FULL
        assert controller.session.model_switch_count == 1
        assert controller.state == SessionState.ACTIVE

    async def test_pump_follows_new_channel(
        self, make_controller, switching_connector, full_channel, client, clock
    ):
        controller = await started(make_controller, provider_connector=switching_connector)
        clock.advance(31)
        client.push({"type": "user_message", "text": "Can you break it down?"})
        await wait_until(lambda: client.of_type(ClientMessageType.MODEL_SWITCHED))

        full_channel.push({"type": ProviderEventType.RESPONSE_CREATED})
        await wait_until(lambda: controller.session.is_provider_responding)

        assert controller.state == SessionState.ACTIVE

    async def test_no_switch_within_cooldown(
        self, make_controller, switching_connector, provider, client, clock
    ):
        controller = await started(make_controller, provider_connector=switching_connector)
        clock.advance(29)

        client.push({"type": "user_message", "text": "I'm confused"})
        await wait_until(lambda: provider.of_type(ProviderEventType.RESPONSE_CREATE))

        assert switching_connector.connect_calls == 1
        assert not client.of_type(ClientMessageType.MODEL_SWITCHING)
        assert controller.session.model_tier == ModelTier.MINI

    async def test_failed_switch_answers_on_current_model(self, make_controller, provider, client, clock):
        controller = await started(make_controller)
        clock.advance(31)

        client.push({"type": "user_message", "text": "Please clarify"})
        await wait_until(lambda: provider.of_type(ProviderEventType.RESPONSE_CREATE))

        notice = client.of_type(ClientMessageType.SERVER_ERROR)[0]
        assert notice["message"] == NoticeMessages.SWITCH_FAILED
        assert notice["fatal"] is False
        assert provider.of_type(ProviderEventType.CONVERSATION_ITEM_CREATE)[0]["item"]["content"][0][
            "text"
        ] == "Please clarify"
        assert controller.session.model_tier == ModelTier.MINI
        assert controller.state == SessionState.ACTIVE

    async def test_usage_split_by_tier(self, make_controller, switching_connector, client, clock):
        recorded = []
        controller = await started(
            make_controller,
            provider_connector=switching_connector,
            usage_recorder=lambda session, seconds, interrupted: recorded.append(dict(session.tier_seconds)),
        )
        clock.advance(40)
        client.push({"type": "user_message", "text": "Explain further please"})
        await wait_until(lambda: client.of_type(ClientMessageType.MODEL_SWITCHED))

        clock.advance(20)
        await controller.expire()

        assert recorded == [{ModelTier.MINI: 40, ModelTier.FULL: 20}]
