"""Tests for MessageBus send and receive pipelines."""

import asyncio
import logging

import pytest

from framebus import (
    Action,
    BusConfig,
    Channel,
    DirectTransport,
    DropReason,
    Envelope,
    MessageBus,
    SendOptions,
    SharedStoreTransport,
    StatCategory,
    create_envelope,
    encode_envelope,
)

from conftest import ORIGIN, FakeClock, inbound, make_config


# --- Lifecycle ---


class TestLifecycle:
    async def test_send_before_start_raises(self):
        bus = MessageBus(make_config(), DirectTransport(ORIGIN))
        with pytest.raises(RuntimeError):
            bus.send(Action.UPDATE_STATUS, {"enabled": True})

    async def test_start_is_idempotent(self, bus: MessageBus):
        await bus.start()
        assert bus.is_running

    async def test_close_stops_sending(self, bus: MessageBus):
        await bus.close()
        assert not bus.is_running
        with pytest.raises(RuntimeError):
            bus.send(Action.PING)

    async def test_close_cancels_running_handlers(self, bus: MessageBus):
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def slow(env: Envelope) -> None:
            started.set()
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        bus.on_receive(slow)
        bus.receive(inbound(Action.ANALYZE_QUESTION), ORIGIN)
        await asyncio.wait_for(started.wait(), timeout=1.0)
        await asyncio.wait_for(bus.close(), timeout=1.0)
        assert cancelled.is_set()

    async def test_handler_may_close_its_own_bus(self, bus: MessageBus):
        closed = asyncio.Event()

        async def closer(env: Envelope) -> None:
            await bus.close()
            closed.set()

        bus.on_receive(closer)
        bus.receive(inbound(Action.QUESTION_ANALYZED), ORIGIN)
        await asyncio.wait_for(closed.wait(), timeout=1.0)
        assert not bus.is_running

    async def test_peer_id_classified_from_origin(self):
        config = BusConfig(origin="https://quiz.example.org")
        bus = MessageBus(config, DirectTransport(config.origin))
        assert bus.peer_id == "quiz.example.org"


# --- Sending ---


class TestSend:
    async def test_send_returns_id_and_sends_envelope(self, recorded):
        bus, transport = recorded
        message_id = bus.send(Action.ANALYZE_QUESTION, {"questionId": "q1"})
        assert message_id is not None
        [env] = transport.envelopes
        assert env.message_id == message_id
        assert env.from_peer == "app"
        assert env.path == ("app",)
        assert env.payload == {"questionId": "q1"}

    async def test_relay_appends_to_received_path(self, recorded):
        bus, transport = recorded
        bus.send(Action.UPDATE_STATUS, {"enabled": True}, path=("top", "frame"))
        assert transport.envelopes[0].path == ("top", "frame", "app")

    async def test_rate_limited_within_interval(self, bus: MessageBus, clock: FakeClock):
        assert bus.send(Action.UPDATE_STATUS, {"enabled": True}) is not None
        clock.advance(0.3)
        assert bus.send(Action.UPDATE_STATUS, {"enabled": False}) is None
        assert bus.drop_counts[DropReason.RATE_LIMITED] == 1
        assert bus.get_report().summary[StatCategory.THROTTLED] == 1

    async def test_rate_limit_releases_after_interval(self, bus: MessageBus, clock: FakeClock):
        bus.send(Action.UPDATE_STATUS, {"enabled": True})
        clock.advance(0.3)
        bus.send(Action.UPDATE_STATUS, {"enabled": False})
        clock.advance(0.201)
        assert bus.send(Action.UPDATE_STATUS, {"enabled": False}) is not None

    async def test_rate_limit_is_per_action(self, bus: MessageBus):
        assert bus.send(Action.UPDATE_STATUS, {"enabled": True}) is not None
        assert bus.send(Action.REQUEST_QUESTION_CHECK, {}) is not None

    async def test_skip_rate_limiting(self, bus: MessageBus):
        bus.send(Action.UPDATE_STATUS, {"enabled": True})
        options = SendOptions(skip_rate_limiting=True)
        assert bus.send(Action.UPDATE_STATUS, {"enabled": False}, options) is not None

    async def test_duplicate_content_suppressed(self, bus: MessageBus, clock: FakeClock):
        assert bus.send(Action.UPDATE_STATUS, {"enabled": True}) is not None
        clock.advance(0.6)
        assert bus.send(Action.UPDATE_STATUS, {"enabled": True}) is None
        assert bus.drop_counts[DropReason.DUPLICATE] == 1

    async def test_duplicate_content_allowed_after_window(self, bus: MessageBus, clock: FakeClock):
        bus.send(Action.UPDATE_STATUS, {"enabled": True})
        clock.advance(2.0)
        assert bus.send(Action.UPDATE_STATUS, {"enabled": True}) is not None

    async def test_skip_duplicate_check(self, bus: MessageBus, clock: FakeClock):
        bus.send(Action.UPDATE_STATUS, {"enabled": True})
        clock.advance(0.6)
        options = SendOptions(skip_duplicate_check=True)
        assert bus.send(Action.UPDATE_STATUS, {"enabled": True}, options) is not None

    async def test_discovery_is_never_throttled(self, bus: MessageBus):
        first = bus.send(Action.PING, {"discoveryPing": True}, broadcast=True)
        second = bus.send(Action.PING, {"discoveryPing": True}, broadcast=True)
        assert first is not None and second is not None
        assert first != second

    async def test_ping_is_always_broadcast(self, recorded):
        bus, transport = recorded
        bus.send(Action.PING, {"discoveryPing": True})
        [ping] = transport.envelopes
        assert ping.broadcast is True

    async def test_reply_callback_ignored_for_other_actions(
        self, recorded, caplog: pytest.LogCaptureFixture
    ):
        bus, transport = recorded
        options = SendOptions(callback=lambda env: None)
        with caplog.at_level(logging.DEBUG, logger="framebus.client.bus"):
            assert bus.send(Action.UPDATE_STATUS, {"enabled": True}, options) is not None
        assert bus.pending_requests == 0
        assert transport.actions == ["updateStatus"]
        assert "Ignoring reply callback for non-ping message updateStatus" in caplog.text

    async def test_message_ids_are_unique(self, bus: MessageBus):
        options = SendOptions(skip_duplicate_check=True, skip_rate_limiting=True)
        ids = {bus.send(Action.UPDATE_STATUS, {"enabled": True}, options) for _ in range(10_000)}
        assert len(ids) == 10_000
        assert None not in ids

    async def test_retry_resends(self, recorded):
        bus, transport = recorded
        bus.send(
            Action.ANALYZE_QUESTION,
            {},
            SendOptions(retry=True, retry_count=2, retry_delay=0.01),
        )
        await asyncio.sleep(0.1)
        assert [e.action for e in transport.envelopes] == ["analyzeQuestion"] * 3
        assert len({e.message_id for e in transport.envelopes}) == 3

    async def test_retry_stops_after_close(self, recorded):
        bus, transport = recorded
        bus.send(Action.ANALYZE_QUESTION, {}, SendOptions(retry=True, retry_delay=0.01))
        await bus.close()
        await asyncio.sleep(0.05)
        assert len(transport.sent) == 1

    async def test_reset_forgets_throttle_and_dedup(self, bus: MessageBus):
        bus.send(Action.UPDATE_STATUS, {"enabled": True})
        bus.reset()
        assert bus.send(Action.UPDATE_STATUS, {"enabled": True}) is not None
        assert bus.drop_counts == {}


# --- Receiving ---


class TestReceive:
    async def test_dispatches_to_every_handler(self, bus: MessageBus):
        seen: list[str] = []
        bus.on_receive(lambda env: seen.append(f"a:{env.action}"))
        bus.on_receive(lambda env: seen.append(f"b:{env.action}"))
        env = bus.receive(inbound(Action.UPDATE_STATUS, payload={"enabled": True}), ORIGIN)
        assert env is not None
        assert env.from_peer == "frame"
        assert seen == ["a:updateStatus", "b:updateStatus"]

    async def test_failing_handler_does_not_stop_others(self, bus: MessageBus):
        seen: list[Envelope] = []

        def broken(env: Envelope) -> None:
            raise ValueError("broken handler")

        bus.on_receive(broken)
        bus.on_receive(seen.append)
        bus.receive(inbound(Action.QUESTION_ANALYZED), ORIGIN)
        assert len(seen) == 1

    async def test_async_handler_is_run(self, bus: MessageBus):
        done = asyncio.Event()

        async def handler(env: Envelope) -> None:
            done.set()

        bus.on_receive(handler)
        bus.receive(inbound(Action.QUESTION_ANALYZED), ORIGIN)
        await asyncio.wait_for(done.wait(), timeout=1.0)

    async def test_remove_handler(self, bus: MessageBus):
        seen: list[Envelope] = []
        bus.on_receive(seen.append)
        bus.remove_handler(seen.append)
        bus.receive(inbound(Action.QUESTION_ANALYZED), ORIGIN)
        assert seen == []

    async def test_untrusted_origin_dropped(self, bus: MessageBus):
        seen: list[Envelope] = []
        bus.on_receive(seen.append)
        assert bus.receive(inbound(Action.UPDATE_STATUS), "https://evil.example.net") is None
        assert seen == []
        assert bus.drop_counts[DropReason.UNTRUSTED_ORIGIN] == 1

    async def test_trusted_sibling_accepted(self, bus: MessageBus):
        assert bus.receive(inbound(Action.QUESTION_ANALYZED), "https://quiz.example.org") is not None

    async def test_malformed_dropped(self, bus: MessageBus):
        assert bus.receive("{broken", ORIGIN) is None
        assert bus.receive('{"source": "framebus", "action": "ping"}', ORIGIN) is None
        assert bus.drop_counts[DropReason.MALFORMED_PAYLOAD] == 2

    async def test_foreign_dropped(self, bus: MessageBus):
        assert bus.receive('{"type": "webpackOk"}', ORIGIN) is None
        assert bus.drop_counts[DropReason.FOREIGN] == 1

    async def test_own_echo_dropped(self, recorded):
        bus, transport = recorded
        bus.send(Action.UPDATE_STATUS, {"enabled": True})
        assert bus.receive(transport.sent[0], ORIGIN) is None
        assert bus.drop_counts[DropReason.ECHO] == 1

    async def test_same_message_delivered_once(self, bus: MessageBus):
        seen: list[Envelope] = []
        bus.on_receive(seen.append)
        wire = inbound(Action.ANALYZE_QUESTION)
        bus.receive(wire, ORIGIN, Channel.PRIMARY)
        bus.receive(wire, ORIGIN, Channel.FALLBACK)
        assert len(seen) == 1
        assert bus.drop_counts[DropReason.DUPLICATE] == 1
        report = bus.get_report()
        assert report.by_action["analyzeQuestion"] == {"received": 1, "fallback.received": 1}

    async def test_loop_blocked(self, bus: MessageBus):
        seen: list[Envelope] = []
        bus.on_receive(seen.append)
        wire = inbound(Action.UPDATE_STATUS, peer="A", path=("A", "B", "A", "C"))
        assert bus.receive(wire, ORIGIN) is None
        assert seen == []
        assert bus.drop_counts[DropReason.LOOP_DETECTED] == 1
        report = bus.get_report()
        assert report.loops == 1
        assert report.last_circular_path.path == ["A", "B", "A", "C", "A"]

    async def test_revisit_below_threshold_accepted(self, bus: MessageBus):
        wire = inbound(Action.UPDATE_STATUS, peer="A", path=("A", "B", "C"))
        env = bus.receive(wire, ORIGIN)
        assert env is not None
        assert env.path == ("A", "B", "C", "A")

    async def test_long_path_warns(self, bus: MessageBus, caplog: pytest.LogCaptureFixture):
        wire = inbound(Action.UPDATE_STATUS, peer="f", path=("a", "b", "c", "d", "e"))
        with caplog.at_level(logging.WARNING, logger="framebus.client.bus"):
            assert bus.receive(wire, ORIGIN) is not None
        assert "Possible message loop" in caplog.text


# --- Ping / pong ---


class TestPingPong:
    async def test_ping_is_answered_with_pong(self, recorded):
        bus, transport = recorded
        bus.set_pong_payload(lambda: {"hasQuestions": True})
        ping = create_envelope(action=Action.PING, peer_id="frame", broadcast=True)
        bus.receive(encode_envelope(ping), ORIGIN)
        [pong] = transport.envelopes
        assert pong.action == Action.PONG
        assert pong.reply_to == ping.message_id
        assert pong.payload == {"hasQuestions": True}

    async def test_broadcast_ping_answered_every_time(self, recorded):
        bus, transport = recorded
        wire = encode_envelope(create_envelope(action=Action.PING, peer_id="frame", broadcast=True))
        bus.receive(wire, ORIGIN)
        bus.receive(wire, ORIGIN)
        assert [e.action for e in transport.envelopes] == ["pong", "pong"]

    async def test_ping_over_both_channels_answered_once(self, recorded):
        bus, transport = recorded
        seen: list[Envelope] = []
        bus.on_receive(seen.append)
        wire = encode_envelope(create_envelope(action=Action.PING, peer_id="frame", broadcast=True))
        assert bus.receive(wire, ORIGIN, Channel.PRIMARY) is not None
        assert bus.receive(wire, ORIGIN, Channel.FALLBACK) is None
        assert transport.actions == ["pong"]
        assert len(seen) == 1
        assert bus.drop_counts[DropReason.DUPLICATE] == 1

    async def test_pong_is_not_answered(self, recorded):
        bus, transport = recorded
        bus.receive(inbound(Action.PONG, reply_to="msg_unknown"), ORIGIN)
        assert transport.sent == []

    async def test_callback_runs_once_for_first_pong(self, recorded):
        bus, _ = recorded
        replies: list[Envelope] = []
        ping_id = bus.ping({"discoveryPing": True}, on_reply=replies.append)
        assert bus.pending_requests == 1

        pong = inbound(Action.PONG, reply_to=ping_id)
        bus.receive(pong, ORIGIN)
        bus.receive(pong, ORIGIN)
        bus.receive(inbound(Action.PONG, peer="quiz", reply_to=ping_id), ORIGIN)

        assert len(replies) == 1
        assert replies[0].reply_to == ping_id
        assert bus.pending_requests == 0

    async def test_ping_times_out_silently(self, recorded):
        bus, _ = recorded
        replies: list[Envelope] = []
        ping_id = bus.ping(timeout=0.1, on_reply=replies.append)
        await asyncio.sleep(0.15)
        assert bus.pending_requests == 0
        bus.receive(inbound(Action.PONG, reply_to=ping_id), ORIGIN)
        assert replies == []

    async def test_request_without_peers_returns_none(self, bus: MessageBus):
        assert await bus.request(timeout=0.05) is None
        assert bus.pending_requests == 0

    async def test_close_drops_pending(self, recorded):
        bus, _ = recorded
        bus.ping(on_reply=lambda env: None)
        await bus.close()
        assert bus.pending_requests == 0


# --- Two linked contexts ---


class TestLinkedContexts:
    async def test_exactly_once_over_both_channels(self, linked_pair):
        top, child, store = linked_pair
        seen: list[Envelope] = []
        child.on_receive(seen.append)

        top.send(Action.ANALYZE_QUESTION, {"questionId": "q1"})
        await asyncio.sleep(0.02)

        assert len(seen) == 1
        report = child.get_report()
        assert report.by_action["analyzeQuestion"] == {"received": 1, "fallback.received": 1}
        assert top.get_report().by_action["analyzeQuestion"] == {"sent": 1, "fallback.sent": 1}

        await asyncio.sleep(0.1)
        assert len(store) == 0

    async def test_primary_only_action(self, linked_pair):
        top, child, store = linked_pair
        seen: list[Envelope] = []
        child.on_receive(seen.append)
        top.send(Action.QUESTION_ANALYZED, {"peer": "top"})
        await asyncio.sleep(0.02)
        assert len(seen) == 1
        assert child.get_report().summary["fallback.received"] == 0

    async def test_request_gets_first_pong(self, linked_pair):
        top, child, _ = linked_pair
        child.set_pong_payload(lambda: {"hasQuestions": True})
        reply = await top.request({"discoveryPing": True}, timeout=1.0)
        assert reply is not None
        assert reply.from_peer == "frame"
        assert reply.payload == {"hasQuestions": True}

    async def test_ping_over_both_channels_dispatched_once(self, linked_pair):
        top, child, _ = linked_pair
        child_seen: list[Envelope] = []
        top_seen: list[Envelope] = []
        child.on_receive(child_seen.append)
        top.on_receive(top_seen.append)

        top.ping({"discoveryPing": True})
        await asyncio.sleep(0.05)

        assert [e.action for e in child_seen] == ["ping"]
        assert [e.action for e in top_seen] == ["pong"]
        assert top.get_report().by_action["ping"] == {"sent": 1, "fallback.sent": 1}

    async def test_child_to_parent(self, linked_pair):
        top, child, _ = linked_pair
        seen: list[Envelope] = []
        top.on_receive(seen.append)
        child.send(Action.UPDATE_STATUS, {"enabled": True})
        await asyncio.sleep(0.02)
        assert [e.from_peer for e in seen] == ["frame"]

    async def test_sibling_store_reaches_unlinked_context(self, linked_pair):
        top, child, store = linked_pair
        # A same-origin context that shares only the store
        loner = MessageBus(
            make_config("loner"),
            DirectTransport(ORIGIN),
            SharedStoreTransport(store, ORIGIN, cleanup_delay=0.05),
        )
        await loner.start()
        seen: list[Envelope] = []
        loner.on_receive(seen.append)
        top.send(Action.UPDATE_STATUS, {"enabled": True})
        await asyncio.sleep(0.02)
        assert len(seen) == 1
        await loner.close()
