"""Tests for the chat manager funnel."""

import asyncio
import random

import pytest

from chat_triage.config import TriageConfig
from chat_triage.core.channels import EventBus
from chat_triage.core.logging import get_session_stats
from chat_triage.core.manager import ChatManager
from chat_triage.core.scoring import Tier
from chat_triage.events import Bits, Follow, Platform, Raid, Redemption, Subscription
from chat_triage.platforms.irc import parse_line, to_chat_message


def make_manager(config: TriageConfig, clock, bot_names=("NeuralTau",), seed: int = 0) -> ChatManager:
    return ChatManager(config, bot_names, clock=clock, rng=random.Random(seed))


class TestFilters:
    """Tests for what never reaches the queue."""

    def test_cost_control_blocks_plain_chat(self, triage_config, clock, make_chat):
        manager = make_manager(triage_config, clock)
        assert manager.ingest(make_chat("what game is this?")) is None
        assert len(manager) == 0
        assert get_session_stats().events_filtered == 1

    def test_cost_control_admits_subscribers(self, triage_config, clock, make_chat):
        manager = make_manager(triage_config, clock)
        entry = manager.ingest(make_chat("what game is this?", is_subscriber=True))
        assert entry is not None
        assert entry.tier == Tier.SUBSCRIBER_CHAT

    def test_bot_accounts_ignored(self, open_triage_config, clock, make_chat):
        manager = make_manager(open_triage_config, clock)
        assert manager.ingest(make_chat("Follow the channel!", username="Nightbot")) is None

    def test_length_bounds(self, open_triage_config, clock, make_chat):
        manager = make_manager(open_triage_config, clock)
        assert manager.ingest(make_chat("hi")) is None
        assert manager.ingest(make_chat("x" * 501)) is None
        assert manager.ingest(make_chat("hey")) is not None

    def test_blank_text_ignored(self, open_triage_config, clock, make_chat):
        manager = make_manager(open_triage_config, clock)
        assert manager.ingest(make_chat("   ")) is None
        assert get_session_stats().events_filtered == 0


class TestNotifications:
    """Tests for events that bypass the queue."""

    def test_textless_bits_forwarded(self, triage_config, clock):
        manager = make_manager(triage_config, clock)
        bits = Bits(id="b", platform=Platform.TWITCH, username="u", user_id="1", bits=100)
        assert manager.ingest(bits) is None
        assert manager.notifications.get_nowait() is bits
        assert len(manager) == 0

    def test_raid_follow_redemption_forwarded(self, triage_config, clock):
        manager = make_manager(triage_config, clock)
        events = [
            Raid(id="r", platform=Platform.TWITCH, username="Raider", user_id="2", viewer_count=50),
            Follow(id="f", platform=Platform.TWITCH, username="Fan", user_id="3"),
            Redemption(id="p", platform=Platform.TWITCH, username="P", user_id="4",
                       reward_title="Hydrate", user_input="drink water please"),
        ]
        for event in events:
            assert manager.ingest(event) is None
        assert manager.notifications.qsize() == 3
        assert len(manager) == 0

    def test_subscription_with_text_notified_and_queued(self, triage_config, clock):
        manager = make_manager(triage_config, clock)
        sub = Subscription(id="s", platform=Platform.TWITCH, username="Loyal", user_id="5",
                           months=6, message="six months already")
        entry = manager.ingest(sub)
        assert entry is not None
        assert entry.score >= Tier.DONATION
        assert manager.notifications.get_nowait() is sub

    def test_duplicate_sub_dropped(self, triage_config, clock):
        manager = make_manager(triage_config, clock)
        irc = Subscription(id="irc", platform=Platform.TWITCH, username="Loyal", user_id="5", months=6)
        eventsub = Subscription(id="es", platform=Platform.TWITCH, username="loyal", user_id="5", months=6)
        manager.ingest(irc)
        clock.advance(1)
        manager.ingest(eventsub)
        assert manager.notifications.qsize() == 1
        assert get_session_stats().duplicates_dropped == 1

    def test_cheer_over_irc_and_eventsub_selected_once(self, triage_config, clock):
        manager = make_manager(triage_config, clock)
        line = parse_line(
            "@bits=500;display-name=BigSpender;user-id=77;id=m1 "
            ":bigspender!bigspender@bigspender.tmi.twitch.tv PRIVMSG #chan :Cheer500 nice stream"
        )
        manager.ingest(to_chat_message(line))
        clock.advance(1)
        manager.ingest(Bits(id="es-1", platform=Platform.TWITCH, username="BigSpender", user_id="77",
                            bits=500, message="Cheer500 nice stream"))
        clock.advance(10)
        manager.tick()

        assert manager.selected.qsize() == 1
        assert manager.pending() == []
        assert get_session_stats().duplicates_dropped == 1


class TestSelection:
    """Tests for the selection tick."""

    def test_picks_highest_above_threshold(self, open_triage_config, clock, make_chat):
        manager = make_manager(open_triage_config, clock)
        manager.ingest(make_chat("good run"))
        manager.ingest(make_chat("how do you do that?"))
        manager.ingest(make_chat("good run", is_moderator=True))
        selected = manager.tick()
        assert selected is not None
        assert selected.event.text == "how do you do that?"
        assert selected.processed is True
        assert manager.selected.get_nowait() is selected

    def test_no_selection_below_threshold_under_cost_control(self, clock, make_chat):
        config = TriageConfig(auto_respond_threshold=500)
        manager = make_manager(config, clock)
        manager.ingest(make_chat("love it", is_subscriber=True))
        assert manager.tick() is None

    def test_random_sampling_when_cost_control_off(self, clock, make_chat):
        config = TriageConfig(
            subscribers_and_donations_only=False,
            auto_respond_threshold=500,
            random_sample_chance=1.0,
        )
        manager = make_manager(config, clock)
        for _ in range(3):
            manager.ingest(make_chat("good run"))
        assert manager.tick() is not None

    def test_random_sampling_chance_zero(self, clock, make_chat):
        config = TriageConfig(
            subscribers_and_donations_only=False,
            auto_respond_threshold=500,
            random_sample_chance=0.0,
        )
        manager = make_manager(config, clock)
        manager.ingest(make_chat("good run"))
        assert manager.tick() is None

    def test_rate_limit_gap(self, open_triage_config, clock, make_chat):
        manager = make_manager(open_triage_config, clock)
        manager.ingest(make_chat("how is this even possible?"))
        manager.ingest(make_chat("what seed is this?"))
        assert manager.tick() is not None
        clock.advance(4)
        assert manager.tick() is None
        clock.advance(4)
        assert manager.tick() is not None

    def test_high_score_triggers_immediate_tick(self, triage_config, clock):
        manager = make_manager(triage_config, clock)
        bits = Bits(id="b", platform=Platform.TWITCH, username="u", user_id="1",
                    bits=500, message="nice stream")
        entry = manager.ingest(bits)
        assert entry.processed is True
        assert manager.selected.qsize() == 1

    def test_immediate_tick_still_rate_limited(self, triage_config, clock):
        manager = make_manager(triage_config, clock)
        for n in range(3):
            manager.ingest(Bits(id=f"b{n}", platform=Platform.TWITCH, username=f"u{n}",
                                user_id=str(n), bits=500, message="nice stream"))
        assert manager.selected.qsize() == 1
        assert len(manager.pending()) == 2

    def test_stale_entries_never_selected(self, open_triage_config, clock, make_chat):
        manager = make_manager(open_triage_config, clock)
        manager.ingest(make_chat("how do you do that?"))
        clock.advance(121)
        assert manager.tick() is None

    def test_ten_high_priority_messages(self, open_triage_config, clock, make_chat):
        """At most 6 per rolling minute and never closer than 8s."""
        manager = make_manager(open_triage_config, clock)
        for n in range(10):
            manager.ingest(make_chat(f"question number {n}?"))
            clock.advance(0.5)

        times = []
        for _ in range(90):
            if manager.tick() is not None:
                times.append(clock())
            clock.advance(2)

        assert len(times) >= 6
        for i, t in enumerate(times):
            assert sum(1 for s in times if t <= s < t + 60) <= 6
            if i:
                assert t - times[i - 1] >= 8


class TestRuntime:
    def test_update_config_ignores_none(self, triage_config, clock):
        manager = make_manager(triage_config, clock)
        manager.update_config(max_responses_per_minute=2, auto_respond_threshold=None)
        assert manager.config.max_responses_per_minute == 2
        assert manager.config.auto_respond_threshold == 60

    def test_update_config_rejects_unknown(self, triage_config, clock):
        manager = make_manager(triage_config, clock)
        with pytest.raises(ValueError):
            manager.update_config(not_a_setting=1)

    def test_get_stats(self, open_triage_config, clock, make_chat):
        manager = make_manager(open_triage_config, clock)
        manager.ingest(make_chat("good run"))
        manager.ingest(make_chat("how?"))
        manager.tick()
        stats = manager.get_stats()
        assert stats["queue_size"] == 2
        assert stats["pending_count"] == 1
        assert stats["responses_last_minute"] == 1
        assert stats["priority_breakdown"] == {"RANDOM": 1}

    @pytest.mark.asyncio
    async def test_consumes_bus(self, triage_config, clock):
        manager = make_manager(triage_config, clock)
        bus = EventBus()
        manager.start(bus)
        try:
            bus.publish(Raid(id="r", platform=Platform.TWITCH, username="Raider", user_id="2"))
            event = await asyncio.wait_for(manager.notifications.get(), timeout=1)
            assert event.username == "Raider"
        finally:
            await manager.stop()
