"""Tests for notification de-duplication."""

from chat_triage.core.dedup import NotificationDeduplicator, dedup_key
from chat_triage.events import Bits, ChatMessage, Platform, Raid, Subscription


def sub(username: str = "Loyal", months: int = 3, is_gift: bool = False, event_id: str = "a") -> Subscription:
    return Subscription(id=event_id, platform=Platform.TWITCH, username=username,
                        user_id="1", months=months, is_gift=is_gift)


class TestDedupKey:
    def test_subscription_key(self):
        assert dedup_key(sub()) == ("subscription", "loyal", "months:3")

    def test_gift_key_ignores_gifter(self):
        irc = Subscription(id="irc", platform=Platform.TWITCH, username="Lucky", user_id="9",
                           is_gift=True, gifter_name="Gifter")
        eventsub = Subscription(id="es", platform=Platform.TWITCH, username="lucky", user_id="9",
                                is_gift=True)
        assert dedup_key(irc) == dedup_key(eventsub)

    def test_raid_key(self):
        raid = Raid(id="r", platform=Platform.TWITCH, username="Raider", user_id="2", viewer_count=5)
        assert dedup_key(raid) == ("raid", "raider", "")

    def test_cheer_key_shared_by_both_transports(self):
        irc = ChatMessage(id="m1", platform=Platform.TWITCH, username="BigSpender", user_id="77",
                          message="Cheer500 nice stream", bits=500)
        eventsub = Bits(id="es-1", platform=Platform.TWITCH, username="bigspender", user_id="77",
                        bits=500, message="Cheer500 nice stream")
        assert dedup_key(irc) == dedup_key(eventsub) == ("bits", "bigspender", "500")

    def test_plain_chat_has_no_key(self):
        chat = ChatMessage(id="m2", platform=Platform.TWITCH, username="u", user_id="1", message="hi there")
        assert dedup_key(chat) is None


class TestNotificationDeduplicator:
    def test_same_sub_from_two_transports(self):
        dedup = NotificationDeduplicator(window=30)
        assert dedup.is_duplicate(sub(event_id="irc-1"), now=0) is False
        assert dedup.is_duplicate(sub(username="loyal", event_id="eventsub-1"), now=2) is True

    def test_window_expiry(self):
        dedup = NotificationDeduplicator(window=30)
        dedup.is_duplicate(sub(), now=0)
        assert dedup.is_duplicate(sub(), now=31) is False

    def test_different_months_not_duplicate(self):
        dedup = NotificationDeduplicator(window=30)
        dedup.is_duplicate(sub(months=3), now=0)
        assert dedup.is_duplicate(sub(months=4), now=1) is False

    def test_unkeyed_events_never_duplicate(self):
        dedup = NotificationDeduplicator(window=30)
        chat = ChatMessage(id="c", platform=Platform.TWITCH, username="u", user_id="1", message="hello")
        assert dedup.is_duplicate(chat, now=0) is False
        assert dedup.is_duplicate(chat, now=0) is False
        assert len(dedup) == 0

    def test_zero_window_disables(self):
        dedup = NotificationDeduplicator(window=0)
        dedup.is_duplicate(sub(), now=0)
        assert dedup.is_duplicate(sub(), now=0) is False
