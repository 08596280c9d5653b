"""
tests/test_novelty.py
Watermark tracking and message id parsing.
"""

from feed.novelty import NoveltyTracker
from feed.utils import extract_message_texts, parse_message_id, snowflake_timestamp_ms


def _candidates(*ids):
    return [(str(i), {"id": str(i)}) for i in ids]


def test_parse_plain_and_prefixed_ids():
    assert parse_message_id("1234") == 1234
    assert parse_message_id(" 42 ") == 42
    assert parse_message_id("message-accessories-99", prefix="message-accessories-") == 99
    assert parse_message_id("chat-messages-99", prefix="message-accessories-") is None


def test_parse_rejects_malformed_ids():
    for bad in (None, "", "abc", "12a", "-5", "1.5", "١٢٣"):
        assert parse_message_id(bad) is None


def test_parse_keeps_full_precision_for_large_snowflakes():
    big = "1234567890123456789012"
    assert parse_message_id(big) == 1234567890123456789012
    assert parse_message_id("1234567890123456789013") > parse_message_id(big)


def test_snowflake_timestamp():
    # Example snowflake from the Discord docs: 2016-04-30 11:18:25.796 UTC.
    assert snowflake_timestamp_ms(175928847299117063) == 1462015105796


def test_initialize_seeds_without_emitting():
    tracker = NoveltyTracker()
    assert tracker.initialize(_candidates(5, 9, 7)) == 3
    assert tracker.watermark == 9
    assert tracker.poll(_candidates(5, 9, 7)) == []


def test_poll_returns_only_newer_messages_in_id_order():
    tracker = NoveltyTracker()
    tracker.initialize(_candidates(10))
    fresh = tracker.poll(_candidates(12, 9, 11, 10))
    assert [external_id for external_id, _ in fresh] == ["11", "12"]
    assert tracker.watermark == 12


def test_repoll_of_unchanged_set_is_empty():
    tracker = NoveltyTracker()
    tracker.initialize([])
    first = tracker.poll(_candidates(1, 2, 3))
    assert len(first) == 3
    assert tracker.poll(_candidates(1, 2, 3)) == []


def test_watermark_never_decreases():
    tracker = NoveltyTracker()
    history = []
    for batch in ([5], [3], [8, 2], [], [7], [100, 1]):
        tracker.poll(_candidates(*batch))
        history.append(tracker.watermark)
    assert history == [5, 5, 8, 8, 8, 100]


def test_malformed_ids_are_skipped_silently():
    tracker = NoveltyTracker()
    tracker.initialize(_candidates(1))
    fresh = tracker.poll([("oops", {}), ("2", {"id": "2"}), (None, {})])
    assert fresh == [("2", {"id": "2"})]


def test_reset_forgets_the_watermark():
    tracker = NoveltyTracker()
    tracker.initialize(_candidates(50))
    tracker.reset()
    assert tracker.watermark is None
    assert len(tracker.poll(_candidates(10))) == 1


def test_extract_message_texts_prefers_embeds_then_content():
    message = {
        "id": "1",
        "content": "hello",
        "embeds": [{"description": "first"}, {"title": "no description"}, {"description": "second"}],
    }
    assert extract_message_texts(message) == ["first", "second", "hello"]
    assert extract_message_texts({"id": "2"}) == []
    assert extract_message_texts("not a message") == []
