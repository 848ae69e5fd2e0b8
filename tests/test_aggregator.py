"""Tests for message aggregation."""

import json

from sselink.session.aggregator import (
    ConnectionContext,
    Message,
    MessageKind,
    merge,
)
from sselink.stream.sse_parser import FrameSplitter, parse_frame


def _ai(state, content):
    return {"event": "ai_message", "data": {"state": state, "content": content}}


def _fold(*envelopes, context=None):
    context = context or ConnectionContext()
    for envelope in envelopes:
        context = merge(context, envelope)
    return context


class TestStreamingReply:
    def test_start_appends(self):
        ctx = _fold(_ai("start", "A"))
        assert len(ctx.messages) == 1
        assert ctx.messages[0].event is MessageKind.AI_MESSAGE
        assert ctx.messages[0].content == "A"

    def test_processing_concatenates_in_place(self):
        ctx = _fold(_ai("start", "A"), _ai("processing", "B"), _ai("processing", "C"))
        assert len(ctx.messages) == 1
        assert ctx.messages[0].content == "ABC"

    def test_end_does_not_duplicate_content(self):
        ctx = _fold(_ai("start", "A"), _ai("processing", "B"), _ai("end", "B"))
        assert len(ctx.messages) == 1
        assert ctx.messages[0].content == "AB"
        assert ctx.messages[0].data["state"] == "end"

    def test_processing_after_end_opens_new_reply(self):
        ctx = _fold(_ai("start", "A"), _ai("end", ""), _ai("processing", "X"))
        assert [m.content for m in ctx.messages] == ["A", "X"]

    def test_processing_without_start_appends(self):
        ctx = _fold(_ai("processing", "X"))
        assert len(ctx.messages) == 1
        assert ctx.messages[0].content == "X"

    def test_end_without_open_reply_is_noop(self):
        ctx = _fold({"event": "human_message", "data": {"text": "hi"}}, _ai("end", "Z"))
        assert len(ctx.messages) == 1

    def test_second_start_opens_second_entry(self):
        ctx = _fold(_ai("start", "A"), _ai("start", "B"), _ai("processing", "C"))
        assert [m.content for m in ctx.messages] == ["A", "BC"]

    def test_wire_round_trip(self):
        raw = (
            'event: ai_message\ndata: {"state":"start","content":"A"}\n\n'
            'event: ai_message\ndata: {"state":"processing","content":"B"}\n\n'
        )
        ctx = ConnectionContext()
        for block in FrameSplitter().feed(raw):
            ctx = merge(ctx, parse_frame(block).envelope())
        assert len(ctx.messages) == 1
        assert ctx.messages[0].content == "AB"

    def test_stateless_ai_message_appended_whole(self):
        ctx = _fold({"event": "ai_message", "data": {"content": "full"}})
        assert ctx.messages[0].content == "full"


class TestSingleShot:
    def test_human_message_appended(self):
        ctx = _fold({"event": "human_message", "data": {"text": "hi"}})
        assert ctx.messages == (Message(MessageKind.HUMAN_MESSAGE, {"text": "hi"}),)

    def test_human_message_does_not_touch_open_reply(self):
        ctx = _fold(_ai("start", "A"), {"event": "human_message", "data": {"text": "hi"}})
        assert len(ctx.messages) == 2
        assert ctx.messages[0].content == "A"


class TestJourney:
    def test_json_string_decoded(self):
        itinerary = {"flightNumber": "CA1234", "gate": "A12"}
        ctx = _fold({"event": "journey", "data": json.dumps(itinerary)})
        assert ctx.messages[0].event is MessageKind.JOURNEY
        assert ctx.messages[0].data == itinerary

    def test_already_decoded_object_kept(self):
        ctx = _fold({"event": "journey", "data": {"gate": "B8"}})
        assert ctx.messages[0].data == {"gate": "B8"}

    def test_undecodable_string_dropped(self):
        ctx = _fold({"event": "journey", "data": "{broken"})
        assert ctx.messages == ()


class TestPassThrough:
    def test_unknown_event_unchanged(self):
        before = _fold(_ai("start", "A"))
        after = merge(before, {"event": "heartbeat", "data": {"t": 1}})
        assert after is before

    def test_missing_event_unchanged(self):
        before = ConnectionContext()
        assert merge(before, {"event": None, "data": "x"}) is before

    def test_non_object_ai_payload_unchanged(self):
        before = ConnectionContext()
        assert merge(before, {"event": "ai_message", "data": "text"}) is before


class TestPurity:
    def test_input_context_not_mutated(self):
        before = _fold(_ai("start", "A"))
        merge(before, _ai("processing", "B"))
        assert before.messages[0].content == "A"

    def test_retry_fields_preserved(self):
        ctx = _fold(_ai("start", "A"), context=ConnectionContext(retry_count=2))
        assert ctx.retry_count == 2

    def test_log_only_grows(self):
        envelopes = [
            _ai("start", "A"),
            _ai("processing", "B"),
            {"event": "human_message", "data": {"text": "q"}},
            _ai("end", ""),
            {"event": "journey", "data": "{}"},
        ]
        ctx = ConnectionContext()
        sizes = []
        for envelope in envelopes:
            ctx = merge(ctx, envelope)
            sizes.append(len(ctx.messages))
        assert sizes == sorted(sizes)
