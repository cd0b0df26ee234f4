"""Tests for applying stream events to the message list."""

from growth_chat.assembler import MessageAssembler
from growth_chat.models import Message, TextPart, ToolPart
from growth_chat.stream_decoder import TextDelta, ToolInputAvailable, ToolOutputAvailable


def open_turn(assembler: MessageAssembler) -> str:
    assembler.append(Message.user("hello"))
    return assembler.begin_turn().id


class TestTextAccumulation:
    def test_deltas_accumulate_in_one_text_part(self):
        assembler = MessageAssembler()
        open_turn(assembler)

        for delta in ("Hel", "lo", " there"):
            assembler.apply(TextDelta(delta))

        trailing = assembler.messages[-1]
        assert trailing.role == "assistant"
        assert trailing.text == "Hello there"
        assert [p for p in trailing.parts if isinstance(p, TextPart)] == [TextPart("Hello there")]

    def test_every_edit_replaces_the_trailing_object(self):
        assembler = MessageAssembler()
        open_turn(assembler)

        assembler.apply(TextDelta("a"))
        before = assembler.snapshot()
        assembler.apply(TextDelta("b"))
        after = assembler.snapshot()

        assert before[-1] is not after[-1]
        assert before[-1].text == "a"
        assert after[-1].text == "ab"
        assert before[-1].id == after[-1].id
        # Earlier messages are shared, not copied.
        assert before[0] is after[0]

    def test_text_part_stays_first_after_tool_parts(self):
        assembler = MessageAssembler()
        open_turn(assembler)

        assembler.apply(ToolInputAvailable("c1", "show_needs_chart", {"a": 1}))
        assembler.apply(TextDelta("Here is your chart"))

        parts = assembler.messages[-1].parts
        assert isinstance(parts[0], TextPart)
        assert isinstance(parts[1], ToolPart)

    def test_events_without_open_turn_are_dropped(self):
        assembler = MessageAssembler([Message.assistant("stored")])

        assert assembler.apply(TextDelta("late")) is None
        assert assembler.messages[-1].text == "stored"

    def test_closed_turn_ignores_later_events(self):
        assembler = MessageAssembler()
        open_turn(assembler)
        assembler.apply(TextDelta("done"))
        assembler.close_turn()

        assembler.apply(TextDelta(" extra"))
        assert assembler.messages[-1].text == "done"


class TestToolParts:
    def test_input_then_output_upserts_in_place(self):
        assembler = MessageAssembler()
        open_turn(assembler)

        assembler.apply(TextDelta("Let me show you."))
        assembler.apply(ToolInputAvailable("c1", "show_life_wheel", {"x": 1}))
        updated = assembler.apply(ToolOutputAvailable("c1", {"ok": True}))

        trailing = assembler.messages[-1]
        tool_parts = trailing.tool_parts()
        assert len(tool_parts) == 1
        assert tool_parts[0] == updated
        assert updated.state == "output-available"
        assert updated.output == {"ok": True}
        assert updated.input == {"x": 1}
        assert updated.type == "tool-show_life_wheel"

    def test_output_for_unknown_call_is_ignored(self):
        assembler = MessageAssembler()
        open_turn(assembler)

        assert assembler.apply(ToolOutputAvailable("missing", {})) is None
        assert assembler.messages[-1].parts == ()

    def test_replayed_output_keeps_first_output(self):
        assembler = MessageAssembler()
        open_turn(assembler)
        assembler.apply(ToolInputAvailable("c1", "hide_chart"))
        first = assembler.apply(ToolOutputAvailable("c1", "first"))

        replay = assembler.apply(ToolOutputAvailable("c1", "second"))

        assert replay == first
        assert assembler.messages[-1].find_tool_part("c1").output == "first"

    def test_duplicate_call_with_same_input_is_suppressed(self):
        assembler = MessageAssembler()
        open_turn(assembler)

        assembler.apply(ToolInputAvailable("c1", "show_needs_chart", {"scores": [1, 2]}))
        assembler.apply(ToolInputAvailable("c2", "show_needs_chart", {"scores": [1, 2]}))
        assembler.apply(ToolInputAvailable("c3", "show_needs_chart", {"scores": [3]}))

        ids = [p.tool_call_id for p in assembler.messages[-1].tool_parts()]
        assert ids == ["c1", "c3"]

    def test_inputs_that_differ_only_in_json_type_are_not_duplicates(self):
        assembler = MessageAssembler()
        open_turn(assembler)

        assembler.apply(ToolInputAvailable("c1", "show_needs_chart", {"v": True}))
        assembler.apply(ToolInputAvailable("c2", "show_needs_chart", {"v": 1}))
        assembler.apply(ToolInputAvailable("c3", "show_needs_chart", {"v": True}))

        ids = [p.tool_call_id for p in assembler.messages[-1].tool_parts()]
        assert ids == ["c1", "c2"]

    def test_reannounced_input_updates_pending_call(self):
        assembler = MessageAssembler()
        open_turn(assembler)

        assembler.apply(ToolInputAvailable("c1", "request_slider", {"fields": []}))
        assembler.apply(ToolInputAvailable("c1", "request_slider", {"fields": [{"name": "Love"}]}))

        parts = assembler.messages[-1].tool_parts()
        assert len(parts) == 1
        assert parts[0].input == {"fields": [{"name": "Love"}]}


class TestHistory:
    def test_append_only_history(self):
        assembler = MessageAssembler()
        first_turn = open_turn(assembler)
        assembler.apply(TextDelta("one"))
        assembler.close_turn()

        assembler.append(Message.user("again"))
        second_turn = assembler.begin_turn().id
        assembler.apply(TextDelta("two"))

        messages = assembler.messages
        assert [m.role for m in messages] == ["user", "assistant", "user", "assistant"]
        assert messages[1].id == first_turn
        assert messages[1].text == "one"
        assert messages[3].id == second_turn
        assert messages[3].text == "two"

    def test_messages_returns_a_copy(self):
        assembler = MessageAssembler()
        assembler.messages.append(Message.user("sneaky"))
        assert assembler.messages == []

    def test_replace_all_closes_turn(self):
        assembler = MessageAssembler()
        open_turn(assembler)

        assembler.replace_all([Message.user("stored")])

        assert assembler.open_message_id is None
        assert assembler.apply(TextDelta("x")) is None
        assert [m.text for m in assembler.messages] == ["stored"]
