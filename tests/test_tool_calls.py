"""Tests for tool call idempotency and tool side effects."""

import json

import httpx
import pytest

from conftest import mock_client
from growth_chat.clients import ArtifactSink
from growth_chat.events import ChartHidden
from growth_chat.models import ToolPart
from growth_chat.tool_calls import (
    SliderField,
    ToolCallTracker,
    ToolEffects,
    format_slider_response,
    slider_fields,
)


def completed(tool_call_id: str, tool_name: str, input=None) -> ToolPart:
    return ToolPart(tool_call_id, tool_name, input=input or {}).with_output({"ok": True})


class ArtifactRecorder:
    def __init__(self):
        self.bodies: list[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"id": f"artifact-{len(self.bodies)}"})


@pytest.fixture
def artifacts():
    recorder = ArtifactRecorder()
    sink = ArtifactSink("http://test/api/apps/growth-tools/artifacts", mock_client(recorder.handler))
    return recorder, sink


class TestToolCallTracker:
    def test_observe_is_true_once(self):
        tracker = ToolCallTracker()
        assert tracker.observe("c1", "hide_chart") is True
        assert tracker.observe("c1", "hide_chart") is False
        assert tracker.observe("c1") is False
        assert tracker.is_handled("c1")
        assert "c1" in tracker
        assert len(tracker) == 1

    def test_ids_are_independent(self):
        tracker = ToolCallTracker()
        assert tracker.observe("c1")
        assert tracker.observe("c2")
        assert not tracker.is_handled("c3")

    def test_records_are_copies(self):
        tracker = ToolCallTracker()
        tracker.observe("c1", "show_life_wheel")
        records = tracker.records
        records.clear()
        assert tracker.records["c1"].tool_name == "show_life_wheel"


class TestArtifactEffects:
    @pytest.mark.asyncio
    async def test_artifact_saved_once_for_signed_in_user(self, bus, artifacts):
        recorder, sink = artifacts
        effects = ToolEffects(
            session_id="chat-1",
            tracker=ToolCallTracker(),
            bus=bus,
            artifact_sink=sink,
            is_authenticated=lambda: True,
            exercise_id="needs-assessment",
        )
        part = completed("c1", "show_needs_chart", {"scores": {"Love": 8}})

        assert await effects.on_tool_output(part) is True
        assert await effects.on_tool_output(part) is False
        await sink.close()

        assert recorder.bodies == [
            {
                "chatId": "chat-1",
                "exerciseId": "needs-assessment",
                "type": "needs-chart",
                "title": "Needs Assessment",
                "data": {"scores": {"Love": 8}},
            }
        ]

    @pytest.mark.asyncio
    async def test_life_wheel_artifact_title(self, bus, artifacts):
        recorder, sink = artifacts
        effects = ToolEffects("chat-1", ToolCallTracker(), bus, sink, lambda: True)

        await effects.on_tool_output(completed("c9", "show_life_wheel"))
        await sink.close()

        assert recorder.bodies[0]["type"] == "life-wheel"
        assert recorder.bodies[0]["title"] == "6 Human Needs Assessment"

    @pytest.mark.asyncio
    async def test_anonymous_user_saves_nothing_and_call_stays_unhandled(self, bus, artifacts):
        recorder, sink = artifacts
        tracker = ToolCallTracker()
        effects = ToolEffects("chat-1", tracker, bus, sink, is_authenticated=lambda: False)

        assert await effects.on_tool_output(completed("c1", "show_needs_chart")) is False
        await sink.close()

        assert recorder.bodies == []
        assert not tracker.is_handled("c1")

    @pytest.mark.asyncio
    async def test_artifact_failure_is_logged_not_raised(self, bus, caplog):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        sink = ArtifactSink("http://test/artifacts", mock_client(handler))
        effects = ToolEffects("chat-1", ToolCallTracker(), bus, sink, lambda: True)

        assert await effects.on_tool_output(completed("c1", "show_needs_chart")) is True
        await sink.close()

        assert "Artifact save failed" in caplog.text


class TestHideChart:
    @pytest.mark.asyncio
    async def test_hide_chart_publishes_once(self, bus, recorder):
        effects = ToolEffects("chat-1", ToolCallTracker(), bus)
        part = completed("h1", "hide_chart")

        await effects.on_tool_output(part)
        await effects.on_tool_output(part)

        assert recorder.of_type(ChartHidden) == [ChartHidden(session_id="chat-1", tool_call_id="h1")]

    @pytest.mark.asyncio
    async def test_tools_without_effects_are_not_tracked(self, bus):
        tracker = ToolCallTracker()
        effects = ToolEffects("chat-1", tracker, bus)

        assert await effects.on_tool_output(completed("s1", "request_slider")) is False
        assert len(tracker) == 0


class TestSlider:
    def test_claim_slider_only_once(self, bus):
        effects = ToolEffects("chat-1", ToolCallTracker(), bus)
        assert effects.claim_slider("s1") is True
        assert effects.claim_slider("s1") is False

    def test_slider_fields_from_input(self):
        part = ToolPart(
            "s1",
            "request_slider",
            input={
                "fields": [
                    {"name": "Certainty", "min": 0, "max": 10, "defaultValue": 5, "labels": ["Low", "High"]},
                    {"name": "Variety"},
                    {"min": 3},
                ]
            },
        )

        fields = slider_fields(part)

        assert fields == [
            SliderField("Certainty", min=0, max=10, default_value=5, labels=("Low", "High")),
            SliderField("Variety"),
        ]

    def test_format_slider_response_uses_defaults(self):
        fields = [SliderField("Certainty", default_value=30), SliderField("Variety"), SliderField("Love")]
        values = {"Certainty": 70.0, "Love": 12.5}

        assert format_slider_response(fields, values) == "Certainty: 70, Variety: 50, Love: 12.5"
