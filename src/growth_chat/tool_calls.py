"""Tool call lifecycle tracking and the one-time side effects gated on it."""

import logging
from dataclasses import dataclass
from typing import Any, Callable

from .clients import ArtifactSink
from .events import ChartHidden, EventBus
from .models import ToolCallRecord, ToolPart

logger = logging.getLogger(__name__)

# Tool name -> (artifact type, artifact title)
ARTIFACT_TOOLS: dict[str, tuple[str, str]] = {
    "show_needs_chart": ("needs-chart", "Needs Assessment"),
    "show_life_wheel": ("life-wheel", "6 Human Needs Assessment"),
}
HIDE_CHART_TOOL = "hide_chart"
SLIDER_TOOL = "request_slider"

DEFAULT_SLIDER_VALUE = 50


class ToolCallTracker:
    """Idempotency gate keyed by tool call id.

    One tracker lives for the lifetime of a chat session; records are never
    dropped, so a replayed or duplicated event can never fire a side effect twice.
    """

    def __init__(self):
        self._records: dict[str, ToolCallRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, tool_call_id: str) -> bool:
        return tool_call_id in self._records

    @property
    def records(self) -> dict[str, ToolCallRecord]:
        return dict(self._records)

    def observe(self, tool_call_id: str, tool_name: str = "") -> bool:
        """Check-and-set the handled flag for a tool call.

        Args:
            tool_call_id: Tool call id
            tool_name: Tool name, recorded for diagnostics

        Returns:
            True the first time the id is observed, False on every later call
        """
        record = self._records.get(tool_call_id)
        if record is not None and record.handled:
            return False
        self._records[tool_call_id] = ToolCallRecord(
            tool_call_id=tool_call_id, tool_name=tool_name, handled=True
        )
        return True

    def is_handled(self, tool_call_id: str) -> bool:
        record = self._records.get(tool_call_id)
        return record is not None and record.handled


@dataclass
class SliderField:
    """One slider of a ``request_slider`` tool call."""

    name: str
    min: float = 0
    max: float = 100
    step: float = 1
    default_value: float | None = None
    labels: tuple[str, str] | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "SliderField":
        labels = data.get("labels")
        return cls(
            name=data["name"],
            min=data.get("min", 0),
            max=data.get("max", 100),
            step=data.get("step", 1),
            default_value=data.get("defaultValue"),
            labels=tuple(labels[:2]) if labels else None,
        )


def slider_fields(part: ToolPart) -> list[SliderField]:
    """Fields of a ``request_slider`` part's input."""
    fields = (part.input or {}).get("fields", []) if isinstance(part.input, dict) else []
    return [SliderField.from_dict(f) for f in fields if isinstance(f, dict) and "name" in f]


def format_slider_response(fields: list[SliderField], values: dict[str, float]) -> str:
    """Render submitted slider values as the user's reply, e.g. ``"Certainty: 70, Variety: 40"``."""
    rendered = []
    for f in fields:
        value = values.get(f.name)
        if value is None:
            value = f.default_value if f.default_value is not None else DEFAULT_SLIDER_VALUE
        rendered.append(f"{f.name}: {format_number(value)}")
    return ", ".join(rendered)


def format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class ToolEffects:
    """Runs the side effects attached to completed tool calls, at most once each."""

    def __init__(
        self,
        session_id: str,
        tracker: ToolCallTracker,
        bus: EventBus,
        artifact_sink: ArtifactSink | None = None,
        is_authenticated: Callable[[], bool] = lambda: False,
        exercise_id: str = "",
    ):
        self.session_id = session_id
        self.tracker = tracker
        self.bus = bus
        self.artifact_sink = artifact_sink
        self.is_authenticated = is_authenticated
        self.exercise_id = exercise_id

    async def on_tool_output(self, part: ToolPart) -> bool:
        """Handle a tool part that reached output-available.

        Returns:
            True if a side effect fired for this call
        """
        if part.tool_name in ARTIFACT_TOOLS:
            # Anonymous users have nowhere to keep artifacts; leave the call unhandled.
            if self.artifact_sink is None or not self.is_authenticated():
                return False
            if not self.tracker.observe(part.tool_call_id, part.tool_name):
                return False
            artifact_type, title = ARTIFACT_TOOLS[part.tool_name]
            self.artifact_sink.save(
                chat_id=self.session_id,
                exercise_id=self.exercise_id,
                artifact_type=artifact_type,
                title=title,
                data=part.input,
            )
            return True

        if part.tool_name == HIDE_CHART_TOOL:
            if not self.tracker.observe(part.tool_call_id, part.tool_name):
                return False
            await self.bus.publish(
                ChartHidden(session_id=self.session_id, tool_call_id=part.tool_call_id)
            )
            return True

        return False

    def claim_slider(self, tool_call_id: str) -> bool:
        """Gate a slider submission; True only for the first submission of a call."""
        claimed = self.tracker.observe(tool_call_id, SLIDER_TOOL)
        if not claimed:
            logger.info(f"Slider {tool_call_id} already submitted")
        return claimed
