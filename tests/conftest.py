import json

import httpx
import pytest

from growth_chat.events import EventBus


def sse(*payloads) -> bytes:
    """Encode payloads as ``data:`` lines; strings are written verbatim."""
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n")
    return "".join(lines).encode()


def text_delta(delta: str) -> dict:
    return {"type": "text-delta", "delta": delta}


def tool_input(tool_call_id: str, tool_name: str, input=None) -> dict:
    return {
        "type": "tool-input-available",
        "toolCallId": tool_call_id,
        "toolName": tool_name,
        "input": input if input is not None else {},
    }


def tool_output(tool_call_id: str, output=None) -> dict:
    return {"type": "tool-output-available", "toolCallId": tool_call_id, "output": output}


class EventRecorder:
    """Bus listener that keeps every published event."""

    def __init__(self, bus: EventBus):
        self.events = []
        bus.subscribe(self.events.append)

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus) -> EventRecorder:
    return EventRecorder(bus)


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=10)
