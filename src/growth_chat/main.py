"""Console entry point for the Growth Tools chat client."""

import argparse
import asyncio
import logging
import sys

from .clients import ArtifactSink, SpeechClient, TranscriptionClient
from .config import GrowthChatConfig
from .events import ChartHidden, EventBus, MessagesChanged, Notification, StatusChanged
from .models import ToolPart
from .persistence import LocalChatStore, PersistenceBridge, RemoteChatStore
from .playback import PlaybackController
from .session import ChatSession, SessionController
from .tool_calls import SLIDER_TOOL, SliderField, ToolEffects, format_number, slider_fields
from .voice_capture import VoiceCaptureController

SLIDER_USAGE = "Usage: /slider ID name=value,name=value"

HELP = """Commands:
  /rec              start recording; /rec again to stop and send
  /play             play or stop the last reply
  /slider ID k=v,.. answer a slider question
  /quit             exit
Anything else is sent as a message."""


class ConsoleView:
    """Prints streamed text, tool activity and notifications to stdout."""

    def __init__(self):
        self._printed: dict[str, int] = {}
        self._shown_tools: set[tuple[str, str]] = set()
        self._described: set[str] = set()

    def on_event(self, event) -> None:
        if isinstance(event, MessagesChanged):
            self._print_trailing(event)
        elif isinstance(event, StatusChanged):
            if event.current in ("ready", "error") and event.previous == "streaming":
                print()
            if event.current == "error":
                print("[error] The response failed. Try again.")
        elif isinstance(event, Notification):
            print(f"\n[{event.level}] {event.title}" + (f": {event.description}" if event.description else ""))
        elif isinstance(event, ChartHidden):
            print("\n[chart hidden]")

    def _print_trailing(self, event: MessagesChanged) -> None:
        if not event.messages or event.messages[-1].role != "assistant":
            return
        message = event.messages[-1]
        text = message.text
        printed = self._printed.get(message.id, 0)
        if len(text) > printed:
            print(text[printed:], end="", flush=True)
            self._printed[message.id] = len(text)

        for part in message.tool_parts():
            self._print_tool(part)

    def _print_tool(self, part: ToolPart) -> None:
        key = (part.tool_call_id, part.state)
        if key in self._shown_tools:
            return
        self._shown_tools.add(key)
        if part.is_complete:
            print(f"\n[{part.tool_name} ready: {part.tool_call_id}]")
        else:
            print(f"\n[{part.tool_name}...]")

        if part.tool_name == SLIDER_TOOL and part.tool_call_id not in self._described:
            self._described.add(part.tool_call_id)
            print(f"  Answer with /slider {part.tool_call_id} name=value,...")
            for f in slider_fields(part):
                print(f"  {describe_slider(f)}")


def describe_slider(f: SliderField) -> str:
    """One-line summary of a slider, e.g. ``"Certainty 0-10 (default 5) Low..High"``."""
    text = f"{f.name} {format_number(f.min)}-{format_number(f.max)}"
    if f.step != 1:
        text += f" step {format_number(f.step)}"
    if f.default_value is not None:
        text += f" (default {format_number(f.default_value)})"
    if f.labels:
        text += f" {f.labels[0]}..{f.labels[1]}"
    return text


def parse_slider_values(raw: str) -> dict[str, float]:
    """Parse ``"Certainty=70,Variety=40"`` into a values dict.

    Raises:
        ValueError: A value is not a number
    """
    values: dict[str, float] = {}
    for item in raw.split(","):
        if "=" not in item:
            continue
        name, value = item.split("=", 1)
        try:
            values[name.strip()] = float(value)
        except ValueError:
            raise ValueError(f"{name.strip()}: {value.strip()!r} is not a number") from None
    return values


async def submit_slider_command(controller: SessionController, line: str) -> str | None:
    """Handle ``/slider ID name=value,...``.

    Returns:
        A message to show the user, or None when the answer was sent
    """
    parts = line.split(maxsplit=2)
    if len(parts) < 2:
        return SLIDER_USAGE
    tool_call_id = parts[1]
    try:
        values = parse_slider_values(parts[2] if len(parts) > 2 else "")
    except ValueError as e:
        return f"{e}\n{SLIDER_USAGE}"
    if not await controller.submit_slider(tool_call_id, values):
        return "Slider not found or already submitted"
    return None


async def run_chat(
    config: GrowthChatConfig,
    chat_id: str | None = None,
    user_id: str | None = None,
    voice_enabled: bool = True,
) -> None:
    """Run an interactive chat session on the console.

    Args:
        config: Loaded configuration
        chat_id: Existing chat to resume; a new chat is created when omitted
        user_id: Signed-in user id (email); anonymous when omitted
        voice_enabled: Use the microphone and speakers
    """
    bus = EventBus()
    view = ConsoleView()
    bus.subscribe(view.on_event)

    persistence = PersistenceBridge(
        local=LocalChatStore(config.local_store_path),
        remote=RemoteChatStore(config.url("chats")),
    )
    await persistence.on_auth_changed(user_id)

    session = ChatSession(exercise=config.exercise)
    if chat_id:
        session.id = chat_id

    artifacts = ArtifactSink(config.url("artifacts"))
    effects = ToolEffects(
        session_id=session.id,
        tracker=session.tracker,
        bus=bus,
        artifact_sink=artifacts,
        is_authenticated=lambda: persistence.is_authenticated,
        exercise_id=config.exercise,
    )
    controller = SessionController(
        session,
        chat_url=config.url("chat"),
        bus=bus,
        effects=effects,
        strict_decoding=config.strict_decoding,
    )
    persistence.attach(bus, session)

    if chat_id:
        history = await persistence.hydrate(chat_id)
        await controller.hydrate(history)
        print(f"Resumed chat {chat_id} ({len(history)} messages)")

    playback = None
    voice = None
    speech = SpeechClient(config.url("speak"))
    transcriber = TranscriptionClient(config.url("transcribe"))
    if voice_enabled:
        from .audio import create_audio_devices

        capture, output = create_audio_devices("local", sample_rate=config.input_sample_rate)
        playback = PlaybackController(
            output,
            speech,
            bus=bus,
            messages=lambda: session.messages,
            voice=config.voice,
            voice_settings=config.voice_settings,
            auto_play=config.auto_play,
            auto_play_delay=config.auto_play_delay,
        )
        bus.subscribe(playback.on_status_changed, StatusChanged)
        voice = VoiceCaptureController(
            capture, transcriber, send=controller.send, bus=bus, playback=playback
        )

    print(f"Chat {session.id} ({config.exercise}). Type /help for commands.")
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "\n> ")
            except EOFError:
                break
            line = line.strip()
            if not line:
                continue

            if line in ("/quit", "/exit"):
                break
            if line == "/help":
                print(HELP)
            elif line == "/rec":
                if voice is None:
                    print("Voice is disabled")
                elif voice.state == "recording":
                    await voice.stop_recording()
                else:
                    await voice.start_recording()
                    print("Recording... type /rec to stop")
            elif line == "/play":
                last = controller.last_assistant_message()
                if playback is None or last is None or not last.text:
                    print("Nothing to play")
                else:
                    await playback.toggle(last.id, last.text)
            elif line == "/slider" or line.startswith("/slider "):
                message = await submit_slider_command(controller, line)
                if message:
                    print(message)
            else:
                await controller.send(line)
    finally:
        if playback:
            await playback.close()
        await artifacts.close()
        await controller.close()
        await speech.close()
        await transcriber.close()
        if persistence.remote:
            await persistence.remote.close()


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Growth Tools chat client")
    parser.add_argument(
        "--config",
        default=".growth-chat/config.yaml",
        help="Path to config file (default: .growth-chat/config.yaml)",
    )
    parser.add_argument("--chat-id", default=None, help="Resume an existing chat")
    parser.add_argument("--user", default=None, help="Signed-in user id (email)")
    parser.add_argument("--base-url", default=None, help="Override the backend base URL")
    parser.add_argument("--exercise", default=None, help="Override the exercise id")
    parser.add_argument("--no-voice", action="store_true", help="Disable microphone and speech")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = GrowthChatConfig.load(args.config)
    if args.base_url:
        config.base_url = args.base_url
    if args.exercise:
        config.exercise = args.exercise

    try:
        asyncio.run(
            run_chat(
                config,
                chat_id=args.chat_id,
                user_id=args.user,
                voice_enabled=not args.no_voice,
            )
        )
    except KeyboardInterrupt:
        print("\nBye")
        sys.exit(0)


if __name__ == "__main__":
    main()
