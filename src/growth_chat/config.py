"""Growth chat configuration loader."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class EndpointConfig:
    """Backend routes, relative to the base URL."""

    chat: str = "/api/apps/growth-tools/chat"
    transcribe: str = "/api/apps/growth-tools/transcribe"
    speak: str = "/api/apps/growth-tools/speak"
    artifacts: str = "/api/apps/growth-tools/artifacts"
    chats: str = "/api/chats"


@dataclass
class GrowthChatConfig:
    """Main configuration for the chat client."""

    base_url: str = "http://localhost:3000"
    exercise: str = "needs-assessment"

    endpoints: EndpointConfig = field(default_factory=EndpointConfig)

    # Speech output
    voice: str | None = None
    voice_settings: dict[str, Any] = field(default_factory=dict)
    auto_play: bool = True
    auto_play_delay: float = 0.1

    # Speech input
    input_sample_rate: int = 16000

    # Anonymous users keep chats on disk
    local_store_path: str = ".growth-chat/chats.json"

    # Raise on undecodable stream lines instead of skipping them
    strict_decoding: bool = False

    @classmethod
    def load(cls, config_path: str = ".growth-chat/config.yaml") -> "GrowthChatConfig":
        """Load config from YAML file.

        Args:
            config_path: Path to config file (relative or absolute)

        Returns:
            Loaded configuration, or defaults when the file does not exist
        """
        path = Path(config_path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        defaults = EndpointConfig()
        endpoint_data = data.get("endpoints", {}) or {}
        endpoints = EndpointConfig(
            chat=endpoint_data.get("chat", defaults.chat),
            transcribe=endpoint_data.get("transcribe", defaults.transcribe),
            speak=endpoint_data.get("speak", defaults.speak),
            artifacts=endpoint_data.get("artifacts", defaults.artifacts),
            chats=endpoint_data.get("chats", defaults.chats),
        )

        # Parse voice config
        voice_data = data.get("voice", {}) or {}

        return cls(
            base_url=data.get("base_url", "http://localhost:3000"),
            exercise=data.get("exercise", "needs-assessment"),
            endpoints=endpoints,
            voice=voice_data.get("id"),
            voice_settings=voice_data.get("settings", {}) or {},
            auto_play=voice_data.get("auto_play", True),
            auto_play_delay=voice_data.get("auto_play_delay", 0.1),
            input_sample_rate=voice_data.get("input_sample_rate", 16000),
            local_store_path=data.get("local_store_path", ".growth-chat/chats.json"),
            strict_decoding=data.get("strict_decoding", False),
        )

    def url(self, endpoint: str) -> str:
        """Build an absolute URL for a configured endpoint.

        Args:
            endpoint: Endpoint name (chat, transcribe, speak, artifacts, chats)

        Returns:
            URL string
        """
        path = getattr(self.endpoints, endpoint)
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
