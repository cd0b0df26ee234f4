"""Growth Tools chat client: streaming conversation, voice input and spoken replies."""

__version__ = "0.1.0"
