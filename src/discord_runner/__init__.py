"""discord-runner — shared Discord gateway session runner."""

__version__ = "0.1.0"
