"""Command, configuration and Lima/nerdctl config helpers for a Lima-based container VM."""

__version__ = "0.1.0"
__all__ = ["command", "lima", "units", "config", "lima_config", "nerdctl_config"]