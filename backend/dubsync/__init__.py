"""DubSync: subscription sync and automated video dubbing orchestration."""

__version__ = "0.1.0"
