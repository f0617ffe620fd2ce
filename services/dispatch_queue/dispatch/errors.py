"""Exception types raised by the dispatch engine.

``ConfigurationError`` covers expected steady-state misconfiguration (a
retired number still receiving texts, an unknown talkgroup). The worker logs
and drops these instead of retrying. Anything else that escapes a handler is
treated as a dependency failure and retried.
"""
from __future__ import annotations


class DispatchError(Exception):
    """Base class for dispatch engine errors."""


class ConfigurationError(DispatchError):
    """Unknown sending identity, department, channel or talkgroup."""


class UnknownActionError(ConfigurationError):
    """Queue event carried an ``action`` no handler is registered for."""

    def __init__(self, action: object) -> None:
        super().__init__(f"Unknown queue action: {action!r}")
        self.action = action


class RejectedMessage(DispatchError):
    """Business-rule rejection; ``reply`` is what the sender should see."""

    def __init__(self, reply: str) -> None:
        super().__init__(reply)
        self.reply = reply


class ProviderError(DispatchError):
    """The delivery provider rejected or failed a single send."""

    def __init__(self, message: str, code: object = None) -> None:
        super().__init__(message)
        self.code = code
