from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

from dispatch.config import Settings
from dispatch.directory import Directory
from dispatch.dispatcher import Dispatcher
from dispatch.store import Store
from dispatch.transcribe import TranscriptSource


# Metric label for sends triggered from queue events
SOURCE = "queue"


class Publisher(Protocol):
    async def publish(self, event: Mapping[str, Any]) -> None: ...


@dataclass
class DispatchContext:
    """Collaborators shared by every event handler in one worker process."""
    settings: Settings
    store: Store
    directory: Directory
    dispatcher: Dispatcher
    publisher: Optional[Publisher] = None
    transcripts: Optional[TranscriptSource] = None
