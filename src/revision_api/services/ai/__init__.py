from __future__ import annotations

from .agents import AgentConfiguration, RevisionNoteAgent
from .clients import GeminiClientError, GeminiGenerativeClient, GenerativeClient
from .prompts import REVISION_NOTE_SYSTEM_PROMPT

__all__ = [
    "AgentConfiguration",
    "GeminiClientError",
    "GeminiGenerativeClient",
    "GenerativeClient",
    "REVISION_NOTE_SYSTEM_PROMPT",
    "RevisionNoteAgent",
]
