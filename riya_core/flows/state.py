"""State definition for the reply graph."""

from __future__ import annotations

from typing import List, Optional, TypedDict

from riya_core.domain.models import CompletionRequest, LlmMessage


class ReplyState(TypedDict, total=False):
    """State shared across LangGraph nodes."""

    request: CompletionRequest
    session_id: str
    is_guest: bool
    user_messages: List[str]
    history: List[LlmMessage]
    system_prompt: str
    is_pro: bool
    used: int
    remaining: Optional[int]
    limited: bool
    resets_at: Optional[str]
    raw_reply: str
    replies: List[str]
