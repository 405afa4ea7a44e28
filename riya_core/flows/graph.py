"""LangGraph construction and node implementations for the reply pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from riya_core.chat.greetings import next_midnight_ist, to_ist
from riya_core.config.settings import Settings, settings
from riya_core.domain.conversation import ConversationStore, GuestSessionStore, UserStore
from riya_core.domain.exceptions import ApiError
from riya_core.domain.models import ChatRequest, LlmMessage
from riya_core.flows.reply_parser import parse_reply
from riya_core.flows.state import ReplyState
from riya_core.infrastructure.logging.logger import logger
from riya_core.persona.prompts import build_guest_prompt, build_system_prompt
from riya_core.providers.base import ProviderClient


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReplyDeps:
    """节点运行所需的外部依赖。"""

    conversation_store: ConversationStore
    session_store: GuestSessionStore
    user_store: Optional[UserStore]
    provider: ProviderClient
    cfg: Settings = field(default_factory=lambda: settings)
    clock: Callable[[], datetime] = _utcnow


def _to_iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


async def load_context_node(state: ReplyState, deps: ReplyDeps) -> ReplyState:
    """读取历史、会话记录和用户资料，生成 system prompt。"""

    session_id = state["session_id"]
    logger.info("reply.load_context", extra={"extra": {"session_id": session_id, "guest": state["is_guest"]}})
    if state["is_guest"]:
        session = deps.session_store.get_session(session_id)
        if session is None:
            session = deps.session_store.create_session(session_id)
        state["used"] = session.message_count
        state["system_prompt"] = build_guest_prompt()
    else:
        profile = deps.user_store.get_profile(session_id) if deps.user_store else None
        if profile is None:
            state["system_prompt"] = build_guest_prompt()
        else:
            state["system_prompt"] = build_system_prompt(profile.user_age, profile.username, profile.user_gender)

    rows = deps.conversation_store.list_messages(session_id)
    limit = deps.cfg.max_context_messages
    history: List[LlmMessage] = [LlmMessage(role=r.role, content=r.content) for r in rows[-limit:]]
    history.extend(LlmMessage(role="user", content=m) for m in state["user_messages"])
    state["history"] = history
    return state


async def check_quota_node(state: ReplyState, deps: ReplyDeps) -> ReplyState:
    """访客按会话记录计数；登录用户按 IST 自然日计数，Pro 不限。"""

    k = len(state["user_messages"])
    if state["is_guest"]:
        used = state.get("used", 0)
        limit = deps.cfg.guest_message_limit
        state["is_pro"] = False
    elif deps.user_store is not None and deps.user_store.is_pro(state["session_id"]):
        state["is_pro"] = True
        state["limited"] = False
        state["remaining"] = None
        return state
    else:
        state["is_pro"] = False
        limit = deps.cfg.daily_message_limit
        used = 0
        if deps.user_store is not None:
            used = deps.user_store.get_usage(state["session_id"], to_ist(deps.clock()).date()).message_count
        state["used"] = used

    state["limited"] = used >= limit
    if state["limited"]:
        state["remaining"] = 0
        if not state["is_guest"]:
            state["resets_at"] = _to_iso(next_midnight_ist(deps.clock()))
        logger.info(
            "reply.quota_exceeded",
            extra={"extra": {"session_id": state["session_id"], "used": used, "limit": limit}},
        )
    else:
        state["remaining"] = max(0, limit - used - k)
    return state


async def generate_node(state: ReplyState, deps: ReplyDeps) -> ReplyState:
    req = ChatRequest(
        provider=deps.provider.name,
        model=deps.cfg.default_model,
        system_prompt=state["system_prompt"],
        messages=state["history"],
    )
    logger.info("reply.generate.start", extra={"extra": {"messages": len(req.messages)}})
    result = await deps.provider.chat(req)
    state["raw_reply"] = result.text
    logger.info("reply.generate.end", extra={"extra": {"chars": len(result.text)}})
    return state


async def parse_node(state: ReplyState, deps: ReplyDeps) -> ReplyState:
    replies = parse_reply(state.get("raw_reply", ""))
    if not replies:
        raise ApiError(code="EMPTY_COMPLETION", message="Model returned an empty reply", http_status=502)
    state["replies"] = replies
    return state


async def persist_node(state: ReplyState, deps: ReplyDeps) -> ReplyState:
    """先写用户消息，再写回复；登录用户累加当日用量。"""

    session_id = state["session_id"]
    for text in state["user_messages"]:
        deps.conversation_store.append_message(session_id, "user", text)
    for text in state["replies"]:
        deps.conversation_store.append_message(session_id, "assistant", text)
    if not state["is_guest"] and not state.get("is_pro") and deps.user_store is not None:
        deps.user_store.increment_usage(
            session_id, to_ist(deps.clock()).date(), by=len(state["user_messages"])
        )
    logger.info(
        "reply.persist",
        extra={"extra": {"session_id": session_id, "user": len(state["user_messages"]), "replies": len(state["replies"])}},
    )
    return state


def quota_router(state: ReplyState) -> str:
    if state.get("limited"):
        return "limited"
    return "generate"


def build_graph(deps: ReplyDeps) -> CompiledStateGraph:
    async def _load(s: ReplyState) -> ReplyState:
        return await load_context_node(s, deps)

    async def _quota(s: ReplyState) -> ReplyState:
        return await check_quota_node(s, deps)

    async def _generate(s: ReplyState) -> ReplyState:
        return await generate_node(s, deps)

    async def _parse(s: ReplyState) -> ReplyState:
        return await parse_node(s, deps)

    async def _persist(s: ReplyState) -> ReplyState:
        return await persist_node(s, deps)

    graph = StateGraph(ReplyState)
    graph.add_node("load_context", _load)
    graph.add_node("check_quota", _quota)
    graph.add_node("generate", _generate)
    graph.add_node("parse", _parse)
    graph.add_node("persist", _persist)
    graph.set_entry_point("load_context")
    graph.add_edge("load_context", "check_quota")
    graph.add_conditional_edges("check_quota", quota_router, {"limited": END, "generate": "generate"})
    graph.add_edge("generate", "parse")
    graph.add_edge("parse", "persist")
    graph.add_edge("persist", END)
    return graph.compile()
