"""High-level entry point for the reply pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from riya_core.config.settings import Settings, settings
from riya_core.domain.conversation import ConversationStore, GuestSessionStore, UserStore
from riya_core.domain.exceptions import BusinessError
from riya_core.domain.models import CompletionRequest, CompletionResponse
from riya_core.flows.graph import ReplyDeps, _utcnow, build_graph
from riya_core.flows.state import ReplyState
from riya_core.infrastructure.logging.logger import logger
from riya_core.providers.base import ProviderClient

LIMIT_ERROR = "MESSAGE_LIMIT_REACHED"


class ReplyService:
    """completion 端点的服务端：一次请求跑一遍回复图，返回 CompletionResponse。

    业务异常不会抛给调用方，而是转成带 error 字段的响应，
    与 HTTP 端点返回 {"error": ...} 的约定保持一致。
    """

    def __init__(
        self,
        conversation_store: ConversationStore,
        session_store: GuestSessionStore,
        provider: ProviderClient,
        user_store: Optional[UserStore] = None,
        cfg: Settings = settings,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._deps = ReplyDeps(
            conversation_store=conversation_store,
            session_store=session_store,
            user_store=user_store,
            provider=provider,
            cfg=cfg,
            clock=clock,
        )
        self._graph = build_graph(self._deps)

    async def run(self, req: CompletionRequest) -> CompletionResponse:
        state: ReplyState = {
            "request": req,
            "session_id": req.session_id,
            "is_guest": req.is_guest,
            "user_messages": [m for m in req.messages if m.strip()],
            "history": [],
            "is_pro": False,
            "limited": False,
            "remaining": None,
            "resets_at": None,
            "replies": [],
        }
        if not state["user_messages"]:
            return CompletionResponse(error="EMPTY_MESSAGE")
        logger.info(
            "reply.run.start",
            extra={"extra": {"session_id": req.session_id, "batch": len(state["user_messages"]), "guest": req.is_guest}},
        )
        try:
            result = await self._graph.ainvoke(state)
        except BusinessError as e:
            logger.warning(
                "reply.run.failed",
                extra={"extra": {"session_id": req.session_id, "code": e.code, "error": e.message}},
            )
            return CompletionResponse(error=e.code)
        except Exception as e:
            logger.error(
                "reply.run.unexpected_error",
                exc_info=True,
                extra={"extra": {"session_id": req.session_id, "error": str(e)}},
            )
            return CompletionResponse(error="INTERNAL_ERROR")

        is_pro = None if req.is_guest else bool(result.get("is_pro"))
        if result.get("limited"):
            return CompletionResponse(
                error=LIMIT_ERROR,
                is_pro=is_pro,
                remaining_messages=0,
                resets_at=result.get("resets_at"),
            )
        logger.info("reply.run.end", extra={"extra": {"session_id": req.session_id, "replies": len(result["replies"])}})
        return CompletionResponse(
            messages=list(result["replies"]),
            is_pro=is_pro,
            remaining_messages=result.get("remaining"),
        )


async def run_reply(req: CompletionRequest, service: ReplyService) -> CompletionResponse:
    """函数式入口，等价于 service.run(req)。"""

    return await service.run(req)
