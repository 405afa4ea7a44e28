"""对外 API 服务模块。

提供简化的函数接口供上层应用调用：

- create_guest_chat(): 组装一个访客聊天编排器（HTTP 或进程内端点）。
- handle_completion(): completion 端点的服务端处理函数，输入输出都是 JSON 字典。
- get_conversation_messages(): 读取某个会话的全部消息。
"""

from typing import Any, Dict, List, Optional

from riya_core.chat.guest_chat import ChatView, GuestChatOptions, GuestChatOrchestrator, SessionContext
from riya_core.chat.scheduler import Scheduler
from riya_core.config.settings import settings
from riya_core.domain.exceptions import BusinessError
from riya_core.domain.models import CompletionRequest
from riya_core.endpoints.base import CompletionEndpoint
from riya_core.endpoints.http_endpoint import HttpCompletionEndpoint
from riya_core.endpoints.local_endpoint import LocalCompletionEndpoint
from riya_core.flows.runner import ReplyService
from riya_core.infrastructure.logging.logger import logger
from riya_core.infrastructure.storage.json_store import JsonConversationStore
from riya_core.providers import create_provider
from riya_core.providers.base import ProviderClient

_store: Optional[JsonConversationStore] = None
_reply_service: Optional[ReplyService] = None


def get_default_store() -> JsonConversationStore:
    """获取默认的 JSON 存储实例（单例）。"""
    global _store
    if _store is None:
        _store = JsonConversationStore(root=settings.storage_root)
    return _store


def create_reply_service(
    store: Optional[JsonConversationStore] = None,
    provider: Optional[ProviderClient] = None,
) -> ReplyService:
    store = store or get_default_store()
    return ReplyService(
        conversation_store=store,
        session_store=store,
        user_store=store,
        provider=provider or create_provider(),
        cfg=settings,
    )


def get_default_reply_service() -> ReplyService:
    """获取默认的回复服务实例（单例）。"""
    global _reply_service
    if _reply_service is None:
        _reply_service = create_reply_service()
    return _reply_service


def create_guest_chat(
    context: Optional[SessionContext] = None,
    view: Optional[ChatView] = None,
    endpoint: Optional[CompletionEndpoint] = None,
    store: Optional[JsonConversationStore] = None,
    scheduler: Optional[Scheduler] = None,
    local: bool = False,
) -> GuestChatOrchestrator:
    """组装访客聊天编排器。

    Args:
        context: 会话上下文（可选，不提供则视为新访客）
        view: 界面事件接收者（可选）
        endpoint: completion 端点（可选，默认按 local 选择）
        store: 会话存储（可选，默认 JSON 文件存储）
        scheduler: 调度器（可选，默认 asyncio 事件循环）
        local: 为 True 时在进程内运行回复流水线，否则走 HTTP 端点
    """
    store = store or get_default_store()
    if endpoint is None:
        if local:
            endpoint = LocalCompletionEndpoint(create_reply_service(store=store))
        else:
            endpoint = HttpCompletionEndpoint(settings)
    return GuestChatOrchestrator(
        context=context or SessionContext(),
        endpoint=endpoint,
        conversation_store=store,
        session_store=store,
        scheduler=scheduler,
        view=view,
        options=GuestChatOptions.from_settings(settings),
    )


async def handle_completion(
    payload: Dict[str, Any],
    service: Optional[ReplyService] = None,
) -> Dict[str, Any]:
    """处理一次 completion 请求。

    请求体格式错误时返回 {"error": ...}，不会抛出异常。
    """
    try:
        req = CompletionRequest.from_payload(payload)
    except BusinessError as e:
        logger.warning("api.completion.invalid", extra={"extra": {"code": e.code, "error": e.message}})
        return {"error": e.code}
    response = await (service or get_default_reply_service()).run(req)
    return response.to_payload()


def get_conversation_messages(session_id: str) -> List[Dict[str, Any]]:
    """获取会话的所有消息。"""
    msgs = get_default_store().list_messages(session_id)
    return [
        {
            "id": m.id,
            "role": m.role,
            "content": m.content,
            "created_at": m.created_at.isoformat(),
        }
        for m in msgs
    ]
