"""统一的对话与结果数据模型。

本模块定义两类数据结构：

1. 聊天界面与 completion 端点之间的模型：
   - ChatMessage: 界面上展示的一条消息（文本、是否用户发送、时间戳）。
   - ConversationRow: 会话存储中的一行（追加写、按创建时间读取）。
   - CompletionRequest / CompletionResponse: completion 端点的请求与响应。

2. completion 端点内部与 LLM Provider 之间的模型：
   - LlmMessage / ChatRequest / ChatResult / ChatUsage。

Provider 适配器（如 GeminiClient）只依赖第二类模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from riya_core.domain.exceptions import ApiError


# 会话存储中的角色
Role = Literal["user", "assistant"]
# 发给 LLM 的消息角色
LlmRole = Literal["system", "user", "assistant"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class ChatMessage:
    """界面上的一条消息，创建后不可变。"""

    text: str
    is_user: bool
    timestamp: str = field(default_factory=utc_now_iso)


@dataclass
class ConversationRow:
    """会话存储中的一行消息。"""

    id: str
    session_id: str
    role: Role
    content: str
    created_at: datetime

    def to_chat_message(self) -> ChatMessage:
        ts = self.created_at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
        return ChatMessage(text=self.content, is_user=self.role == "user", timestamp=ts)


@dataclass
class CompletionRequest:
    """发往 completion 端点的一次请求。

    - session_id: 访客为 guest session id，登录用户为 user id。
    - messages: 本批合并后的用户消息（按发送顺序）。
    - is_batch: 多于一条消息时为 True。
    - is_guest: 访客模式。
    """

    session_id: str
    messages: List[str]
    is_guest: bool = True
    is_batch: Optional[bool] = None

    def __post_init__(self) -> None:
        if self.is_batch is None:
            self.is_batch = len(self.messages) > 1

    def to_payload(self) -> Dict[str, Any]:
        id_key = "guestSessionId" if self.is_guest else "userId"
        return {
            id_key: self.session_id,
            "messages": list(self.messages),
            "isBatch": bool(self.is_batch),
            "isGuest": self.is_guest,
        }

    @classmethod
    def from_payload(cls, data: Any) -> "CompletionRequest":
        if not isinstance(data, dict):
            raise ApiError(code="INVALID_REQUEST", message="request body must be a JSON object")
        is_guest = bool(data.get("isGuest", "guestSessionId" in data))
        session_id = data.get("guestSessionId") if is_guest else data.get("userId")
        raw = data.get("messages")
        if raw is None and "message" in data:
            raw = [data["message"]]
        if isinstance(raw, str):
            raw = [raw]
        if not session_id or not isinstance(raw, list) or not raw:
            raise ApiError(code="INVALID_REQUEST", message="session id and messages are required")
        return cls(
            session_id=str(session_id),
            messages=[str(m) for m in raw],
            is_guest=is_guest,
            is_batch=data.get("isBatch"),
        )


@dataclass
class CompletionResponse:
    """completion 端点的响应：零或多条有序回复，或一个 error 字段。"""

    messages: List[str] = field(default_factory=list)
    error: Optional[str] = None
    is_pro: Optional[bool] = None
    remaining_messages: Optional[int] = None
    resets_at: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_payload(self) -> Dict[str, Any]:
        if self.error is not None:
            payload: Dict[str, Any] = {"error": self.error}
        else:
            payload = {"messages": [{"text": m} for m in self.messages]}
        if self.is_pro is not None:
            payload["isPro"] = self.is_pro
        if self.remaining_messages is not None:
            payload["remainingMessages"] = self.remaining_messages
        if self.resets_at is not None:
            payload["resetsAt"] = self.resets_at
        return payload

    @classmethod
    def from_payload(cls, data: Any) -> "CompletionResponse":
        """解析端点返回的 JSON。

        带 error 字段的响应原样保留；缺少 messages 或 messages 不是数组时
        抛出 ApiError(INVALID_RESPONSE)。
        """

        if not isinstance(data, dict):
            raise ApiError(code="INVALID_RESPONSE", message="Invalid response from server")
        extra = {
            "is_pro": data.get("isPro"),
            "remaining_messages": data.get("remainingMessages"),
            "resets_at": data.get("resetsAt"),
        }
        if data.get("error"):
            return cls(error=str(data["error"]), **extra)
        raw = data.get("messages")
        if not isinstance(raw, list):
            raise ApiError(code="INVALID_RESPONSE", message="Invalid response from server")
        texts: List[str] = []
        for item in raw:
            text = item.get("text") if isinstance(item, dict) else item
            # 没有文本的条目不展示，避免空气泡
            if text is None or not str(text).strip():
                continue
            texts.append(str(text))
        return cls(messages=texts, **extra)


@dataclass
class LlmMessage:
    """发给 LLM 的一条消息。"""

    role: LlmRole
    content: str


@dataclass
class ChatRequest:
    """一次完整的 LLM 请求。

    回复流水线会将历史裁剪后生成 ChatRequest，再交给具体 ProviderClient。
    system prompt 单独存放，由 Provider 适配层决定放在哪个字段。
    """

    provider: str  # 逻辑 Provider 名，如 "gemini"
    model: str  # 逻辑模型名，如 "riya-chat"（再由 registry 映射为真实模型名）
    system_prompt: str
    messages: List[LlmMessage]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatResult:
    """一次 LLM 调用的最终结果。"""

    provider: str
    model: str
    text: str
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None
