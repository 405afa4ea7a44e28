"""Riya Core 顶层包。

该包提供访客聊天的核心实现，包括配置加载、领域模型、打字延迟与开场白、
合并发送队列、消息额度状态机、LLM Provider 适配、回复流水线与持久化存储。
"""

from riya_core.api.service import create_guest_chat, handle_completion

__all__ = ["create_guest_chat", "handle_completion"]
