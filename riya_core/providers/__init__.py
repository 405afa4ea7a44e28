"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置、token 单价 (registry)。
- API 密钥轮询 (key_pool)。
- 提供厂商的具体实现 (gemini_client)。
"""

from typing import Optional

from riya_core.config.settings import settings
from riya_core.providers.base import ProviderClient
from riya_core.providers.gemini_client import GeminiClient


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，目前只有 gemini。"""

    provider_name = (name or "gemini").lower()
    if provider_name != "gemini":
        raise KeyError(f"Unknown provider: {provider_name!r}")
    return GeminiClient(settings)


