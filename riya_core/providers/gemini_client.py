"""Gemini Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 Gemini generateContent 的 HTTP 请求格式
   （system prompt 放在 systemInstruction，assistant 角色映射为 model）。
3. 调用 HTTP 接口并处理网络/API 异常。
4. 将响应 JSON 解析为统一的 ChatResult，并记录 token 用量与成本。
"""

from typing import Any, Dict, List, Optional

import httpx

from riya_core.config.settings import settings
from riya_core.domain.exceptions import ApiError, NetworkError, RateLimitError
from riya_core.domain.models import ChatRequest, ChatResult, ChatUsage, LlmMessage
from riya_core.infrastructure.logging.logger import logger
from riya_core.providers.key_pool import ApiKeyPool
from riya_core.providers.registry import GEMINI_CONFIG, ModelConfig, estimate_cost


class GeminiClient:
    """Gemini 提供方客户端实现。"""

    name = "gemini"

    def __init__(self, cfg=settings, key_pool: Optional[ApiKeyPool] = None):
        self._settings = cfg
        self._key_pool = key_pool or ApiKeyPool(getattr(cfg, "gemini_key_list", []))

    async def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。

        步骤：
        1. 从密钥池取下一个 key（没有 key 时抛 ValidationError）。
        2. 读取模型配置（logical model -> provider model）并构造 payload。
        3. 发送请求并捕获网络错误/限流/服务端错误。
        4. 解析响应，记录 token 用量与成本。
        """

        api_key = self._key_pool.next_key()
        model_cfg = GEMINI_CONFIG.models[req.model]
        payload = self._build_payload(req, model_cfg)
        base = getattr(self._settings, "gemini_base_url", None) or GEMINI_CONFIG.base_url
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(
                    f"{base}/models/{model_cfg.provider_model}:generateContent",
                    json=payload,
                    headers={
                        "x-goog-api-key": api_key,
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code == 429:
            # 限流交给上层决定是否换 key 重试
            raise RateLimitError(code="RATE_LIMIT", message="Gemini rate limit", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        try:
            data = resp.json()
        except ValueError:
            raise ApiError(code="INVALID_RESPONSE", message=resp.text[:200], http_status=502)
        result = self._parse_response(data, req)
        if result.usage is not None:
            cost = estimate_cost(model_cfg, result.usage)
            logger.info(
                "gemini.usage",
                extra={"extra": {
                    "model": model_cfg.provider_model,
                    "prompt_tokens": result.usage.prompt_tokens,
                    "completion_tokens": result.usage.completion_tokens,
                    "total_tokens": result.usage.total_tokens,
                    "cost_usd": round(cost.total_usd, 6),
                    "cost_inr": round(cost.total_inr, 4),
                }},
            )
        return result

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> Dict[str, Any]:
        """将 ChatRequest 转成 Gemini 所需的请求 JSON。"""

        payload: Dict[str, Any] = {
            "contents": self._build_contents(req.messages),
            "generationConfig": {
                "maxOutputTokens": req.max_tokens or model_cfg.max_tokens,
                "temperature": req.temperature if req.temperature is not None else model_cfg.default_temperature,
            },
        }
        if req.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": req.system_prompt}]}
        return payload

    @staticmethod
    def _build_contents(messages: List[LlmMessage]) -> List[Dict[str, Any]]:
        """转换历史消息。

        - assistant -> model，system 消息不进入 contents。
        - Gemini 要求第一条必须是 user，开头的 model 消息丢弃。
        - 连续同角色消息合并为同一条 content 的多个 parts（批量发送的多条用户消息）。
        """

        contents: List[Dict[str, Any]] = []
        for m in messages:
            if m.role == "system":
                continue
            role = "model" if m.role == "assistant" else "user"
            if not contents and role == "model":
                continue
            if contents and contents[-1]["role"] == role:
                contents[-1]["parts"].append({"text": m.content})
            else:
                contents.append({"role": role, "parts": [{"text": m.content}]})
        return contents

    def _parse_response(self, data: Dict[str, Any], req: ChatRequest) -> ChatResult:
        """将 Gemini 的原始响应 JSON 解析为统一的 ChatResult。"""

        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback") or {}
            raise ApiError(
                code="EMPTY_COMPLETION",
                message=f"Gemini returned no candidates: {feedback.get('blockReason', 'unknown')}",
                http_status=502,
            )
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        usage_raw = data.get("usageMetadata") or {}
        usage = None
        if usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("promptTokenCount", 0),
                completion_tokens=usage_raw.get("candidatesTokenCount", 0),
                total_tokens=usage_raw.get("totalTokenCount", 0),
            )
        return ChatResult(provider=self.name, model=req.model, text=text, usage=usage, raw=data)
