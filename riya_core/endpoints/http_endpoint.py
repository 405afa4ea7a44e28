"""riya-chat 云函数的 HTTP 客户端。"""

from typing import Optional

import httpx

from riya_core.config.settings import settings
from riya_core.domain.exceptions import ApiError, NetworkError
from riya_core.domain.models import CompletionRequest, CompletionResponse


class HttpCompletionEndpoint:
    name = "http"

    def __init__(self, cfg=settings, url: Optional[str] = None):
        self._settings = cfg
        self._url = url or cfg.completion_url

    async def complete(self, req: CompletionRequest) -> CompletionResponse:
        headers = {"Content-Type": "application/json"}
        anon_key = getattr(self._settings, "anon_key", None)
        if anon_key:
            headers["apikey"] = anon_key
            headers["Authorization"] = f"Bearer {anon_key}"
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(self._url, json=req.to_payload(), headers=headers)
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        try:
            data = resp.json()
        except ValueError:
            # JSONDecodeError 与 UnicodeDecodeError 都是 ValueError
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        # 端点在 429/500 时也会返回 {"error": ...}，交给编排层按失败处理
        if resp.status_code >= 400 and not (isinstance(data, dict) and data.get("error")):
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        return CompletionResponse.from_payload(data)
