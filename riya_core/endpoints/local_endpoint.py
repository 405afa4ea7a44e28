"""进程内 completion 端点：直接运行回复流水线。"""

from riya_core.domain.models import CompletionRequest, CompletionResponse
from riya_core.flows.runner import ReplyService


class LocalCompletionEndpoint:
    name = "local"

    def __init__(self, service: ReplyService):
        self._service = service

    async def complete(self, req: CompletionRequest) -> CompletionResponse:
        return await self._service.run(req)
