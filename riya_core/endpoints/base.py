"""completion 端点协议。

聊天编排层不关心回复从哪里来：可以是部署好的 riya-chat 云函数
（HttpCompletionEndpoint），也可以是进程内的回复流水线
（LocalCompletionEndpoint）。两者都只需实现 complete()。
"""

from typing import Protocol

from riya_core.domain.models import CompletionRequest, CompletionResponse


class CompletionEndpoint(Protocol):
    async def complete(self, req: CompletionRequest) -> CompletionResponse:
        """返回零或多条有序回复，或带 error 字段的响应。"""

        ...
