"""completion 端点实现。

- base: CompletionEndpoint 协议。
- http_endpoint: 调用部署好的 riya-chat 云函数。

进程内端点 LocalCompletionEndpoint 依赖回复流水线，需从
riya_core.endpoints.local_endpoint 直接导入。
"""

from riya_core.endpoints.base import CompletionEndpoint
from riya_core.endpoints.http_endpoint import HttpCompletionEndpoint

__all__ = ["CompletionEndpoint", "HttpCompletionEndpoint"]
