"""completion 端点的服务端实现：基于 LangGraph 的回复流水线。"""

from riya_core.flows.reply_parser import parse_reply
from riya_core.flows.runner import ReplyService, run_reply

__all__ = ["ReplyService", "parse_reply", "run_reply"]
