"""把模型输出解析成多条聊天消息。

人设要求模型只输出 JSON 数组 [{"text": ...}, ...]，但实际输出经常不规范：
包在 ```json 代码块里、缺少数组方括号、或者转义错误导致 json.loads 失败。
这里按“代码块 -> 补方括号 -> JSON 解析 -> 正则提取 -> 整体作为一条”
的顺序逐级降级，保证至少返回一条消息。
"""

import json
import re
from typing import Any, List

from riya_core.infrastructure.logging.logger import logger

_CODE_BLOCK = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")
_OBJECT_GAP = re.compile(r"}\s*,?\s*{")
_OBJECT_GAP_NO_COMMA = re.compile(r"}\s*{")
_TEXT_OBJECT = re.compile(r'\{"text"\s*:\s*"((?:[^"\\]|\\.)*)"\}')


def _unescape(value: str) -> str:
    return (
        value.replace('\\"', '"')
        .replace("\\\\", "\\")
        .replace("\\n", "\n")
        .replace("\\t", "\t")
    )


def _as_messages(parsed: Any) -> List[str]:
    if isinstance(parsed, list) and parsed and all(
        isinstance(item, dict) and item.get("text") for item in parsed
    ):
        return [str(item["text"]) for item in parsed]
    return []


def parse_reply(raw: str) -> List[str]:
    """返回有序的消息文本列表，至少一条（raw 为空时返回空列表）。"""

    if not raw or not raw.strip():
        return []
    candidate = raw.strip()

    match = _CODE_BLOCK.search(candidate)
    if match:
        candidate = match.group(1).strip()

    if not candidate.startswith("[") and candidate.startswith("{") and _OBJECT_GAP.search(candidate):
        # 模型输出了多个对象但没有数组方括号：补逗号再包一层
        candidate = "[" + _OBJECT_GAP_NO_COMMA.sub("}, {", candidate) + "]"
        logger.info("reply_parser.wrapped_objects")

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.info("reply_parser.json_failed", extra={"extra": {"error": str(e)}})
        extracted = [_unescape(m.group(1)) for m in _TEXT_OBJECT.finditer(raw)]
        if extracted:
            return extracted
        return [raw]

    messages = _as_messages(parsed)
    if messages:
        return messages
    # JSON 合法但结构不对，整体作为一条消息
    return [raw]
