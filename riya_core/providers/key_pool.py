"""API 密钥池：多个密钥轮流使用，分摊单个密钥的配额。"""

from typing import Iterable, List

from riya_core.domain.exceptions import ValidationError


class ApiKeyPool:
    def __init__(self, keys: Iterable[str]):
        self._keys: List[str] = [k for k in keys if k]
        self._index = 0

    def __len__(self) -> int:
        return len(self._keys)

    def next_key(self) -> str:
        if not self._keys:
            raise ValidationError(code="MISSING_API_KEY", message="No Gemini API keys configured")
        key = self._keys[self._index]
        self._index = (self._index + 1) % len(self._keys)
        return key
