"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
优先级：构造参数 > 环境变量 > .env > config.yaml。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("RIYA_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """Riya 聊天核心配置。"""

    # ---- 访客模式 ----
    guest_message_limit: int = Field(
        default=25,
        ge=1,
        description="访客会话可发送的用户消息总数，达到后强制登录",
    )
    daily_message_limit: int = Field(
        default=30,
        ge=1,
        description="登录免费用户每天（IST）的消息上限",
    )

    # ---- 批量发送与打字节奏（毫秒） ----
    debounce_ms: int = Field(default=5000, ge=0, description="连续消息合并的静默窗口")
    typing_base_ms: float = Field(default=800.0, ge=0, description="打字延迟基础值")
    typing_per_char_ms: float = Field(default=50.0, ge=0, description="每个字符增加的打字延迟")
    typing_min_ms: float = Field(default=1000.0, ge=0, description="打字延迟下限")
    typing_max_ms: float = Field(default=6000.0, ge=0, description="打字延迟上限")
    typing_jitter: float = Field(default=0.25, ge=0, le=1, description="打字延迟随机抖动比例（±）")
    reply_gap_ms: float = Field(default=200.0, ge=0, description="多条回复之间的间隔")
    block_modal_delay_ms: float = Field(
        default=1500.0,
        ge=0,
        description="最后一批回复展示后弹出登录墙的延迟",
    )
    completion_timeout_ms: float = Field(
        default=30000.0,
        ge=1000,
        description="单次 completion 调用的最长等待时间，超时按失败回滚",
    )

    # ---- Completion 端点 ----
    completion_url: str = Field(
        default="http://localhost:54321/functions/v1/riya-chat",
        description="riya-chat completion 端点地址",
    )
    anon_key: Optional[str] = Field(default=None, description="端点的匿名访问 key")

    # ---- Gemini Provider ----
    gemini_api_key: Optional[str] = Field(default=None, description="单个 Gemini API 密钥")
    gemini_api_keys: str = Field(
        default="",
        description="逗号分隔的 Gemini API 密钥池，优先于 gemini_api_key",
    )
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini API 基础URL",
    )
    default_model: str = Field(
        default="riya-chat",
        description="逻辑模型名，由 registry 映射为具体厂商模型",
    )

    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    max_context_messages: int = Field(default=60, ge=1, le=500, description="发送给模型的最大历史消息数")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("gemini_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @model_validator(mode="after")
    def validate_typing_range(self) -> "Settings":
        if self.typing_min_ms > self.typing_max_ms:
            raise ValueError("typing_min_ms must not exceed typing_max_ms")
        return self

    @property
    def gemini_key_list(self) -> List[str]:
        """密钥池：优先使用 gemini_api_keys，其次退回单个 gemini_api_key。"""

        keys = [k.strip() for k in self.gemini_api_keys.split(",") if k.strip()]
        if not keys and self.gemini_api_key:
            keys = [self.gemini_api_key]
        return keys

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
