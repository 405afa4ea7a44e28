"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "riya-chat"。
- provider_model：厂商实际提供的模型 ID，例如 "gemini-2.5-flash-lite"。

同时集中维护每个模型的 token 单价，用于成本日志。
"""

from dataclasses import dataclass
from typing import Dict, Mapping

from riya_core.domain.models import ChatUsage

USD_TO_INR = 89.0


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    max_tokens: int
    default_temperature: float
    # 每 1M token 的美元单价
    input_price_per_1m: float = 0.0
    output_price_per_1m: float = 0.0


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]


GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    models={
        "riya-chat": ModelConfig(
            logical_name="riya-chat",
            provider_model="gemini-2.5-flash-lite",
            max_tokens=8192,
            default_temperature=0.9,
            input_price_per_1m=0.10,
            output_price_per_1m=0.40,
        )
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "gemini": GEMINI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


@dataclass
class UsageCost:
    input_usd: float
    output_usd: float

    @property
    def total_usd(self) -> float:
        return self.input_usd + self.output_usd

    @property
    def total_inr(self) -> float:
        return self.total_usd * USD_TO_INR


def estimate_cost(model_cfg: ModelConfig, usage: ChatUsage) -> UsageCost:
    return UsageCost(
        input_usd=usage.prompt_tokens / 1_000_000 * model_cfg.input_price_per_1m,
        output_usd=usage.completion_tokens / 1_000_000 * model_cfg.output_price_per_1m,
    )
