"""配置层：Settings 单例与 config.yaml 加载。"""

from riya_core.config.settings import Settings, settings

__all__ = ["Settings", "settings"]
