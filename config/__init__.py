"""
配置模块

用法: from config.settings import settings as config
"""
from config.settings import settings, validate_config

__all__ = ["settings", "validate_config"]
