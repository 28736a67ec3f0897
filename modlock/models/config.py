"""
运行配置模型

ModLoader 枚举和从环境变量构建的 Settings。
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from modlock.exceptions import ConfigValidationError


class ModLoader(Enum):
    """模组加载器"""

    FORGE = "forge"
    NEOFORGE = "neoforge"
    FABRIC = "fabric"
    QUILT = "quilt"
    LITELOADER = "liteloader"


# 无论请求哪个加载器都视为兼容的伪加载器
PASSTHROUGH_LOADERS = frozenset({"minecraft", "iris", "optifine", "datapack"})


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigValidationError(
            f"环境变量 {name} 必须为整数", context={name: raw}
        )


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigValidationError(
            f"环境变量 {name} 必须为数字", context={name: raw}
        )


@dataclass
class Settings:
    """单次运行（一个解析会话）的设置"""

    lock_path: str = "modlock.json"
    max_concurrent: int = 5
    cache_ttl: float = 600.0
    cache_size: int = 512
    files_per_project: int = 1
    curseforge_api_key: Optional[str] = None

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """
        从环境变量构建设置，overrides 中非 None 的值优先

        支持的环境变量:
            MODLOCK_LOCK_FILE, MODLOCK_MAX_CONCURRENT, MODLOCK_CACHE_TTL,
            MODLOCK_CACHE_SIZE, CURSEFORGE_API_KEY
        """
        settings = cls(
            lock_path=os.environ.get("MODLOCK_LOCK_FILE") or cls.lock_path,
            max_concurrent=_env_int("MODLOCK_MAX_CONCURRENT", cls.max_concurrent),
            cache_ttl=_env_float("MODLOCK_CACHE_TTL", cls.cache_ttl),
            cache_size=_env_int("MODLOCK_CACHE_SIZE", cls.cache_size),
            curseforge_api_key=os.environ.get("CURSEFORGE_API_KEY") or None,
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(settings, key, value)
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.max_concurrent <= 0:
            raise ConfigValidationError("max_concurrent 必须大于 0")
        if self.cache_ttl < 0:
            raise ConfigValidationError("cache_ttl 不能为负数")
        if self.cache_size <= 0:
            raise ConfigValidationError("cache_size 必须大于 0")
        if self.files_per_project <= 0:
            raise ConfigValidationError("files_per_project 必须大于 0")
