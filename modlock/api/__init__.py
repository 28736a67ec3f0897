"""
平台适配器包

PLATFORMS 是固定的平台集合，按锁文件中的 provider_priority 顺序实例化。
"""

from typing import Dict, List, Optional, Type

import aiohttp

from modlock.api.base import Lookup, Platform, is_compatible
from modlock.api.curseforge import CurseForge
from modlock.api.modrinth import Modrinth
from modlock.exceptions import ConfigValidationError
from modlock.models import Settings
from modlock.services.cache import QueryCache

PLATFORMS: Dict[str, Type[Platform]] = {
    Modrinth.serial_name: Modrinth,
    CurseForge.serial_name: CurseForge,
}


def create_platforms(
    names: List[str],
    session: Optional[aiohttp.ClientSession] = None,
    cache: Optional[QueryCache] = None,
    settings: Optional[Settings] = None,
) -> List[Platform]:
    """按优先级顺序创建一个会话的平台适配器，共享 session 和缓存"""
    platforms: List[Platform] = []
    for name in names:
        platform_cls = PLATFORMS.get(name.lower())
        if platform_cls is None:
            raise ConfigValidationError(
                f"未知的平台: {name}", context={"available": sorted(PLATFORMS)}
            )
        if platform_cls is CurseForge:
            api_key = settings.curseforge_api_key if settings else None
            platforms.append(CurseForge(session, cache, api_key=api_key))
        else:
            platforms.append(platform_cls(session, cache))
    return platforms


__all__ = [
    "PLATFORMS",
    "Platform",
    "Lookup",
    "Modrinth",
    "CurseForge",
    "create_platforms",
    "is_compatible",
]
