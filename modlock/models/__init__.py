"""
ModLock 数据模型包

包含规范化的项目模型和运行配置模型。
"""

from modlock.models.config import (
    ModLoader,
    PASSTHROUGH_LOADERS,
    Settings,
)
from modlock.models.project import (
    PlatformId,
    ProjectType,
    ReleaseType,
    ProjectFile,
    Project,
)

__all__ = [
    # 配置模型
    "ModLoader",
    "PASSTHROUGH_LOADERS",
    "Settings",
    # 项目模型
    "PlatformId",
    "ProjectType",
    "ReleaseType",
    "ProjectFile",
    "Project",
]
