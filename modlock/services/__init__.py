"""
ModLock 服务层

包含业务逻辑服务：查询缓存、依赖解析。
"""

from modlock.services.cache import QueryCache
from modlock.services.resolver import (
    Decision,
    DependencyResolver,
    Resolution,
    ResolutionHandler,
    ResolutionStatus,
    exact_match,
)

__all__ = [
    "QueryCache",
    "Decision",
    "DependencyResolver",
    "Resolution",
    "ResolutionHandler",
    "ResolutionStatus",
    "exact_match",
]
