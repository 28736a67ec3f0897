"""
依赖解析服务

把用户请求的标识分派到各平台，交由调用方决定是否接受匹配结果，
再按工作队列逐层展开必需依赖，直到没有新的 (平台, id) 出现。

控制流不使用嵌套回调：每一步产生一个 Resolution，由显式循环根据
ResolutionHandler 的决定推进。对锁文件的修改全部经过同一个协调路径。
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional, Set

from loguru import logger

from modlock.exceptions import (
    AlreadyAddedError,
    AmbiguousMatchError,
    NoCompatibleFilesError,
    ProjectNotFoundError,
    ProviderError,
    ResolutionError,
)
from modlock.lock import LockFile
from modlock.models import PlatformId, Project

if TYPE_CHECKING:
    from modlock.api.base import Platform

Ranker = Callable[[str, "Platform", Project], bool]


def exact_match(identifier: str, platform: "Platform", project: Project) -> bool:
    """输入与平台上的 slug 或 id 完全一致（忽略大小写）时视为推荐匹配"""
    candidates = (
        project.slug.get(platform.serial_name),
        project.id.get(platform.serial_name),
    )
    return identifier.lower() in {c.lower() for c in candidates if c}


class ResolutionStatus(Enum):
    """解析状态"""

    FOUND = auto()  # 平台返回了匹配，等待调用方决定
    RETRY = auto()  # 当前平台没有匹配，还有其他平台可尝试
    FAILED = auto()
    ACCEPTED = auto()
    SKIPPED = auto()


@dataclass
class Resolution:
    """单个标识在某一步的解析结果"""

    identifier: str
    status: ResolutionStatus
    platform: Optional["Platform"] = None
    project: Optional[Project] = None
    is_recommended: bool = False
    remaining: List["Platform"] = field(default_factory=list)
    error: Optional[ResolutionError] = None
    dependencies: List["Resolution"] = field(default_factory=list)

    def walk(self) -> Iterable["Resolution"]:
        """自身及所有依赖的解析结果"""
        yield self
        for dep in self.dependencies:
            yield from dep.walk()


@dataclass
class Decision:
    """调用方对匹配结果的决定；alternates 为需要同时合并的其他平台"""

    accept: bool
    alternates: List["Platform"] = field(default_factory=list)


class ResolutionHandler:
    """
    调用方处理器

    默认实现是非交互策略：依次尝试下一个平台，只接受推荐匹配。
    CLI 通过子类提供交互式确认。
    """

    async def on_error(self, error: ResolutionError) -> None:
        pass

    async def on_retry(
        self,
        identifier: str,
        previous: "Platform",
        remaining: List["Platform"],
    ) -> Optional["Platform"]:
        return remaining[0] if remaining else None

    async def on_success(
        self,
        project: Project,
        is_recommended: bool,
        remaining: List["Platform"],
    ) -> Decision:
        return Decision(accept=is_recommended)


@dataclass
class _Batch:
    """一个批次内共享的展开状态"""

    enqueued: Set[PlatformId] = field(default_factory=set)
    # 依赖仍在解析中时，等待链接到它的父项目
    waiting: Dict[PlatformId, List[Project]] = field(default_factory=dict)
    # 依赖 (平台, id) 最终对应的锁文件项目（可能来自其他平台）
    resolved: Dict[PlatformId, Project] = field(default_factory=dict)


class DependencyResolver:
    """依赖解析器"""

    def __init__(
        self,
        lock: LockFile,
        platforms: List["Platform"],
        ranker: Ranker = exact_match,
        files_per_project: int = 1,
    ):
        self.lock = lock
        self.platforms = list(platforms)
        self.ranker = ranker
        self.files_per_project = files_per_project
        self._mutex = asyncio.Lock()

    # -- 单步分派 --

    async def request(
        self,
        identifier: str,
        platform: "Platform",
        remaining: Iterable["Platform"] = (),
        by_id: bool = False,
    ) -> Resolution:
        """
        在一个平台上查询标识（含兼容文件）

        Returns:
            FOUND（带推荐标记），或者 RETRY / FAILED（带错误）
        """
        remaining = list(remaining)
        project, fault = await platform.request_project_with_files(
            self.lock.target_versions(),
            self.lock.target_loaders(),
            identifier,
            self.files_per_project,
            by_id=by_id,
        )
        if project is not None and project.has_files():
            return Resolution(
                identifier,
                ResolutionStatus.FOUND,
                platform,
                project,
                is_recommended=self.ranker(identifier, platform, project),
                remaining=remaining,
            )

        context = {"platform": platform.serial_name}
        if fault is not None:
            error: ResolutionError = ProviderError(
                f"{platform.name} 查询 {identifier} 失败: {fault.message}",
                identifier,
                context=context,
            )
        elif project is not None:
            error = NoCompatibleFilesError(
                f"{platform.name} 上的 {project.display_slug()} 没有兼容的文件",
                identifier,
                context=context,
            )
        else:
            error = ProjectNotFoundError(
                f"{platform.name} 上找不到 {identifier}", identifier, context=context
            )
        status = ResolutionStatus.RETRY if remaining else ResolutionStatus.FAILED
        return Resolution(
            identifier, status, platform, project, remaining=remaining, error=error
        )

    # -- 完整流程 --

    async def resolve_batch(
        self,
        identifiers: List[str],
        handler: Optional[ResolutionHandler] = None,
        persist: bool = True,
        expand: bool = True,
    ) -> List[Resolution]:
        """
        并发解析一批标识，全部结束后写入一次锁文件

        单个标识失败不会影响其他标识，也不会阻止写入成功的部分。
        """
        self.lock.validate()
        handler = handler or ResolutionHandler()
        batch = _Batch()

        results = await asyncio.gather(
            *(self.resolve(idx, handler, batch, expand) for idx in identifiers),
            return_exceptions=True,
        )
        if persist:
            await self.lock.persist()

        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

    async def resolve(
        self,
        identifier: str,
        handler: Optional[ResolutionHandler] = None,
        batch: Optional[_Batch] = None,
        expand: bool = True,
    ) -> Resolution:
        """解析单个标识，接受后展开其依赖闭包"""
        handler = handler or ResolutionHandler()
        batch = batch or _Batch()
        resolution = await self._settle(
            identifier, handler, self.platforms, batch, parents=[]
        )
        if expand and resolution.status is ResolutionStatus.ACCEPTED:
            resolution.dependencies = await self._expand(
                resolution.project, handler, batch
            )
        return resolution

    async def _settle(
        self,
        identifier: str,
        handler: ResolutionHandler,
        platforms: List["Platform"],
        batch: _Batch,
        parents: List[Project],
        key: Optional[PlatformId] = None,
    ) -> Resolution:
        """key 为依赖的 (平台, id)，在其所属平台上按 id 查询"""
        if not platforms:
            error = ProjectNotFoundError(f"没有可用的平台解析 {identifier}", identifier)
            await handler.on_error(error)
            return Resolution(identifier, ResolutionStatus.FAILED, error=error)

        platform, remaining = platforms[0], list(platforms[1:])
        errors: List[ResolutionError] = []
        while True:
            by_id = key is not None and platform.serial_name == key[0]
            resolution = await self.request(identifier, platform, remaining, by_id)
            if resolution.status is ResolutionStatus.FOUND:
                return await self._decide(resolution, handler, batch, parents, key)

            errors.append(resolution.error)
            logger.debug(f"{resolution.error}")
            choice = None
            if remaining:
                choice = await handler.on_retry(identifier, platform, remaining)
            if choice is None or choice not in remaining:
                error = self._final_error(identifier, errors)
                await handler.on_error(error)
                return Resolution(
                    identifier,
                    ResolutionStatus.FAILED,
                    platform,
                    resolution.project,
                    error=error,
                )
            remaining.remove(choice)
            platform = choice

    @staticmethod
    def _final_error(identifier: str, errors: List[ResolutionError]) -> ResolutionError:
        tried = [e.context.get("platform") for e in errors]
        for error in errors:
            if isinstance(error, NoCompatibleFilesError):
                return error
        if errors and all(isinstance(e, ProviderError) for e in errors):
            return ProviderError(
                f"所有平台查询 {identifier} 都失败了",
                identifier,
                context={"platforms": tried},
            )
        return ProjectNotFoundError(
            f"找不到项目 {identifier}", identifier, context={"platforms": tried}
        )

    async def _decide(
        self,
        resolution: Resolution,
        handler: ResolutionHandler,
        batch: _Batch,
        parents: List[Project],
        key: Optional[PlatformId] = None,
    ) -> Resolution:
        project = resolution.project
        existing = self.lock.find(project)
        if existing is not None:
            if parents:
                await self._commit(existing, parents, batch, key)
                resolution.status = ResolutionStatus.SKIPPED
                resolution.project = existing
                return resolution
            resolution.status = ResolutionStatus.SKIPPED
            resolution.project = existing
            resolution.error = AlreadyAddedError(
                f"{existing.display_slug()} 已经添加过了", resolution.identifier
            )
            return resolution

        decision = await handler.on_success(
            project, resolution.is_recommended, resolution.remaining
        )
        if not decision.accept:
            resolution.status = ResolutionStatus.SKIPPED
            if not resolution.is_recommended:
                resolution.error = AmbiguousMatchError(
                    f"未确认不确定的匹配 {project.display_slug()}",
                    resolution.identifier,
                )
            return resolution

        for alternate in decision.alternates:
            await self._merge_alternate(project, resolution.platform, alternate)

        resolution.project = await self._commit(project, parents, batch, key)
        resolution.status = ResolutionStatus.ACCEPTED
        return resolution

    async def _merge_alternate(
        self, project: Project, primary: "Platform", alternate: "Platform"
    ) -> None:
        slug = project.slug.get(primary.serial_name)
        if not slug or alternate.serial_name in project.id:
            return
        found, _ = await alternate.request_project_with_files(
            self.lock.target_versions(),
            self.lock.target_loaders(),
            slug,
            self.files_per_project,
        )
        if found is None or not found.has_files():
            logger.debug(f"{alternate.name} 上没有可用的 {slug}")
            return
        project.merge(found)

    async def _commit(
        self,
        project: Project,
        parents: List[Project],
        batch: _Batch,
        key: Optional[PlatformId] = None,
    ) -> Project:
        """唯一修改锁文件的路径：幂等添加并记录依赖链接"""
        async with self._mutex:
            stored = self.lock.add(project)
            parents = list(parents)
            pairs = set(stored.platform_ids())
            if key is not None:
                pairs.add(key)
                batch.resolved[key] = stored
            for pair in sorted(pairs):
                parents.extend(batch.waiting.pop(pair, []))
            for parent in parents:
                self.lock.link_dependant(parent, stored)
            batch.enqueued |= stored.platform_ids()
        return stored

    # -- 依赖展开 --

    def _platforms_for(self, platform_name: str) -> List["Platform"]:
        owner = [p for p in self.platforms if p.serial_name == platform_name]
        if not owner:
            return []
        return owner + [p for p in self.platforms if p.serial_name != platform_name]

    async def _expand(
        self, root: Project, handler: ResolutionHandler, batch: _Batch
    ) -> List[Resolution]:
        """逐层展开必需依赖，每个 (平台, id) 在一个批次内只查询一次"""
        results: List[Resolution] = []
        frontier = [root]
        while frontier:
            jobs = []
            for parent in frontier:
                for key in sorted(parent.required_dependencies()):
                    existing = self.lock.get_by_id(*key) or batch.resolved.get(key)
                    if existing is not None:
                        await self._commit(existing, [parent], batch)
                        continue
                    if key in batch.enqueued:
                        batch.waiting.setdefault(key, []).append(parent)
                        continue
                    batch.enqueued.add(key)
                    jobs.append(self._resolve_dependency(key, parent, handler, batch))

            resolved = await asyncio.gather(*jobs)
            results.extend(resolved)
            frontier = [
                r.project for r in resolved if r.status is ResolutionStatus.ACCEPTED
            ]
        return results

    async def _resolve_dependency(
        self,
        key: PlatformId,
        parent: Project,
        handler: ResolutionHandler,
        batch: _Batch,
    ) -> Resolution:
        platform_name, dep_id = key
        platforms = self._platforms_for(platform_name)
        if not platforms:
            logger.warning(
                f"{parent.display_slug()} 依赖 {platform_name} 上的 {dep_id}，但该平台未启用"
            )
        logger.debug(f"解析 {parent.display_slug()} 的依赖 {platform_name}:{dep_id}")
        return await self._settle(
            dep_id, handler, platforms, batch, parents=[parent], key=key
        )
