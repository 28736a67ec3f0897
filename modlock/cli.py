"""
CLI 模块

命令行接口实现。交互式确认、日志配置都只在这一层进行。
"""

import asyncio
import os
from typing import List, Optional

import aiohttp
import click
from loguru import logger

from modlock import __version__
from modlock.api import PLATFORMS, Platform, create_platforms
from modlock.exceptions import ModLockError, ResolutionError
from modlock.lock import LockFile
from modlock.logger import setup_logger
from modlock.models import ModLoader, Project, Settings
from modlock.services import (
    Decision,
    DependencyResolver,
    QueryCache,
    Resolution,
    ResolutionHandler,
    ResolutionStatus,
)


class PromptHandler(ResolutionHandler):
    """通过终端询问用户的处理器，同一时间只显示一个提示"""

    def __init__(self, assume_yes: bool = False):
        self.assume_yes = assume_yes
        self._prompt_lock = asyncio.Lock()

    async def _confirm(self, text: str, default: bool) -> bool:
        async with self._prompt_lock:
            return await asyncio.to_thread(click.confirm, text, default=default)

    async def on_error(self, error: ResolutionError) -> None:
        logger.error(error.message)

    async def on_retry(
        self, identifier: str, previous: Platform, remaining: List[Platform]
    ) -> Optional[Platform]:
        candidate = remaining[0]
        if self.assume_yes or await self._confirm(
            f"{previous.name} 上找不到 {identifier}，是否在 {candidate.name} 上查找?",
            default=True,
        ):
            return candidate
        return None

    async def on_success(
        self, project: Project, is_recommended: bool, remaining: List[Platform]
    ) -> Decision:
        slug = project.display_slug()
        if self.assume_yes and is_recommended:
            accept = True
        else:
            accept = await self._confirm(f"是否添加 {slug}?", default=is_recommended)
        if not accept:
            return Decision(accept=False)

        alternates = []
        for platform in remaining:
            if self.assume_yes or await self._confirm(
                f"是否同时从 {platform.name} 获取 {slug}?", default=True
            ):
                alternates.append(platform)
        return Decision(accept=True, alternates=alternates)


def report(results: List[Resolution]) -> None:
    """输出解析结果汇总"""
    added = 0
    for resolution in (r for result in results for r in result.walk()):
        if resolution.status is ResolutionStatus.ACCEPTED:
            added += 1
            logger.success(f"{resolution.project.display_slug()} 已添加")
        elif resolution.status is ResolutionStatus.SKIPPED and resolution.error:
            logger.warning(resolution.error.message)
    logger.info(f"本次共添加 {added} 个项目")


async def add_async(
    settings: Settings, identifiers: List[str], assume_yes: bool, no_deps: bool
) -> List[Resolution]:
    """解析并添加项目，全部完成后写入锁文件"""
    lock = await LockFile.load(settings.lock_path)
    cache = QueryCache(ttl=settings.cache_ttl, max_size=settings.cache_size)
    connector = aiohttp.TCPConnector(limit=settings.max_concurrent)

    async with aiohttp.ClientSession(connector=connector) as session:
        platforms = create_platforms(lock.providers(), session, cache, settings)
        resolver = DependencyResolver(
            lock, platforms, files_per_project=settings.files_per_project
        )
        results = await resolver.resolve_batch(
            identifiers, PromptHandler(assume_yes), expand=not no_deps
        )

    logger.debug(
        f"[缓存] 命中 {cache.stats.hits}，未命中 {cache.stats.misses}，"
        f"合并 {cache.stats.coalesced}"
    )
    return results


def run(coro):
    """运行协程，把 ModLockError 转换为 ClickException"""
    try:
        return asyncio.run(coro)
    except ModLockError as e:
        logger.debug(f"{e.to_dict()}")
        raise click.ClickException(str(e))


PROVIDER_CHOICE = click.Choice(sorted(PLATFORMS), case_sensitive=False)
LOADER_CHOICE = click.Choice([loader.value for loader in ModLoader], case_sensitive=False)


@click.group()
@click.option(
    "--lock",
    "lock_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="锁文件路径（默认 modlock.json，或环境变量 MODLOCK_LOCK_FILE）",
)
@click.option("--max-concurrent", type=int, default=None, help="最大并发请求数")
@click.option("--debug", is_flag=True, help="启用调试模式")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, lock_path: str, max_concurrent: int, debug: bool):
    """ModLock - 跨平台的模组依赖解析与锁定工具"""
    setup_logger(level="DEBUG" if debug else None)
    try:
        ctx.obj = Settings.from_env(lock_path=lock_path, max_concurrent=max_concurrent)
    except ModLockError as e:
        raise click.ClickException(str(e))


@main.command()
@click.option("-v", "--mc-version", "versions", multiple=True, required=True, help="目标 Minecraft 版本")
@click.option("-l", "--loader", "loaders", multiple=True, required=True, type=LOADER_CHOICE, help="目标加载器")
@click.option("-p", "--provider", "providers", multiple=True, type=PROVIDER_CHOICE, help="平台优先级（可多次使用）")
@click.option("--force", is_flag=True, help="覆盖已有锁文件")
@click.pass_obj
def init(settings: Settings, versions, loaders, providers, force: bool):
    """创建新的锁文件"""
    if os.path.exists(settings.lock_path) and not force:
        raise click.ClickException(f"锁文件已存在: {settings.lock_path}（使用 --force 覆盖）")

    lock = LockFile(
        settings.lock_path,
        target_versions=list(versions),
        target_loaders=list(loaders),
        provider_priority=list(providers) or ["modrinth"],
    )
    run(lock.persist())
    logger.success(f"已创建锁文件 {settings.lock_path}")


async def set_async(settings: Settings, versions, loaders, providers) -> LockFile:
    lock = await LockFile.load(settings.lock_path, validate=False)
    if versions:
        lock.set_target_versions(list(versions))
    if loaders:
        lock.set_target_loaders(list(loaders))
    if providers:
        lock.set_providers(list(providers))
    lock.validate()
    await lock.persist()
    return lock


@main.command(name="set")
@click.option("-v", "--mc-version", "versions", multiple=True, help="目标 Minecraft 版本")
@click.option("-l", "--loader", "loaders", multiple=True, type=LOADER_CHOICE, help="目标加载器")
@click.option("-p", "--provider", "providers", multiple=True, type=PROVIDER_CHOICE, help="平台优先级")
@click.pass_obj
def set_context(settings: Settings, versions, loaders, providers):
    """修改锁文件的解析上下文"""
    lock = run(set_async(settings, versions, loaders, providers))
    logger.success(
        f"已更新: 版本 {lock.target_versions()}，加载器 {lock.target_loaders()}，"
        f"平台 {lock.providers()}"
    )


@main.command()
@click.argument("projects", nargs=-1, required=True)
@click.option("-y", "--yes", "assume_yes", is_flag=True, help="自动接受推荐的匹配")
@click.option("--no-deps", is_flag=True, help="不解析依赖")
@click.pass_obj
def add(settings: Settings, projects, assume_yes: bool, no_deps: bool):
    """添加项目及其必需依赖"""
    results = run(add_async(settings, list(projects), assume_yes, no_deps))
    report(results)


@main.command(name="ls")
@click.pass_obj
def list_projects(settings: Settings):
    """列出锁文件中的项目"""
    lock = run(LockFile.load(settings.lock_path))
    if not lock.projects:
        click.echo("锁文件中没有项目")
        return

    for project in sorted(lock.projects, key=lambda p: p.display_slug()):
        providers = ", ".join(f"{k}:{v}" for k, v in sorted(project.id.items()))
        line = f"{project.display_slug()} [{project.type.value}] ({providers})"
        dependants = [lock.get_by_lock_id(i) for i in sorted(project.required_by)]
        names = [p.display_slug() for p in dependants if p is not None]
        if names:
            line += f" <- {', '.join(names)}"
        click.echo(line)


if __name__ == "__main__":
    main()
