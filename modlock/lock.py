"""
锁文件

记录所有已解析的项目以及解析上下文（目标版本、加载器、平台优先级）。
一次会话开始时加载，解析过程中在内存中修改，每个批次完成后原子写入一次。
"""

import json
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import aiofiles
import toml
import yaml
from loguru import logger

from modlock.exceptions import ConfigParseError, ConfigValidationError
from modlock.models import PlatformId, Project


def _dump_json(data: dict) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def _dump_yaml(data: dict) -> str:
    return yaml.safe_dump(data, allow_unicode=True, sort_keys=False)


LOADERS: Dict[str, Callable[[str], Any]] = {
    ".json": json.loads,
    ".toml": toml.loads,
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
}

DUMPERS: Dict[str, Callable[[dict], str]] = {
    ".json": _dump_json,
    ".toml": toml.dumps,
    ".yaml": _dump_yaml,
    ".yml": _dump_yaml,
}


def _suffix(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix not in LOADERS:
        raise ConfigParseError(
            f"不支持的锁文件格式: {suffix or '(无后缀)'}", context={"path": str(path)}
        )
    return suffix


def _string_list(data: dict, key: str) -> List[str]:
    value = data.get(key, [])
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigParseError(f"锁文件字段 {key} 必须是字符串列表")
    return list(value)


class LockFile:
    """锁文件状态"""

    DEFAULT_PATH = "modlock.json"

    def __init__(
        self,
        path: str = DEFAULT_PATH,
        target_versions: Optional[List[str]] = None,
        target_loaders: Optional[List[str]] = None,
        provider_priority: Optional[List[str]] = None,
        projects: Optional[List[Project]] = None,
    ):
        self.path = Path(path)
        self._target_versions = list(target_versions or [])
        self._target_loaders = [loader.lower() for loader in target_loaders or []]
        self._provider_priority = [p.lower() for p in provider_priority or []]
        self.projects: List[Project] = []
        for project in projects or []:
            self.add(project)

    def __len__(self) -> int:
        return len(self.projects)

    # -- 加载 --

    @classmethod
    async def load(cls, path: str = DEFAULT_PATH, validate: bool = True) -> "LockFile":
        """
        读取并校验锁文件

        validate 为 False 时允许上下文不完整（用于修改上下文）

        Raises:
            ConfigParseError: 文件不存在、无法读取或格式错误
            ConfigValidationError: 缺少平台、目标版本或加载器
        """
        lock_path = Path(path)
        suffix = _suffix(lock_path)
        try:
            async with aiofiles.open(lock_path, encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            raise ConfigParseError(
                f"无法读取锁文件: {e}", context={"path": str(lock_path)}
            ) from e

        try:
            data = LOADERS[suffix](content)
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigParseError(
                f"锁文件格式错误: {e}", context={"path": str(lock_path)}
            ) from e

        lock = cls.from_dict(data, path=str(lock_path))
        if validate:
            lock.validate()
        logger.debug(f"已加载锁文件 {lock_path} ({len(lock)} 个项目)")
        return lock

    @classmethod
    def from_dict(cls, data: Any, path: str = DEFAULT_PATH) -> "LockFile":
        if not isinstance(data, dict):
            raise ConfigParseError("锁文件顶层必须是对象", context={"path": path})
        try:
            projects = [Project.from_dict(item) for item in data.get("projects") or []]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ConfigParseError(
                f"锁文件中的项目无效: {e!r}", context={"path": path}
            ) from e
        return cls(
            path=path,
            target_versions=_string_list(data, "target_versions"),
            target_loaders=_string_list(data, "target_loaders"),
            provider_priority=_string_list(data, "provider_priority"),
            projects=projects,
        )

    def to_dict(self) -> dict:
        return {
            "target_versions": list(self._target_versions),
            "target_loaders": list(self._target_loaders),
            "provider_priority": list(self._provider_priority),
            "projects": [project.to_dict() for project in self.projects],
        }

    # -- 上下文 --

    def validate(self) -> None:
        self.providers()
        self.target_versions()
        self.target_loaders()

    def providers(self) -> List[str]:
        """平台优先级列表"""
        if not self._provider_priority:
            raise ConfigValidationError("锁文件未配置平台 (provider_priority)")
        return list(self._provider_priority)

    def provider(self) -> str:
        """默认平台，即优先级最高的平台"""
        return self.providers()[0]

    def target_versions(self) -> List[str]:
        if not self._target_versions:
            raise ConfigValidationError("锁文件未配置目标版本 (target_versions)")
        return list(self._target_versions)

    def target_loaders(self) -> List[str]:
        if not self._target_loaders:
            raise ConfigValidationError("锁文件未配置加载器 (target_loaders)")
        return list(self._target_loaders)

    def set_target_versions(self, versions: List[str]) -> None:
        self._target_versions = list(versions)

    def set_target_loaders(self, loaders: List[str]) -> None:
        self._target_loaders = [loader.lower() for loader in loaders]

    def set_providers(self, providers: List[str]) -> None:
        self._provider_priority = [p.lower() for p in providers]

    # -- 项目 --

    def ids(self) -> Set[PlatformId]:
        return {pair for project in self.projects for pair in project.platform_ids()}

    def has_id(self, platform: str, idx: str) -> bool:
        return self.get_by_id(platform, idx) is not None

    def get_by_id(self, platform: str, idx: str) -> Optional[Project]:
        for project in self.projects:
            if project.id.get(platform) == idx:
                return project
        return None

    def get_by_lock_id(self, lock_id: str) -> Optional[Project]:
        for project in self.projects:
            if project.lock_id == lock_id:
                return project
        return None

    def find(self, project: Project) -> Optional[Project]:
        """查找与给定项目共享任一 (平台, id) 的已有项目"""
        for existing in self.projects:
            if existing.shares_id_with(project):
                return existing
        return None

    def add(self, project: Project) -> Project:
        """
        添加项目（幂等）

        与已有项目共享任一 (平台, id) 时合并而不是重复添加；
        若同时匹配多个已有项目，它们会被合并为一个。

        Returns:
            锁文件中实际保存的项目
        """
        matches = [p for p in self.projects if p.shares_id_with(project)]
        if not matches:
            if project.lock_id is None:
                project.lock_id = uuid.uuid4().hex[:16]
            self.projects.append(project)
            return project

        target = matches[0]
        for other in matches[1:]:
            target.merge(other)
            self.projects.remove(other)
            self._relink(other.lock_id, target.lock_id)
        if project.lock_id and project.lock_id != target.lock_id:
            self._relink(project.lock_id, target.lock_id)
        project.lock_id = target.lock_id
        target.merge(project)
        # 合并后不能自己依赖自己
        target.requires.discard(target.lock_id)
        target.required_by.discard(target.lock_id)
        return target

    def _relink(self, old: Optional[str], new: Optional[str]) -> None:
        if old is None or new is None or old == new:
            return
        for project in self.projects:
            for links in (project.requires, project.required_by):
                if old in links:
                    links.discard(old)
                    links.add(new)

    def link_dependant(self, parent: Project, child: Project) -> None:
        """记录 parent 依赖 child：parent.requires / child.required_by"""
        parent = self.find(parent) or parent
        child = self.find(child) or child
        if parent.lock_id is None or child.lock_id is None:
            raise ValueError("只能链接已添加到锁文件中的项目")
        if parent.lock_id == child.lock_id:
            return
        parent.requires.add(child.lock_id)
        child.required_by.add(parent.lock_id)

    # -- 写入 --

    async def persist(self) -> None:
        """把当前状态完整地原子写入锁文件"""
        suffix = _suffix(self.path)
        content = DUMPERS[suffix](self.to_dict())
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
        )
        os.close(fd)
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(content)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logger.debug(f"已写入锁文件 {self.path} ({len(self)} 个项目)")
