"""
规范化数据模型

各平台的响应都会被转换为 Project / ProjectFile。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from loguru import logger

PlatformId = Tuple[str, str]


class ProjectType(Enum):
    """项目类型"""

    MOD = "mod"
    RESOURCE_PACK = "resourcepack"
    SHADER = "shader"


class ReleaseType(Enum):
    """发布类型"""

    RELEASE = "release"
    BETA = "beta"
    ALPHA = "alpha"

    @classmethod
    def normalize(cls, value: Union[str, int, None]) -> "ReleaseType":
        """
        规范化平台返回的发布类型。

        空值、空白字符串和字面量 "null" 都视为 release；
        CurseForge 使用 1/2/3 表示 release/beta/alpha。
        """
        if value is None:
            return cls.RELEASE
        if isinstance(value, int):
            return {1: cls.RELEASE, 2: cls.BETA, 3: cls.ALPHA}.get(value, cls.RELEASE)
        value = value.strip().lower()
        if not value or value == "null":
            return cls.RELEASE
        try:
            return cls(value)
        except ValueError:
            return cls.RELEASE


@dataclass(eq=False)
class ProjectFile:
    """
    项目的一个可下载文件。

    以 (platform, id, file_name) 作为身份：同一版本记录中的多个文件互不合并。
    """

    platform: str
    file_name: str
    url: str
    id: str
    parent_id: str
    mc_versions: List[str] = field(default_factory=list)
    loaders: List[str] = field(default_factory=list)
    release_type: ReleaseType = ReleaseType.RELEASE
    hashes: Dict[str, str] = field(default_factory=dict)
    required_dependencies: Set[str] = field(default_factory=set)

    @property
    def key(self) -> Tuple[str, str, str]:
        return self.platform, self.id, self.file_name

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProjectFile):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "file_name": self.file_name,
            "url": self.url,
            "id": self.id,
            "parent_id": self.parent_id,
            "mc_versions": list(self.mc_versions),
            "loaders": list(self.loaders),
            "release_type": self.release_type.value,
            "hashes": dict(self.hashes),
            "required_dependencies": sorted(self.required_dependencies),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectFile":
        return cls(
            platform=data["platform"],
            file_name=data["file_name"],
            url=data["url"],
            id=str(data["id"]),
            parent_id=str(data["parent_id"]),
            mc_versions=list(data.get("mc_versions", [])),
            loaders=list(data.get("loaders", [])),
            release_type=ReleaseType.normalize(data.get("release_type")),
            hashes=dict(data.get("hashes", {})),
            required_dependencies=set(data.get("required_dependencies", [])),
        )


@dataclass(eq=False)
class Project:
    """
    内容包（模组、资源包或光影）。

    name / slug / id 都是 平台 -> 平台内字符串 的映射，同一个项目可以同时属于多个平台。
    """

    type: ProjectType
    name: Dict[str, str] = field(default_factory=dict)
    slug: Dict[str, str] = field(default_factory=dict)
    id: Dict[str, str] = field(default_factory=dict)
    files: List[ProjectFile] = field(default_factory=list)
    lock_id: Optional[str] = None
    requires: Set[str] = field(default_factory=set)
    required_by: Set[str] = field(default_factory=set)

    def platform_ids(self) -> Set[PlatformId]:
        """返回 (平台, id) 对集合"""
        return {(platform, idx) for platform, idx in self.id.items()}

    def shares_id_with(self, other: "Project") -> bool:
        return bool(self.platform_ids() & other.platform_ids())

    def display_slug(self) -> str:
        """用于展示的 slug，取第一个平台的"""
        return next(iter(self.slug.values()), next(iter(self.id.values()), "?"))

    def add_files(self, files: Iterable[ProjectFile]) -> None:
        """添加文件，按文件身份去重"""
        known = set(self.files)
        for file in files:
            if file not in known:
                known.add(file)
                self.files.append(file)

    def has_files(self) -> bool:
        return bool(self.files)

    def required_dependencies(self) -> Set[PlatformId]:
        """所有文件的必需依赖，按文件所属平台限定"""
        return {
            (file.platform, dep_id)
            for file in self.files
            for dep_id in file.required_dependencies
        }

    def merge(self, other: "Project") -> "Project":
        """把另一个项目合并进来，保留双方的平台标识、文件和依赖关系"""
        for attr in ("name", "slug", "id"):
            mine = getattr(self, attr)
            for platform, value in getattr(other, attr).items():
                kept = mine.setdefault(platform, value)
                if attr == "id" and kept != value:
                    logger.warning(
                        f"合并项目时 {platform} id 冲突: 保留 {kept}，丢弃 {value}"
                    )
        self.add_files(other.files)
        self.requires |= other.requires
        self.required_by |= other.required_by
        if self.lock_id is None:
            self.lock_id = other.lock_id
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lock_id": self.lock_id,
            "type": self.type.value,
            "name": dict(self.name),
            "slug": dict(self.slug),
            "id": dict(self.id),
            "requires": sorted(self.requires),
            "required_by": sorted(self.required_by),
            "files": [file.to_dict() for file in self.files],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        return cls(
            type=ProjectType(data["type"]),
            name=dict(data.get("name", {})),
            slug=dict(data.get("slug", {})),
            id={platform: str(idx) for platform, idx in data["id"].items()},
            files=[ProjectFile.from_dict(file) for file in data.get("files", [])],
            lock_id=data.get("lock_id"),
            requires=set(data.get("requires", [])),
            required_by=set(data.get("required_by", [])),
        )
