"""
平台适配器基类

每个内容平台（Modrinth、CurseForge）实现一个 Platform 子类，
负责请求平台 API 并把响应转换为规范化的 Project / ProjectFile。
适配器不会向外抛出异常：网络错误和格式错误都降级为 None 或空列表。
"""

import asyncio
import re
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable, List, NamedTuple, Optional

import aiohttp
from loguru import logger

from modlock.exceptions import (
    APIError,
    APIRateLimitError,
    APIServerError,
    UnrecognizedCategoryError,
)
from modlock.models import PASSTHROUGH_LOADERS, Project, ProjectFile, ProjectType
from modlock.services.cache import QueryCache

NUMERIC_ID = re.compile(r"[0-9]{6}")
DIGITS = re.compile(r"[0-9]+")
SHORT_ID = re.compile(r"[0-9a-zA-Z]{8}")

# 载荷结构不符合预期时 normalize 过程中会出现的异常
PARSE_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


class Lookup(NamedTuple):
    """带文件的项目查询结果，error 为被吞掉的平台错误"""

    project: Optional[Project]
    error: Optional[APIError] = None


def is_compatible(
    mc_versions: Iterable[str],
    loaders: Iterable[str],
    target_versions: Iterable[str],
    target_loaders: Iterable[str],
) -> bool:
    """
    版本/加载器兼容性过滤

    mc_versions 必须与目标版本有交集；加载器为空、与目标加载器有交集，
    或包含 minecraft/iris/optifine/datapack 之一时视为兼容。
    """
    if not set(mc_versions) & set(target_versions):
        return False
    loaders = {loader.lower() for loader in loaders}
    if not loaders:
        return True
    wanted = {loader.lower() for loader in target_loaders}
    return bool(loaders & wanted) or bool(loaders & PASSTHROUGH_LOADERS)


class Platform(ABC):
    """内容平台适配器"""

    name: str = ""
    serial_name: str = ""
    api_url: str = ""
    api_version: int = 1
    # 数字短 id 是否为本平台的项目 id 形式（否则 8 位字母数字 id 才是）
    numeric_ids: bool = False

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        cache: Optional[QueryCache] = None,
    ):
        self._session = session
        self._owned_session = session is None
        self.cache = cache

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.serial_name}>"

    @property
    def base_url(self) -> str:
        return f"{self.api_url}/v{self.api_version}"

    @property
    def session(self) -> aiohttp.ClientSession:
        """获取或创建 aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owned_session = True
        return self._session

    def _headers(self) -> dict:
        return {"User-Agent": "modlock (+https://github.com/modlock/modlock)"}

    async def _request_json(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        payload: Optional[Any] = None,
    ) -> Optional[Any]:
        """发送 API 请求，404 返回 None，其他错误抛出 APIError"""
        url = f"{self.base_url}/{endpoint}"
        logger.debug(f"[{self.name}] {method} {url}")
        try:
            async with self.session.request(
                method, url, params=params, json=payload, headers=self._headers()
            ) as response:
                if response.status == 200:
                    return await response.json(content_type=None)
                elif response.status == 404:
                    return None
                elif response.status == 429:
                    raise APIRateLimitError(
                        f"{self.name} API 速率限制", response=response
                    )
                elif response.status >= 500:
                    raise APIServerError(
                        f"{self.name} API 服务器错误 (状态码: {response.status})",
                        response=response,
                    )
                raise APIError(
                    f"{self.name} API 请求失败 (状态码: {response.status})",
                    response=response,
                )
        except aiohttp.ClientError as e:
            raise APIError(
                f"{self.name} API 网络错误: {e}", context={"url": url}
            ) from e
        except asyncio.TimeoutError as e:
            raise APIError(f"{self.name} API 请求超时", context={"url": url}) from e
        except ValueError as e:
            raise APIError(
                f"{self.name} API 返回了无法解析的 JSON", context={"url": url}
            ) from e

    async def _get_json(self, endpoint: str, params: Optional[dict] = None):
        return await self._request_json("GET", endpoint, params=params)

    async def _cached(self, kind: str, key, fetch: Callable[[], Awaitable[Any]]):
        if self.cache is None:
            return await fetch()
        return await self.cache.get_or_fetch((self.serial_name, kind, key), fetch)

    # -- 标识分类 --

    def classify(self, identifier: str) -> Optional[str]:
        """
        判断输入的类型

        数字 id 平台上任意纯数字输入都是 id；其他平台上 6 位数字无效，
        8 位字母数字为 id。

        Returns:
            "id"、"slug"，或 None（该形式在本平台上不是有效的项目标识）
        """
        if self.numeric_ids and DIGITS.fullmatch(identifier):
            return "id"
        if NUMERIC_ID.fullmatch(identifier):
            return "id" if self.numeric_ids else None
        if SHORT_ID.fullmatch(identifier):
            return None if self.numeric_ids else "id"
        return "slug"

    # -- 平台实现 --

    @abstractmethod
    async def _fetch_project(self, kind: str, key: str) -> Optional[Project]:
        """按 id 或 slug 请求单个项目，files 为空"""

    @abstractmethod
    async def _fetch_projects(self, ids: List[str]) -> List[Project]:
        """批量请求项目，需丢弃 modpack"""

    @abstractmethod
    async def _fetch_files(self, project_id: str) -> List[ProjectFile]:
        """请求项目所有版本的文件，按新到旧排列，不做过滤"""

    @abstractmethod
    async def _fetch_file(self, project_id: str, file_id: str) -> List[ProjectFile]:
        """请求单个版本记录的文件"""

    @abstractmethod
    async def _fetch_files_many(self, file_ids: List[str]) -> List[ProjectFile]:
        """批量请求版本记录的文件"""

    def _project_type(self, category: Any) -> ProjectType:
        mapping = self._category_map()
        if category not in mapping:
            raise UnrecognizedCategoryError(
                f"{self.name} 项目类型 {category} 不受支持",
                context={"platform": self.serial_name, "category": category},
            )
        return mapping[category]

    def _category_map(self) -> dict:
        return {}

    # -- 对外操作，不抛出异常 --

    async def lookup_by_freeform(self, identifier: str) -> Optional[Project]:
        """按自由输入查询项目，自动判断是 id 还是 slug"""
        kind = self.classify(identifier)
        if kind == "id":
            return await self.lookup_by_id(identifier)
        if kind == "slug":
            return await self.lookup_by_slug(identifier)
        logger.debug(f"[{self.name}] '{identifier}' 不是有效的项目标识")
        return None

    async def lookup_by_id(self, idx: str) -> Optional[Project]:
        project, _ = await self._guard_project("id", idx)
        return project

    async def lookup_by_slug(self, slug: str) -> Optional[Project]:
        project, _ = await self._guard_project("slug", slug)
        return project

    async def _guard_project(self, kind: str, key: str) -> Lookup:
        try:
            project = await self._cached(
                f"project:{kind}", key, lambda: self._fetch_project(kind, key)
            )
        except UnrecognizedCategoryError as e:
            logger.warning(f"[{self.name}] 跳过 '{key}': {e.message}")
            return Lookup(None)
        except APIError as e:
            logger.warning(f"[{self.name}] 查询 '{key}' 失败: {e}")
            return Lookup(None, e)
        except PARSE_ERRORS as e:
            logger.warning(f"[{self.name}] 无法解析 '{key}' 的响应: {e!r}")
            return Lookup(None, APIError(f"无法解析 {self.name} 的响应"))
        return Lookup(project)

    async def lookup_many(self, ids: List[str]) -> List[Project]:
        """批量查询项目，modpack 会被静默丢弃"""
        if not ids:
            return []
        try:
            return await self._cached(
                "projects", tuple(ids), lambda: self._fetch_projects(list(ids))
            )
        except (APIError, *PARSE_ERRORS) as e:
            logger.warning(f"[{self.name}] 批量查询项目失败: {e}")
            return []

    async def list_files(
        self,
        target_versions: List[str],
        target_loaders: List[str],
        project_id: str,
        file_id: Optional[str] = None,
    ) -> List[ProjectFile]:
        """
        获取项目文件

        指定 file_id 时只获取该版本记录（不过滤）；否则获取所有版本并按兼容性过滤。
        """
        files, _ = await self._guard_files(
            target_versions, target_loaders, project_id, file_id
        )
        return files

    async def _guard_files(
        self,
        target_versions: List[str],
        target_loaders: List[str],
        project_id: str,
        file_id: Optional[str] = None,
    ):
        try:
            if file_id is not None:
                files = await self._cached(
                    "file",
                    (project_id, file_id),
                    lambda: self._fetch_file(project_id, file_id),
                )
                return files, None
            files = await self._cached(
                "files", project_id, lambda: self._fetch_files(project_id)
            )
        except APIError as e:
            logger.warning(f"[{self.name}] 获取 '{project_id}' 的文件失败: {e}")
            return [], e
        except PARSE_ERRORS as e:
            logger.warning(f"[{self.name}] 无法解析 '{project_id}' 的文件: {e!r}")
            return [], APIError(f"无法解析 {self.name} 的响应")

        compatible = [
            file
            for file in files
            if is_compatible(
                file.mc_versions, file.loaders, target_versions, target_loaders
            )
        ]
        if not compatible:
            logger.debug(f"[{self.name}] '{project_id}' 没有兼容的文件")
        return compatible, None

    async def list_files_many(self, file_ids: List[str]) -> List[ProjectFile]:
        """批量获取版本记录的文件，不做过滤"""
        if not file_ids:
            return []
        try:
            return await self._cached(
                "files_many",
                tuple(file_ids),
                lambda: self._fetch_files_many(list(file_ids)),
            )
        except (APIError, *PARSE_ERRORS) as e:
            logger.warning(f"[{self.name}] 批量获取文件失败: {e}")
            return []

    async def request_project_with_files(
        self,
        target_versions: List[str],
        target_loaders: List[str],
        identifier: str,
        number_of_files: int = 1,
        by_id: bool = False,
    ) -> Lookup:
        """
        查询项目并附上最新的 number_of_files 个兼容版本的文件

        by_id 为 True 时 identifier 是本平台的已知项目 id，不再做形式判断。

        Returns:
            Lookup(project, error)，error 是被吞掉的平台错误，供解析器区分“未找到”和“平台故障”
        """
        kind = "id" if by_id else self.classify(identifier)
        if kind is None:
            return Lookup(None)
        project, error = await self._guard_project(kind, identifier)
        if project is None:
            return Lookup(None, error)

        files, error = await self._guard_files(
            target_versions, target_loaders, project.id[self.serial_name]
        )
        project.add_files(self._newest(files, number_of_files))
        return Lookup(project, error)

    @staticmethod
    def _newest(files: List[ProjectFile], number_of_files: int) -> List[ProjectFile]:
        """保留前 number_of_files 个版本记录的全部文件"""
        versions: List[str] = []
        picked = []
        for file in files:
            if file.id not in versions:
                if len(versions) >= number_of_files:
                    break
                versions.append(file.id)
            picked.append(file)
        return picked

    async def close(self):
        """关闭客户端"""
        if self._owned_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
