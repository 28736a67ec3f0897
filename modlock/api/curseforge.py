import os
import re
from typing import Any, List, Optional

import aiohttp
from loguru import logger

from modlock.api.base import PARSE_ERRORS, Platform
from modlock.exceptions import UnrecognizedCategoryError
from modlock.models import (
    ModLoader,
    PASSTHROUGH_LOADERS,
    Project,
    ProjectFile,
    ProjectType,
    ReleaseType,
)
from modlock.services.cache import QueryCache

GAME_ID_MINECRAFT = 432
MODPACK_CLASS_ID = 4471
REQUIRED_RELATION = 3
PAGE_SIZE = 50

KNOWN_LOADERS = {loader.value for loader in ModLoader} | PASSTHROUGH_LOADERS
MC_VERSION = re.compile(r"[0-9]+\.[0-9]+.*")
HASH_ALGOS = {1: "sha1", 2: "md5"}


class CurseForge(Platform):
    """
    CurseForge 平台 (https://api.curseforge.com/v1)

    需要 API key（x-api-key），未配置时所有查询都返回空结果。
    """

    name = "CurseForge"
    serial_name = "curseforge"
    api_url = "https://api.curseforge.com"
    api_version = 1
    numeric_ids = True

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        cache: Optional[QueryCache] = None,
        api_key: Optional[str] = None,
    ):
        super().__init__(session, cache)
        self.api_key = api_key or os.environ.get("CURSEFORGE_API_KEY", "")

    def _headers(self) -> dict:
        headers = super()._headers()
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    async def _request_json(self, method, endpoint, params=None, payload=None):
        if not self.api_key:
            logger.debug(f"[{self.name}] 未设置 API key，跳过 {endpoint}")
            return None
        return await super()._request_json(method, endpoint, params, payload)

    def _category_map(self) -> dict:
        return {
            6: ProjectType.MOD,
            12: ProjectType.RESOURCE_PACK,
            6552: ProjectType.SHADER,
        }

    # -- 项目 --

    def _to_project(self, data: dict) -> Project:
        return Project(
            type=self._project_type(data["classId"]),
            name={self.serial_name: data["name"]},
            slug={self.serial_name: data["slug"]},
            id={self.serial_name: str(data["id"])},
        )

    async def _fetch_project(self, kind: str, key: str) -> Optional[Project]:
        if kind == "id":
            data = await self._get_json(f"mods/{key}")
            if not data:
                return None
            return self._to_project(data["data"])

        data = await self._get_json(
            "mods/search", params={"gameId": GAME_ID_MINECRAFT, "slug": key}
        )
        if not data:
            return None
        for item in data["data"]:
            if item["slug"] == key and item.get("classId") != MODPACK_CLASS_ID:
                return self._to_project(item)
        return None

    async def _fetch_projects(self, ids: List[str]) -> List[Project]:
        data = await self._request_json(
            "POST", "mods", payload={"modIds": [int(idx) for idx in ids]}
        )
        if not data:
            return []
        projects = []
        for item in data["data"]:
            if item.get("classId") == MODPACK_CLASS_ID:
                continue
            try:
                projects.append(self._to_project(item))
            except UnrecognizedCategoryError as e:
                logger.warning(f"[{self.name}] 跳过 '{item.get('slug')}': {e.message}")
        return projects

    # -- 文件 --

    @staticmethod
    def _download_url(data: dict) -> str:
        if data.get("downloadUrl"):
            return data["downloadUrl"]
        # 第三方下载被禁用时 API 不返回链接，按 CDN 路径拼接
        file_id = int(data["id"])
        return (
            f"https://edge.forgecdn.net/files/{file_id // 1000}/"
            f"{file_id % 1000}/{data['fileName']}"
        )

    def _to_file(self, data: dict) -> ProjectFile:
        loaders, mc_versions = [], []
        for entry in data.get("gameVersions") or []:
            if entry.lower() in KNOWN_LOADERS:
                loaders.append(entry.lower())
            elif MC_VERSION.fullmatch(entry):
                mc_versions.append(entry)
        return ProjectFile(
            platform=self.serial_name,
            file_name=data["fileName"],
            url=self._download_url(data),
            id=str(data["id"]),
            parent_id=str(data["modId"]),
            mc_versions=mc_versions,
            loaders=loaders,
            release_type=ReleaseType.normalize(data.get("releaseType")),
            hashes={
                HASH_ALGOS[item["algo"]]: item["value"]
                for item in data.get("hashes") or []
                if item.get("algo") in HASH_ALGOS
            },
            required_dependencies={
                str(dep["modId"])
                for dep in data.get("dependencies") or []
                if dep.get("relationType") == REQUIRED_RELATION
            },
        )

    async def _fetch_files(self, project_id: str) -> List[ProjectFile]:
        items: List[Any] = []
        index = 0
        while True:
            data = await self._get_json(
                f"mods/{project_id}/files",
                params={"index": index, "pageSize": PAGE_SIZE},
            )
            if not data:
                break
            items.extend(data["data"])
            pagination = data.get("pagination") or {}
            index += pagination.get("resultCount", len(data["data"]))
            if not data["data"] or index >= pagination.get("totalCount", 0):
                break
        items.sort(key=lambda item: item.get("fileDate", ""), reverse=True)
        return self._to_files(items)

    def _to_files(self, items: List[Any]) -> List[ProjectFile]:
        """逐个规范化文件，无法解析的条目跳过"""
        files = []
        for item in items:
            try:
                files.append(self._to_file(item))
            except PARSE_ERRORS as e:
                logger.warning(f"[{self.name}] 跳过无法解析的文件 {item.get('id')}: {e!r}")
        return files

    async def _fetch_file(self, project_id: str, file_id: str) -> List[ProjectFile]:
        data = await self._get_json(f"mods/{project_id}/files/{file_id}")
        if not data:
            return []
        return [self._to_file(data["data"])]

    async def _fetch_files_many(self, file_ids: List[str]) -> List[ProjectFile]:
        data = await self._request_json(
            "POST", "mods/files", payload={"fileIds": [int(idx) for idx in file_ids]}
        )
        if not data:
            return []
        return self._to_files(data["data"])
