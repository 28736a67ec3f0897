import json
from typing import List, Optional

from loguru import logger

from modlock.api.base import Platform
from modlock.exceptions import UnrecognizedCategoryError
from modlock.models import Project, ProjectFile, ProjectType, ReleaseType


class Modrinth(Platform):
    """Modrinth 平台 (https://api.modrinth.com/v2)"""

    name = "Modrinth"
    serial_name = "modrinth"
    api_url = "https://api.modrinth.com"
    api_version = 2

    def _category_map(self) -> dict:
        return {
            "mod": ProjectType.MOD,
            "resourcepack": ProjectType.RESOURCE_PACK,
            "shader": ProjectType.SHADER,
        }

    @staticmethod
    def _ids_param(ids: List[str]) -> str:
        # ["a","b"]，由 aiohttp 负责 URL 编码
        return json.dumps(list(ids), separators=(",", ":"))

    # -- 项目 --

    def _to_project(self, data: dict) -> Project:
        return Project(
            type=self._project_type(data["project_type"]),
            name={self.serial_name: data["title"]},
            slug={self.serial_name: data["slug"]},
            id={self.serial_name: data["id"]},
        )

    async def _fetch_project(self, kind: str, key: str) -> Optional[Project]:
        # Modrinth 的 project/{id|slug} 同时接受两种形式
        data = await self._get_json(f"project/{key}")
        if data is None:
            return None
        return self._to_project(data)

    async def _fetch_projects(self, ids: List[str]) -> List[Project]:
        data = await self._get_json("projects", params={"ids": self._ids_param(ids)})
        if not data:
            return []
        projects = []
        for item in data:
            if item.get("project_type") == "modpack":
                continue
            try:
                projects.append(self._to_project(item))
            except UnrecognizedCategoryError as e:
                logger.warning(f"[{self.name}] 跳过 '{item.get('slug')}': {e.message}")
        return projects

    # -- 文件 --

    def _to_files(self, version: dict) -> List[ProjectFile]:
        release_type = ReleaseType.normalize(version.get("version_type"))
        required = {
            dep["project_id"]
            for dep in version.get("dependencies") or []
            if "required" in (dep.get("dependency_type") or "")
            and dep.get("project_id")
        }
        files = []
        for file in version["files"]:
            hashes = file.get("hashes") or {}
            files.append(
                ProjectFile(
                    platform=self.serial_name,
                    file_name=file["filename"],
                    url=file["url"],
                    id=version["id"],
                    parent_id=version["project_id"],
                    mc_versions=list(version.get("game_versions") or []),
                    loaders=list(version.get("loaders") or []),
                    release_type=release_type,
                    hashes={
                        algo: hashes[algo]
                        for algo in ("sha512", "sha1")
                        if hashes.get(algo)
                    },
                    required_dependencies=set(required),
                )
            )
        return files

    async def _fetch_files(self, project_id: str) -> List[ProjectFile]:
        data = await self._get_json(f"project/{project_id}/version")
        if not data:
            return []
        return [file for version in data for file in self._to_files(version)]

    async def _fetch_file(self, project_id: str, file_id: str) -> List[ProjectFile]:
        data = await self._get_json(f"version/{file_id}")
        if data is None:
            return []
        return self._to_files(data)

    async def _fetch_files_many(self, file_ids: List[str]) -> List[ProjectFile]:
        data = await self._get_json(
            "versions", params={"ids": self._ids_param(file_ids)}
        )
        if not data:
            return []
        return [file for version in data for file in self._to_files(version)]
