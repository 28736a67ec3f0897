"""测试夹具：回放固定 JSON 载荷的平台适配器"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pytest

from modlock.api import CurseForge, Modrinth
from modlock.lock import LockFile


class ReplayMixin:
    """按 endpoint 回放载荷；值为异常实例时抛出，缺失时相当于 404"""

    def __init__(self, routes: Dict[str, Any], delay: float = 0.0, **kwargs):
        super().__init__(**kwargs)
        self.routes = routes
        self.delay = delay
        self.calls: List[tuple] = []

    async def _request_json(self, method, endpoint, params=None, payload=None):
        self.calls.append((method, endpoint, params, payload))
        if self.delay:
            await asyncio.sleep(self.delay)
        value = self.routes.get(endpoint)
        if isinstance(value, Exception):
            raise value
        return value

    def count(self, endpoint: str) -> int:
        return sum(1 for call in self.calls if call[1] == endpoint)


class FakeModrinth(ReplayMixin, Modrinth):
    pass


class FakeCurseForge(ReplayMixin, CurseForge):
    def __init__(self, routes, delay=0.0, **kwargs):
        kwargs.setdefault("api_key", "test-key")
        super().__init__(routes, delay, **kwargs)


def mr_project(idx: str, slug: str, project_type: str = "mod", title: str = "") -> dict:
    return {
        "id": idx,
        "slug": slug,
        "title": title or slug.title(),
        "project_type": project_type,
    }


def mr_version(
    idx: str,
    project_id: str,
    game_versions: Iterable[str] = ("1.20.1",),
    loaders: Iterable[str] = ("fabric",),
    required: Iterable[str] = (),
    optional: Iterable[str] = (),
    version_type: Optional[str] = "release",
    filenames: Iterable[str] = (),
) -> dict:
    filenames = list(filenames) or [f"{project_id.lower()}-{idx.lower()}.jar"]
    return {
        "id": idx,
        "project_id": project_id,
        "version_type": version_type,
        "game_versions": list(game_versions),
        "loaders": list(loaders),
        "dependencies": [
            {"project_id": dep, "dependency_type": "required"} for dep in required
        ]
        + [{"project_id": dep, "dependency_type": "optional"} for dep in optional],
        "files": [
            {
                "filename": name,
                "url": f"https://cdn.modrinth.com/data/{project_id}/versions/{idx}/{name}",
                "hashes": {"sha1": "a" * 40, "sha512": "b" * 128},
            }
            for name in filenames
        ],
    }


def mr_mod(routes: dict, idx: str, slug: str, required=(), **version_kwargs) -> None:
    """注册一个带单个版本的 Modrinth 模组（slug 与 id 都能查到）"""
    project = mr_project(idx, slug)
    routes[f"project/{slug}"] = project
    routes[f"project/{idx}"] = project
    routes[f"project/{idx}/version"] = [
        mr_version(f"V{idx[1:]}", idx, required=required, **version_kwargs)
    ]


@pytest.fixture
def lock_path(tmp_path: Path) -> Path:
    return tmp_path / "modlock.json"


@pytest.fixture
def lock(lock_path: Path) -> LockFile:
    return LockFile(
        str(lock_path),
        target_versions=["1.20.1"],
        target_loaders=["fabric"],
        provider_priority=["modrinth", "curseforge"],
    )


def cf_mod(idx: int, slug: str, class_id: int = 6) -> dict:
    return {"id": idx, "slug": slug, "name": slug.title(), "classId": class_id}


def cf_file(idx: int, mod_id: int, game_versions, deps=(), download_url="", date="2024-01-01") -> dict:
    return {
        "id": idx,
        "modId": mod_id,
        "fileName": f"mod-{idx}.jar",
        "downloadUrl": download_url or None,
        "gameVersions": list(game_versions),
        "releaseType": 2,
        "fileDate": date,
        "hashes": [{"value": "c" * 40, "algo": 1}, {"value": "d" * 32, "algo": 2}],
        "dependencies": [{"modId": m, "relationType": r} for m, r in deps],
    }


def cf_mod_with_files(routes: dict, idx: int, slug: str, files) -> None:
    """注册一个 CurseForge 模组及其文件列表"""
    routes[f"mods/{idx}"] = {"data": cf_mod(idx, slug)}
    routes[f"mods/{idx}/files"] = {
        "data": list(files),
        "pagination": {"index": 0, "resultCount": len(files), "totalCount": len(files)},
    }
