"""依赖解析测试"""

from __future__ import annotations

import json
from pathlib import Path
from typing import List

import pytest

from modlock.exceptions import (
    AlreadyAddedError,
    AmbiguousMatchError,
    APIServerError,
    ConfigValidationError,
    NoCompatibleFilesError,
    ProjectNotFoundError,
    ProviderError,
    ResolutionError,
)
from modlock.lock import LockFile
from modlock.services import (
    Decision,
    DependencyResolver,
    QueryCache,
    ResolutionHandler,
    ResolutionStatus,
)

from conftest import (
    FakeCurseForge,
    FakeModrinth,
    cf_file,
    cf_mod_with_files,
    mr_mod,
    mr_project,
    mr_version,
)


class RecordingHandler(ResolutionHandler):
    """记录错误，按需接受不确定的匹配或选择其他平台"""

    def __init__(self, accept_ambiguous: bool = False, alternates: bool = False, retry: bool = True):
        self.errors: List[ResolutionError] = []
        self.retries: List[str] = []
        self.accept_ambiguous = accept_ambiguous
        self.alternates = alternates
        self.retry = retry

    async def on_error(self, error):
        self.errors.append(error)

    async def on_retry(self, identifier, previous, remaining):
        self.retries.append(previous.serial_name)
        return remaining[0] if self.retry else None

    async def on_success(self, project, is_recommended, remaining):
        accept = is_recommended or self.accept_ambiguous
        return Decision(accept, list(remaining) if self.alternates else [])


def _ids(lock: LockFile) -> set:
    return lock.ids()


@pytest.fixture
def routes() -> dict:
    routes: dict = {}
    mr_mod(routes, "SODIUM01", "sodium", required=["FABRIC01"], optional=["MODMENU1"])
    mr_mod(routes, "FABRIC01", "fabric-api")
    mr_mod(routes, "MODMENU1", "modmenu")
    mr_mod(routes, "INDIUM01", "indium", required=["SODIUM01", "FABRIC01"])
    mr_mod(routes, "CYCLEA01", "cycle-a", required=["CYCLEB01"])
    mr_mod(routes, "CYCLEB01", "cycle-b", required=["CYCLEA01"])
    mr_mod(routes, "OLDMOD01", "old-mod", game_versions=["1.16.5"])
    return routes


@pytest.fixture
def modrinth(routes) -> FakeModrinth:
    return FakeModrinth(routes, delay=0.001, cache=QueryCache())


class TestClosure:
    """依赖闭包"""

    async def test_required_dependencies_are_added(self, lock, modrinth) -> None:
        resolver = DependencyResolver(lock, [modrinth])
        (result,) = await resolver.resolve_batch(["sodium"])

        assert result.status is ResolutionStatus.ACCEPTED
        assert [d.status for d in result.dependencies] == [ResolutionStatus.ACCEPTED]
        assert _ids(lock) == {("modrinth", "SODIUM01"), ("modrinth", "FABRIC01")}

        sodium = lock.get_by_id("modrinth", "SODIUM01")
        fabric = lock.get_by_id("modrinth", "FABRIC01")
        assert sodium.requires == {fabric.lock_id}
        assert fabric.required_by == {sodium.lock_id}

    async def test_cycle_terminates(self, lock, modrinth) -> None:
        resolver = DependencyResolver(lock, [modrinth])
        await resolver.resolve_batch(["cycle-a"])

        assert _ids(lock) == {("modrinth", "CYCLEA01"), ("modrinth", "CYCLEB01")}
        assert modrinth.count("project/CYCLEA01/version") == 1
        assert modrinth.count("project/CYCLEB01/version") == 1
        assert modrinth.count("project/CYCLEA01") == 0

        a = lock.get_by_id("modrinth", "CYCLEA01")
        b = lock.get_by_id("modrinth", "CYCLEB01")
        assert a.requires == {b.lock_id} and b.requires == {a.lock_id}

    async def test_shared_dependency_queried_once(self, lock, modrinth) -> None:
        resolver = DependencyResolver(lock, [modrinth])
        await resolver.resolve_batch(["indium", "sodium"])

        assert len(lock) == 3
        assert modrinth.count("project/FABRIC01") == 1
        fabric = lock.get_by_id("modrinth", "FABRIC01")
        assert len(fabric.required_by) == 2

    async def test_no_deps(self, lock, modrinth) -> None:
        resolver = DependencyResolver(lock, [modrinth])
        await resolver.resolve_batch(["sodium"], expand=False)
        assert _ids(lock) == {("modrinth", "SODIUM01")}

    async def test_concurrent_matches_sequential(self, tmp_path: Path, routes) -> None:
        def fresh(name: str) -> LockFile:
            return LockFile(str(tmp_path / name), ["1.20.1"], ["fabric"], ["modrinth"])

        concurrent = fresh("a.json")
        await DependencyResolver(concurrent, [FakeModrinth(routes)]).resolve_batch(
            ["indium", "fabric-api"]
        )

        sequential = fresh("b.json")
        resolver = DependencyResolver(sequential, [FakeModrinth(routes)])
        await resolver.resolve_batch(["fabric-api"])
        await resolver.resolve_batch(["indium"])

        assert _ids(concurrent) == _ids(sequential)
        assert len(concurrent) == len(sequential) == 3

    async def test_numeric_dependency_resolved_by_id(self, lock) -> None:
        routes: dict = {}
        cf_mod_with_files(
            routes, 238222, "jei", [cf_file(4001, 238222, ["1.20.1", "Fabric"], deps=[(32274, 3)])]
        )
        cf_mod_with_files(routes, 32274, "journeymap", [cf_file(4002, 32274, ["1.20.1", "Fabric"])])
        curseforge = FakeCurseForge(routes)

        resolver = DependencyResolver(lock, [curseforge])
        (result,) = await resolver.resolve_batch(["238222"])

        assert [d.status for d in result.dependencies] == [ResolutionStatus.ACCEPTED]
        assert _ids(lock) == {("curseforge", "238222"), ("curseforge", "32274")}
        assert curseforge.count("mods/search") == 0

    async def test_dependency_from_fallback_links_every_parent(self, lock) -> None:
        cf_routes: dict = {}
        for idx, slug in ((238222, "jei"), (306612, "jade")):
            cf_mod_with_files(
                cf_routes, idx, slug, [cf_file(idx + 1, idx, ["1.20.1", "Fabric"], deps=[(32274, 3)])]
            )
        curseforge = FakeCurseForge(cf_routes, delay=0.001)
        modrinth = FakeModrinth(
            {
                "project/32274": mr_project("JMAP0001", "journeymap"),
                "project/JMAP0001/version": [mr_version("VMAP0001", "JMAP0001")],
            }
        )

        resolver = DependencyResolver(lock, [curseforge, modrinth])
        await resolver.resolve_batch(
            ["238222", "306612"], RecordingHandler(accept_ambiguous=True)
        )

        assert len(lock) == 3
        assert curseforge.count("mods/32274") == 1
        journeymap = lock.get_by_id("modrinth", "JMAP0001")
        jei = lock.get_by_id("curseforge", "238222")
        jade = lock.get_by_id("curseforge", "306612")
        assert journeymap.required_by == {jei.lock_id, jade.lock_id}
        assert jei.requires == {journeymap.lock_id}
        assert jade.requires == {journeymap.lock_id}


class TestDispatch:
    """平台分派与错误"""

    async def test_not_found(self, lock, modrinth) -> None:
        handler = RecordingHandler()
        resolver = DependencyResolver(lock, [modrinth])
        (result,) = await resolver.resolve_batch(["does-not-exist"], handler)

        assert result.status is ResolutionStatus.FAILED
        assert isinstance(result.error, ProjectNotFoundError)
        assert handler.errors == [result.error]

    async def test_retry_on_next_provider(self, lock, modrinth) -> None:
        curseforge = FakeCurseForge(
            {
                "mods/search": {"data": [{"id": 238222, "slug": "jei", "name": "JEI", "classId": 6}]},
                "mods/238222/files": {
                    "data": [
                        {
                            "id": 4567890,
                            "modId": 238222,
                            "fileName": "jei.jar",
                            "downloadUrl": "https://edge.forgecdn.net/files/4567/890/jei.jar",
                            "gameVersions": ["1.20.1", "Fabric"],
                            "releaseType": 1,
                            "hashes": [],
                            "dependencies": [],
                        }
                    ],
                    "pagination": {"resultCount": 1, "totalCount": 1},
                },
            }
        )
        handler = RecordingHandler()
        resolver = DependencyResolver(lock, [modrinth, curseforge])
        (result,) = await resolver.resolve_batch(["jei"], handler)

        assert handler.retries == ["modrinth"]
        assert result.status is ResolutionStatus.ACCEPTED
        assert result.platform is curseforge
        assert _ids(lock) == {("curseforge", "238222")}

    async def test_declined_retry_reports_not_found(self, lock, modrinth) -> None:
        handler = RecordingHandler(retry=False)
        resolver = DependencyResolver(lock, [modrinth, FakeCurseForge({})])
        (result,) = await resolver.resolve_batch(["jei"], handler)

        assert result.status is ResolutionStatus.FAILED
        assert isinstance(result.error, ProjectNotFoundError)

    async def test_provider_error_on_every_provider(self, lock) -> None:
        failing = FakeModrinth({"project/sodium": APIServerError("down")})
        resolver = DependencyResolver(lock, [failing])
        (result,) = await resolver.resolve_batch(["sodium"])

        assert isinstance(result.error, ProviderError)

    async def test_no_compatible_files(self, lock, modrinth) -> None:
        resolver = DependencyResolver(lock, [modrinth])
        (result,) = await resolver.resolve_batch(["old-mod"])

        assert result.status is ResolutionStatus.FAILED
        assert isinstance(result.error, NoCompatibleFilesError)
        assert len(lock) == 0

    async def test_ambiguous_match_declined(self, lock, routes) -> None:
        routes["project/sodium-renewed"] = mr_project("SODIUM01", "sodium")
        resolver = DependencyResolver(lock, [FakeModrinth(routes)])
        (result,) = await resolver.resolve_batch(["sodium-renewed"])

        assert result.status is ResolutionStatus.SKIPPED
        assert isinstance(result.error, AmbiguousMatchError)
        assert len(lock) == 0

    async def test_ambiguous_match_confirmed(self, lock, routes) -> None:
        routes["project/sodium-renewed"] = mr_project("SODIUM01", "sodium")
        resolver = DependencyResolver(lock, [FakeModrinth(routes)])
        (result,) = await resolver.resolve_batch(
            ["sodium-renewed"], RecordingHandler(accept_ambiguous=True)
        )

        assert result.status is ResolutionStatus.ACCEPTED
        assert result.is_recommended is False

    async def test_already_added(self, lock, modrinth) -> None:
        resolver = DependencyResolver(lock, [modrinth])
        await resolver.resolve_batch(["sodium"])
        (result,) = await resolver.resolve_batch(["SODIUM01"])

        assert result.status is ResolutionStatus.SKIPPED
        assert isinstance(result.error, AlreadyAddedError)
        assert len(lock) == 2

    async def test_alternate_provider_is_merged(self, lock, modrinth) -> None:
        curseforge = FakeCurseForge(
            {
                "mods/search": {"data": [{"id": 394468, "slug": "fabric-api", "name": "Fabric API", "classId": 6}]},
                "mods/394468/files": {
                    "data": [
                        {
                            "id": 5000001,
                            "modId": 394468,
                            "fileName": "fabric-api.jar",
                            "downloadUrl": "https://edge.forgecdn.net/files/5000/1/fabric-api.jar",
                            "gameVersions": ["1.20.1", "Fabric"],
                            "releaseType": 1,
                            "hashes": [],
                            "dependencies": [],
                        }
                    ],
                    "pagination": {"resultCount": 1, "totalCount": 1},
                },
            }
        )
        resolver = DependencyResolver(lock, [modrinth, curseforge])
        await resolver.resolve_batch(["fabric-api"], RecordingHandler(alternates=True))

        (project,) = lock.projects
        assert project.platform_ids() == {("modrinth", "FABRIC01"), ("curseforge", "394468")}
        assert {f.platform for f in project.files} == {"modrinth", "curseforge"}


class TestBatch:
    """批次写入"""

    async def test_partial_failure_still_persists(self, lock, lock_path, modrinth) -> None:
        resolver = DependencyResolver(lock, [modrinth])
        results = await resolver.resolve_batch(["sodium", "does-not-exist"])

        assert [r.status for r in results] == [
            ResolutionStatus.ACCEPTED,
            ResolutionStatus.FAILED,
        ]
        saved = json.loads(lock_path.read_text())
        assert len(saved["projects"]) == 2

    async def test_missing_context_is_fatal(self, lock_path: Path, modrinth) -> None:
        lock = LockFile(str(lock_path), ["1.20.1"], [], ["modrinth"])
        resolver = DependencyResolver(lock, [modrinth])

        with pytest.raises(ConfigValidationError):
            await resolver.resolve_batch(["sodium"])
        assert modrinth.calls == []
        assert not lock_path.exists()
