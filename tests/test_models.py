"""规范化模型测试"""

from __future__ import annotations

import pytest
from loguru import logger

from modlock.models import Project, ProjectFile, ProjectType, ReleaseType


def _file(platform="modrinth", idx="V1", name="a.jar", deps=()) -> ProjectFile:
    return ProjectFile(
        platform=platform,
        file_name=name,
        url=f"https://example.com/{name}",
        id=idx,
        parent_id="P1",
        mc_versions=["1.20.1"],
        loaders=["fabric"],
        required_dependencies=set(deps),
    )


class TestReleaseType:
    """发布类型规范化"""

    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, ReleaseType.RELEASE),
            ("", ReleaseType.RELEASE),
            ("   ", ReleaseType.RELEASE),
            ("null", ReleaseType.RELEASE),
            ("beta", ReleaseType.BETA),
            ("Alpha", ReleaseType.ALPHA),
            (2, ReleaseType.BETA),
            (3, ReleaseType.ALPHA),
        ],
    )
    def test_normalize(self, value, expected) -> None:
        assert ReleaseType.normalize(value) is expected


class TestProjectFile:
    """文件身份"""

    def test_identity_ignores_metadata(self) -> None:
        a = _file()
        b = _file()
        b.url = "https://mirror.example.com/a.jar"
        assert a == b
        assert len({a, b}) == 1

    def test_artifacts_of_one_version_stay_distinct(self) -> None:
        assert _file(name="a.jar") != _file(name="a-sources.jar")

    def test_dict_round_trip_keeps_dependencies(self) -> None:
        restored = ProjectFile.from_dict(_file(deps=["DEP00001"]).to_dict())
        assert restored.required_dependencies == {"DEP00001"}
        assert restored.release_type is ReleaseType.RELEASE


class TestProject:
    """项目合并与依赖"""

    def test_merge_unions_platforms_and_files(self) -> None:
        mr = Project(
            type=ProjectType.MOD,
            slug={"modrinth": "sodium"},
            id={"modrinth": "AANobbMI"},
            files=[_file()],
        )
        cf = Project(
            type=ProjectType.MOD,
            slug={"curseforge": "sodium"},
            id={"curseforge": "394468"},
            files=[_file(platform="curseforge", idx="4567890", name="sodium.jar")],
        )
        mr.merge(cf)
        assert mr.platform_ids() == {("modrinth", "AANobbMI"), ("curseforge", "394468")}
        assert len(mr.files) == 2

    def test_merge_keeps_first_id_and_warns_on_conflict(self) -> None:
        first = Project(type=ProjectType.MOD, id={"modrinth": "AANobbMI"})
        second = Project(type=ProjectType.MOD, id={"modrinth": "OTHER001"})
        messages: list = []
        sink = logger.add(messages.append, level="WARNING")
        try:
            first.merge(second)
        finally:
            logger.remove(sink)

        assert first.id == {"modrinth": "AANobbMI"}
        assert len(messages) == 1
        assert "OTHER001" in messages[0]

    def test_add_files_deduplicates(self) -> None:
        project = Project(type=ProjectType.MOD, id={"modrinth": "P1"})
        project.add_files([_file(), _file(), _file(name="b.jar")])
        assert len(project.files) == 2

    def test_required_dependencies_are_platform_scoped(self) -> None:
        project = Project(
            type=ProjectType.MOD,
            id={"modrinth": "P1"},
            files=[
                _file(deps=["FABRIC01"]),
                _file(platform="curseforge", idx="1", name="c.jar", deps=["306612"]),
            ],
        )
        assert project.required_dependencies() == {
            ("modrinth", "FABRIC01"),
            ("curseforge", "306612"),
        }

    def test_unknown_type_rejected_on_load(self) -> None:
        with pytest.raises(ValueError):
            Project.from_dict({"type": "modpack", "id": {"modrinth": "P1"}})
