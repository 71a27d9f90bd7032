import pytest

from fabrun.dsl import matrix, project, sh, stage, step, uses, variants, when
from fabrun.model import ActionKind, OnError


def test_project_from_python():
    lint = sh("lint", "ruff check .")
    cfg = project(
        "demo",
        actions=[
            lint,
            uses("untracked", "git@untracked"),
            variants("build", when("os == 'windows'", run="build.bat"), when("true", run="make")),
            matrix("py", ["3.11", "3.12"]).actions(lambda v: sh(f"test-py{v}", f"python{v} -m pytest")),
        ],
        stages=[
            stage(
                "ci",
                lint,
                "untracked",
                step("build", requires=["lint"], onerror="warn", if_="!ci", only=["release"]),
                step("test-py3.12", name="tests", requires=["build"]),
            ),
        ],
    )

    assert list(cfg.actions) == ["lint", "untracked", "build", "test-py3.11", "test-py3.12"]
    assert cfg.actions["build"].kind is ActionKind.VARIANTS
    assert cfg.actions["untracked"].uses == "git@untracked"

    steps = cfg.stages["ci"].steps
    assert [s.name for s in steps] == ["lint", "untracked", "build", "tests"]
    assert steps[2].on_error is OnError.WARN
    assert steps[2].condition == "!ci"
    assert steps[2].only == ("release",)
    assert steps[3].action == "test-py3.12"


def test_duplicate_action_names():
    with pytest.raises(ValueError, match="duplicate action"):
        project("x", actions=[sh("a", "true"), sh("a", "false")])


def test_empty_stage():
    with pytest.raises(ValueError):
        stage("empty")
