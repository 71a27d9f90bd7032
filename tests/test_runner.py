import threading

import pytest

from fabrun.dsl import project, sh, stage, step
from fabrun.errors import ConfigError
from fabrun.model import StepStatus
from fabrun.runner import Runner, RunOptions

from conftest import FakeExecutor, RecordingSink, Script


@pytest.fixture
def config():
    return project(
        "demo",
        actions=[sh(n, f"echo {n}") for n in ("fmt", "lint", "test", "publish", "docs")],
        stages=[
            stage(
                "ci",
                "fmt",
                step("lint", requires=["fmt"]),
                step("test", requires=["lint"]),
                step("publish", requires=["test"], only=["release"]),
                "docs",
            ),
        ],
    )


def make_runner(config, tmp_path, scripts=None, **options):
    executor = FakeExecutor(scripts)
    sink = RecordingSink()
    runner = Runner(
        config,
        RunOptions(working_dir=str(tmp_path), max_parallel=2, **options),
        sink=sink,
        executor=executor,
    )
    return runner, executor, sink


def test_run_stage(config, tmp_path):
    runner, executor, sink = make_runner(config, tmp_path)
    result = runner.run_stage("ci")

    assert result.stage == "ci"
    assert [r.step for r in result.results] == ["fmt", "lint", "test", "publish", "docs"]
    # no version detected and no --only: labelled steps do not run
    assert result.get("publish").status is StepStatus.SKIPPED
    assert "publish" not in executor.started
    assert sink.terminals() == ["fmt", "lint", "test", "publish", "docs"]


def test_only_labels_from_options(config, tmp_path):
    runner, executor, _ = make_runner(config, tmp_path, only=["release"])
    result = runner.run_stage("ci")
    assert result.get("publish").status is StepStatus.OK


def test_only_labels_from_version_file(config, tmp_path):
    (tmp_path / "VERSION").write_text("v2.0.0\n")
    runner, _, _ = make_runner(config, tmp_path)
    assert runner.run_stage("ci").get("publish").status is StepStatus.OK

    (tmp_path / "VERSION").write_text("v2.0.0-rc1\n")
    assert runner.run_stage("ci").get("publish").status is StepStatus.SKIPPED


def test_single_step_ignores_requirements(config, tmp_path):
    runner, executor, _ = make_runner(config, tmp_path)
    result = runner.run_stage_step("ci", "test")
    assert [r.step for r in result.results] == ["test"]
    assert executor.started == ["test"]


def test_single_step_with_requires(config, tmp_path):
    runner, executor, _ = make_runner(config, tmp_path, with_requires=True)
    result = runner.run_stage_step("ci", "test")
    assert [r.step for r in result.results] == ["fmt", "lint", "test"]
    assert executor.started == ["fmt", "lint", "test"]


def test_run_action(config, tmp_path):
    runner, executor, _ = make_runner(config, tmp_path, scripts={"docs": Script(StepStatus.ERROR)})
    result = runner.run_action("docs")
    assert result.stage == "action:docs"
    assert result.get("docs").status is StepStatus.ERROR
    assert not result.success


def test_unknown_names(config, tmp_path):
    runner, _, _ = make_runner(config, tmp_path)
    with pytest.raises(ConfigError, match="stage not found"):
        runner.run_stage("nope")
    with pytest.raises(ConfigError, match="step nope not found"):
        runner.run_stage_step("ci", "nope")
    with pytest.raises(ConfigError, match="action not found"):
        runner.run_action("nope")


def test_context_sources(config, tmp_path):
    runner, _, _ = make_runner(
        config, tmp_path, variables={"branch": "override"}, env={"FOO": "bar"}, inputs={"target": "prod"}
    )
    facts, found = runner.collect_facts()
    assert found is None
    assert "ci" in facts

    ctx = runner.build_context(facts)
    assert ctx["branch"] == "override"
    assert ctx["env.FOO"] == "bar"
    assert ctx["inputs.target"] == "prod"
    assert {"platform", "arch", "os", "cpu"} <= set(ctx)


def test_conditions_see_the_context(tmp_path):
    cfg = project(
        "demo",
        actions=[sh("a", "true"), sh("b", "true")],
        stages=[stage("s", step("a", if_="env.DEPLOY == 'yes'"), step("b", if_="inputs.n > 2"))],
    )
    runner, executor, _ = make_runner(cfg, tmp_path, env={"DEPLOY": "yes"}, inputs={"n": 3})
    result = runner.run_stage("s")
    assert result.get("a").status is StepStatus.OK
    assert result.get("b").status is StepStatus.OK


def test_cancel_event_is_honoured(config, tmp_path):
    runner, executor, _ = make_runner(config, tmp_path)
    cancel = threading.Event()
    cancel.set()
    result = runner.run_stage("ci", cancel)
    assert result.terminated
    assert executor.started == []
