import pytest

from fabrun.variables import build_context, interpolate, parse_assignments


def test_context_priority():
    ctx = build_context(
        platform={"os": "linux", "arch": "amd64"},
        facts={"branch": "main", "os": "from-facts"},
        env={"HOME": "/root"},
        inputs={"target": "prod"},
        matrix={"py": "3.12"},
        overrides={"branch": "release", "env.HOME": "/tmp"},
    )
    assert ctx["os"] == "from-facts"
    assert ctx["arch"] == "amd64"
    assert ctx["branch"] == "release"
    assert ctx["env.HOME"] == "/tmp"
    assert ctx["inputs.target"] == "prod"
    assert ctx["matrix.py"] == "3.12"


def test_context_is_read_only():
    ctx = build_context(facts={"ci": True})
    with pytest.raises(TypeError):
        ctx["ci"] = False  # type: ignore[index]


def test_interpolate():
    ctx = {"os": "linux", "cpu": 8, "ci": True, "env.USER": "bob"}
    assert interpolate("build-${{ os }}-${{cpu}}", ctx) == "build-linux-8"
    assert interpolate("${{ ci }} ${{env.USER}}", ctx) == "true bob"
    assert interpolate("keep ${{ nope }} and $HOME", ctx) == "keep ${{ nope }} and $HOME"


def test_parse_assignments():
    assert parse_assignments(["A=1", "B=x=y", "C="]) == {"A": "1", "B": "x=y", "C": ""}
    assert parse_assignments(None) == {}
    with pytest.raises(ValueError, match="expected KEY=VALUE"):
        parse_assignments(["novalue"], what="--var value")
    with pytest.raises(ValueError):
        parse_assignments(["=x"])
