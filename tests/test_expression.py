"""Tests for the conditional expression language."""

import pytest

from fabrun.errors import EvaluationError, ExpressionSyntaxError
from fabrun.expr import compare, evaluate, evaluate_condition, parse_expression, truthy
from fabrun.expr.nodes import And, Compare, Literal, Not, Or, Variable

CTX = {
    "os": "linux",
    "arch": "amd64",
    "cpu": 8,
    "branch": "feature/login",
    "env.HOME": "/home/dev",
    "version.version": "v1.10.0",
    "flag": False,
}


@pytest.mark.parametrize(
    "text,expected",
    [
        ('"linux" == "linux"', True),
        ("!(false)", True),
        ("1 < 2 && 2 < 3", True),
        ('"10" < "9"', True),
        ("10 < 9", False),
        ('semverCompare("1.10.0", "1.9.0")', 1),
        ('semverCompare("v1.2.3", "1.2.3")', 0),
        ('semverCompare("1.2.3-rc1", "1.2.3")', -1),
        ("os == 'linux'", True),
        ("os = 'linux'", True),
        ("os != 'linux'", False),
        ("cpu >= 4", True),
        ("cpu > '10'", False),
        ("true", True),
        ("false", False),
        ("flag", False),
        ("!flag", True),
        ("env.HOME == '/home/dev'", True),
    ],
)
def test_evaluate_values(text, expected):
    assert evaluate(text, CTX) == expected


def test_wrapper_is_stripped():
    assert evaluate("${{ os == 'linux' }}", CTX) is True


def test_precedence_or_below_and():
    # false || (true && true)
    assert evaluate_condition("false || true && true", {}) is True
    # (true || false) && false would be false; && binds tighter
    assert evaluate_condition("true || false && false", {}) is True


def test_not_binds_looser_than_comparison():
    assert evaluate_condition("!os == 'windows'", CTX) is True
    node = parse_expression("!a == b")
    assert node == Not(Compare("==", Variable("a"), Variable("b")))


def test_three_levels_of_nesting():
    text = "((os == 'linux' && (arch == 'arm64' || arch == 'amd64')) || (os == 'darwin' && !(cpu < 2)))"
    assert evaluate_condition(text, CTX) is True
    assert evaluate_condition(text, {**CTX, "arch": "386"}) is False
    assert evaluate_condition(text, {"os": "darwin", "cpu": 4}) is True
    assert evaluate_condition(text, {"os": "darwin", "cpu": 1}) is False


def test_deep_nesting_ast_shape():
    node = parse_expression("!((a || b) && (c || (d && e)))")
    assert node == Not(
        And(
            Or(Variable("a"), Variable("b")),
            Or(Variable("c"), And(Variable("d"), Variable("e"))),
        )
    )


def test_parenthesized_group_inside_call():
    assert evaluate_condition("contains(branch, 'login') && !(startsWith(branch, 'main'))", CTX) is True


@pytest.mark.parametrize(
    "text",
    [
        "(os == 'linux'",
        "os == 'linux')",
        "((a && b) || c",
        "contains(branch, 'x'",
        "",
        "a == b == c",
        "&& a",
        "'unterminated",
        "a ==",
    ],
)
def test_malformed_expressions_raise(text):
    with pytest.raises(ExpressionSyntaxError):
        evaluate(text, CTX)


def test_syntax_error_is_an_evaluation_error():
    with pytest.raises(EvaluationError):
        evaluate("(", {})


def test_unresolved_variable_is_empty_string():
    assert evaluate("missing", {}) == ""
    assert evaluate_condition("missing == ''", {}) is True
    assert evaluate_condition("missing", {}) is False


def test_strict_mode_rejects_unknown_variables():
    with pytest.raises(EvaluationError, match="undefined variable: missing"):
        evaluate("missing == ''", {}, strict=True)


def test_functions():
    assert evaluate("contains(branch, 'login')", CTX) is True
    assert evaluate("startsWith(branch, 'feature/')", CTX) is True
    assert evaluate("endsWith(branch, 'login')", CTX) is True
    assert evaluate("matches(branch, '^feature/[a-z]+$')", CTX) is True
    assert evaluate("matches(branch, 'log')", CTX) is True


@pytest.mark.parametrize(
    "a,b,expected",
    [
        ("1.2.3+build.5", "1.2.3", 0),
        ("1.2.3+build.5", "1.2.3+build.9", 0),
        ("1.0.0-alpha.beta", "1.0.0", -1),
        ("1.0.0-alpha", "1.0.0-alpha.beta", -1),
        ("1.0.0-alpha.beta", "1.0.0-beta", -1),
        ("1.0.0-beta.11", "1.0.0-beta.2", 1),
        ("v2.0.0-rc.1", "2.0.0-rc.1+sha.abc", 0),
    ],
)
def test_semver_precedence(a, b, expected):
    assert evaluate(f"semverCompare('{a}', '{b}')", {}) == expected


def test_function_errors_are_not_false():
    with pytest.raises(EvaluationError, match="expects 2 arguments"):
        evaluate("contains('a')", {})
    with pytest.raises(EvaluationError, match="invalid regex"):
        evaluate("matches('a', '(')", {})
    with pytest.raises(EvaluationError, match="unknown function"):
        evaluate("nope(1)", {})
    with pytest.raises(EvaluationError, match="invalid version"):
        evaluate("semverCompare('banana', '1.0.0')", {})


def test_error_carries_expression_text():
    with pytest.raises(EvaluationError) as info:
        evaluate("contains('a')", {})
    assert info.value.expression == "contains('a')"
    assert "contains('a')" in str(info.value)


def test_file_exists_uses_working_dir(tmp_path):
    (tmp_path / "Makefile").write_text("all:\n")
    assert evaluate("fileExists('Makefile')", {}, working_dir=str(tmp_path)) is True
    assert evaluate("fileExists('nope.txt')", {}, working_dir=str(tmp_path)) is False


def test_and_or_short_circuit():
    # the right-hand side would raise if evaluated
    assert evaluate_condition("false && contains('a')", {}) is False
    assert evaluate_condition("true || contains('a')", {}) is True


def test_and_or_words_are_identifiers():
    assert parse_expression("and") == Variable("and")
    assert evaluate("or", {"or": "x"}) == "x"
    with pytest.raises(ExpressionSyntaxError):
        evaluate("true and false", {})


def test_literals():
    assert parse_expression("'it\\'s'") == Literal("it's")
    assert parse_expression("-3") == Literal(-3)
    assert parse_expression("1.5") == Literal(1.5)


@pytest.mark.parametrize(
    "value,expected",
    [("", False), ("false", False), ("0", True), ("no", True), (0, False), (2, True), (0.0, False), (True, True)],
)
def test_truthiness(value, expected):
    assert truthy(value) is expected


def test_compare_numeric_string_against_number():
    assert compare("<", "9", 10) is True
    assert compare("<", "9", "10") is False
    assert compare("==", True, "true") is True
