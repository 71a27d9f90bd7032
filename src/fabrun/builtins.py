# builtins.py
# Built-in actions referenced with `uses:`.
from __future__ import annotations

from .actions import BuiltinAction, BuiltinResult
from .git_facts.git import GitError, modified_files, status_porcelain, tags_by_version
from .model import StepStatus
from .version import VERSION_PATTERN, read_version_file

_STAGED_CODES = ("M ", "A ", "D ", "R ", "C ")


def _hint(text: str, command: str) -> str:
    return f"{text}, to check run:\n    {command}"


def git_untracked(working_dir: str) -> BuiltinResult:
    try:
        lines = status_porcelain(working_dir)
    except GitError as e:
        return BuiltinResult(StepStatus.ERROR, f"failed to check git status: {e}")

    if any(line.startswith("??") for line in lines):
        return BuiltinResult(StepStatus.WARN, _hint("untracked files found", "git status"))
    return BuiltinResult(StepStatus.OK, "no untracked files found")


def git_uncommitted(working_dir: str) -> BuiltinResult:
    try:
        lines = status_porcelain(working_dir)
    except GitError as e:
        return BuiltinResult(StepStatus.ERROR, f"failed to check git status: {e}")

    if any(line[:2] in _STAGED_CODES for line in lines):
        return BuiltinResult(StepStatus.WARN, _hint("uncommitted changes found", "git status"))
    return BuiltinResult(StepStatus.OK, "no uncommitted changes found")


def git_modified(working_dir: str) -> BuiltinResult:
    try:
        files = modified_files(working_dir)
    except GitError as e:
        return BuiltinResult(StepStatus.ERROR, f"failed to check git diff: {e}")

    if files:
        return BuiltinResult(StepStatus.WARN, _hint("there are modified files", "git status"))
    return BuiltinResult(StepStatus.OK, "no modified files found")


def version_check(working_dir: str) -> BuiltinResult:
    version = read_version_file(working_dir)
    if version is None:
        return BuiltinResult(StepStatus.ERROR, _hint("VERSION file not found or empty", "cat VERSION"))
    if not VERSION_PATTERN.match(version):
        return BuiltinResult(
            StepStatus.ERROR,
            _hint(f"invalid version format: {version} (expected vMAJOR.MINOR.PATCH[-pre])", "cat VERSION"),
        )
    return BuiltinResult(StepStatus.OK, f"version format is valid: {version}")


def version_check_greatest(working_dir: str) -> BuiltinResult:
    current = read_version_file(working_dir)
    if current is None:
        return BuiltinResult(StepStatus.ERROR, _hint("VERSION file not found or empty", "cat VERSION"))

    try:
        tags = tags_by_version(working_dir)
    except GitError as e:
        return BuiltinResult(StepStatus.ERROR, f"failed to get git tags: {e}")

    if not tags:
        return BuiltinResult(StepStatus.OK, "no tags found, current version is greatest")
    if current == tags[0]:
        return BuiltinResult(StepStatus.OK, f"current version {current} is the greatest")
    return BuiltinResult(
        StepStatus.ERROR,
        _hint(f"current version {current} is not the greatest, greatest is {tags[0]}",
              "git tag --sort=-version:refname"),
    )


BUILTINS = (
    BuiltinAction("git@untracked", "Check for untracked files", git_untracked),
    BuiltinAction("git@uncommitted", "Check for uncommitted changes", git_uncommitted),
    BuiltinAction("git@modified", "Check for modified files", git_modified),
    BuiltinAction("version@check", "Validate VERSION file format", version_check),
    BuiltinAction("version@check-greatest", "Check that VERSION is the greatest git tag", version_check_greatest),
)
