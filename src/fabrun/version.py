# version.py
# Project version detection (VERSION file, then latest git tag).
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import semver

from .git_facts.git import GitError, tags_by_version

logger = logging.getLogger(__name__)

VERSION_FILE = "VERSION"

# vMAJOR.MINOR.PATCH with an optional pre-release suffix
VERSION_PATTERN = re.compile(r"^v(\d+)\.(\d+)\.(\d+)(?:-([0-9A-Za-z][0-9A-Za-z.\-]*))?$")


@dataclass(frozen=True)
class ProjectVersion:
    raw: str
    parsed: semver.Version

    @property
    def kind(self) -> str:
        return "prerelease" if self.parsed.prerelease else "release"

    @property
    def bump(self) -> str:
        """major when minor and patch are 0, minor when patch is 0, else patch."""
        if self.parsed.minor == 0 and self.parsed.patch == 0:
            return "major"
        if self.parsed.patch == 0:
            return "minor"
        return "patch"

    @property
    def labels(self) -> List[str]:
        return [self.kind, self.bump]

    def variables(self) -> Dict[str, object]:
        return {
            "version.version": self.raw,
            "version.type": self.kind,
            "version.major": self.parsed.major,
            "version.minor": self.parsed.minor,
            "version.patch": self.parsed.patch,
        }


def parse(raw: str) -> Optional[ProjectVersion]:
    text = raw.strip()
    bare = text[1:] if text[:1] in ("v", "V") else text
    try:
        return ProjectVersion(raw=text, parsed=semver.Version.parse(bare))
    except ValueError:
        return None


def read_version_file(working_dir: str = ".") -> Optional[str]:
    path = Path(working_dir) / VERSION_FILE
    if not path.is_file():
        return None
    text = path.read_text(encoding="utf-8").strip()
    return text or None


def detect(working_dir: str = ".") -> Optional[ProjectVersion]:
    """
    Detect the project version.

    Looks at the VERSION file first, then the greatest git tag. Returns
    None when neither yields a parseable version.
    """
    raw = read_version_file(working_dir)
    if raw is None:
        try:
            tags = tags_by_version(working_dir)
        except GitError as e:
            logger.debug("no version from git tags: %s", e)
            tags = []
        raw = tags[0] if tags else None

    if raw is None:
        logger.debug("no project version found in %s", working_dir)
        return None

    found = parse(raw)
    if found is None:
        logger.warning("ignoring unparseable project version %r", raw)
    return found
