# platform.py
# Platform facts exposed to expressions and command interpolation.
from __future__ import annotations

import os
import platform as _platform
import sys
from dataclasses import dataclass
from typing import Dict

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
}


@dataclass(frozen=True)
class PlatformFacts:
    platform: str    # linux, windows, darwin
    arch: str        # amd64, arm64, 386, ...
    os: str          # distribution id on linux (ubuntu, debian, ...), else platform
    os_version: str
    cpu: int

    def as_dict(self) -> Dict[str, object]:
        return {
            "platform": self.platform,
            "arch": self.arch,
            "os": self.os,
            "os_version": self.os_version,
            "cpu": self.cpu,
        }


def _platform_name() -> str:
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform == "darwin":
        return "darwin"
    if sys.platform in ("win32", "cygwin"):
        return "windows"
    return sys.platform


def _arch() -> str:
    machine = _platform.machine().lower()
    return _ARCH_ALIASES.get(machine, machine or "unknown")


def _linux_release() -> tuple[str, str]:
    try:
        info = _platform.freedesktop_os_release()
    except OSError:
        return "linux", ""
    return info.get("ID", "linux"), info.get("VERSION_ID", "")


def detect() -> PlatformFacts:
    name = _platform_name()
    if name == "linux":
        os_id, os_version = _linux_release()
    elif name == "darwin":
        os_id, os_version = "darwin", _platform.mac_ver()[0] or ""
    elif name == "windows":
        os_id, os_version = "windows", _platform.version()
    else:
        os_id, os_version = name, _platform.release()

    return PlatformFacts(
        platform=name,
        arch=_arch(),
        os=os_id,
        os_version=os_version,
        cpu=os.cpu_count() or 1,
    )
