"""Application version helper.

Use importlib.metadata when installed, and fall back to reading pyproject.toml
when running from a source checkout (no installed dist metadata).
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version as _dist_version
from pathlib import Path

import tomllib


def get_repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def get_app_version(package_name: str = "sophia-brain") -> str:
    try:
        return _dist_version(package_name)
    except PackageNotFoundError:
        pyproject = get_repo_root() / "pyproject.toml"
        try:
            with pyproject.open("rb") as f:
                data = tomllib.load(f)
            return str(data.get("project", {}).get("version", "0.0.0"))
        except (OSError, tomllib.TOMLDecodeError):
            return "0.0.0"
