"""Version lookup for duck-api."""

import tomllib
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as distribution_version
from pathlib import Path

DISTRIBUTION = "duck-api"


def get_version() -> str:
    """Installed distribution version; a source checkout reads its pyproject.toml."""
    pyproject = Path(__file__).resolve().parents[2] / "pyproject.toml"
    if pyproject.is_file():
        with pyproject.open("rb") as f:
            project = tomllib.load(f).get("project", {})
        if project.get("name") == DISTRIBUTION and project.get("version"):
            return str(project["version"])
    try:
        return distribution_version(DISTRIBUTION)
    except PackageNotFoundError:
        return "0.0.0"
