from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

ROOT = Path(__file__).resolve().parent.parent


def test_project_metadata():
    with open(ROOT / "pyproject.toml", "rb") as f:
        project = tomllib.load(f)["project"]
    assert "readme" not in project
    assert {"numpy", "scipy>=1.6", "torch>=1.13"} <= set(project["dependencies"])
