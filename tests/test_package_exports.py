import re
from pathlib import Path

import pytest

import eat_gateway


def _read_pyproject_version() -> str:
    txt = (Path(__file__).resolve().parents[1] / "pyproject.toml").read_text(encoding="utf-8")
    m = re.search(r"^version\s*=\s*\"([^\"]+)\"\s*$", txt, flags=re.MULTILINE)
    assert m, "Could not locate [project].version in pyproject.toml"
    return m.group(1)


def test_convenience_imports_work():
    from eat_gateway import AccessTokenVerifier, KeyHierarchy, AccessToken  # noqa: F401
    from eat_gateway import TokenIssuer, AccessTokenConsumer, token_gated, create_app  # noqa: F401

    for name in eat_gateway.__all__:
        assert hasattr(eat_gateway, name)
    assert "AccessTokenVerifier" in dir(eat_gateway)


def test_unknown_attribute():
    with pytest.raises(AttributeError):
        eat_gateway.NoSuchThing  # noqa: B018


def test_version_export_matches_pyproject():
    assert eat_gateway.__version__ == _read_pyproject_version()
