"""pyproject 的包发现配置：src/ 与 config/ 都是无 __init__.py 的命名空间包。"""

from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

ROOT = Path(__file__).resolve().parents[1]
FIND_KEYS = {"where", "include", "exclude", "namespaces"}


def test_package_find_uses_valid_keys():
    with open(ROOT / "pyproject.toml", "rb") as f:
        cfg = tomllib.load(f)
    find = cfg["tool"]["setuptools"]["packages"]["find"]
    assert set(find) <= FIND_KEYS
    assert find["namespaces"] is True
    assert not (ROOT / "src" / "__init__.py").exists()
