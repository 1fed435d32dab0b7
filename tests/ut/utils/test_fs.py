"""文件系统工具 / YAML 读写测试"""

from pathlib import Path

import pytest

from formulary.utils.fs import is_within, make_dirs, remove_path
from formulary.utils.yaml_io import atomic_write, load_yaml


class TestMakeDirs:
    def test_returns_created_outermost_first(self, tmp_path: Path) -> None:
        created = make_dirs(tmp_path / "a" / "b" / "c")
        assert created == [tmp_path / "a", tmp_path / "a" / "b", tmp_path / "a" / "b" / "c"]

    def test_existing_dir_creates_nothing(self, tmp_path: Path) -> None:
        assert make_dirs(tmp_path) == []


class TestRemovePath:
    def test_file_dir_and_symlink(self, tmp_path: Path) -> None:
        f = tmp_path / "f"
        f.write_text("x")
        d = tmp_path / "d"
        (d / "sub").mkdir(parents=True)
        link = tmp_path / "l"
        link.symlink_to(d)

        remove_path(link)
        assert d.exists() and not link.exists()
        remove_path(f)
        remove_path(d)
        remove_path(tmp_path / "missing")
        assert list(tmp_path.iterdir()) == []


class TestIsWithin:
    def test_inside_and_outside(self, tmp_path: Path) -> None:
        assert is_within(tmp_path / "a" / "b", tmp_path)
        assert not is_within(tmp_path / ".." / "x", tmp_path)

    def test_symlink_escape(self, tmp_path: Path) -> None:
        root = tmp_path / "root"
        root.mkdir()
        (root / "evil").symlink_to(tmp_path)
        assert not is_within(root / "evil", root)


class TestYamlIo:
    def test_atomic_write_creates_parent(self, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "r.json"
        atomic_write(target, "{}")
        assert target.read_text() == "{}"
        assert [p.name for p in target.parent.iterdir()] == ["r.json"]

    def test_load_missing_returns_empty(self, tmp_path: Path) -> None:
        assert load_yaml(tmp_path / "none.yml") == {}

    def test_load_non_dict_returns_empty(self, tmp_path: Path) -> None:
        p = tmp_path / "list.yml"
        p.write_text("- a\n- b\n", encoding="utf-8")
        assert load_yaml(p) == {}

    def test_load_invalid_yaml_raises(self, tmp_path: Path) -> None:
        import yaml

        p = tmp_path / "bad.yml"
        p.write_text("name: [unclosed\n", encoding="utf-8")
        with pytest.raises(yaml.YAMLError):
            load_yaml(p)
