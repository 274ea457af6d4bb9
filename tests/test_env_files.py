# tests/test_env_files.py
"""
Tests for .env helpers and template variable substitution.
"""
from deck.utils.env_files import (
    port_variables,
    read_env,
    substitute,
    substitute_in_directory,
    update_env,
)


def test_read_missing_env_is_empty(tmp_path):
    assert read_env(tmp_path / ".env") == {}


def test_update_env_keeps_other_keys(tmp_path):
    env = tmp_path / ".env"
    env.write_text("# comment\nDEV_PORT=5000\nAPP_NAME=shop\n", encoding="utf-8")

    update_env(env, {"DEV_PORT": 7000, "CONTAINER_NAME": "shop-prod"})

    values = read_env(env)
    assert values == {"DEV_PORT": "7000", "APP_NAME": "shop", "CONTAINER_NAME": "shop-prod"}
    assert "# comment" in env.read_text(encoding="utf-8")


def test_port_variables():
    env = {"DEV_PORT": "5000", "DB_PORT": "5432", "APP_NAME": "shop", "BAD_PORT": "abc"}
    assert port_variables(env) == {"DEV_PORT": 5000, "DB_PORT": 5432}
    assert port_variables(env, runtime_only=True) == {"DEV_PORT": 5000}


def test_substitute_both_syntaxes():
    content = "name: ${PROJECT}\nimage: {{ IMAGE }}\nkeep: ${UNKNOWN}\n"
    result = substitute(content, {"PROJECT": "shop", "IMAGE": "alpine"})
    assert result == "name: shop\nimage: alpine\nkeep: ${UNKNOWN}\n"


def test_substitute_in_directory_skips_binary(tmp_path):
    (tmp_path / "compose.yaml").write_text("name: ${PROJECT}\n", encoding="utf-8")
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "app.cfg").write_text("{{PROJECT}}", encoding="utf-8")
    (tmp_path / "logo.png").write_bytes(b"\x89PNG\x00${PROJECT}")
    (tmp_path / "plain.txt").write_text("nothing here", encoding="utf-8")

    changed = substitute_in_directory(tmp_path, {"PROJECT": "shop"})

    assert sorted(p.name for p in changed) == ["app.cfg", "compose.yaml"]
    assert (tmp_path / "compose.yaml").read_text(encoding="utf-8") == "name: shop\n"
    assert (tmp_path / "logo.png").read_bytes() == b"\x89PNG\x00${PROJECT}"


def test_substitute_without_variables_changes_nothing(tmp_path):
    (tmp_path / "compose.yaml").write_text("name: ${PROJECT}\n", encoding="utf-8")
    assert substitute_in_directory(tmp_path, None) == []
