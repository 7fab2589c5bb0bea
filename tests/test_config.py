import json
from pathlib import Path

import pytest

from tenax import fs_paths
from tenax.config import (
    DEFAULT_EMBEDDING_MODEL,
    TenaxConfig,
    get_config_path,
    get_env_overrides,
    load_config,
    write_config_file,
)


def test_defaults_without_config_file(tmp_path: Path) -> None:
    cfg = load_config(tmp_path)

    assert cfg == TenaxConfig()
    assert cfg.embedding_model == DEFAULT_EMBEDDING_MODEL
    assert cfg.max_sessions_stored == 100


def test_config_path_resolution(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    assert get_config_path(tmp_path) == fs_paths.config_path(tmp_path.resolve())
    assert get_config_path(tmp_path, tmp_path / "explicit.json") == tmp_path / "explicit.json"

    monkeypatch.setenv("TENAX_CONFIG", str(tmp_path / "env.json"))
    assert get_config_path(tmp_path) == tmp_path / "env.json"


def test_project_config_file_is_applied(tmp_path: Path) -> None:
    write_config_file(
        {"max_sessions_stored": 5, "embedding_model": "custom/model", "unknown": 1},
        path=fs_paths.config_path(tmp_path),
    )

    cfg = load_config(tmp_path)

    assert cfg.max_sessions_stored == 5
    assert cfg.embedding_model == "custom/model"


def test_env_overrides_win_over_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    write_config_file({"key_topic_limit": 4}, path=fs_paths.config_path(tmp_path))
    monkeypatch.setenv("TENAX_KEY_TOPIC_LIMIT", "7")
    monkeypatch.setenv("TENAX_LOCK_TIMEOUT_S", "2.5")

    cfg = load_config(tmp_path)

    assert get_env_overrides() == {"key_topic_limit": "7", "lock_timeout_s": "2.5"}
    assert cfg.key_topic_limit == 7
    assert cfg.lock_timeout_s == 2.5


def test_invalid_values_fall_back_with_warning(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("TENAX_MAX_SESSIONS_STORED", "lots")

    with pytest.warns(RuntimeWarning, match="max_sessions_stored"):
        cfg = load_config(tmp_path)

    assert cfg.max_sessions_stored == 100


def test_invalid_config_json_is_ignored_with_warning(tmp_path: Path) -> None:
    path = fs_paths.config_path(tmp_path)
    path.parent.mkdir(parents=True)
    path.write_text("{not json")

    with pytest.warns(RuntimeWarning, match="invalid config json"):
        cfg = load_config(tmp_path)

    assert cfg == TenaxConfig()


def test_session_id_padding_has_a_floor(tmp_path: Path) -> None:
    write_config_file({"session_id_padding": 0}, path=fs_paths.config_path(tmp_path))

    assert load_config(tmp_path).session_id_padding == 1


def test_to_dict_round_trips_through_file(tmp_path: Path) -> None:
    cfg = TenaxConfig(max_sessions_stored=3, lock_timeout_s=1.5)
    path = write_config_file(cfg.to_dict(), path=tmp_path / "config.json")

    assert json.loads(path.read_text())["max_sessions_stored"] == 3
    assert load_config(path=path) == cfg


def test_project_root_resolution(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    assert fs_paths.resolve_project_root(tmp_path) == tmp_path.resolve()

    monkeypatch.setenv("TENAX_PROJECT_ROOT", str(tmp_path / "a"))
    monkeypatch.setenv("CLAUDE_PROJECT_DIR", str(tmp_path / "b"))
    assert fs_paths.resolve_project_root() == (tmp_path / "a").resolve()

    monkeypatch.delenv("TENAX_PROJECT_ROOT")
    assert fs_paths.resolve_project_root() == (tmp_path / "b").resolve()

    monkeypatch.delenv("CLAUDE_PROJECT_DIR")
    monkeypatch.chdir(tmp_path)
    assert fs_paths.resolve_project_root() == tmp_path.resolve()
