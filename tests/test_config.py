"""Tests for workflow configuration loading."""

from pathlib import Path

import pytest

from skill_exchange.config import CONFIG_DIR, WorkflowConfig, default_state_file, load_config


def _write_config(base: Path, text: str) -> Path:
    path = base / CONFIG_DIR / "config.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_missing_file_gives_defaults(self):
        config = load_config()
        assert config == WorkflowConfig()
        assert config.completion_cooldown_hours == 24.0
        assert config.cancel_description_min_length == 20
        assert config.review_comment_max_length == 1000
        assert config.badges.mentor == 5

    def test_empty_file_gives_defaults(self, tmp_path):
        _write_config(tmp_path, "")
        assert load_config() == WorkflowConfig()

    def test_partial_override_from_cwd(self, tmp_path):
        _write_config(tmp_path, "completion_cooldown_hours: 1.5\nbadges:\n  mentor: 3\n")
        config = load_config()
        assert config.completion_cooldown_hours == 1.5
        assert config.badges.mentor == 3
        assert config.badges.skill_master == 10

    def test_explicit_path(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("review_comment_max_length: 200\nstate_file: data/state.json\n", encoding="utf-8")
        config = load_config(path)
        assert config.review_comment_max_length == 200
        assert config.state_file == "data/state.json"

    def test_non_mapping_rejected(self, tmp_path):
        _write_config(tmp_path, "- just\n- a list\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config()

    def test_bad_value_rejected(self, tmp_path):
        _write_config(tmp_path, "cancel_description_min_length: lots\n")
        with pytest.raises(ValueError):
            load_config()


def test_default_state_file(tmp_path):
    assert default_state_file(tmp_path) == tmp_path / ".skill-exchange" / "runtime" / "state.json"
    assert default_state_file().name == "state.json"
