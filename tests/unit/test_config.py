"""Unit tests for settings validation and sub-config derivation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from tracker_sync.config import DEFAULT_FIELDS, Settings


@pytest.fixture()
def settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.setenv("TRACKER_BASE_URL", "https://tracker.example.com/api/")
    monkeypatch.setenv("TRACKER_USER_EMAIL", "bot@example.com")
    monkeypatch.setenv("TRACKER_API_TOKEN", "secret-token")
    monkeypatch.setenv("TRACKER_PROJECT_KEY", "PROJ")
    monkeypatch.setenv("CUSTOM_FIELD_NAMES", '{"customfield_10291": "impact_domain"}')
    return Settings(_env_file=None)


class TestSettings:
    def test_reads_environment(self, settings: Settings) -> None:
        assert settings.tracker_project_key == "PROJ"
        assert settings.tracker_api_token.get_secret_value() == "secret-token"
        assert "secret-token" not in repr(settings)

    def test_defaults(self, settings: Settings) -> None:
        assert settings.page_size == 100
        assert settings.max_records == 0
        assert settings.chunk_size == 1800
        assert settings.chunk_overlap == 200
        assert settings.timestamp_tolerance_seconds == 1.0
        assert settings.embedding_dim == 768

    def test_rejects_non_http_url(self) -> None:
        with pytest.raises(ValidationError):
            Settings(
                _env_file=None,
                tracker_base_url="ftp://tracker",
                tracker_user_email="a",
                tracker_api_token="b",
                tracker_project_key="PROJ",
            )

    def test_rejects_blank_project(self) -> None:
        with pytest.raises(ValidationError):
            Settings(
                _env_file=None,
                tracker_base_url="https://tracker",
                tracker_user_email="a",
                tracker_api_token="b",
                tracker_project_key="  ",
            )

    def test_rejects_out_of_range_page_size(self, settings: Settings) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, page_size=0)


class TestSubConfigs:
    def test_fetch_config(self, settings: Settings) -> None:
        cfg = settings.fetch_config()
        assert cfg.base_url == "https://tracker.example.com/api"
        assert cfg.query == 'project = "PROJ" ORDER BY updated DESC'
        assert cfg.fields[: len(DEFAULT_FIELDS)] == tuple(DEFAULT_FIELDS)
        assert "customfield_10291" in cfg.fields

    def test_normalizer_config(self, settings: Settings) -> None:
        cfg = settings.normalizer_config()
        assert cfg.custom_field_names == {"customfield_10291": "impact_domain"}
        assert cfg.comment_truncation_threshold == 20

    def test_chunking_and_embedding_configs(self, settings: Settings) -> None:
        assert settings.chunking_config().max_size == 1800
        assert settings.chunking_config().boundary_window == 50
        emb = settings.embedding_config()
        assert (emb.batch_size, emb.concurrency, emb.max_attempts) == (50, 10, 3)

    def test_sub_configs_are_frozen(self, settings: Settings) -> None:
        cfg = settings.sync_config()
        with pytest.raises(ValidationError):
            cfg.persist_batch_size = 1
