"""Tests for configuration settings."""


def test_db_path_setting():
    """Database path should be configurable and default under ./data."""
    from config.settings import settings

    assert hasattr(settings, 'db_path')
    assert settings.data_dir == settings.db_path.parent


def test_matching_threshold_defaults():
    """Matching thresholds default to the documented values."""
    from config.settings import Settings

    s = Settings()
    assert s.short_token_max_length == 6
    assert s.fuzzy_min_token_length == 4
    assert s.fuzzy_min_given_length == 5
    assert s.min_spaceless_length == 6
    assert s.block_key_length == 3


def test_env_override(monkeypatch):
    """RESOLVER_* environment variables override defaults."""
    from config.settings import Settings

    monkeypatch.setenv("RESOLVER_MAX_DEDUP_ROUNDS", "9")
    monkeypatch.setenv("RESOLVER_DB_PATH", "/tmp/other/people.db")
    s = Settings()
    assert s.max_dedup_rounds == 9
    assert str(s.db_path) == "/tmp/other/people.db"
