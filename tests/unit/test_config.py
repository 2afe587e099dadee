import pytest

from pulse_bridge.config import AppConfig, load_config


def test_defaults_match_route_settings() -> None:
    config = AppConfig()

    assert config.app.name == "springbootsampleapp"
    assert config.pulse.vip_name == "ship-internal_events-v1"
    assert config.pulse.url_suffix == "/ship/internal_events/v1/"
    assert config.redelivery.max_redelivery_count == 5
    assert config.redelivery.redelivery_delay_ms == 2000
    assert config.redelivery.back_off_multiplier == 2
    assert config.sqs.message_attribute_names == "All"
    assert config.sqs.concurrent_consumers == 1
    assert config.rest.max_queue_size == -1
    assert config.redis.cache_name == "productEnrichmentCache"
    assert config.is_local is False


def test_missing_file_returns_defaults(tmp_path) -> None:
    config = load_config(str(tmp_path / "missing.yml"))

    assert config == AppConfig()


def test_yaml_file_with_env_overrides(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Given: a YAML config and environment overrides
    When: load_config is called
    Then: environment values win and are converted to their field types
    """
    config_file = tmp_path / "config.yml"
    config_file.write_text(
        "app:\n"
        "  name: shipbridge\n"
        "  profile: LOCAL\n"
        "sqs:\n"
        "  concurrent_consumers: 3\n"
        "logging:\n"
        "  level: debug\n",
        encoding="utf-8"
    )
    monkeypatch.setenv("SERVER_PORT", "9090")
    monkeypatch.setenv("JWT_ENABLED", "true")
    monkeypatch.setenv("CAMEL_MAX_REDELIVERY_COUNT", "7")

    config = load_config(str(config_file))

    assert config.app.name == "shipbridge"
    assert config.is_local is True
    assert config.sqs.concurrent_consumers == 3
    assert config.logging.level == "DEBUG"
    assert config.server.port == 9090
    assert config.jwt.enabled is True
    assert config.redelivery.max_redelivery_count == 7


def test_unknown_keys_are_rejected(tmp_path) -> None:
    config_file = tmp_path / "config.yml"
    config_file.write_text("pulse:\n  vip: other\n", encoding="utf-8")

    with pytest.raises(Exception):
        load_config(str(config_file))


def test_invalid_yaml_raises_value_error(tmp_path) -> None:
    config_file = tmp_path / "config.yml"
    config_file.write_text("app: [unclosed\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid YAML config"):
        load_config(str(config_file))


def test_invalid_profile_is_rejected() -> None:
    with pytest.raises(ValueError):
        AppConfig(app={"profile": "staging"})
