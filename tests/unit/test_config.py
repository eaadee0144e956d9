from mailtime.config import Settings


def test_tracker_config_defaults():
    config = Settings(_env_file=None, environment="production").get_tracker_config()

    assert config == {
        "poll_interval_seconds": 30.0,
        "min_session_seconds": 30.0,
        "idle_timeout_minutes": 30.0,
    }


def test_debug_development_polls_faster():
    config = Settings(_env_file=None, environment="development", debug=True).get_tracker_config()

    assert config["poll_interval_seconds"] == 10.0


def test_classification_tables_from_env(monkeypatch):
    monkeypatch.setenv("TRACKER_CLIENT_DOMAINS", '{"initech.com": "Initech"}')
    monkeypatch.setenv("TRACKER_BILLABLE_DOMAINS", '["initech.com"]')

    configured = Settings(_env_file=None)

    assert configured.TRACKER_CLIENT_DOMAINS == {"initech.com": "Initech"}
    assert configured.TRACKER_BILLABLE_DOMAINS == ["initech.com"]
