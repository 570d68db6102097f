import config


def test_secret_from_environment(monkeypatch):
    monkeypatch.setenv("DAILY_SUMMARY_FUNCTION_URL", "https://summary.example")
    assert config.get_secret("DAILY_SUMMARY_FUNCTION_URL", use_secret_manager=False) == "https://summary.example"


def test_missing_secret_without_secret_manager(monkeypatch):
    monkeypatch.delenv("DAILY_SUMMARY_FUNCTION_URL", raising=False)
    assert config.get_secret("DAILY_SUMMARY_FUNCTION_URL", use_secret_manager=False) is None


def test_local_test_settings():
    assert config.TestConfig.SQLALCHEMY_DATABASE_URI.startswith("sqlite")
    assert config.TestConfig.FIRESTORE_ENABLED is False
    assert issubclass(config.TestConfig, config.Config)
