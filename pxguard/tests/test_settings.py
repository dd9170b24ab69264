from pxguard.config.settings import Settings


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("PXGUARD_LOG_LEVEL", "debug")
    monkeypatch.setenv("PXGUARD_ACTIVITIES_FLUSH_RETRIES", "3")

    loaded = Settings()

    assert loaded.log_level == "debug"
    assert loaded.activities_flush_retries == 3
    assert not hasattr(loaded, "env")
