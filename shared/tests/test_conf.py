import importlib

from shared.conf import booking_settings, retention_days


def test_configured_values_override_defaults(settings):
    settings.BOOKING = {"RECONCILIATION": {"BATCH_SIZE": 10}}

    config = booking_settings("RECONCILIATION")

    assert config["BATCH_SIZE"] == 10
    assert config["MAX_ATTEMPTS"] == 5


def test_missing_booking_setting_falls_back_to_defaults(settings):
    del settings.BOOKING

    assert booking_settings("TRANSACTIONS")["MAX_RETRIES"] == 3
    assert retention_days() == 2555


def test_test_settings_switch_to_the_configured_database(monkeypatch):
    import config.settings.test as test_settings

    monkeypatch.setenv("DB_ENGINE", "django.db.backends.postgresql")
    try:
        switched = importlib.reload(test_settings)
        assert switched.DATABASES["default"]["ENGINE"] != "django.db.backends.sqlite3"
        assert switched.DATABASES["default"]["NAME"] != ":memory:"

        monkeypatch.delenv("DB_ENGINE")
        default = importlib.reload(test_settings)
        assert default.DATABASES["default"]["ENGINE"] == "django.db.backends.sqlite3"
    finally:
        monkeypatch.undo()
        importlib.reload(test_settings)
