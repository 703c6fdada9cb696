"""
Tests for settings validation and secret lookup
"""
import pytest
from pydantic import ValidationError

from greenhouse import secrets
from greenhouse.config import Settings
from greenhouse.secrets import load_secret


@pytest.fixture(autouse=True)
def empty_secrets_dir(tmp_path, monkeypatch):
    secrets_dir = tmp_path / "run-secrets"
    secrets_dir.mkdir()
    monkeypatch.setattr(secrets, "SECRETS_DIR", secrets_dir)
    monkeypatch.delenv("RESEND_API_KEY", raising=False)
    monkeypatch.delenv("RESEND_API_KEY_FILE", raising=False)
    return secrets_dir


class TestLoadSecret:
    """Test the secret fallback chain"""

    def test_mounted_file_wins(self, empty_secrets_dir, monkeypatch):
        (empty_secrets_dir / "resend_api_key").write_text("re_mounted\n")
        monkeypatch.setenv("RESEND_API_KEY", "re_env")

        assert load_secret("resend_api_key") == "re_mounted"

    def test_file_pointer(self, tmp_path, monkeypatch):
        key_file = tmp_path / "resend.key"
        key_file.write_text("re_from_file")
        monkeypatch.setenv("RESEND_API_KEY_FILE", str(key_file))
        monkeypatch.setenv("RESEND_API_KEY", "re_env")

        assert load_secret("resend-api-key") == "re_from_file"

    def test_missing_file_pointer(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RESEND_API_KEY_FILE", str(tmp_path / "absent"))

        with pytest.raises(FileNotFoundError):
            load_secret("resend_api_key")

    def test_env_then_default(self, monkeypatch):
        assert load_secret("resend_api_key", default="fallback") == "fallback"
        assert load_secret("resend_api_key") is None

        monkeypatch.setenv("RESEND_API_KEY", "re_env")
        assert load_secret("resend_api_key", default="fallback") == "re_env"

    def test_required(self):
        with pytest.raises(ValueError):
            load_secret("resend_api_key", required=True)


class TestSettings:
    """Test settings parsing and validation"""

    def test_defaults(self):
        app_settings = Settings()

        assert app_settings.device_offline_after_seconds == 300
        assert app_settings.cors_allow_origin == "*"
        assert "x-device-id" in app_settings.cors_allow_headers
        assert app_settings.resend_api_key is None

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "MEMORY")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("CORS_ALLOW_HEADERS", "content-type, x-api-key")

        app_settings = Settings()

        assert app_settings.storage_backend == "memory"
        assert app_settings.log_level == "DEBUG"
        assert app_settings.cors_allow_headers == ["content-type", "x-api-key"]

    @pytest.mark.parametrize("field, value", [
        ("storage_backend", "sqlite"),
        ("environment", "qa"),
        ("log_level", "LOUD"),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            Settings(**{field: value})


class TestAppFactory:
    """Test that importing the app module builds nothing"""

    def test_no_app_built_at_import(self):
        import greenhouse.main as main

        assert not hasattr(main, "app")

    def test_memory_backend_app(self):
        from greenhouse.main import create_app
        from greenhouse.memory_store import InMemoryStore
        from greenhouse.notifications import ResendNotifier

        app = create_app(Settings(storage_backend="memory", resend_api_key=None))

        assert isinstance(app.state.store, InMemoryStore)
        assert isinstance(app.state.notifier, ResendNotifier)
        assert app.state.notifier._client is None
