"""
Tests for environment-driven configuration.
"""
from app.core.config import DEFAULT_SCAFFOLD_COMMAND, Settings, get_settings


class TestSettings:
    """Tests for Settings defaults and env parsing."""

    def test_defaults(self, monkeypatch):
        for name in ("STORE_BUCKET", "SITE_API_KEY", "STORE_ENDPOINT", "SCAFFOLD_COMMAND"):
            monkeypatch.delenv(name, raising=False)

        settings = get_settings()

        assert settings.bucket == "ai-doc-automation"
        assert settings.api_key is None
        assert settings.publish_concurrency == 8
        assert settings.build_output_dir == "build"
        assert settings.api_subdomain == "api"
        assert settings.scaffold_command[0] == DEFAULT_SCAFFOLD_COMMAND.split()[0]
        assert not settings.store_configured

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("STORE_BUCKET", "sites")
        monkeypatch.setenv("STORE_ACCESS_KEY", "ak")
        monkeypatch.setenv("STORE_SECRET_KEY", "sk")
        monkeypatch.setenv("STORE_SECURE", "true")
        monkeypatch.setenv("PUBLISH_CONCURRENCY", "16")
        monkeypatch.setenv("API_SUBDOMAIN", "API")

        settings = get_settings()

        assert settings.bucket == "sites"
        assert settings.store_secure is True
        assert settings.publish_concurrency == 16
        assert settings.api_subdomain == "api"
        assert settings.store_configured

    def test_bad_integers_fall_back(self, monkeypatch):
        monkeypatch.setenv("PUBLISH_CONCURRENCY", "lots")
        monkeypatch.setenv("STEP_TIMEOUT_SECONDS", "0")

        settings = get_settings()

        assert settings.publish_concurrency == 8
        assert settings.step_timeout_s == 600

    def test_scaffold_argv_substitutes_project(self, monkeypatch):
        monkeypatch.setenv("SCAFFOLD_COMMAND", "npx create-site {project} --quiet")
        settings = get_settings()
        assert settings.scaffold_argv("docs") == ["npx", "create-site", "docs", "--quiet"]

    def test_default_scaffold_argv(self):
        argv = Settings().scaffold_argv("docs")
        assert "docs" in argv
        assert "{project}" not in " ".join(argv)
