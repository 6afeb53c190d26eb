"""Tests for engine settings, config discovery and Jinja2 rendering."""

from pathlib import Path

import pytest
import yaml

from pai.builtins.env_secrets import EnvSecretsProvider
from pai.config.loader import ConfigLoader
from pai.config.settings import EngineSettings, find_config_file, load_settings
from pai.exceptions import ConfigError


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


def write_config(path: Path, data: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data))
    return path


class TestConfigLoader:
    def test_env_var(self):
        loader = ConfigLoader(environ={"SUBDOMAIN": "acme"})
        assert loader.render_string("{{ env_var('SUBDOMAIN') }}") == "acme"

    def test_env_var_default(self):
        loader = ConfigLoader(environ={})
        assert loader.render_string("{{ env_var('SUBDOMAIN', 'fallback') }}") == "fallback"

    def test_env_var_missing(self):
        with pytest.raises(ConfigError, match="SUBDOMAIN"):
            ConfigLoader(environ={}).render_string("{{ env_var('SUBDOMAIN') }}")

    def test_secret_from_provider(self):
        loader = ConfigLoader(secrets_provider=EnvSecretsProvider({"API_KEY": "s3cr3t"}), environ={})
        assert loader.render_string("Bearer {{ secret('API_KEY') }}") == "Bearer s3cr3t"

    def test_secret_missing(self):
        loader = ConfigLoader(secrets_provider=EnvSecretsProvider({}), environ={})
        with pytest.raises(ConfigError, match="API_KEY"):
            loader.render_string("{{ secret('API_KEY') }}")

    def test_undefined_variable(self):
        with pytest.raises(ConfigError):
            ConfigLoader(environ={}).render_string("{{ nothing }}")

    def test_render_nested(self):
        loader = ConfigLoader(environ={"MODE": "cloud"})
        rendered = loader.render({"mode": "{{ env_var('MODE') }}", "list": ["{{ env_var('MODE') }}", 3]})
        assert rendered == {"mode": "cloud", "list": ["cloud", 3]}

    def test_plain_strings_untouched(self):
        assert ConfigLoader(environ={}).render_string("plain {value}") == "plain {value}"


class TestFindConfigFile:
    def test_explicit(self, tmp_path):
        path = write_config(tmp_path / "custom.yaml", {})
        assert find_config_file(path, environ={}) == path

    def test_explicit_missing(self, tmp_path):
        with pytest.raises(ConfigError, match="Config file not found"):
            find_config_file(tmp_path / "missing.yaml", environ={})

    def test_env_path_beats_project(self, tmp_path):
        env_config = write_config(tmp_path / "env.yaml", {})
        write_config(tmp_path / "project" / "pai.yaml", {})

        found = find_config_file(environ={"PAI_CONFIG_PATH": str(env_config)}, cwd=tmp_path / "project")

        assert found == env_config

    def test_project_beats_home(self, tmp_path, isolated_home):
        project_config = write_config(tmp_path / "project" / "pai.yaml", {})
        write_config(isolated_home / ".pai" / "config.yaml", {})

        assert find_config_file(environ={}, cwd=tmp_path / "project") == project_config

    def test_home(self, tmp_path, isolated_home):
        home_config = write_config(isolated_home / ".pai" / "config.yaml", {})
        assert find_config_file(environ={}, cwd=tmp_path) == home_config

    def test_none(self, tmp_path):
        assert find_config_file(environ={}, cwd=tmp_path) is None


class TestLoadSettings:
    def test_defaults(self, tmp_path, isolated_home):
        settings = load_settings(environ={}, cwd=tmp_path)

        assert settings.mode == "local"
        assert settings.user_root == isolated_home / ".pai"
        assert settings.cloud.subdomain is None

    def test_config_file_with_templates(self, tmp_path):
        config = write_config(
            tmp_path / "pai.yaml",
            {
                "user_root": str(tmp_path / "mine"),
                "system_root": str(tmp_path / "shared"),
                "mode": "cloud",
                "cloud": {"subdomain": "{{ env_var('CF_SUBDOMAIN', 'default') }}"},
                "llm": {"url": "http://llm.local", "api_key": "{{ secret('LLM_KEY') }}"},
            },
        )

        settings = load_settings(config, environ={"CF_SUBDOMAIN": "acme", "LLM_KEY": "k"})

        assert settings.mode == "cloud"
        assert settings.cloud.subdomain == "acme"
        assert settings.llm.api_key == "k"
        assert settings.action_roots == [
            ("user", tmp_path / "mine" / "actions"),
            ("system", tmp_path / "shared" / "actions"),
        ]
        assert settings.pipeline_roots[0] == ("user", tmp_path / "mine" / "pipelines")

    def test_environment_overrides(self, tmp_path):
        config = write_config(tmp_path / "pai.yaml", {"mode": "local", "cloud": {"subdomain": "file"}})

        settings = load_settings(
            config,
            environ={
                "PAI_MODE": "cloud",
                "PAI_CLOUD_SUBDOMAIN": "env",
                "PAI_USER_ROOT": str(tmp_path / "override"),
                "PAI_LLM_URL": "http://llm.env",
            },
        )

        assert settings.mode == "cloud"
        assert settings.cloud.subdomain == "env"
        assert settings.user_root == tmp_path / "override"
        assert settings.llm.url == "http://llm.env"

    def test_invalid_mode(self, tmp_path):
        config = write_config(tmp_path / "pai.yaml", {"mode": "remote"})
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_settings(config, environ={})

    def test_unknown_key(self, tmp_path):
        config = write_config(tmp_path / "pai.yaml", {"modes": "local"})
        with pytest.raises(ConfigError):
            load_settings(config, environ={})

    def test_invalid_yaml(self, tmp_path):
        config = tmp_path / "pai.yaml"
        config.write_text("mode: [local")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(config, environ={})

    def test_not_a_mapping(self, tmp_path):
        config = tmp_path / "pai.yaml"
        config.write_text("- local\n")
        with pytest.raises(ConfigError, match="must contain a mapping"):
            load_settings(config, environ={})


def test_roots_expand_user(isolated_home):
    settings = EngineSettings(user_root="~/actions-home", system_root="/opt/pai")
    assert settings.roots == [("user", isolated_home / "actions-home"), ("system", Path("/opt/pai"))]


class TestEnvSecretsProvider:
    def test_get_secret(self):
        assert EnvSecretsProvider({"TOKEN": "abc"}).get_secret("TOKEN") == "abc"

    def test_missing(self):
        with pytest.raises(KeyError, match="export TOKEN"):
            EnvSecretsProvider({}).get_secret("TOKEN")

    def test_resolve(self):
        found, missing = EnvSecretsProvider({"A": "1"}).resolve(["A", "B"])
        assert found == {"A": "1"}
        assert missing == ["B"]
