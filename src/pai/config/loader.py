"""Configuration loader with Jinja2 templating support.

Supports template functions in pai.yaml:
- {{ env_var('KEY') }} - Read from environment variable
- {{ env_var('KEY', 'default') }} - Same, with a fallback
- {{ secret('KEY') }} - Read from the secrets provider
"""

import os
from typing import Any

from jinja2 import Environment, StrictUndefined
from jinja2.exceptions import TemplateError

from pai.exceptions import ConfigError


class ConfigLoader:
    """Renders configuration documents with Jinja2."""

    def __init__(self, secrets_provider: Any = None, environ: dict[str, str] | None = None):
        """Initialize config loader.

        Args:
            secrets_provider: SecretsPlugin instance (optional)
            environ: Environment mapping (defaults to os.environ)
        """
        self.secrets_provider = secrets_provider
        self.environ = environ if environ is not None else os.environ

        self.jinja_env = Environment(
            undefined=StrictUndefined,
            autoescape=False,
        )
        self.jinja_env.globals["env_var"] = self._env_var
        self.jinja_env.globals["secret"] = self._secret

    def render_string(self, template_string: str) -> str:
        """Render a template string.

        Example:
            >>> loader = ConfigLoader(environ={"PAI_SUBDOMAIN": "acme"})
            >>> loader.render_string("{{ env_var('PAI_SUBDOMAIN') }}")
            'acme'
        """
        if "{{" not in template_string and "{%" not in template_string:
            return template_string
        try:
            return self.jinja_env.from_string(template_string).render()
        except (TemplateError, KeyError) as e:
            raise ConfigError(f"Failed to render config value {template_string!r}: {e}")

    def render(self, value: Any) -> Any:
        """Recursively render every string in a config structure."""
        if isinstance(value, str):
            return self.render_string(value)
        if isinstance(value, dict):
            return {key: self.render(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.render(item) for item in value]
        return value

    def _env_var(self, key: str, default: str | None = None) -> str:
        value = self.environ.get(key)
        if value is None:
            if default is not None:
                return default
            raise KeyError(f"Environment variable '{key}' not set and no default provided")
        return value

    def _secret(self, key: str) -> str:
        if self.secrets_provider is None:
            value = self.environ.get(key)
            if value is None:
                raise KeyError(
                    f"Secret '{key}' not found. "
                    "No secrets provider configured, falling back to environment variables."
                )
            return value

        try:
            return self.secrets_provider.get_secret(key)
        except Exception as e:
            raise KeyError(f"Failed to retrieve secret '{key}': {e}")
