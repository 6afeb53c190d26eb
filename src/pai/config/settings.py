"""Engine settings and config file discovery.

Settings are an explicit value passed to the catalog and runners, so several
independent engines (for example in tests) never share directory state.

Config file search order:
1. Explicit path (``--config``) or PAI_CONFIG_PATH environment variable
2. ./pai.yaml (working directory)
3. ~/.pai/config.yaml (user home)

Example pai.yaml:
    user_root: ~/.pai
    system_root: /opt/pai
    mode: local
    cloud:
      subdomain: "{{ env_var('CF_SUBDOMAIN', 'acme') }}"
    llm:
      url: http://localhost:8787/v1/complete
      api_key: "{{ secret('PAI_LLM_API_KEY') }}"
"""

import os
import sys
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from pai.config.loader import ConfigLoader
from pai.exceptions import ConfigError


DEFAULT_CLOUD_URL_TEMPLATE = "https://pai-{name}.{subdomain}.dev"

ENV_OVERRIDES = {
    "PAI_USER_ROOT": ("user_root",),
    "PAI_SYSTEM_ROOT": ("system_root",),
    "PAI_MODE": ("mode",),
    "PAI_CLOUD_SUBDOMAIN": ("cloud", "subdomain"),
    "PAI_LLM_URL": ("llm", "url"),
    "PAI_LLM_API_KEY": ("llm", "api_key"),
}


class CloudSettings(BaseModel):
    """Remote execution settings."""

    subdomain: Optional[str] = Field(None, description="Worker account subdomain")
    url_template: str = Field(DEFAULT_CLOUD_URL_TEMPLATE, description="Worker URL template ({name}, {subdomain})")
    timeout: float = Field(60.0, description="Request timeout in seconds")

    class Config:
        extra = "forbid"


class LLMSettings(BaseModel):
    """Inference service settings for the llm capability."""

    url: Optional[str] = Field(None, description="Inference service endpoint")
    api_key: Optional[str] = Field(None, description="Bearer token sent to the inference service")
    timeout: float = Field(120.0, description="Request timeout in seconds")

    class Config:
        extra = "forbid"


class EngineSettings(BaseModel):
    """Complete engine configuration."""

    user_root: Path = Field(default_factory=lambda: Path.home() / ".pai", description="Personal override root")
    system_root: Path = Field(
        default_factory=lambda: Path(sys.prefix) / "share" / "pai",
        description="System/framework root",
    )
    mode: Literal["local", "cloud"] = Field("local", description="Default execution mode")
    secrets_provider: str = Field("env", description="Secrets provider name")
    cloud: CloudSettings = Field(default_factory=CloudSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)

    class Config:
        extra = "forbid"

    @property
    def roots(self) -> list[tuple[str, Path]]:
        """Resolution roots in override order (personal before system)."""
        return [
            ("user", self.user_root.expanduser()),
            ("system", self.system_root.expanduser()),
        ]

    @property
    def action_roots(self) -> list[tuple[str, Path]]:
        return [(label, root / "actions") for label, root in self.roots]

    @property
    def pipeline_roots(self) -> list[tuple[str, Path]]:
        return [(label, root / "pipelines") for label, root in self.roots]


def find_config_file(
    explicit: Optional[Path] = None,
    environ: Optional[dict[str, str]] = None,
    cwd: Optional[Path] = None,
) -> Path | None:
    """Find the config file following the documented search order.

    Returns:
        Path to the config file or None if not found

    Raises:
        ConfigError: If an explicitly requested file does not exist
    """
    environ = environ if environ is not None else os.environ

    if explicit is not None:
        explicit = Path(explicit).expanduser()
        if not explicit.exists():
            raise ConfigError(f"Config file not found: {explicit}")
        return explicit

    env_path = environ.get("PAI_CONFIG_PATH")
    if env_path:
        env_path = Path(env_path).expanduser()
        if env_path.exists():
            return env_path

    project_config = Path(cwd or Path.cwd()) / "pai.yaml"
    if project_config.exists():
        return project_config

    home_config = Path.home() / ".pai" / "config.yaml"
    if home_config.exists():
        return home_config

    return None


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[dict[str, str]] = None,
    cwd: Optional[Path] = None,
) -> EngineSettings:
    """Load engine settings from config file and environment.

    Args:
        config_path: Explicit config file (overrides discovery)
        environ: Environment mapping (defaults to os.environ)
        cwd: Directory searched for pai.yaml (defaults to the working directory)

    Returns:
        EngineSettings

    Raises:
        ConfigError: If the config file is unreadable or invalid
    """
    environ = dict(environ if environ is not None else os.environ)
    data: dict = {}

    path = find_config_file(config_path, environ=environ, cwd=cwd)
    if path is not None:
        try:
            with open(path) as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        from pai.builtins.env_secrets import EnvSecretsProvider

        loader = ConfigLoader(secrets_provider=EnvSecretsProvider(environ), environ=environ)
        data = loader.render(raw)

    for env_key, target in ENV_OVERRIDES.items():
        value = environ.get(env_key)
        if not value:
            continue
        section = data
        for key in target[:-1]:
            section = section.setdefault(key, {})
        section[target[-1]] = value

    try:
        return EngineSettings(**data)
    except PydanticValidationError as e:
        source = path or "environment"
        raise ConfigError(f"Invalid configuration ({source}): {e}")
