"""Plugin registry for execution backends and secrets providers.

Built-in plugins are always available. Additional plugins are discovered via
Python entry points; an adapter package declares them in pyproject.toml:

    [project.entry-points."pai.executors"]
    sandbox = "pai_sandbox.executor:SandboxExecutor"

    [project.entry-points."pai.secrets"]
    vault = "pai_vault.secrets:VaultSecretsProvider"
"""

from importlib.metadata import entry_points
from typing import Any

from pai.builtins.cloud_executor import CloudExecutor
from pai.builtins.env_secrets import EnvSecretsProvider
from pai.builtins.local_executor import LocalExecutor


EXECUTORS_GROUP = "pai.executors"
SECRETS_GROUP = "pai.secrets"

BUILTINS: dict[str, dict[str, type]] = {
    EXECUTORS_GROUP: {
        "local": LocalExecutor,
        "cloud": CloudExecutor,
    },
    SECRETS_GROUP: {
        "env": EnvSecretsProvider,
    },
}


class MissingPluginError(Exception):
    """Raised when a requested plugin is neither built in nor installed."""

    def __init__(self, group: str, name: str):
        self.group = group
        self.name = name
        super().__init__(
            f"No plugin '{name}' found in group '{group}'. "
            f"Available: {', '.join(PluginRegistry().list_group(group)) or '(none)'}"
        )


class PluginRegistry:
    """Registry for discovering and instantiating pai plugins.

    Instances are cached per registry, so one registry hands out one
    executor object per name.
    """

    def __init__(self, overrides: dict[str, dict[str, Any]] | None = None):
        """Initialize registry.

        Args:
            overrides: {group: {name: instance}} - pre-built plugin instances
                that take precedence over builtins and entry points (tests
                use this to inject executors with stub transports)
        """
        self._cache: dict[tuple[str, str], Any] = {}
        for group, plugins in (overrides or {}).items():
            for name, instance in plugins.items():
                self._cache[(group, name)] = instance

    def get(self, group: str, name: str) -> Any:
        """Load and instantiate a plugin by group and name.

        Args:
            group: Plugin group (e.g., "pai.executors")
            name: Plugin name (e.g., "local", "cloud")

        Returns:
            Plugin instance

        Raises:
            MissingPluginError: If plugin not found
        """
        cache_key = (group, name)
        if cache_key in self._cache:
            return self._cache[cache_key]

        plugin_class = BUILTINS.get(group, {}).get(name)

        if plugin_class is None:
            for ep in entry_points().select(group=group):
                if ep.name == name:
                    plugin_class = ep.load()
                    break

        if plugin_class is None:
            raise MissingPluginError(group, name)

        plugin_instance = plugin_class()
        self._cache[cache_key] = plugin_instance
        return plugin_instance

    def list_group(self, group: str) -> list[str]:
        """List all plugin names in a group (builtins and installed)."""
        names = set(BUILTINS.get(group, {}))
        names.update(ep.name for ep in entry_points().select(group=group))
        return sorted(names)
