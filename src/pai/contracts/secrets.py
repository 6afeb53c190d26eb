"""Secrets provider contract.

Secrets providers supply the values an action manifest lists under
``deployment.secrets``. The resolved values become the ``env`` block of the
action's ExecutionContext, and they back the ``secret()`` function in config
templates.
"""

from abc import ABC, abstractmethod


class SecretsPlugin(ABC):
    """Abstract base class for secrets backends.

    Example:
        >>> secrets = EnvSecretsProvider()
        >>> api_key = secrets.get_secret("OPENAI_API_KEY")
    """

    @abstractmethod
    def get_secret(self, key: str) -> str:
        """Retrieve a secret value by key.

        Args:
            key: Secret key/name

        Returns:
            Secret value as string

        Raises:
            KeyError: If secret not found
        """
        pass

    def get_secret_with_default(self, key: str, default: str | None) -> str | None:
        """Retrieve a secret value, returning ``default`` when it is missing."""
        try:
            return self.get_secret(key)
        except KeyError:
            return default

    def resolve(self, keys: list[str]) -> tuple[dict[str, str], list[str]]:
        """Resolve several secrets at once.

        Args:
            keys: Secret names to look up

        Returns:
            (found, missing) - mapping of resolved secrets and list of missing keys
        """
        found: dict[str, str] = {}
        missing: list[str] = []
        for key in keys:
            value = self.get_secret_with_default(key, None)
            if value is None:
                missing.append(key)
            else:
                found[key] = value
        return found, missing
