"""Environment variable secrets provider.

Default secrets provider. Reads secrets from the process environment.
"""

import os
from typing import Mapping, Optional

from pai.contracts.secrets import SecretsPlugin


class EnvSecretsProvider(SecretsPlugin):
    """Secrets provider that reads from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ); tests pass a
            plain dict so nothing leaks between engine instances.

    Example:
        >>> secrets = EnvSecretsProvider({"API_KEY": "secret123"})
        >>> secrets.get_secret("API_KEY")
        'secret123'
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = environ if environ is not None else os.environ

    def get_secret(self, key: str) -> str:
        value = self.environ.get(key)
        if value is None:
            raise KeyError(
                f"Secret '{key}' not found in environment variables. "
                f"Set it with: export {key}=<value>"
            )
        return value
