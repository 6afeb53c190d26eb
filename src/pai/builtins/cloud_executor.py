"""Cloud executor - dispatches an invocation to the action's worker endpoint.

POST https://pai-<name, "/" replaced by "-">.<subdomain>.dev
Body: the validated input as JSON
Header: X-Trace-Id when a trace is active

A 2xx JSON body is the output. Anything else is a TransportError.
"""

import logging
from typing import Any, Optional

import httpx

from pai.config.settings import DEFAULT_CLOUD_URL_TEMPLATE, EngineSettings
from pai.contracts.executor import ExecutorPlugin
from pai.core.context import ExecutionContext
from pai.core.manifest import LoadedAction
from pai.exceptions import DefinitionError, TransportError


logger = logging.getLogger(__name__)

TRACE_HEADER = "X-Trace-Id"


def worker_url(name: str, subdomain: str, template: str = DEFAULT_CLOUD_URL_TEMPLATE) -> str:
    """Derive the worker URL for an action.

    Example:
        >>> worker_url("blog/proofread", "acme")
        'https://pai-blog-proofread.acme.dev'
    """
    return template.format(name=name.replace("/", "-"), subdomain=subdomain)


class CloudExecutor(ExecutorPlugin):
    """Remote execution through an HTTP worker."""

    # The worker owns its output contract
    validates_output = False

    def __init__(self, transport: Optional[httpx.BaseTransport] = None):
        self.transport = transport
        self.subdomain: Optional[str] = None
        self.url_template = DEFAULT_CLOUD_URL_TEMPLATE
        self.timeout = 60.0

    def configure(self, settings: EngineSettings) -> None:
        self.subdomain = settings.cloud.subdomain
        self.url_template = settings.cloud.url_template
        self.timeout = settings.cloud.timeout

    def execute(self, action: LoadedAction, input: Any, context: ExecutionContext) -> Any:
        if not self.subdomain:
            raise DefinitionError("Cloud mode requires cloud.subdomain (or PAI_CLOUD_SUBDOMAIN)")

        url = worker_url(action.name, self.subdomain, self.url_template)
        headers = {}
        if context.trace is not None:
            headers[TRACE_HEADER] = context.trace.trace_id

        logger.debug(f"Dispatching {action.name} to {url}")

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(url, json=input, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"Cloud execution failed: {e}")

        if not response.is_success:
            raise TransportError(
                f"Cloud execution failed (HTTP {response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError:
            raise TransportError(
                f"Cloud execution returned invalid JSON: {response.text[:200]}",
                status_code=response.status_code,
                body=response.text,
            )
