"""Capability provider - side-effecting primitives granted to actions.

An action only receives the capabilities its manifest lists under
``requires``. build_capabilities() is a pure function from those names to a
CapabilitySet; every other attribute on the set stays None.
"""

import json
import logging
import re
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Literal, Optional

import httpx

from pai.exceptions import CapabilityError, DefinitionError


logger = logging.getLogger(__name__)


class Capability(str, Enum):
    """Capability names accepted in a manifest's ``requires`` list."""

    LLM = "llm"
    FETCH = "fetch"
    SHELL = "shell"
    READ_FILE = "readFile"
    WRITE_FILE = "writeFile"
    KV = "kv"


# manifest name -> CapabilitySet attribute
ATTRIBUTE_NAMES = {
    Capability.LLM: "llm",
    Capability.FETCH: "fetch",
    Capability.SHELL: "shell",
    Capability.READ_FILE: "read_file",
    Capability.WRITE_FILE: "write_file",
    Capability.KV: "kv",
}

Tier = Literal["fast", "standard", "smart"]
TIERS = ("fast", "standard", "smart")

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


# =============================================================================
# Capability implementations
# =============================================================================


@dataclass
class ShellResult:
    """Captured result of a shell command."""

    stdout: str
    stderr: str
    code: int


def run_shell(command: str, cwd: Optional[str] = None, timeout: Optional[float] = None) -> ShellResult:
    """Run a command through the system shell.

    A non-zero exit status is reported through ``code`` and ``stderr``;
    it never raises, so the action decides what failure means. Output that
    is not valid UTF-8 is decoded with replacement characters.
    """
    completed = subprocess.run(
        command,
        shell=True,
        capture_output=True,
        encoding="utf-8",
        errors="replace",
        cwd=cwd,
        timeout=timeout,
    )
    return ShellResult(stdout=completed.stdout, stderr=completed.stderr, code=completed.returncode)


def read_file(path: str | Path) -> str:
    """Read a UTF-8 text file."""
    return Path(path).expanduser().read_text(encoding="utf-8")


def write_file(path: str | Path, content: str) -> None:
    """Write a UTF-8 text file, creating parent directories."""
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")


@dataclass
class LLMResponse:
    """Response of the llm capability."""

    text: str
    data: Any = None
    usage: dict[str, int] = field(default_factory=dict)


class LLMClient:
    """Thin proxy to the external inference service.

    Request body: {prompt, system, tier, json, max_tokens}
    Response body: {text, usage: {input_tokens, output_tokens}}
    """

    def __init__(
        self,
        url: Optional[str],
        api_key: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def __call__(
        self,
        prompt: str,
        system: Optional[str] = None,
        tier: Tier = "standard",
        json: bool = False,
        max_tokens: int = 1024,
    ) -> LLMResponse:
        if not self.url:
            raise CapabilityError("LLM service URL is not configured (set llm.url or PAI_LLM_URL)")
        if tier not in TIERS:
            raise CapabilityError(f"Unknown LLM tier '{tier}'. Expected one of: {', '.join(TIERS)}")

        payload = {
            "prompt": prompt,
            "system": system,
            "tier": tier,
            "json": json,
            "max_tokens": max_tokens,
        }
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise CapabilityError(f"LLM request failed: {e}")

        if response.is_error:
            raise CapabilityError(f"LLM service returned HTTP {response.status_code}: {response.text}")

        try:
            body = response.json()
        except ValueError:
            raise CapabilityError("LLM service returned a non-JSON response")

        text = body.get("text", "")
        data = _parse_structured(text) if json else None
        return LLMResponse(text=text, data=data, usage=body.get("usage") or {})


def _parse_structured(text: str) -> Any:
    """Parse structured output, tolerating a fenced ```json block."""
    candidate = text.strip()
    match = _FENCE_RE.match(candidate)
    if match:
        candidate = match.group(1)
    try:
        return json.loads(candidate)
    except ValueError:
        raise CapabilityError("LLM response is not valid JSON")


# =============================================================================
# Capability set
# =============================================================================


@dataclass(frozen=True)
class CapabilitySet:
    """Capabilities granted to one action invocation.

    Attributes that were not requested are None.
    """

    llm: Optional[LLMClient] = None
    fetch: Optional[Callable[..., httpx.Response]] = None
    shell: Optional[Callable[..., ShellResult]] = None
    read_file: Optional[Callable[[str], str]] = None
    write_file: Optional[Callable[[str, str], None]] = None
    kv: Any = None

    def has(self, name: str | Capability) -> bool:
        """Check whether a capability handle is present."""
        capability = parse_capability(name)
        return getattr(self, ATTRIBUTE_NAMES[capability]) is not None

    def granted(self) -> list[str]:
        """Names of the capabilities that carry a handle."""
        return [
            capability.value
            for capability, attribute in ATTRIBUTE_NAMES.items()
            if getattr(self, attribute) is not None
        ]


def parse_capability(name: str | Capability) -> Capability:
    try:
        return Capability(name)
    except ValueError:
        valid = ", ".join(c.value for c in Capability)
        raise DefinitionError(f"Unknown capability '{name}'. Valid capabilities: {valid}")


def build_capabilities(
    requires: Iterable[str | Capability],
    llm_url: Optional[str] = None,
    llm_api_key: Optional[str] = None,
    llm_timeout: float = 120.0,
    llm_transport: Optional[httpx.BaseTransport] = None,
) -> CapabilitySet:
    """Build the capability set for an action's declared requirements.

    Only requested capabilities are constructed.

    Args:
        requires: Capability names from the manifest
        llm_url: Inference service URL for the llm capability
        llm_api_key: Bearer token for the inference service
        llm_timeout: Inference request timeout in seconds
        llm_transport: Optional httpx transport (tests)

    Returns:
        CapabilitySet

    Raises:
        DefinitionError: If a name is not a known capability
    """
    handles: dict[str, Any] = {}

    for name in requires:
        capability = parse_capability(name)

        if capability is Capability.LLM:
            handles["llm"] = LLMClient(
                llm_url, api_key=llm_api_key, timeout=llm_timeout, transport=llm_transport
            )
        elif capability is Capability.FETCH:
            handles["fetch"] = httpx.request
        elif capability is Capability.SHELL:
            handles["shell"] = run_shell
        elif capability is Capability.READ_FILE:
            handles["read_file"] = read_file
        elif capability is Capability.WRITE_FILE:
            handles["write_file"] = write_file
        elif capability is Capability.KV:
            # No backing store exists; the action receives no handle
            logger.warning("Capability 'kv' requested but no key-value store is available")

    return CapabilitySet(**handles)
