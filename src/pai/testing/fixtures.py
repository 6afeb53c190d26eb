"""Helpers for building action roots on disk in tests.

- write_action: manifest package (action.yaml + action.py)
- write_legacy_action: single-file action without manifest
- write_pipeline: pipeline document
- RecordingTransport: httpx transport returning canned responses
"""

import json
import textwrap
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
import yaml


def write_action(
    root: Path,
    name: str,
    code: str,
    manifest: Optional[dict[str, Any]] = None,
    manifest_format: str = "yaml",
) -> Path:
    """Create a manifest-based action package under ``root``.

    Args:
        root: Actions root (e.g. tmp_path / "user" / "actions")
        name: A_NAME or category/name
        code: Source of action.py (dedented automatically)
        manifest: Manifest mapping; ``name`` defaults to ``name``
        manifest_format: "yaml" or "json"

    Returns:
        Package directory
    """
    package_dir = Path(root).joinpath(*name.split("/"))
    package_dir.mkdir(parents=True, exist_ok=True)

    data = {"name": name, "version": "1.0.0", "description": f"{name} test action"}
    data.update(manifest or {})

    if manifest_format == "json":
        (package_dir / "action.json").write_text(json.dumps(data, indent=2))
    else:
        (package_dir / "action.yaml").write_text(yaml.safe_dump(data, sort_keys=False))

    entrypoint = data.get("entrypoint", "action.py")
    (package_dir / entrypoint).write_text(textwrap.dedent(code))
    return package_dir


def write_legacy_action(root: Path, name: str, code: str) -> Path:
    """Create a manifest-less single-file action under ``root``."""
    parts = name.split("/")
    file_path = Path(root).joinpath(*parts[:-1], f"{parts[-1]}.py")
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(textwrap.dedent(code))
    return file_path


def write_pipeline(root: Path, name: str, definition: dict[str, Any]) -> Path:
    """Write a pipeline document as YAML under ``root``."""
    root = Path(root)
    root.mkdir(parents=True, exist_ok=True)
    path = root / f"{name}.yaml"
    path.write_text(yaml.safe_dump(definition, sort_keys=False))
    return path


class RecordingTransport(httpx.MockTransport):
    """MockTransport that records every request it serves.

    Example:
        >>> transport = RecordingTransport(lambda request: httpx.Response(200, json={"ok": True}))
        >>> executor = CloudExecutor(transport=transport)
    """

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: list[httpx.Request] = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(recording_handler)

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]
