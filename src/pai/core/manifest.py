"""Action manifests and implementation loading.

An action package is a directory holding a manifest (action.yaml, action.yml
or action.json) and an implementation module exposing
``execute(input, context)``.

A legacy action is a single Python file with no manifest. It exposes
``execute`` and may embed its own validators:

    VERSION = "1.0.0"
    DESCRIPTION = "Proofread a document"
    REQUIRES = ["llm"]

    class Input(BaseModel):
        text: str

    class Output(BaseModel):
        text: str

    def execute(input, context): ...

Plain ``INPUT_SCHEMA`` / ``OUTPUT_SCHEMA`` mappings are accepted in place of
the pydantic models.
"""

import hashlib
import importlib.util
import json
import sys
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Optional

import yaml
from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from pai.core.capabilities import parse_capability
from pai.core.validation import SchemaValidator, build_validator
from pai.exceptions import DefinitionError


MANIFEST_FILENAMES = ("action.yaml", "action.yml", "action.json")
DEFAULT_ENTRYPOINT = "action.py"


class DeploymentHints(BaseModel):
    """Advisory deployment metadata. Nothing here is enforced in-process."""

    timeout: Optional[int] = Field(None, description="Timeout in seconds for an external scheduler")
    memory: Optional[str | int] = Field(None, description="Memory hint (e.g. '256MB')")
    secrets: list[str] = Field(default_factory=list, description="Secret names exposed as context.env")


class ActionManifest(BaseModel):
    """Declarative contract of an action."""

    name: str = Field(..., description="Action name (flat A_NAME or category/name)")
    version: str = Field("0.0.0", description="Semantic version")
    description: str = Field("", description="Human description")
    input_schema: Optional[dict[str, Any]] = Field(
        None,
        validation_alias=AliasChoices("input_schema", "input"),
        description="JSON Schema or per-field schema for input",
    )
    output_schema: Optional[dict[str, Any]] = Field(
        None,
        validation_alias=AliasChoices("output_schema", "output"),
        description="JSON Schema or per-field schema for output",
    )
    requires: list[str] = Field(default_factory=list, description="Capability names")
    tags: list[str] = Field(default_factory=list)
    author: Optional[str] = None
    license: Optional[str] = None
    entrypoint: str = Field(DEFAULT_ENTRYPOINT, description="Implementation file relative to the package")
    deployment: DeploymentHints = Field(default_factory=DeploymentHints)

    class Config:
        frozen = True
        extra = "allow"

    @field_validator("requires")
    @classmethod
    def _known_capabilities(cls, value: list[str]) -> list[str]:
        for name in value:
            parse_capability(name)
        return value


class LoadedAction:
    """A resolved action ready to run.

    Validators are built once here, at load time. The implementation module of
    a manifest package is imported lazily so cloud dispatch never needs it.
    """

    def __init__(
        self,
        manifest: ActionManifest,
        path: Path,
        source: str,
        legacy: bool = False,
        module: Optional[ModuleType] = None,
        input_validator: Optional[SchemaValidator] = None,
        output_validator: Optional[SchemaValidator] = None,
    ):
        self.manifest = manifest
        self.path = Path(path)
        self.source = source
        self.legacy = legacy
        self._module = module
        self.input_validator = input_validator or build_validator(manifest.input_schema)
        self.output_validator = output_validator or build_validator(manifest.output_schema)

    @property
    def name(self) -> str:
        return self.manifest.name

    @property
    def version(self) -> str:
        return self.manifest.version

    @property
    def implementation_path(self) -> Path:
        if self.legacy:
            return self.path
        return self.path / self.manifest.entrypoint

    def get_execute(self) -> Callable[..., Any]:
        """Import the implementation (once) and return its execute function.

        Raises:
            DefinitionError: If the module is missing or has no execute()
        """
        if self._module is None:
            self._module = import_implementation(self.implementation_path)

        execute = getattr(self._module, "execute", None)
        if not callable(execute):
            raise DefinitionError(f"{self.implementation_path} does not define execute(input, context)")
        return execute

    def __repr__(self) -> str:
        return f"LoadedAction({self.name!r}, version={self.version!r}, source={self.source!r})"


def find_manifest_file(package_dir: Path) -> Path | None:
    """Return the manifest file of a package directory, if any."""
    for filename in MANIFEST_FILENAMES:
        candidate = package_dir / filename
        if candidate.is_file():
            return candidate
    return None


def read_manifest(manifest_path: Path, expected_name: Optional[str] = None) -> ActionManifest:
    """Parse and validate a manifest document.

    Args:
        manifest_path: Path to action.yaml/action.yml/action.json
        expected_name: Name used for resolution; fills in a missing ``name``
            and must match a declared one

    Raises:
        DefinitionError: If the document is malformed
    """
    try:
        text = manifest_path.read_text(encoding="utf-8")
        if manifest_path.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise DefinitionError(f"Cannot read manifest {manifest_path}: {e}")

    if not isinstance(data, dict):
        raise DefinitionError(f"Manifest {manifest_path} must contain a mapping")

    if expected_name:
        declared = data.setdefault("name", expected_name)
        if declared != expected_name:
            raise DefinitionError(
                f"Manifest {manifest_path} declares name '{declared}' but resolves as '{expected_name}'"
            )

    try:
        return ActionManifest.model_validate(data)
    except PydanticValidationError as e:
        raise DefinitionError(f"Invalid manifest {manifest_path}: {e}")
    except DefinitionError as e:
        raise DefinitionError(f"Invalid manifest {manifest_path}: {e}")


def import_implementation(path: Path) -> ModuleType:
    """Import a Python file under a unique module name.

    The module name is derived from the absolute path, so two roots that both
    provide ``action.py`` never collide in sys.modules.

    Raises:
        DefinitionError: If the file is missing or fails to import
    """
    path = Path(path).resolve()
    if not path.is_file():
        raise DefinitionError(f"Implementation file not found: {path}")

    digest = hashlib.sha1(str(path).encode()).hexdigest()[:12]
    module_name = f"pai_action_{path.stem}_{digest}"

    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise DefinitionError(f"Cannot load implementation: {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(module_name, None)
        raise DefinitionError(f"Failed to import {path}: {e}")

    return module


def load_package(package_dir: Path, name: str, source: str) -> LoadedAction:
    """Load a manifest-based action package."""
    manifest_path = find_manifest_file(package_dir)
    if manifest_path is None:
        raise DefinitionError(f"No manifest found in {package_dir}")

    manifest = read_manifest(manifest_path, expected_name=name)
    return LoadedAction(manifest=manifest, path=package_dir, source=source)


def load_legacy(file_path: Path, name: str, source: str) -> LoadedAction:
    """Load a manifest-less single-file action.

    The module is imported immediately because its validators live inside it.
    """
    module = import_implementation(file_path)

    input_schema = getattr(module, "Input", None) or getattr(module, "INPUT_SCHEMA", None)
    output_schema = getattr(module, "Output", None) or getattr(module, "OUTPUT_SCHEMA", None)

    try:
        manifest = ActionManifest(
            name=name,
            version=str(getattr(module, "VERSION", "0.0.0")),
            description=getattr(module, "DESCRIPTION", None) or (module.__doc__ or "").strip(),
            requires=list(getattr(module, "REQUIRES", [])),
            entrypoint=file_path.name,
        )
    except PydanticValidationError as e:
        raise DefinitionError(f"Invalid legacy action {file_path}: {e}")

    return LoadedAction(
        manifest=manifest,
        path=file_path,
        source=source,
        legacy=True,
        module=module,
        input_validator=build_validator(input_schema),
        output_validator=build_validator(output_schema),
    )
