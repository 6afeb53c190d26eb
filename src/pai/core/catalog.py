"""Action catalog - resolves action names to packages on disk.

Two name grammars coexist:

- flat:     A_EXTRACT_TOPIC   -> <root>/A_EXTRACT_TOPIC/action.yaml
- category: blog/proofread    -> <root>/blog/proofread/action.yaml

Roots are searched in order (personal before system); the first root holding
a manifest wins, so a user can shadow any system action without touching
system files. When no manifest package exists anywhere, the legacy
single-file form (<root>/A_NAME.py or <root>/category/name.py) is tried in
the same root order.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from pai.core.manifest import (
    LoadedAction,
    find_manifest_file,
    load_legacy,
    load_package,
    read_manifest,
)
from pai.exceptions import DefinitionError


logger = logging.getLogger(__name__)

FLAT_PREFIX = "A_"


class NameGrammar(str, Enum):
    FLAT = "flat"
    CATEGORY = "category"


@dataclass(frozen=True)
class CatalogRoot:
    """A resolution root. ``label`` is 'user' or 'system'."""

    label: str
    path: Path


@dataclass(frozen=True)
class ActionLocation:
    """Where a resolved action lives."""

    name: str
    path: Path
    source: str
    legacy: bool = False


@dataclass(frozen=True)
class ActionSummary:
    """One row of ActionCatalog.list()."""

    name: str
    source: str
    path: str
    version: Optional[str] = None
    description: Optional[str] = None
    legacy: bool = False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "source": self.source,
            "format": "legacy" if self.legacy else "manifest",
            "path": self.path,
        }


def detect_grammar(name: str) -> NameGrammar | None:
    """Detect which naming scheme an action name uses.

    Returns:
        NameGrammar, or None if the name fits neither scheme
    """
    if name.startswith(FLAT_PREFIX):
        if "/" in name or len(name) == len(FLAT_PREFIX):
            return None
        return NameGrammar.FLAT

    parts = name.split("/")
    if len(parts) == 2 and all(parts) and not any(p.startswith((".", "_")) for p in parts):
        return NameGrammar.CATEGORY
    return None


class ActionCatalog:
    """Resolves and lists actions across ordered roots."""

    def __init__(self, roots: Iterable[CatalogRoot | tuple[str, Path]]):
        """Initialize catalog.

        Args:
            roots: Resolution roots in priority order (personal first)
        """
        self.roots = [
            root if isinstance(root, CatalogRoot) else CatalogRoot(root[0], Path(root[1]))
            for root in roots
        ]

    def resolve(self, name: str) -> ActionLocation | None:
        """Find the winning package for an action name.

        A miss is not an error here; the runner reports it.

        Returns:
            ActionLocation or None
        """
        grammar = detect_grammar(name)
        if grammar is None:
            logger.debug(f"Action name '{name}' matches no naming scheme")
            return None

        for root in self.roots:
            package_dir = root.path.joinpath(*name.split("/"))
            if package_dir.is_dir() and find_manifest_file(package_dir) is not None:
                return ActionLocation(name=name, path=package_dir, source=root.label)

        for root in self.roots:
            parts = name.split("/")
            legacy_file = root.path.joinpath(*parts[:-1], f"{parts[-1]}.py")
            if legacy_file.is_file():
                logger.debug(f"Resolved '{name}' to legacy file {legacy_file}")
                return ActionLocation(name=name, path=legacy_file, source=root.label, legacy=True)

        return None

    def load(self, location: ActionLocation) -> LoadedAction:
        """Load manifest, validators and (for legacy files) the implementation.

        Raises:
            DefinitionError: If the package is malformed
        """
        if location.legacy:
            return load_legacy(location.path, location.name, location.source)
        return load_package(location.path, location.name, location.source)

    def _scan_root(self, root: CatalogRoot) -> list[ActionSummary]:
        if not root.path.is_dir():
            return []

        found = []
        for entry in sorted(root.path.iterdir()):
            if entry.name.startswith((".", "_")):
                continue

            if entry.is_file() and entry.suffix == ".py":
                if detect_grammar(entry.stem) is NameGrammar.FLAT:
                    found.append(self._legacy_summary(entry.stem, entry, root))
                continue

            if not entry.is_dir():
                continue

            if detect_grammar(entry.name) is NameGrammar.FLAT:
                summary = self._package_summary(entry.name, entry, root)
                if summary is not None:
                    found.append(summary)
                continue

            # Category directory
            for child in sorted(entry.iterdir()):
                if child.name.startswith((".", "_")):
                    continue
                name = f"{entry.name}/{child.stem if child.is_file() else child.name}"
                if child.is_dir():
                    summary = self._package_summary(name, child, root)
                    if summary is not None:
                        found.append(summary)
                elif child.suffix == ".py":
                    found.append(self._legacy_summary(name, child, root))

        return found

    def _package_summary(self, name: str, package_dir: Path, root: CatalogRoot) -> ActionSummary | None:
        manifest_path = find_manifest_file(package_dir)
        if manifest_path is None:
            return None

        try:
            manifest = read_manifest(manifest_path, expected_name=name)
        except DefinitionError as e:
            logger.warning(f"Malformed manifest: {e}")
            return ActionSummary(name=name, source=root.label, path=str(package_dir), description=f"invalid manifest: {e}")

        return ActionSummary(
            name=name,
            source=root.label,
            path=str(package_dir),
            version=manifest.version,
            description=manifest.description,
        )

    def _legacy_summary(self, name: str, file_path: Path, root: CatalogRoot) -> ActionSummary:
        # Legacy files are not imported just to be listed
        return ActionSummary(name=name, source=root.label, path=str(file_path), legacy=True)

    def list(self) -> list[ActionSummary]:
        """Enumerate every visible action, user entries shadowing system ones.

        Returns:
            Summaries sorted by name
        """
        seen: dict[str, ActionSummary] = {}

        for root in self.roots:
            for summary in self._scan_root(root):
                existing = seen.get(summary.name)
                # A manifest package anywhere beats a legacy file
                if existing is None or (existing.legacy and not summary.legacy):
                    seen[summary.name] = summary

        return [seen[name] for name in sorted(seen)]

