"""Node.js image resolution for nodeshim.

This module picks the container image for an invocation:
- ResolvedImage dataclass with the final image reference
- Version declaration parsing (.nvmrc, .node-version, package.json engines)
- Priority-ordered resolution with a total override

Parsing never raises. A missing, unreadable or malformed declaration is
"no signal" and resolution falls through to the next source.
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import ShimSettings


NODE_REPOSITORY = "node"
VERSION_FILES = (".nvmrc", ".node-version")
MANIFEST_FILE = "package.json"

_DIGITS = re.compile(r"[0-9]+")
_COMPARATORS = re.compile(r"[<>=!]+")
_LEADING_MAJOR = re.compile(r"^[\s^~v]*([0-9]+)")


@dataclass(kw_only=True)
class ResolvedImage:
    """Container image chosen for one invocation."""

    repository: str = NODE_REPOSITORY
    major: Optional[str] = None
    variant: str = "alpine"
    override: Optional[str] = None  # Total override, wins over everything
    source: str = "default"

    @property
    def reference(self) -> str:
        if self.override:
            return self.override
        if self.major:
            return f"{self.repository}:{self.major}-{self.variant}"
        return f"{self.repository}:{self.variant}"


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logging.debug(f"Ignoring unreadable {path}: {e}")
        return None


def parse_version_file(path: Path) -> Optional[str]:
    """Extract the first run of digits from a version file.

    Returns None if the file is missing or contains no digits.
    """
    if not path.is_file():
        return None
    content = _read_text(path)
    if content is None:
        return None
    match = _DIGITS.search(content)
    return match.group(0) if match else None


def parse_engine_constraint(constraint: str) -> Optional[str]:
    """Get the major version from an engines constraint like ``>=18.0.0``.

    Comparison operators are stripped and the part before the first ``.``
    is used. Range prefixes (``^``, ``~``, ``v``) are tolerated.
    """
    stripped = _COMPARATORS.sub("", constraint)
    head = stripped.split(".", 1)[0]
    match = _LEADING_MAJOR.match(head)
    return match.group(1) if match else None


def parse_manifest(path: Path) -> Optional[str]:
    """Get the major version declared under ``engines.node`` in package.json."""
    if not path.is_file():
        return None
    content = _read_text(path)
    if content is None:
        return None
    try:
        manifest = json.loads(content)
    except json.JSONDecodeError as e:
        logging.debug(f"Ignoring malformed {path}: {e}")
        return None

    engines = manifest.get("engines") if isinstance(manifest, dict) else None
    constraint = engines.get("node") if isinstance(engines, dict) else None
    if not isinstance(constraint, str):
        return None
    return parse_engine_constraint(constraint)


def resolve_image(project_dir: Path, settings: ShimSettings) -> ResolvedImage:
    """Resolve the image for a project directory.

    Priority order (first match wins):
    1. .nvmrc
    2. .node-version
    3. package.json engines.node
    4. Default version from settings

    An explicit image in settings (NODE_IMAGE or config) overrides the
    result unconditionally.
    """
    resolved = ResolvedImage(
        major=settings.default_version,
        variant=settings.variant,
    )

    for filename in VERSION_FILES:
        major = parse_version_file(project_dir / filename)
        if major:
            resolved.major = major
            resolved.source = filename
            break
    else:
        major = parse_manifest(project_dir / MANIFEST_FILE)
        if major:
            resolved.major = major
            resolved.source = MANIFEST_FILE

    if settings.image:
        resolved.override = settings.image
        resolved.source = "override"

    logging.debug(f"Resolved image {resolved.reference} (from {resolved.source})")
    return resolved
