"""
Registry file persistence — atomic read/write for the Registry document.

The registry is stored as a single JSON file. It is read on every
operation (there is no long-lived cache) and rewritten as a whole after
every successful mutation. Writes are atomic (write to temp file, then
rename) and guarded by the document's ``version`` counter: a save that
was computed from a stale read is rejected instead of silently
overwriting a concurrent change.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from src.core.models.registry import Registry
from src.core.persistence.migrations import MigrationError, migrate, strip_deprecated

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Raised when the registry document cannot be read or written."""


class VersionConflictError(RegistryError):
    """The stored document changed since it was loaded; reload and retry."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Registry was modified concurrently (expected version {expected}, "
            f"found {actual}); reload and retry"
        )
        self.expected = expected
        self.actual = actual


def _read_raw(path: Path) -> dict | None:
    """Parse the stored JSON document, or None if there is no file."""
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise RegistryError(f"Corrupt registry file {path}: {e}") from e
    except OSError as e:
        raise RegistryError(f"Cannot read registry file {path}: {e}") from e
    if not isinstance(data, dict):
        raise RegistryError(
            f"Expected a JSON object in {path}, got {type(data).__name__}"
        )
    return data


def load_registry(path: Path) -> Registry:
    """Load the registry, upgrading older documents to the current schema.

    Args:
        path: Path to the registry JSON file.

    Returns:
        Registry model. If the file doesn't exist, returns the default
        registry (two environments, nothing routed).

    Raises:
        RegistryError: If the file is corrupt or fails validation. A
            broken document is never replaced by defaults, since the next
            save would overwrite it.
    """
    data = _read_raw(path)
    if data is None:
        logger.info("No registry at %s — using defaults", path)
        return Registry()

    data = strip_deprecated(data)
    try:
        data = migrate(data)
    except MigrationError as e:
        raise RegistryError(f"Cannot migrate {path}: {e}") from e

    try:
        registry = Registry.model_validate(data)
    except Exception as e:
        raise RegistryError(f"Invalid registry document {path}: {e}") from e

    logger.debug("Loaded registry from %s (version=%d)", path, registry.version)
    return registry


def stored_version(path: Path) -> int:
    """The ``version`` of the document currently on disk (0 if none)."""
    data = _read_raw(path)
    if data is None:
        return 0
    version = data.get("version", 0)
    return version if isinstance(version, int) else 0


def save_registry(
    registry: Registry,
    path: Path,
    expected_version: int | None = None,
) -> Registry:
    """Save the registry to its JSON file (atomic write).

    Args:
        registry: The registry to save. Its ``version`` is incremented.
        path: Target path for the registry file.
        expected_version: Version the caller loaded. If given and the
            stored document has moved on, nothing is written.

    Returns:
        The saved registry.

    Raises:
        VersionConflictError: If ``expected_version`` is stale.
        RegistryError: If the file cannot be written.
    """
    if expected_version is not None:
        current = stored_version(path)
        if current != expected_version:
            raise VersionConflictError(expected_version, current)

    registry.version += 1

    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(registry.to_json(), indent=2, ensure_ascii=False) + "\n"

    # Atomic write: temp file in same directory, then rename
    try:
        fd, tmp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=".registry_",
            suffix=".tmp",
        )
        os.close(fd)
        tmp = Path(tmp_path)
        try:
            tmp.write_text(content, encoding="utf-8")
            tmp.replace(path)
            logger.debug("Registry saved to %s (version=%d)", path, registry.version)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise
    except OSError as e:
        registry.version -= 1
        logger.error("Failed to save registry to %s: %s", path, e)
        raise RegistryError(f"Cannot write registry file {path}: {e}") from e

    return registry
