"""
Catalog loader: seeds built-in primitives from builtin.yaml.

Entries are upserted in file order. An existing built-in primitive is left as
is; an operator-authored primitive with the same name is updated to the
catalog's definition; anything else is created. The registry is initialized
afterwards so every enabled primitive ends up mounted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml
from pydantic import ValidationError as ModelValidationError

from ..kernel.errors import PrimitiveRuntimeError
from ..kernel.registry import InitializeResult, PrimitiveRegistry
from ..kernel.schema import DEFAULT_TIMEOUT_MS, CreatePrimitiveRequest, UpdatePrimitiveRequest
from ..kernel.store import PrimitiveStore


logger = logging.getLogger(__name__)

CATALOG_PATH = Path(__file__).parent / "builtin.yaml"


@dataclass
class CatalogLoadResult:
    loaded: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    initialized: Optional[InitializeResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loaded": self.loaded,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "initialized": self.initialized.to_dict() if self.initialized else None,
        }


def read_catalog(path: Optional[Path] = None) -> List[Dict[str, Any]]:
    """Parse a catalog file into a list of primitive entries."""
    path = path or CATALOG_PATH
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)

    entries = data.get("primitives") if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ValueError(f"Catalog {path} must contain a list of primitives")
    return entries


def builtin_primitive_names(path: Optional[Path] = None) -> List[str]:
    return [entry["name"] for entry in read_catalog(path)]


def _upsert(registry: PrimitiveRegistry, store: PrimitiveStore, entry: Mapping[str, Any]) -> str:
    """Apply one entry; returns "loaded" or "skipped", raises on failure."""
    name = entry["name"]
    existing = store.get_primitive_by_name(name)
    if existing is not None and existing.built_in:
        return "skipped"

    if existing is not None:
        patch = UpdatePrimitiveRequest(
            description=entry.get("description", ""),
            input_schema=entry.get("input_schema"),
            handler=entry["handler"],
            category=entry.get("category"),
            tags=list(entry.get("tags") or []),
            icon=entry.get("icon"),
            timeout_ms=entry.get("timeout_ms") or DEFAULT_TIMEOUT_MS,
        )
        outcome = registry.update_primitive(existing.id, patch)
    else:
        request = CreatePrimitiveRequest(
            **{key: value for key, value in entry.items() if key not in ("built_in", "auto_mount")},
            built_in=True,
            auto_mount=registry.is_initialized,
        )
        outcome = registry.create_primitive(request)

    if not outcome.success:
        raise PrimitiveRuntimeError(outcome.error or "unknown error")
    return "loaded"


def load_builtin_primitives(
    registry: PrimitiveRegistry,
    store: PrimitiveStore,
    entries: Optional[Sequence[Mapping[str, Any]]] = None,
) -> CatalogLoadResult:
    if entries is None:
        entries = read_catalog()

    result = CatalogLoadResult()
    for entry in entries:
        name = entry.get("name", "<unnamed>")
        try:
            if _upsert(registry, store, entry) == "skipped":
                result.skipped += 1
            else:
                result.loaded += 1
        except (PrimitiveRuntimeError, ModelValidationError, KeyError) as exc:
            result.errors.append(f"Failed to load {name}: {exc}")

    result.initialized = registry.initialize()
    logger.info(
        "Catalog loaded: %d loaded, %d skipped, %d errors",
        result.loaded,
        result.skipped,
        len(result.errors),
    )
    return result
