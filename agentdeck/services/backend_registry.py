from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable

from ..config import config
from ..runtime.backend.descriptor import BackendDescriptor, load_backend_descriptor

logger = logging.getLogger(__name__)


class UnknownBackendError(KeyError):
    """Raised by `BackendRegistry.require` for a provider with no descriptor."""


class BackendRegistry:
    def __init__(self, descriptors: Iterable[BackendDescriptor]) -> None:
        self._descriptors: Dict[str, BackendDescriptor] = {}
        for descriptor in descriptors:
            self._descriptors[descriptor.name] = descriptor

    @classmethod
    def from_directory(cls, backends_dir: str | Path | None = None, schema_path: str | None = None) -> "BackendRegistry":
        root = Path(backends_dir or config.SYSTEM.BACKENDS_DIR)
        schema = schema_path or config.SYSTEM.BACKEND_SCHEMA
        descriptors = [load_backend_descriptor(path, schema) for path in sorted(root.glob("*.json"))]
        logger.info("Loaded %d backend descriptors from %s", len(descriptors), root)
        return cls(descriptors)

    def get(self, provider: str) -> BackendDescriptor | None:
        return self._descriptors.get(provider)

    def require(self, provider: str) -> BackendDescriptor:
        descriptor = self.get(provider)
        if descriptor is None:
            raise UnknownBackendError(provider)
        return descriptor

    def names(self) -> list[str]:
        return sorted(self._descriptors)
