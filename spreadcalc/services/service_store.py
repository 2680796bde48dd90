"""
File-based storage of published services.

Each service is stored as two files in the services directory:
``<service_id>.json`` with the name and parameter definitions, and
``<service_id>.xlsx`` with the spreadsheet model. Saving or deleting a
service calls the ``on_change`` hook so that cached compiled models of
the old version are dropped.
"""

import json
import logging
import re
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from spreadcalc.adapters.calamine_adapter import CalamineModelInspector
from spreadcalc.exceptions.calculation_exceptions import (
    InvalidServiceDefinitionError,
    ServiceNotFoundError,
)
from spreadcalc.models.parameter_models import ServiceDescriptor

logger = logging.getLogger(__name__)

_SERVICE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def is_valid_service_id(service_id: str) -> bool:
    """Only letters, digits, dash and underscore, so ids are safe file names."""
    return bool(service_id) and bool(_SERVICE_ID_PATTERN.match(service_id))


def build_descriptor(service_id: str, definition: dict[str, Any], model_data: bytes) -> ServiceDescriptor:
    """
    Build a descriptor from a JSON definition and model bytes.

    Args:
        service_id: Service identity.
        definition: ``{"name": ..., "inputs": [...], "outputs": [...]}``,
            optionally with ``"use_caching"`` (``"useCaching"`` is accepted).
        model_data: Serialized model.

    Raises:
        InvalidServiceDefinitionError: If the definition does not validate.
    """
    try:
        return ServiceDescriptor(
            service_id=service_id,
            name=definition.get("name"),
            inputs=definition.get("inputs") or (),
            outputs=definition.get("outputs") or (),
            use_caching=definition.get("use_caching", definition.get("useCaching", True)),
            model_data=model_data,
        )
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise InvalidServiceDefinitionError(service_id, problems) from e


class FileServiceStore:
    """
    Stores ServiceDescriptors on disk, with an in-memory read cache.

    Attributes:
        services_dir: Directory holding the service files.
        inspector: Checks descriptors against their model before saving.
        on_change: Called with the service id after a save or delete.

    Example:
        store = FileServiceStore("./services", on_change=service.invalidate)
        store.save(descriptor)
        descriptor = store.get("loan-calculator")
    """

    MODEL_SUFFIX = ".xlsx"

    def __init__(
        self,
        services_dir: str | Path,
        inspector: CalamineModelInspector | None = None,
        on_change: Callable[[str], Any] | None = None,
    ) -> None:
        self.services_dir = Path(services_dir)
        self.inspector = inspector if inspector is not None else CalamineModelInspector()
        self.on_change = on_change
        self._descriptors: dict[str, ServiceDescriptor] = {}
        self._lock = threading.Lock()

    def _paths(self, service_id: str) -> tuple[Path, Path]:
        if not is_valid_service_id(service_id):
            raise ServiceNotFoundError(service_id)
        return (
            self.services_dir / f"{service_id}.json",
            self.services_dir / f"{service_id}{self.MODEL_SUFFIX}",
        )

    def _changed(self, service_id: str) -> None:
        with self._lock:
            self._descriptors.pop(service_id, None)
        if self.on_change is not None:
            self.on_change(service_id)

    def save(self, descriptor: ServiceDescriptor) -> ServiceDescriptor:
        """
        Check a descriptor against its model and store it.

        Raises:
            InvalidServiceDefinitionError: If the id is unsafe or the
                descriptor does not match its model.
        """
        service_id = descriptor.service_id
        if not is_valid_service_id(service_id):
            raise InvalidServiceDefinitionError(
                service_id,
                ["Service id may only contain letters, digits, '-' and '_'"],
            )

        self.inspector.check_descriptor(descriptor)

        definition_path, model_path = self._paths(service_id)
        self.services_dir.mkdir(parents=True, exist_ok=True)
        model_path.write_bytes(descriptor.model_data)
        definition_path.write_text(
            json.dumps(descriptor.model_dump(mode="json", exclude={"service_id"}), indent=2),
            encoding="utf-8",
        )

        logger.info("Published service %s", service_id)
        self._changed(service_id)
        return descriptor

    def get(self, service_id: str) -> ServiceDescriptor:
        """
        Load a service.

        Raises:
            ServiceNotFoundError: If no service is stored under the id.
        """
        with self._lock:
            cached = self._descriptors.get(service_id)
        if cached is not None:
            return cached

        definition_path, model_path = self._paths(service_id)
        if not definition_path.exists() or not model_path.exists():
            raise ServiceNotFoundError(service_id)

        definition = json.loads(definition_path.read_text(encoding="utf-8"))
        descriptor = build_descriptor(service_id, definition, model_path.read_bytes())

        with self._lock:
            self._descriptors[service_id] = descriptor
        return descriptor

    def delete(self, service_id: str) -> None:
        """
        Remove a service.

        Raises:
            ServiceNotFoundError: If no service is stored under the id.
        """
        definition_path, model_path = self._paths(service_id)
        if not definition_path.exists():
            raise ServiceNotFoundError(service_id)

        definition_path.unlink()
        model_path.unlink(missing_ok=True)
        logger.info("Deleted service %s", service_id)
        self._changed(service_id)

    def list_ids(self) -> list[str]:
        """Get the ids of all stored services, sorted."""
        if not self.services_dir.exists():
            return []
        return sorted(
            path.stem
            for path in self.services_dir.glob("*.json")
            if is_valid_service_id(path.stem)
        )
