from __future__ import annotations

"""Capability registry and catalogue.

``CapabilityRegistry`` is built per agent execution and maps a capability
name to a live instance and its schema. Instances are never shared between
concurrent agents.

``CapabilityCatalog`` is the process-level list of capabilities an agent may
ask for (name -> constructor). The persisted ``AgentContext.capabilities``
list is turned back into a registry through the catalogue on every
(re)entry of the loop.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..errors import UnknownCapability
from .base import BaseCapability, Capability, CapabilitySchema

logger = logging.getLogger(__name__)

CapabilityFactory = Callable[[], Capability]


class CapabilityRegistry:
    """
    In-memory mapping of capability names to implementations.

    The dispatcher relies on this registry to resolve the capability part of
    a qualified call name.

    Notes:
        - ``register`` overwrites an existing capability with a warning.
        - ``remove`` is logged; a dispatch that races a removal resolves to
          ``UnknownCapability``.
        - ``get`` raises ``UnknownCapability`` if the capability is missing.
    """

    def __init__(self, capabilities: Iterable[Capability] = ()) -> None:
        """Initialize the registry, optionally with an initial set of capabilities."""
        self._caps: Dict[str, Tuple[Capability, CapabilitySchema]] = {}
        for cap in capabilities:
            self.register(cap)

    def register(self, cap: Capability) -> None:
        """
        Register a capability implementation.

        The schema is loaded once here. For ``BaseCapability`` subclasses the
        schema is checked against the method table and mismatches are logged
        as configuration errors.

        Args:
            cap: The capability instance to register. It must expose a ``name`` attribute.
        """
        schema = cap.schema()
        if schema.name != cap.name:
            logger.error(f"Capability '{cap.name}' returned a schema named '{schema.name}'")
        if isinstance(cap, BaseCapability):
            declared = set(schema.methods)
            implemented = set(cap.methods())
            if declared != implemented:
                logger.error(
                    f"Capability '{cap.name}' schema/method mismatch: "
                    f"undeclared={sorted(implemented - declared)} unimplemented={sorted(declared - implemented)}"
                )
        if cap.name in self._caps:
            logger.warning(f"Capability '{cap.name}' is already registered; replacing it")
        self._caps[cap.name] = (cap, schema)

    def remove(self, name: str) -> bool:
        """
        Remove a capability.

        Returns:
            True if the capability was registered.
        """
        if self._caps.pop(name, None) is None:
            return False
        logger.info(f"Capability '{name}' removed")
        return True

    def get(self, name: str) -> Capability:
        """
        Retrieve a registered capability by name.

        Raises:
            UnknownCapability: If no capability is registered with the given name.
        """
        try:
            return self._caps[name][0]
        except KeyError:
            raise UnknownCapability(name, self._caps.keys()) from None

    def schema(self, name: str) -> CapabilitySchema:
        try:
            return self._caps[name][1]
        except KeyError:
            raise UnknownCapability(name, self._caps.keys()) from None

    def has(self, name: str) -> bool:
        return name in self._caps

    def names(self) -> List[str]:
        return list(self._caps)

    def schemas(self) -> List[CapabilitySchema]:
        return [schema for _, schema in self._caps.values()]


class CapabilityCatalog:
    """Constructors of every capability an agent may request.

    Capabilities listed in ``always`` are added to every registry built from
    the catalogue, whether or not they were requested.
    """

    def __init__(self, always: Sequence[str] = ()) -> None:
        self._factories: Dict[str, CapabilityFactory] = {}
        self._always: List[str] = list(always)

    def register(self, name: str, factory: CapabilityFactory) -> None:
        if name in self._factories:
            logger.warning(f"Capability factory '{name}' is already registered; replacing it")
        self._factories[name] = factory

    def has(self, name: str) -> bool:
        return name in self._factories

    def names(self) -> List[str]:
        return list(self._factories)

    def create(self, name: str) -> Optional[Capability]:
        factory = self._factories.get(name)
        if factory is None:
            logger.warning(f"Unknown capability '{name}' requested; skipping it")
            return None
        return factory()

    def resolve_names(self, requested: Iterable[str]) -> List[str]:
        """Return the capability names a registry would contain, in order, without duplicates."""
        names: List[str] = []
        for name in [*self._always, *requested]:
            if name not in names and self.has(name):
                names.append(name)
            elif not self.has(name):
                logger.warning(f"Unknown capability '{name}' requested; skipping it")
        return names

    def build_registry(self, requested: Iterable[str]) -> CapabilityRegistry:
        registry = CapabilityRegistry()
        for name in self.resolve_names(requested):
            cap = self.create(name)
            if cap is not None:
                registry.register(cap)
        return registry
