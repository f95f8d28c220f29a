from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ._errors import type_name


if TYPE_CHECKING:
    from collections.abc import Callable


logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class Lifetime(Enum):
    SINGLETON = "singleton"
    TRANSIENT = "transient"
    SCOPED = "scoped"


@dataclass(eq=False)
class Descriptor:
    """How one service type is built and how long its instances live."""

    service_type: Any
    impl: type | None
    factory: Callable[..., object] | None
    lifetime: Lifetime
    cached_instance: object = MISSING  # singleton slot (also scoped without a scope)
    prebuilt: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def for_instance(cls, service_type: Any, instance: object) -> Descriptor:
        return cls(
            service_type=service_type,
            impl=None,
            factory=None,
            lifetime=Lifetime.SINGLETON,
            cached_instance=instance,
            prebuilt=True,
        )

    @property
    def has_instance(self) -> bool:
        return self.cached_instance is not MISSING


class Registry:
    """Service type -> Descriptor map.

    Writes are serialized; lookups are plain dict reads, which is safe once
    bootstrap registration has completed.
    """

    def __init__(self) -> None:
        self._descriptors: dict[Any, Descriptor] = {}
        self._lock = threading.RLock()

    def register(self, descriptor: Descriptor, *, replace: bool = False) -> bool:
        """Store `descriptor` unless its service type is already registered.

        The first registration wins: later attempts are no-ops and return False.
        Pass `replace=True` to overwrite explicitly.
        """
        with self._lock:
            existing = self._descriptors.get(descriptor.service_type)
            if existing is not None and not replace:
                logger.debug(
                    "Ignoring duplicate registration for %s (already registered as %s)",
                    type_name(descriptor.service_type),
                    existing.lifetime.value,
                )
                return False
            self._descriptors[descriptor.service_type] = descriptor

        logger.debug("Registered %s as %s", type_name(descriptor.service_type), descriptor.lifetime.value)
        return True

    def lookup(self, service_type: Any) -> Descriptor | None:
        try:
            return self._descriptors.get(service_type)
        except TypeError:
            # unhashable keys can never be registered
            return None

    def service_types(self) -> tuple[Any, ...]:
        return tuple(self._descriptors)

    def descriptors(self) -> tuple[Descriptor, ...]:
        return tuple(self._descriptors.values())

    def clear(self) -> None:
        with self._lock:
            self._descriptors.clear()

    def __contains__(self, service_type: object) -> bool:
        return self.lookup(service_type) is not None

    def __len__(self) -> int:
        return len(self._descriptors)
