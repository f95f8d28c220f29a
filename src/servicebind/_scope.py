from __future__ import annotations

import logging
import threading
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, TypeVar, overload

from ._errors import ScopeDisposedError, type_name
from ._registry import MISSING


if TYPE_CHECKING:
    from collections.abc import Callable
    from contextvars import Token
    from types import TracebackType

    from ._container import Container

    T = TypeVar("T")
    D = TypeVar("D")


logger = logging.getLogger(__name__)

# Scope bound to the current logical context (thread / asyncio task).
current_scope: ContextVar[Scope | None] = ContextVar("servicebind_current_scope", default=None)


def cleanup_handle(instance: object) -> Callable[[], object] | None:
    """Return the bound `dispose` or `close` method of `instance`, if any."""
    for name in ("dispose", "close"):
        handle = getattr(instance, name, None)
        if callable(handle):
            return handle
    return None


class Scope:
    """A unit of work owning its scoped instances and their cleanup.

    Created through `Container.create_scope()`, which also binds it to the
    calling context until it is disposed:

        with container.create_scope() as scope:
            vm = scope.get_required_service(PlayerViewModel)
    """

    def __init__(self, container: Container, *, _from_container: bool = False) -> None:
        if not _from_container:
            msg = "Scope instances must be created via Container.create_scope()"
            raise RuntimeError(msg)
        self._container = container
        self._instances: dict[Any, object] = {}
        self._cleanups: list[tuple[Any, Callable[[], object]]] = []
        # guards the maps and the disposed flag; never held while constructing
        self._lock = threading.Lock()
        self._slot_locks: dict[Any, threading.RLock] = {}
        self._tracked: set[int] = set()
        self._disposed = False
        self._token: Token[Scope | None] | None = None
        self._previous: Scope | None = None

    @property
    def container(self) -> Container:
        return self._container

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _bind(self) -> None:
        self._previous = current_scope.get()
        self._token = current_scope.set(self)

    def _unbind(self) -> None:
        if current_scope.get() is not self:
            return
        try:
            current_scope.reset(self._token)  # type: ignore[arg-type]
        except ValueError:
            # token created in a different context
            current_scope.set(self._previous)

    def _check_not_disposed(self) -> None:
        if self._disposed:
            msg = "Scope has been disposed"
            raise ScopeDisposedError(msg)

    def _slot_lock(self, service_type: Any) -> threading.RLock:
        with self._lock:
            self._check_not_disposed()
            return self._slot_locks.setdefault(service_type, threading.RLock())

    def _track(self, service_type: Any, instance: object) -> None:
        # one object cached under several service types is cleaned up once
        if id(instance) in self._tracked:
            return
        handle = cleanup_handle(instance)
        if handle is not None:
            self._tracked.add(id(instance))
            self._cleanups.append((service_type, handle))

    def get_or_create(self, service_type: Any, create: Callable[[], object]) -> object:
        """Return the instance cached in this scope, building it with `create` on first use.

        Construction holds a lock for `service_type` only, so building one
        scoped service never blocks resolution of another in the same scope.
        """
        self._check_not_disposed()

        instance = self._instances.get(service_type, MISSING)
        if instance is not MISSING:
            return instance

        with self._slot_lock(service_type):
            instance = self._instances.get(service_type, MISSING)
            if instance is not MISSING:
                return instance

            instance = create()
            with self._lock:
                if not self._disposed:
                    self._instances[service_type] = instance
                    self._track(service_type, instance)
                    return instance

        # disposed while `create` ran: release what was just built
        handle = cleanup_handle(instance)
        if handle is not None:
            self._run_cleanup(service_type, handle)
        msg = "Scope has been disposed"
        raise ScopeDisposedError(msg)

    @overload
    def get_service(self, service_type: type[T]) -> T | None: ...

    @overload
    def get_service(self, service_type: type[T], default: D) -> T | D: ...

    def get_service(self, service_type: Any, default: Any = None) -> Any:
        self._check_not_disposed()
        return self._container._get(service_type, self, default=default, required=False)  # noqa: SLF001

    def get_required_service(self, service_type: type[T]) -> T:
        self._check_not_disposed()
        return self._container._get(service_type, self, required=True)  # noqa: SLF001

    def dispose(self) -> None:
        """Run every cleanup handle once; failures are logged, never raised."""
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            cleanups = list(reversed(self._cleanups))
            self._cleanups.clear()
            self._tracked.clear()
            self._instances.clear()
            self._slot_locks.clear()

        self._unbind()

        for service_type, handle in cleanups:
            self._run_cleanup(service_type, handle)

    def _run_cleanup(self, service_type: Any, handle: Callable[[], object]) -> None:
        try:
            handle()
        except Exception:
            logger.exception("Error during scope cleanup of %s", type_name(service_type))

    def __enter__(self) -> Scope:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.dispose()
