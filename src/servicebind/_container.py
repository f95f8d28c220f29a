from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar, overload

from ._conformance import check_implementation, check_instance
from ._errors import ContainerValidationError, ServiceNotRegisteredError, type_name
from ._registry import MISSING, Descriptor, Lifetime, Registry
from ._resolver import Resolver
from ._scope import Scope, cleanup_handle


if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    T = TypeVar("T")
    D = TypeVar("D")


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationFailure:
    service_type: Any
    error: BaseException


@dataclass
class ValidationReport:
    """Outcome of `Container.validate_all()`: every registered type, resolved or not."""

    resolved: list[Any] = field(default_factory=list)
    failures: list[ValidationFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def failed_types(self) -> list[Any]:
        return [f.service_type for f in self.failures]

    def render(self) -> str:
        total = len(self.resolved) + len(self.failures)
        lines = [
            "Service registration report",
            f"Total registered services: {total}",
            f"Failed: {len(self.failures)}",
            "",
        ]
        rows = [(type_name(t), "ok") for t in self.resolved]
        rows += [(type_name(f.service_type), f"FAILED ({f.error})") for f in self.failures]
        lines += [f"- {name}: {status}" for name, status in sorted(rows)]
        return "\n".join(lines)

    def raise_for_failures(self) -> None:
        if self.failures:
            raise ContainerValidationError(self)


class Container:
    """Dependency injection container.

    - register implementation types, factories or pre-built instances
    - resolve with constructor injection from `__init__` annotations
    - lifetimes: singleton / transient / scoped
    - scopes bound to the calling context via `create_scope()`

    The first registration for a service type wins; later ones are ignored
    unless `replace=True` is passed.

    Example:
      container = Container()
      container.register_instance(Logger, logger)
      container.register_singleton(Cache, MemoryCache)
      container.register_transient(Client)
      client = container.get_required_service(Client)

    """

    def __init__(self) -> None:
        self._registry = Registry()
        self._resolver = Resolver(self._registry, self)

    @overload
    def register(
        self,
        service_type: type[T],
        impl: type[T] | None = ...,
        *,
        factory: None = ...,
        lifetime: Lifetime = Lifetime.SINGLETON,
        replace: bool = False,
    ) -> Container: ...

    @overload
    def register(
        self,
        service_type: type[T],
        impl: None = ...,
        *,
        factory: Callable[[Container], T],
        lifetime: Lifetime = Lifetime.SINGLETON,
        replace: bool = False,
    ) -> Container: ...

    @overload
    def register(
        self,
        service_type: Any,
        impl: type | None = ...,
        *,
        factory: Callable[[Container], Any] | None = ...,
        lifetime: Lifetime = Lifetime.SINGLETON,
        replace: bool = False,
    ) -> Container: ...

    def register(
        self,
        service_type: Any,
        impl: type | None = None,
        *,
        factory: Callable[[Container], Any] | None = None,
        lifetime: Lifetime = Lifetime.SINGLETON,
        replace: bool = False,
    ) -> Container:
        """Register an implementation type or a factory for a service type.

        Without `impl` or `factory` the service type is its own implementation.

        Example:
          container.register(IFoo, FooImpl)
          container.register(Db, factory=lambda c: Db(c.get_required_service(Settings)))

        """
        if impl is not None and factory is not None:
            msg = "Provide either `impl` or `factory`, not both."
            raise ValueError(msg)

        if impl is None and factory is None:
            if not inspect.isclass(service_type):
                msg = f"{service_type!r} is not a class; provide `impl` or `factory`."
                raise ValueError(msg)
            impl = service_type

        if impl is not None:
            if not inspect.isclass(impl):
                msg = f"`impl` must be a class, got {impl!r}"
                raise TypeError(msg)
            check_implementation(service_type, impl)

        self._registry.register(
            Descriptor(service_type=service_type, impl=impl, factory=factory, lifetime=lifetime),
            replace=replace,
        )
        return self

    def register_instance(self, service_type: Any, instance: object, *, replace: bool = False) -> Container:
        """Register a pre-built instance (always singleton)."""
        check_instance(service_type, instance)
        self._registry.register(Descriptor.for_instance(service_type, instance), replace=replace)
        return self

    def register_singleton(
        self,
        service_type: Any,
        impl: type | None = None,
        *,
        factory: Callable[[Container], Any] | None = None,
        instance: object = MISSING,
        replace: bool = False,
    ) -> Container:
        if instance is not MISSING:
            if impl is not None or factory is not None:
                msg = "`instance` cannot be combined with `impl` or `factory`."
                raise ValueError(msg)
            return self.register_instance(service_type, instance, replace=replace)
        return self.register(service_type, impl, factory=factory, lifetime=Lifetime.SINGLETON, replace=replace)

    def register_transient(
        self,
        service_type: Any,
        impl: type | None = None,
        *,
        factory: Callable[[Container], Any] | None = None,
        replace: bool = False,
    ) -> Container:
        return self.register(service_type, impl, factory=factory, lifetime=Lifetime.TRANSIENT, replace=replace)

    def register_scoped(
        self,
        service_type: Any,
        impl: type | None = None,
        *,
        factory: Callable[[Container], Any] | None = None,
        replace: bool = False,
    ) -> Container:
        return self.register(service_type, impl, factory=factory, lifetime=Lifetime.SCOPED, replace=replace)

    @overload
    def get_service(self, service_type: type[T]) -> T | None: ...

    @overload
    def get_service(self, service_type: type[T], default: D) -> T | D: ...

    def get_service(self, service_type: Any, default: Any = None) -> Any:
        """Resolve `service_type`, returning `default` when it is not registered.

        Scoped services use the scope bound to the calling context, if any.
        """
        return self._get(service_type, None, default=default, required=False)

    def get_required_service(self, service_type: type[T]) -> T:
        """Resolve `service_type`; raise ServiceNotRegisteredError when it is not registered."""
        return self._get(service_type, None, required=True)

    def _get(
        self,
        service_type: Any,
        scope: Scope | None,
        *,
        default: Any = None,
        required: bool,
        ambient: bool = True,
    ) -> Any:
        context = self._resolver.begin(scope, ambient=ambient)
        instance = self._resolver.resolve(service_type, context)
        if instance is MISSING or instance is None:
            if not required:
                return default
            if instance is None:
                raise ServiceNotRegisteredError(service_type, "resolved to None")
            raise ServiceNotRegisteredError(service_type)
        return instance

    def create_scope(self) -> Scope:
        """Create a scope and bind it to the calling context until it is disposed."""
        scope = Scope(self, _from_container=True)
        scope._bind()  # noqa: SLF001
        return scope

    def is_registered(self, service_type: Any) -> bool:
        return service_type in self._registry

    def registered_services(self) -> tuple[Any, ...]:
        return self._registry.service_types()

    def validate_all(self) -> ValidationReport:
        """Resolve every registered type once and report all failures.

        Singletons are created first, outside any scope, exactly as the
        application would get them. Transient and scoped services are then
        resolved inside a private scope that is disposed afterwards, so
        validation never caches scoped instances container-wide and never
        closes an object a singleton holds on to.
        """
        report = ValidationReport()
        descriptors = self._registry.descriptors()
        singletons = [d.service_type for d in descriptors if d.lifetime is Lifetime.SINGLETON]
        others = [d.service_type for d in descriptors if d.lifetime is not Lifetime.SINGLETON]

        for service_type in singletons:
            self._validate_one(service_type, None, report)
        with Scope(self, _from_container=True) as scope:
            for service_type in others:
                self._validate_one(service_type, scope, report)

        if report.ok:
            logger.info("Validated %d registered services", len(report.resolved))
        else:
            logger.info(
                "Validated %d registered services, %d failed: %s",
                len(report.resolved) + len(report.failures),
                len(report.failures),
                ", ".join(type_name(t) for t in report.failed_types),
            )
        return report

    def _validate_one(self, service_type: Any, scope: Scope | None, report: ValidationReport) -> None:
        try:
            self._get(service_type, scope, required=True, ambient=False)
        except Exception as e:  # noqa: BLE001
            report.failures.append(ValidationFailure(service_type, e))
        else:
            report.resolved.append(service_type)

    def reset(self) -> None:
        """Drop every registration."""
        self._registry.clear()

    def dispose(self) -> None:
        """Clean up singletons built by the container; pre-built instances are left alone."""
        seen: set[int] = set()
        for descriptor in reversed(self._registry.descriptors()):
            if descriptor.prebuilt:
                continue
            with descriptor.lock:
                instance, descriptor.cached_instance = descriptor.cached_instance, MISSING
            if instance is MISSING or id(instance) in seen:
                continue
            seen.add(id(instance))
            handle = cleanup_handle(instance)
            if handle is None:
                continue
            try:
                handle()
            except Exception:
                logger.exception("Error during disposal of %s", type_name(descriptor.service_type))

    def __enter__(self) -> Container:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.dispose()
