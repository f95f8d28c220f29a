from __future__ import annotations

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from collections.abc import Sequence

    from ._container import ValidationReport


def type_name(service_type: Any) -> str:
    return getattr(service_type, "__qualname__", None) or repr(service_type)


class ResolutionError(RuntimeError):
    pass


class ServiceNotRegisteredError(ResolutionError, LookupError):
    def __init__(self, service_type: Any, reason: str = "is not registered") -> None:
        self.service_type = service_type
        super().__init__(f"Service of type {type_name(service_type)} {reason}")


class CircularDependencyError(ResolutionError):
    """Raised when a type is requested while it is already under construction."""

    def __init__(self, service_type: Any, chain: Sequence[Any]) -> None:
        self.service_type = service_type
        self.chain = tuple(chain)
        path = " -> ".join(type_name(t) for t in (*self.chain, service_type))
        super().__init__(f"Circular dependency detected for service {type_name(service_type)}: {path}")


class UnresolvableConstructorError(ResolutionError):
    def __init__(self, service_type: Any, missing: Sequence[str]) -> None:
        self.service_type = service_type
        self.missing = tuple(missing)
        super().__init__(
            f"Cannot resolve constructor dependencies for {type_name(service_type)} "
            f"(unsatisfied parameters: {', '.join(self.missing) or 'none'})"
        )


class ScopeDisposedError(ResolutionError):
    pass


class ContainerValidationError(ResolutionError):
    def __init__(self, report: ValidationReport) -> None:
        self.report = report
        lines = [f"Service {type_name(f.service_type)}: {f.error}" for f in report.failures]
        super().__init__("Service validation failed:\n" + "\n".join(lines))
