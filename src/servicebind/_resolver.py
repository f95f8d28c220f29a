from __future__ import annotations

import inspect
import logging
import types
import typing
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, get_type_hints

from ._errors import CircularDependencyError, ResolutionError, UnresolvableConstructorError, type_name
from ._registry import MISSING, Descriptor, Lifetime
from ._scope import current_scope


if TYPE_CHECKING:
    from ._container import Container
    from ._registry import Registry
    from ._scope import Scope


logger = logging.getLogger(__name__)

# Published only while a factory runs, so that container calls made from the
# factory body continue the chain that invoked it.
_active_context: ContextVar[ResolutionContext | None] = ContextVar("servicebind_active_context", default=None)

_VARIADIC = (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)


@dataclass
class ResolutionContext:
    """Types under construction in one top-level resolution and the scope it uses."""

    resolver: Resolver
    scope: Scope | None = None
    path: list[Any] = field(default_factory=list)
    _members: set[Any] = field(default_factory=set, repr=False)

    def __contains__(self, service_type: object) -> bool:
        return service_type in self._members

    def push(self, service_type: Any) -> None:
        self.path.append(service_type)
        self._members.add(service_type)

    def pop(self, service_type: Any) -> None:
        self.path.pop()
        self._members.discard(service_type)

    def with_scope(self, scope: Scope | None) -> ResolutionContext:
        # same in-flight set, different scope
        return ResolutionContext(resolver=self.resolver, scope=scope, path=self.path, _members=self._members)


class Resolver:
    """Applies lifetimes and constructor injection to registered descriptors."""

    def __init__(self, registry: Registry, container: Container) -> None:
        self._registry = registry
        self._container = container
        self._constructor = Constructor(self)

    def begin(self, scope: Scope | None = None, *, ambient: bool = True) -> ResolutionContext:
        """Context for a resolution entered from the public API.

        Inside a running factory the caller's chain is continued; otherwise a
        fresh, empty context is started against `scope` or, when none is
        given and `ambient` is set, the scope bound to the current logical
        context.
        """
        active = _active_context.get()
        if active is not None and active.resolver is self:
            if scope is None or scope is active.scope:
                return active
            return active.with_scope(scope)

        if scope is None and ambient:
            scope = self._ambient_scope()
        return ResolutionContext(resolver=self, scope=scope)

    def _ambient_scope(self) -> Scope | None:
        scope = current_scope.get()
        if scope is None or scope.disposed or scope.container is not self._container:
            return None
        return scope

    def resolve(self, service_type: Any, context: ResolutionContext) -> object:
        """Resolve `service_type`, returning MISSING when it is not registered."""
        descriptor = self._registry.lookup(service_type)
        if descriptor is None:
            return MISSING

        if service_type in context:
            raise CircularDependencyError(service_type, context.path)

        context.push(service_type)
        try:
            if descriptor.lifetime is Lifetime.SINGLETON:
                return self._get_or_create_singleton(descriptor, context)
            if descriptor.lifetime is Lifetime.TRANSIENT:
                return self._create(descriptor, context)
            if descriptor.lifetime is Lifetime.SCOPED:
                return self._get_or_create_scoped(descriptor, context)
            msg = f"Unknown service lifetime: {descriptor.lifetime!r}"
            raise ResolutionError(msg)
        finally:
            context.pop(service_type)

    def _get_or_create_singleton(self, descriptor: Descriptor, context: ResolutionContext) -> object:
        instance = descriptor.cached_instance
        if instance is not MISSING:
            return instance

        with descriptor.lock:
            if descriptor.cached_instance is MISSING:
                descriptor.cached_instance = self._create(descriptor, context)
            return descriptor.cached_instance

    def _get_or_create_scoped(self, descriptor: Descriptor, context: ResolutionContext) -> object:
        scope = context.scope
        if scope is None:
            return self._get_or_create_singleton(descriptor, context)
        return scope.get_or_create(descriptor.service_type, lambda: self._create(descriptor, context))

    def _create(self, descriptor: Descriptor, context: ResolutionContext) -> object:
        if descriptor.factory is not None:
            token = _active_context.set(context)
            try:
                instance = descriptor.factory(self._container)
            finally:
                _active_context.reset(token)
        elif descriptor.impl is not None:
            instance = self._constructor.construct(descriptor.impl, context)
        else:
            msg = f"Cannot create instance for service {type_name(descriptor.service_type)}"
            raise ResolutionError(msg)

        logger.debug(
            "Constructed %s for %s (%s)",
            type(instance).__name__,
            type_name(descriptor.service_type),
            descriptor.lifetime.value,
        )
        return instance

    def resolve_param(self, p: inspect.Parameter, hints: dict[str, Any], context: ResolutionContext) -> object:
        """Resolve one constructor parameter by its annotation, or MISSING."""
        service_type = self._param_service_type(p, hints)
        if service_type is MISSING:
            return MISSING
        return self.resolve(service_type, context)

    def can_resolve(self, p: inspect.Parameter, hints: dict[str, Any]) -> bool:
        return self._param_service_type(p, hints) is not MISSING

    def _param_service_type(self, p: inspect.Parameter, hints: dict[str, Any]) -> Any:
        ann = hints.get(p.name, p.annotation)
        if ann is inspect.Parameter.empty or isinstance(ann, str):
            return MISSING

        if ann in self._registry:
            return ann

        # Optional[X] / X | None
        inner = _unwrap_optional(ann)
        if inner is not None and inner in self._registry:
            return inner

        return MISSING


class Constructor:
    """Constructor injection for implementation classes.

    Keyword arguments make every subset of the optional parameters a valid
    call, so the widest satisfiable signature is: every required parameter
    plus each optional parameter whose type resolves. Optional parameters that
    do not resolve keep their defaults; when nothing resolves and nothing is
    required this is the zero-argument call. A required parameter that does
    not resolve makes the class unconstructible.
    """

    def __init__(self, resolver: Resolver) -> None:
        self._resolver = resolver

    def construct(self, cls: type, context: ResolutionContext) -> object:
        if cls.__init__ is object.__init__:
            return cls()

        try:
            sig = inspect.signature(cls)
        except (TypeError, ValueError):
            # builtins and extension types without introspectable signatures
            return cls()

        hints = _get_init_type_hints(cls)
        args: list[Any] = []
        kwargs: dict[str, Any] = {}
        positional_gap = False

        for name, p in sig.parameters.items():
            if p.kind in _VARIADIC:
                continue

            value = self._resolver.resolve_param(p, hints, context)
            # a registration that produced None does not satisfy a parameter
            if value is MISSING or value is None:
                if p.default is p.empty:
                    raise UnresolvableConstructorError(cls, self._unsatisfied(sig, hints, name))
                # later positional-only arguments would shift into this slot
                positional_gap = positional_gap or p.kind is p.POSITIONAL_ONLY
                continue

            if p.kind is p.POSITIONAL_ONLY:
                if not positional_gap:
                    args.append(value)
            else:
                kwargs[name] = value

        return cls(*args, **kwargs)

    def _unsatisfied(self, sig: inspect.Signature, hints: dict[str, Any], first: str) -> list[str]:
        # the first failure plus later required parameters that are not registered at all
        names = list(sig.parameters)
        unsatisfied = [first]
        for name in names[names.index(first) + 1 :]:
            p = sig.parameters[name]
            if p.kind in _VARIADIC or p.default is not p.empty:
                continue
            if not self._resolver.can_resolve(p, hints):
                unsatisfied.append(name)
        return unsatisfied


def _unwrap_optional(ann: Any) -> Any | None:
    """Return X for Optional[X] / X | None, otherwise None."""
    if typing.get_origin(ann) not in (typing.Union, types.UnionType):
        return None
    args = [a for a in typing.get_args(ann) if a is not type(None)]
    if len(args) == 1 and len(args) < len(typing.get_args(ann)):
        return args[0]
    return None


def _get_init_type_hints(cls: type) -> dict[str, Any]:
    """Evaluated annotations of `cls.__init__`; empty when they cannot be evaluated."""
    init = inspect.getattr_static(cls, "__init__", None)
    try:
        return get_type_hints(init)
    except NameError as exc:
        # unresolvable forward reference: parameters fall back to their defaults
        logger.warning(
            "Unresolved annotation %r in %s.__init__; ignoring its type hints", exc.name, cls.__qualname__
        )
    except TypeError:
        pass
    return {}
