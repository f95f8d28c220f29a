"""Registration-time checks that an implementation can stand in for its service type."""

from __future__ import annotations

import inspect
import typing
from typing import Any, Protocol, cast, get_type_hints


def is_protocol(tp: object) -> bool:
    if not inspect.isclass(tp):
        return False
    if hasattr(typing, "is_protocol"):
        # https://docs.python.org/3/library/typing.html#typing.is_protocol
        return typing.is_protocol(tp)
    return issubclass(tp, cast("type", Protocol)) and bool(getattr(tp, "_is_protocol", False))


def check_implementation(service_type: object, impl: type) -> None:
    """Raise TypeError when `impl` does not implement `service_type`.

    - Ordinary classes and ABCs require `issubclass(impl, service_type)`.
    - Protocols pass on nominal subclassing, otherwise members are compared
      structurally (presence, callability, positional arity, return type).

    Non-class service types (NewType, aliases, ...) cannot be checked and pass.
    """
    if not inspect.isclass(service_type):
        return

    if not is_protocol(service_type):
        if not issubclass(impl, service_type):
            msg = f"Implementation {impl.__name__} must be a subclass of {service_type.__name__}"
            raise TypeError(msg)
        return

    if service_type in getattr(impl, "__mro__", ()):
        return

    _check_structural_conformance(service_type, impl)


def check_instance(service_type: object, instance: object) -> None:
    """Like `check_implementation`, for pre-built instances.

    Ordinary classes use isinstance so that spec'd mocks are accepted.
    """
    if inspect.isclass(service_type) and not is_protocol(service_type):
        if not isinstance(instance, service_type):
            msg = f"Instance of {type(instance).__name__} is not an instance of {service_type.__name__}"
            raise TypeError(msg)
        return
    check_implementation(service_type, type(instance))


def _positional_arity(params: list[inspect.Parameter]) -> int:
    return sum(
        1
        for p in params
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
        and p.default is inspect.Parameter.empty
    )


def _required_members(proto: type) -> list[str]:
    """Public names a protocol declares: annotated attributes first, then methods."""
    try:
        annotated = list(get_type_hints(proto, include_extras=True))
    except (TypeError, NameError):
        annotated = []
    methods = [name for name, attr in vars(proto).items() if inspect.isfunction(attr)]
    names = dict.fromkeys(n for n in (*annotated, *methods) if not n.startswith("_"))
    return list(names)


def _method_problems(name: str, proto_attr: object, impl_attr: object) -> list[str]:
    if not callable(impl_attr):
        return [f"{name} is not callable"]
    try:
        expected = inspect.signature(proto_attr)  # type: ignore[arg-type]
        actual = inspect.signature(impl_attr)
    except (TypeError, ValueError) as e:
        return [f"{name} has no comparable signature ({e})"]

    problems = []
    wanted = _positional_arity([p for p in expected.parameters.values() if p.name != "self"])
    taken = _positional_arity([p for p in actual.parameters.values() if p.name != "self"])
    if taken < wanted:
        problems.append(f"{name} requires {taken} positional arguments, protocol passes {wanted}")

    returns = (actual.return_annotation, expected.return_annotation)
    if inspect.Signature.empty not in returns and Any not in returns and not _is_return_type_compatible(*returns):
        problems.append(f"{name} returns {returns[0]!r}, protocol expects {returns[1]!r}")
    return problems


def _check_structural_conformance(proto: type, impl: type) -> None:
    absent: list[str] = []
    problems: list[str] = []

    for name in _required_members(proto):
        if not hasattr(impl, name):
            absent.append(name)
            continue
        proto_attr = vars(proto).get(name)
        if inspect.isfunction(proto_attr):
            problems += _method_problems(name, proto_attr, getattr(impl, name))

    if absent or problems:
        details = [f"absent: {', '.join(absent)}"] if absent else []
        details += problems
        msg = f"{impl.__name__} cannot stand in for protocol {proto.__name__}: {'; '.join(details)}"
        raise TypeError(msg)


def _is_return_type_compatible(impl_ret: object, proto_ret: object) -> bool:
    if impl_ret == proto_ret:
        return True
    if inspect.isclass(impl_ret) and inspect.isclass(proto_ret):
        return issubclass(impl_ret, proto_ret)
    # unions, type variables and unresolved strings are not compared
    return False
