import unittest
from typing import Protocol
from unittest.mock import MagicMock

import pytest

from servicebind import Container, ContainerValidationError


class Logger:
    def __init__(self):
        self.messages = []

    def info(self, msg: str) -> None:
        self.messages.append(msg)


class Cache:
    instances = 0

    def __init__(self, logger: Logger):
        type(self).instances += 1
        self.logger = logger


class Client:
    def __init__(self, cache: Cache, logger: Logger):
        self.cache = cache
        self.logger = logger


class TestExampleScenario(unittest.TestCase):
    cont: Container

    def setUp(self):
        Cache.instances = 0
        self.logger = Logger()
        self.cont = Container()
        self.cont.register_singleton(Logger, instance=self.logger)
        self.cont.register_singleton(Cache)
        self.cont.register_transient(Client)

    def test_client_gets_shared_cache_and_prebuilt_logger(self):
        first = self.cont.get_required_service(Client)
        second = self.cont.get_required_service(Client)

        assert first is not second
        assert first.cache is second.cache
        assert first.logger is self.logger
        assert second.cache.logger is self.logger
        assert Cache.instances == 1


# Application-shaped wiring: adapters behind protocols, clients, view-models.


class AudioService(Protocol):
    def play(self, path: str) -> None: ...


class MetadataClient(Protocol):
    def lookup(self, title: str) -> dict: ...


class ErrorReporter:
    def __init__(self, logger: Logger):
        self.logger = logger

    def report(self, exc: Exception) -> None:
        self.logger.info(f"error: {exc}")


class AudioEngineAdapter:
    def __init__(self, errors: ErrorReporter):
        self.errors = errors
        self.close = MagicMock()

    def play(self, path: str) -> None:
        pass


class DiscogsClient:
    def __init__(self, cache: Cache, logger: Logger, token: str = ""):
        self.cache = cache
        self.logger = logger
        self.token = token

    def lookup(self, title: str) -> dict:
        return {"title": title}


class PlayerViewModel:
    def __init__(self, audio: AudioService, metadata: MetadataClient, errors: ErrorReporter):
        self.audio = audio
        self.metadata = metadata
        self.errors = errors


class SettingsViewModel:
    def __init__(self, errors: ErrorReporter):
        self.errors = errors


def bootstrap(logger: Logger) -> Container:
    c = Container()
    c.register_instance(Logger, logger)
    c.register_singleton(ErrorReporter)
    c.register_singleton(Cache)
    c.register_singleton(MetadataClient, factory=lambda c: DiscogsClient(c.get_required_service(Cache), logger, "t0k"))
    c.register_transient(AudioService, AudioEngineAdapter)
    c.register_scoped(PlayerViewModel)
    c.register_transient(SettingsViewModel)
    c.validate_all().raise_for_failures()
    return c


class TestApplicationBootstrap(unittest.TestCase):
    def setUp(self):
        self.logger = Logger()
        self.cont = bootstrap(self.logger)

    def test_startup_validation_passes(self):
        assert len(self.cont.registered_services()) == 7

    def test_view_model_wired_through_protocols(self):
        with self.cont.create_scope() as scope:
            vm = scope.get_required_service(PlayerViewModel)
            assert vm is self.cont.get_required_service(PlayerViewModel)

        assert isinstance(vm.audio, AudioEngineAdapter)
        assert isinstance(vm.metadata, DiscogsClient)
        assert vm.metadata.token == "t0k"
        assert vm.errors is self.cont.get_required_service(ErrorReporter)
        assert vm.errors.logger is self.logger

    def test_each_ui_action_gets_its_own_view_model(self):
        with self.cont.create_scope() as scope:
            first = scope.get_required_service(PlayerViewModel)
        with self.cont.create_scope() as scope:
            second = scope.get_required_service(PlayerViewModel)

        assert first is not second
        assert first.errors is second.errors

    def test_container_dispose_closes_constructed_singletons_only(self):
        class Pool:
            def __init__(self):
                self.close = MagicMock()

        class SharedPool(Pool): ...

        prebuilt = SharedPool()
        self.cont.register_singleton(Pool)
        self.cont.register_instance(SharedPool, prebuilt)
        built = self.cont.get_required_service(Pool)
        assert self.cont.get_required_service(SharedPool) is prebuilt

        with self.cont:
            pass

        built.close.assert_called_once_with()
        prebuilt.close.assert_not_called()

    def test_container_dispose_rebuilds_singletons_on_next_use(self):
        before = self.cont.get_required_service(ErrorReporter)
        self.cont.dispose()

        assert self.cont.get_required_service(ErrorReporter) is not before
        assert self.cont.get_required_service(Logger) is self.logger


def test_container_dispose_logs_and_continues_on_failure(caplog):
    class Broken:
        def close(self):
            raise OSError("already closed")

    class Healthy:
        def __init__(self):
            self.close = MagicMock()

    c = Container()
    c.register_singleton(Healthy)
    c.register_singleton(Broken)
    healthy = c.get_required_service(Healthy)
    c.get_required_service(Broken)

    c.dispose()

    healthy.close.assert_called_once_with()
    assert any("Error during disposal of" in r.getMessage() for r in caplog.records)


def test_bootstrap_fails_fast_on_missing_dependency():
    c = Container()
    c.register_singleton(Cache)  # Logger never registered
    c.register_transient(Client)

    with pytest.raises(ContainerValidationError) as ctx:
        c.validate_all().raise_for_failures()

    assert set(ctx.value.report.failed_types) == {Cache, Client}
