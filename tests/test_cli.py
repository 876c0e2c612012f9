"""Tests for the command-line entrypoint."""

import pytest

from eventpulse.cli import build_parser, main


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)


def test_parser_leaves_unset_options_as_none():
    args = build_parser().parse_args(["--once"])

    assert args.once
    assert args.database_path is None
    assert args.batch_size is None


def test_invalid_configuration_exits_with_1():
    assert main(["--batch-size", "0", "--once"]) == 1


def test_conflicting_environment_exits_with_1(monkeypatch):
    monkeypatch.setenv("EVENTPULSE_LOCK_TTL", "5")
    monkeypatch.setenv("EVENTPULSE_HANDLER_TIMEOUT", "10")

    assert main(["--once"]) == 1


def test_single_run_against_empty_database(tmp_path):
    # An empty queue never touches the lock store, so no Redis is needed
    database = tmp_path / "events.db"

    assert main(["--once", "--database", str(database), "--log-level", "warning"]) == 0
    assert database.exists()


async def test_built_service_invalidates_user_cache_through_redis(tmp_path):
    from eventpulse.cli import build_service
    from eventpulse.core.settings import WorkerSettings
    from eventpulse.handlers import RedisUserCache

    # The Redis pool connects lazily, so no server is needed to inspect the wiring
    service = await build_service(WorkerSettings(database_path=str(tmp_path / "events.db")))
    try:
        service.registry.initialize()
        (handler,) = service.registry.resolve("user.deleted")

        assert isinstance(handler.cache, RedisUserCache)
    finally:
        await service.store.close()
        await service.locks.close()
