"""Tests for IngestEngine command handling, purge and timers."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import pytest

from kubemirror.cache.ingest import CacheTimers, IngestEngine
from kubemirror.cache.object_cache import ObjectCache
from kubemirror.collector.channel import CommandChannel
from kubemirror.inference.worker import TypeInferenceWorker
from kubemirror.models.objects import (
    LAST_APPLIED_ANNOTATION,
    ClusterObject,
    Command,
    CommandKind,
    TypeMeta,
)

_DEPLOY_URL = "/apis/apps/v1/namespaces/acme/deployments"


@pytest.fixture()
async def worker() -> AsyncIterator[TypeInferenceWorker]:
    w = TypeInferenceWorker()
    w.start()
    yield w
    await w.stop()


def _engine(fake_client: Any, worker: TypeInferenceWorker, sink: Any = None) -> tuple[IngestEngine, ObjectCache]:
    cache = ObjectCache()
    return IngestEngine(CommandChannel(), cache, worker, fake_client, snapshot_sink=sink), cache


def _add(raw: dict[str, Any], url: str = _DEPLOY_URL, kind: CommandKind = CommandKind.ADD) -> Command:
    return Command(kind=kind, obj=ClusterObject.from_raw(raw), event_type="deploy", resource_url=url)


# ---------------------------------------------------------------------------
# Add / Update / Delete
# ---------------------------------------------------------------------------


class TestApply:
    async def test_add_infers_missing_type(self, fake_client, worker, raw_factory) -> None:
        engine, cache = _engine(fake_client, worker)
        await engine.handle(_add(raw_factory("api", namespace="acme")))
        obj = cache.get("acme", "api")
        assert obj is not None
        assert obj.types == TypeMeta("apps/v1", "Deployment")

    async def test_add_keeps_wire_type(self, fake_client, worker, raw_factory) -> None:
        engine, cache = _engine(fake_client, worker)
        raw = raw_factory("api", namespace="acme", api_version="apps/v1beta2", kind="Deployment")
        await engine.handle(_add(raw))
        obj = cache.get("acme", "api")
        assert obj is not None
        assert obj.types == TypeMeta("apps/v1beta2", "Deployment")

    async def test_inference_miss_caches_without_type(self, fake_client, worker, raw_factory) -> None:
        engine, cache = _engine(fake_client, worker)
        await engine.handle(_add(raw_factory("x", namespace="acme"), url="/foo/bar"))
        obj = cache.get("acme", "x")
        assert obj is not None
        assert obj.types is None

    async def test_noise_never_cached(self, fake_client, worker, raw_factory) -> None:
        engine, cache = _engine(fake_client, worker)
        raw = raw_factory("api", namespace="acme", annotations={LAST_APPLIED_ANNOTATION: "{}", "keep": "me"})
        raw["metadata"]["managedFields"] = [{"manager": "kubectl"}]
        await engine.handle(_add(raw))
        obj = cache.get("acme", "api")
        assert obj is not None
        assert LAST_APPLIED_ANNOTATION not in obj.annotations
        assert obj.annotations == {"keep": "me"}
        assert "managedFields" not in obj.metadata

    async def test_add_is_idempotent(self, fake_client, worker, raw_factory) -> None:
        engine, cache = _engine(fake_client, worker)
        cmd = _add(raw_factory("api", namespace="acme"))
        await engine.handle(cmd)
        first = cache.snapshot()
        await engine.handle(cmd)
        assert cache.snapshot() == first

    async def test_update_last_write_wins(self, fake_client, worker, raw_factory) -> None:
        engine, cache = _engine(fake_client, worker)
        await engine.handle(_add(raw_factory("api", namespace="acme", spec={"replicas": 1})))
        await engine.handle(
            _add(raw_factory("api", namespace="acme", spec={"replicas": 4}), kind=CommandKind.UPDATE)
        )
        obj = cache.get("acme", "api")
        assert obj is not None
        assert obj.data["spec"] == {"replicas": 4}

    async def test_delete_present_and_absent(self, fake_client, worker, raw_factory) -> None:
        engine, cache = _engine(fake_client, worker)
        await engine.handle(_add(raw_factory("api", namespace="acme")))
        await engine.handle(_add(raw_factory("web", namespace="acme")))
        await engine.handle(_add(raw_factory("api", namespace="acme"), kind=CommandKind.DELETE))
        await engine.handle(_add(raw_factory("ghost", namespace="acme"), kind=CommandKind.DELETE))
        assert [k for k, _ in cache.snapshot()] == ["acme/web"]

    async def test_noop_has_no_effect(self, fake_client, worker, raw_factory) -> None:
        engine, cache = _engine(fake_client, worker)
        await engine.handle(_add(raw_factory("api", namespace="acme")))
        await engine.handle(Command(kind=CommandKind.NOOP))
        assert len(cache) == 1


# ---------------------------------------------------------------------------
# Purge
# ---------------------------------------------------------------------------


class TestPurge:
    async def _seed(self, engine: IngestEngine, raw_factory: Any, names: list[str]) -> None:
        for name in names:
            await engine.handle(_add(raw_factory(name, namespace="acme")))

    async def test_removes_exactly_missing_objects(self, fake_client, worker, raw_factory) -> None:
        engine, cache = _engine(fake_client, worker)
        await self._seed(engine, raw_factory, ["a", "b", "c", "d"])
        fake_client.live = {("acme", "a", "Deployment"), ("acme", "c", "Deployment")}

        removed = await engine.purge()

        assert removed == 2
        assert [k for k, _ in cache.snapshot()] == ["acme/a", "acme/c"]

    async def test_check_errors_leave_entry(self, fake_client, worker, raw_factory) -> None:
        engine, cache = _engine(fake_client, worker)
        await self._seed(engine, raw_factory, ["a", "flaky"])
        fake_client.failing = {"flaky"}

        removed = await engine.purge()

        assert removed == 1
        assert [k for k, _ in cache.snapshot()] == ["acme/flaky"]

    async def test_malformed_entries_skipped(self, fake_client, worker, raw_factory) -> None:
        engine, cache = _engine(fake_client, worker)
        # cluster-scoped (no namespace) and untyped entries cannot be checked
        await engine.handle(_add(raw_factory("node-1", namespace=None), url="/api/v1/nodes"))
        await engine.handle(_add(raw_factory("mystery", namespace="acme"), url="/foo/bar"))

        removed = await engine.purge()

        assert removed == 0
        assert len(cache) == 2
        assert fake_client.exists_calls == []

    async def test_purge_command_routes_to_purge(self, fake_client, worker, raw_factory) -> None:
        engine, cache = _engine(fake_client, worker)
        await self._seed(engine, raw_factory, ["gone"])
        await engine.handle(Command(kind=CommandKind.PURGE))
        assert len(cache) == 0

    async def test_existence_checked_with_recorded_coordinates(self, fake_client, worker, raw_factory) -> None:
        engine, _ = _engine(fake_client, worker)
        await self._seed(engine, raw_factory, ["api"])
        await engine.purge()
        assert fake_client.exists_calls == [("acme", "api", TypeMeta("apps/v1", "Deployment"))]


# ---------------------------------------------------------------------------
# Snapshot and run loop
# ---------------------------------------------------------------------------


class TestSnapshot:
    async def test_snapshot_recorded_and_sent_to_sink(self, fake_client, worker, raw_factory) -> None:
        seen: list[list[tuple[str, ClusterObject]]] = []
        engine, cache = _engine(fake_client, worker, sink=seen.append)
        await engine.handle(_add(raw_factory("api", namespace="acme")))
        await engine.handle(Command(kind=CommandKind.SNAPSHOT))
        assert [k for k, _ in engine.last_snapshot] == ["acme/api"]
        assert len(seen) == 1
        assert len(cache) == 1


class TestRunLoop:
    async def test_run_consumes_channel(self, fake_client, worker, raw_factory) -> None:
        channel = CommandChannel()
        cache = ObjectCache()
        engine = IngestEngine(channel, cache, worker, fake_client)
        task = asyncio.create_task(engine.run())
        try:
            await channel.send(_add(raw_factory("api", namespace="acme")))
            await channel.send(_add(raw_factory("web", namespace="acme")))
            for _ in range(100):
                if len(cache) == 2:
                    break
                await asyncio.sleep(0.01)
            assert len(cache) == 2
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def test_run_survives_failing_command(self, fake_client, raw_factory) -> None:
        channel = CommandChannel()
        cache = ObjectCache()
        stopped_worker = TypeInferenceWorker()
        engine = IngestEngine(channel, cache, stopped_worker, fake_client)
        task = asyncio.create_task(engine.run())
        try:
            # untyped object needs inference, which fails because the worker is not running
            await channel.send(_add(raw_factory("api", namespace="acme")))
            await channel.send(_add(raw_factory("web", namespace="acme", api_version="apps/v1", kind="Deployment")))
            for _ in range(100):
                if len(cache) == 1:
                    break
                await asyncio.sleep(0.01)
            assert [k for k, _ in cache.snapshot()] == ["acme/web"]
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


class TestCacheTimers:
    async def test_timers_inject_commands(self) -> None:
        channel = CommandChannel()
        timers = CacheTimers(channel, poll_interval=0.01, purge_interval=0.015)
        timers.start()
        try:
            kinds = {(await asyncio.wait_for(channel.receive(), timeout=2.0)).kind for _ in range(6)}
        finally:
            await timers.stop()
        assert kinds == {CommandKind.SNAPSHOT, CommandKind.PURGE}

    def test_non_positive_interval_rejected(self) -> None:
        with pytest.raises(ValueError):
            CacheTimers(CommandChannel(), poll_interval=0, purge_interval=45)
