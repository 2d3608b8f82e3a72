"""
Unit tests for the init-once engine bundle loader.
"""

import asyncio
import json

import pytest

from fhevmclient.core.benchmark_manager import BenchmarkManager
from fhevmclient.core.engine_loader import EngineLoader
from fhevmclient.errors import EngineLoadFailed


class TestEngineLoader:

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_load(self, engine_bundle):
        async def slow_source():
            await asyncio.sleep(0.01)
            return engine_bundle

        loader = EngineLoader(source=slow_source)
        results = await asyncio.gather(*[loader.load_once() for _ in range(5)])

        assert all(r is engine_bundle for r in results)
        assert loader.load_count == 1
        assert loader.is_loaded

    @pytest.mark.asyncio
    async def test_success_is_cached(self, engine_loader, engine_bundle):
        assert await engine_loader.load_once() is engine_bundle
        assert await engine_loader.load_once() is engine_bundle
        assert engine_loader.load_count == 1
        assert engine_loader.bundle is engine_bundle

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, engine_bundle):
        attempts = []

        def flaky_source():
            attempts.append(1)
            if len(attempts) == 1:
                raise OSError("bundle download interrupted")
            return engine_bundle

        loader = EngineLoader(source=flaky_source)
        with pytest.raises(EngineLoadFailed) as exc_info:
            await loader.load_once()
        assert exc_info.value.retryable
        assert not loader.is_loaded

        assert await loader.load_once() is engine_bundle
        assert loader.load_count == 2

    @pytest.mark.asyncio
    async def test_import_path_source(self):
        loader = EngineLoader()
        bundle = await loader.load_once("json:decoder")
        assert bundle is json.decoder

    @pytest.mark.asyncio
    @pytest.mark.parametrize("source", ["no_such_engine_module_xyz:bundle", "missing-colon"])
    async def test_bad_import_path(self, source):
        with pytest.raises(EngineLoadFailed):
            await EngineLoader().load_once(source)

    @pytest.mark.asyncio
    async def test_missing_source(self):
        with pytest.raises(EngineLoadFailed):
            await EngineLoader().load_once()

    def test_bundle_before_load(self):
        with pytest.raises(EngineLoadFailed):
            EngineLoader().bundle

    def test_shared_is_a_singleton_with_reset(self):
        first = EngineLoader.shared()
        assert EngineLoader.shared() is first
        EngineLoader.reset_shared()
        assert EngineLoader.shared() is not first

    @pytest.mark.asyncio
    async def test_load_time_is_logged(self, engine_bundle):
        bm = BenchmarkManager()
        await EngineLoader(source=lambda: engine_bundle, benchmark_manager=bm).load_once()
        assert [e['metric'] for e in bm.logs] == ['Engine Load Time']
