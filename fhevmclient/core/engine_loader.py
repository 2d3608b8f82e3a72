"""
Process-wide loader for the external crypto engine bundle.

The engine (key pair generation, input encryption, decryption of relay
responses) lives outside this package. EngineLoader fetches it once per
process: concurrent callers share one in-flight load, a successful load is
kept for the life of the process and a failed one is forgotten so the next
call starts over.
"""

import asyncio
import importlib
import inspect
import logging
import time
from typing import Any, Callable, Optional, Union

from ..errors import EngineLoadFailed

EngineSource = Union[str, Callable[[], Any]]


def _import_source(path: str) -> Any:
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Engine source must look like 'package.module:attribute', got {path!r}")
    module = importlib.import_module(module_name)
    target = getattr(module, attribute)
    return target() if callable(target) else target


class EngineLoader:
    """Init-once holder of the engine bundle.

    ``EngineLoader.shared()`` returns the process-wide loader;
    ``EngineLoader.reset_shared()`` discards it (tests only).
    """

    _shared: Optional['EngineLoader'] = None

    def __init__(self, source: Optional[EngineSource] = None, benchmark_manager: Any = None):
        self.source = source
        self.benchmark_manager = benchmark_manager
        self._bundle: Any = None
        self._inflight: Optional[asyncio.Task] = None
        self.load_count = 0
        self.logger = logging.getLogger(__name__)

    @classmethod
    def shared(cls) -> 'EngineLoader':
        if cls._shared is None:
            cls._shared = cls()
        return cls._shared

    @classmethod
    def reset_shared(cls) -> None:
        if cls._shared is not None and cls._shared._inflight is not None:
            cls._shared._inflight.cancel()
        cls._shared = None

    @property
    def is_loaded(self) -> bool:
        return self._bundle is not None

    @property
    def bundle(self) -> Any:
        if self._bundle is None:
            raise EngineLoadFailed("Engine bundle has not been loaded")
        return self._bundle

    async def load_once(self, source: Optional[EngineSource] = None) -> Any:
        """Return the engine bundle, loading it on first use.

        Raises:
            EngineLoadFailed: If the source is missing or the load raised
        """
        if self._bundle is not None:
            return self._bundle

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._load(source or self.source))

        task = self._inflight
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._inflight is task:
                self._inflight = None

    async def _load(self, source: Optional[EngineSource]) -> Any:
        if source is None:
            raise EngineLoadFailed("No engine source configured (set FhevmConfig.engine_source)")

        start_time = time.time()
        self.load_count += 1
        try:
            if isinstance(source, str):
                bundle = await asyncio.to_thread(_import_source, source)
            else:
                bundle = source()
                if inspect.isawaitable(bundle):
                    bundle = await bundle
        except asyncio.CancelledError:
            raise
        except EngineLoadFailed:
            raise
        except Exception as e:
            self.logger.warning(f"Engine bundle load failed: {e}")
            raise EngineLoadFailed(f"Could not load engine bundle: {e}") from e

        if bundle is None:
            raise EngineLoadFailed("Engine source returned no bundle")

        self._bundle = bundle
        duration = time.time() - start_time
        if self.benchmark_manager:
            self.benchmark_manager.log_event('EngineLoader', 'Engine Load Time', duration, unit='s')
        self.logger.info(f"Engine bundle loaded in {duration:.3f}s")
        return bundle
