import asyncio

import pytest

from app.core.errors import AssetRetrievalError
from app.services.asset_lock import AssetLockManager


class TestAssetLockManager:

    @pytest.mark.asyncio
    async def test_same_key_is_mutually_exclusive(self):
        manager = AssetLockManager(timeout=5.0)
        active = 0
        peak = 0

        async def worker():
            nonlocal active, peak
            async with manager.hold("template"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(worker() for _ in range(5)))

        assert peak == 1

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self):
        manager = AssetLockManager(timeout=0.5)

        async with manager.hold("template-a"):
            async with manager.hold("template-b"):
                assert manager.is_locked("template-a")
                assert manager.is_locked("template-b")

    @pytest.mark.asyncio
    async def test_waiter_times_out(self):
        manager = AssetLockManager(timeout=0.05)

        async with manager.hold("template"):
            with pytest.raises(AssetRetrievalError):
                async with manager.hold("template"):
                    pass

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        manager = AssetLockManager(timeout=0.5)

        with pytest.raises(RuntimeError):
            async with manager.hold("template"):
                raise RuntimeError("boom")

        assert not manager.is_locked("template")
        async with manager.hold("template"):
            pass

    @pytest.mark.asyncio
    async def test_idle_entries_are_dropped(self):
        manager = AssetLockManager(timeout=0.5)

        async with manager.hold("template"):
            assert len(manager) == 1

        assert len(manager) == 0
