from __future__ import annotations

import asyncio

from napari_lod.lod.debounce import Debouncer


def test_debouncer_fires_once_after_quiet_interval() -> None:
    fired: list[int] = []

    async def _run() -> None:
        debouncer = Debouncer(0.2, fired.append)
        for _ in range(5):
            debouncer.restart()
            await asyncio.sleep(0.005)
        assert fired == []
        assert debouncer.pending is True
        await asyncio.sleep(0.4)
        assert debouncer.pending is False

    asyncio.run(_run())
    assert fired == [5]


def test_debouncer_cancel() -> None:
    fired: list[int] = []

    async def _run() -> None:
        debouncer = Debouncer(0.01, fired.append)
        debouncer.restart()
        debouncer.cancel()
        await asyncio.sleep(0.03)

    asyncio.run(_run())
    assert fired == []
