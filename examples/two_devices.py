"""Two devices sharing one remote store.

This example shows how cardsync behaves when two devices edit the same
data set: each saves locally, pushes in the background, and the device
that falls behind loses its unsynced edit to the server copy.

Usage:
    python examples/two_devices.py
"""

import asyncio
import logging

from cardsync.config import Config
from cardsync.context import SyncContext
from cardsync.storage import LocalStore, MemoryBackend
from cardsync.sync import RevisionState


def watch(name: str):
    def on_change(state: RevisionState) -> None:
        print(
            f"[{name}] local={state.revision_local} server={state.revision_server} "
            f"unsaved={state.has_unsaved_changes} syncing={state.is_syncing} "
            f"error={state.last_sync_error}"
        )

    return on_change


async def main() -> None:
    logging.basicConfig(level=logging.WARNING)

    config = Config()
    config.sync.throttle_seconds = 0
    config.remote.chunk_delay_seconds = 0
    config.remote.max_chunk_size = 64

    cloud = MemoryBackend(latency=0.01)
    phone = SyncContext.create(config, backend=cloud, local=LocalStore(":memory:"))
    laptop = SyncContext.create(config, backend=cloud, local=LocalStore(":memory:"))
    phone.tracker.subscribe(watch("phone"))
    laptop.tracker.subscribe(watch("laptop"))

    async with phone, laptop:
        deck = await phone.initialize()
        phone.engine.save_locally(deck + "\nDog\tСобака\t\t0\t0\t0\t0\t0\t0\t0\t")
        await asyncio.sleep(0.5)

        await laptop.initialize()
        laptop.engine.save_locally(laptop.engine.load_local().payload + "\nSun\tСолнце")
        laptop.engine.save_locally(laptop.engine.load_local().payload + "\nMoon\tЛуна")
        await asyncio.sleep(0.5)
        # The second save overlapped the first push; flush it now rather
        # than waiting for the periodic tick
        await laptop.engine.sync_tick()

        # The phone is now behind; its edit is replaced by the laptop's data
        phone.engine.save_locally("stale edit")
        await asyncio.sleep(0.5)

        print(f"phone has {len(phone.engine.load_local().payload)} characters")
        print(f"remote keys: {sorted(cloud.data)}")


if __name__ == "__main__":
    asyncio.run(main())
