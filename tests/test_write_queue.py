from __future__ import annotations

import asyncio

from pos_service.backend_client import TRANSACTION_LOG_PATH
from pos_service.connectivity import ConnectivityMonitor
from pos_service.write_queue import QueueRepository, ResilientWriteQueue


def test_offline_entries_are_delivered_after_restore(backend, queue_factory):
    connectivity = ConnectivityMonitor(online=False)
    queue = ResilientWriteQueue(backend, QueueRepository(queue_factory), connectivity)

    async def scenario():
        for number in range(4):
            await queue.enqueue(TRANSACTION_LOG_PATH, "post", {"n": number})
        assert len(queue) == 4
        assert backend.sent == []
        await connectivity.set_online(True)

    asyncio.run(scenario())
    assert [body["n"] for _, _, body in backend.sent] == [0, 1, 2, 3]
    assert {method for _, method, _ in backend.sent} == {"POST"}
    assert len(queue) == 0
    assert QueueRepository(queue_factory).load_all() == []


def test_entry_is_dropped_after_retry_budget(backend, queue_factory):
    backend.send_failures = 5
    connectivity_offline = ConnectivityMonitor(online=False)
    queue = ResilientWriteQueue(backend, QueueRepository(queue_factory), connectivity_offline)

    async def scenario():
        await queue.enqueue("/api/monitoring/alert", "POST", {"level": "warning"})
        await connectivity_offline.set_online(True)
        retries = [queue.entries[0].retry_count]
        for _ in range(4):
            await queue.process_queue()
            retries.append(queue.entries[0].retry_count if queue.entries else None)
        return retries

    retries = asyncio.run(scenario())
    assert retries == [1, 2, 3, 4, None]
    assert backend.sent == []
    assert len(queue) == 0


def test_failing_entry_keeps_its_place(backend, queue_factory):
    connectivity = ConnectivityMonitor(online=False)
    queue = ResilientWriteQueue(backend, QueueRepository(queue_factory), connectivity)
    backend.send_failures = 1

    async def scenario():
        await queue.enqueue("/a", "POST", {"n": 1})
        await queue.enqueue("/b", "POST", {"n": 2})
        await connectivity.set_online(True)

    asyncio.run(scenario())
    assert [entry.target for entry in queue.entries] == ["/a"]
    assert queue.entries[0].retry_count == 1
    assert backend.sent == [("/b", "POST", {"n": 2})]


def test_pending_entries_survive_restart(backend, queue_factory):
    offline = ConnectivityMonitor(online=False)
    first = ResilientWriteQueue(backend, QueueRepository(queue_factory), offline)

    async def enqueue():
        await first.enqueue("/api/transactions/log", "POST", {"id": "PAY-1"})
        await first.enqueue("/api/transactions/log", "POST", {"id": "PAY-2"})

    asyncio.run(enqueue())

    online = ConnectivityMonitor(online=True)
    restarted = ResilientWriteQueue(backend, QueueRepository(queue_factory), online)
    assert [entry.body["id"] for entry in restarted.entries] == ["PAY-1", "PAY-2"]

    asyncio.run(restarted.process_queue())
    assert [body["id"] for _, _, body in backend.sent] == ["PAY-1", "PAY-2"]
    assert len(restarted) == 0


def test_concurrent_drains_do_not_duplicate_delivery(queue_factory):
    class SlowSender:
        def __init__(self):
            self.sent = []

        async def send(self, target, method, body):
            await asyncio.sleep(0.01)
            self.sent.append(body)

    sender = SlowSender()
    connectivity = ConnectivityMonitor(online=False)
    queue = ResilientWriteQueue(sender, QueueRepository(queue_factory), connectivity)

    async def scenario():
        for body in (1, 2, 3):
            await queue.enqueue("/a", "POST", body)
        await asyncio.gather(connectivity.set_online(True), queue.process_queue())

    asyncio.run(scenario())
    assert sender.sent == [1, 2, 3]
    assert len(queue) == 0


def test_entries_enqueued_during_drain_are_kept(queue_factory):
    connectivity = ConnectivityMonitor(online=False)

    class ReentrantSender:
        def __init__(self):
            self.sent = []
            self.queue = None

        async def send(self, target, method, body):
            self.sent.append(body)
            if body == 1:
                await self.queue.enqueue("/a", "POST", 99)

    sender = ReentrantSender()
    queue = ResilientWriteQueue(sender, QueueRepository(queue_factory), connectivity)
    sender.queue = queue

    async def scenario():
        await queue.enqueue("/a", "POST", 1)
        await connectivity.set_online(True)
        await queue.stop()

    asyncio.run(scenario())
    assert sender.sent == [1]
    assert [entry.body for entry in queue.entries] == [99]


def test_timer_checks_connectivity_and_drains(backend, queue_factory):
    connectivity = ConnectivityMonitor(probe=backend.health, online=False)
    queue = ResilientWriteQueue(
        backend, QueueRepository(queue_factory), connectivity, drain_interval=0.01
    )

    async def scenario():
        await queue.enqueue("/a", "POST", {"n": 1})
        queue.start()
        await asyncio.sleep(0.05)
        await queue.stop()

    asyncio.run(scenario())
    assert backend.sent == [("/a", "POST", {"n": 1})]
    assert connectivity.online


def test_enqueue_returns_before_backlog_is_delivered(queue_factory):
    class SlowSender:
        def __init__(self):
            self.sent = []

        async def send(self, target, method, body):
            await asyncio.sleep(0.05)
            self.sent.append(target)

    sender = SlowSender()
    connectivity = ConnectivityMonitor(online=True)
    queue = ResilientWriteQueue(sender, QueueRepository(queue_factory), connectivity)

    async def scenario():
        for number in range(4):
            await queue.enqueue(f"/old/{number}", "POST", {"n": number})
        await queue.enqueue("/new", "POST", {"n": 4})
        sent_on_return = list(sender.sent)
        pending_on_return = len(queue)
        await queue.flush()
        return sent_on_return, pending_on_return

    sent_on_return, pending_on_return = asyncio.run(scenario())
    assert sent_on_return == []
    assert pending_on_return == 5
    assert sender.sent == ["/old/0", "/old/1", "/old/2", "/old/3", "/new"]
    assert QueueRepository(queue_factory).load_all() == []


def test_stop_cancels_scheduled_drain_and_keeps_entries(queue_factory):
    class HangingSender:
        async def send(self, target, method, body):
            await asyncio.sleep(10)

    connectivity = ConnectivityMonitor(online=True)
    queue = ResilientWriteQueue(HangingSender(), QueueRepository(queue_factory), connectivity)

    async def scenario():
        await queue.enqueue("/a", "POST", {"n": 1})
        await asyncio.sleep(0.01)
        assert queue.is_draining
        await queue.stop()

    asyncio.run(scenario())
    assert not queue.is_draining
    assert [entry.target for entry in QueueRepository(queue_factory).load_all()] == ["/a"]
