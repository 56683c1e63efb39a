"""Tests for the dead-letter store and replay."""

import asyncio

import pytest

from issuehooks.webhook import DeadLetterNotFoundError, DeliveryState


async def _dead_letter(queue, webhook_id="wh-1", reason="HTTP 500: boom", payload=None):
    task = await queue.enqueue(webhook_id, "issue.updated", payload or {"key": "PROJ-9"})
    await queue.lease("worker-a", 1)
    await queue.dead_letter(task.id, reason, status_code=500)
    return task


class TestDeadLetterStore:
    """Test listing and lookup."""

    @pytest.mark.asyncio
    async def test_list_newest_first(self, queue):
        first = await _dead_letter(queue, reason="first")
        await asyncio.sleep(0.01)
        second = await _dead_letter(queue, reason="second")

        entries = await queue.dead_letters.list()

        assert [e.task.id for e in entries] == [second.id, first.id]
        assert await queue.dead_letters.count() == 2

    @pytest.mark.asyncio
    async def test_list_limit(self, queue):
        for _ in range(3):
            await _dead_letter(queue)

        assert len(await queue.dead_letters.list(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_get_entry(self, queue):
        task = await _dead_letter(queue, payload={"key": "PROJ-4"})

        entry = await queue.dead_letters.get(task.id)

        assert entry.task.payload == {"key": "PROJ-4"}
        assert entry.failure_reason == "HTTP 500: boom"
        assert entry.dead_lettered_at is not None

    @pytest.mark.asyncio
    async def test_get_unknown(self, queue):
        with pytest.raises(DeadLetterNotFoundError):
            await queue.dead_letters.get("missing")

    @pytest.mark.asyncio
    async def test_add_standalone(self, queue):
        task = await queue.enqueue("wh-1", "issue.created", {})

        entry = await queue.dead_letters.add(task, "manual")

        assert entry.task.id == task.id
        assert (await queue.dead_letters.get(task.id)).failure_reason == "manual"


class TestReplay:
    """Test dead-letter replay."""

    @pytest.mark.asyncio
    async def test_replay_enqueues_fresh_copy(self, queue):
        original = await _dead_letter(queue, payload={"key": "PROJ-5"})

        replayed = await queue.dead_letters.replay(original.id)

        assert replayed.id != original.id
        assert replayed.replay_of == original.id
        assert replayed.state == DeliveryState.PENDING
        assert replayed.attempt_count == 0
        assert replayed.webhook_id == original.webhook_id
        assert replayed.event_type == original.event_type
        assert replayed.payload == {"key": "PROJ-5"}

        # Entry is kept, original task untouched
        assert (await queue.dead_letters.get(original.id)).task.id == original.id
        assert (await queue.get(original.id)).state == DeliveryState.DEAD_LETTERED

    @pytest.mark.asyncio
    async def test_replay_unknown(self, queue):
        with pytest.raises(DeadLetterNotFoundError):
            await queue.dead_letters.replay("missing")

    @pytest.mark.asyncio
    async def test_replayed_task_is_delivered(
        self, make_worker, endpoint, registry, dispatcher, queue
    ):
        await registry.register("https://a.example.com/h", ["issue.created"])
        await dispatcher.dispatch("issue.created", {"key": "PROJ-6"})
        receiver = endpoint(500, 500, 500, 500, 200)
        worker = make_worker(receiver)
        for _ in range(4):
            await worker.run_once()
        (entry,) = await queue.dead_letters.list()

        replayed = await queue.dead_letters.replay(entry.task.id)
        assert await worker.run_once() == 1

        assert (await queue.get(replayed.id)).state == DeliveryState.DELIVERED
        assert receiver.requests[-1].headers["X-Delivery-ID"] == replayed.id
        assert receiver.requests[-1].headers["X-Delivery-Attempt"] == "1"
