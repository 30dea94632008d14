"""
Unit tests for inkmath.engine.scheduling.ScheduledTask.
"""
import asyncio

from inkmath.engine.scheduling import ScheduledTask


def _counter():
    fired = []

    async def callback():
        fired.append(asyncio.get_running_loop().time())

    return fired, callback


class TestScheduledTask:
    def test_fires_once_after_quiet_period(self):
        async def scenario():
            fired, cb = _counter()
            task = ScheduledTask(0.02, cb)
            task.reschedule()
            assert task.pending
            await asyncio.sleep(0.06)
            await task.wait()
            return fired, task.pending

        fired, pending = asyncio.run(scenario())
        assert len(fired) == 1
        assert not pending

    def test_reschedule_restarts_the_countdown(self):
        async def scenario():
            fired, cb = _counter()
            task = ScheduledTask(0.15, cb)
            for _ in range(4):
                task.reschedule()
                await asyncio.sleep(0.02)
            assert fired == []
            await asyncio.sleep(0.3)
            return fired

        assert len(asyncio.run(scenario())) == 1

    def test_cancel_drops_the_countdown(self):
        async def scenario():
            fired, cb = _counter()
            task = ScheduledTask(0.01, cb)
            task.reschedule()
            task.cancel()
            await asyncio.sleep(0.05)
            return fired

        assert asyncio.run(scenario()) == []

    def test_closed_task_never_fires_again(self):
        async def scenario():
            fired, cb = _counter()
            async with ScheduledTask(0.01, cb) as task:
                task.reschedule()
            task.reschedule()
            await asyncio.sleep(0.05)
            return fired, task.pending

        fired, pending = asyncio.run(scenario())
        assert fired == []
        assert not pending

    def test_close_cancels_a_running_callback(self):
        async def scenario():
            started = asyncio.Event()
            finished = []

            async def slow():
                started.set()
                await asyncio.sleep(1)
                finished.append(True)

            task = ScheduledTask(0, slow)
            task.reschedule()
            await started.wait()
            assert task.running
            task.close()
            await asyncio.sleep(0.01)
            return finished, task.running

        finished, running = asyncio.run(scenario())
        assert finished == []
        assert not running

    def test_failing_callback_is_contained(self):
        async def scenario():
            async def boom():
                raise RuntimeError("backend exploded")

            task = ScheduledTask(0, boom)
            task.reschedule()
            await asyncio.sleep(0.01)
            await task.wait()
            return True

        assert asyncio.run(scenario())

    def test_close_cancels_every_running_callback(self):
        async def scenario():
            started = []
            finished = []

            async def slow():
                started.append(True)
                await asyncio.sleep(1)
                finished.append(True)

            task = ScheduledTask(0, slow)
            task.reschedule()
            await asyncio.sleep(0.01)
            # fires again while the first callback is still running
            task.reschedule()
            await asyncio.sleep(0.01)
            assert len(started) == 2
            task.close()
            await asyncio.sleep(0.01)
            return finished, task.running

        finished, running = asyncio.run(scenario())
        assert finished == []
        assert not running
