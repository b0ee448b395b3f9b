import asyncio

from fishtank.backend.poller import PeriodicRefresher


def test_refresher_fetches_immediately_and_stops_cleanly() -> None:
    async def scenario() -> tuple[list[str], bool]:
        seen: list[str] = []

        async def fetch(subject: str) -> str:
            return f"state:{subject}"

        async def on_result(result: str) -> None:
            seen.append(result)

        refresher = PeriodicRefresher("alice", fetch, on_result, interval_seconds=0.01)
        refresher.start()
        await asyncio.sleep(0.035)
        await refresher.stop()
        count = len(seen)
        await asyncio.sleep(0.03)
        assert len(seen) == count
        return seen, refresher.running

    seen, running = asyncio.run(scenario())

    assert seen[0] == "state:alice"
    assert len(seen) >= 2
    assert running is False


def test_refresher_survives_fetch_errors() -> None:
    async def scenario() -> list[int]:
        calls: list[int] = []

        async def fetch(subject: str) -> int:
            calls.append(len(calls))
            if len(calls) == 1:
                raise RuntimeError("rpc down")
            return len(calls)

        async def on_result(result: int) -> None:
            return None

        refresher = PeriodicRefresher("alice", fetch, on_result, interval_seconds=0.01)
        refresher.start()
        await asyncio.sleep(0.05)
        await refresher.stop()
        return calls

    assert len(asyncio.run(scenario())) >= 2


def test_rebind_switches_subject_and_drops_old_loop() -> None:
    async def scenario() -> list[str]:
        seen: list[str] = []

        async def fetch(subject: str) -> str:
            return subject

        async def on_result(result: str) -> None:
            seen.append(result)

        refresher = PeriodicRefresher("alice", fetch, on_result, interval_seconds=0.01)
        refresher.start()
        await asyncio.sleep(0.015)
        await refresher.rebind("bob")
        seen.clear()
        await asyncio.sleep(0.035)
        await refresher.stop()
        return seen

    seen = asyncio.run(scenario())

    assert seen
    assert set(seen) == {"bob"}


def test_stop_is_idempotent_without_start() -> None:
    async def fetch(subject: str) -> None:
        return None

    async def on_result(result: None) -> None:
        return None

    refresher = PeriodicRefresher("alice", fetch, on_result, interval_seconds=1)

    asyncio.run(refresher.stop())
    asyncio.run(refresher.stop())

    assert refresher.running is False
