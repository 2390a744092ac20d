"""
Tests du magasin de défis à usage unique
"""
from inclass.services.challenge_store import ChallengeFlow, InMemoryChallengeStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def test_consume_is_single_use():
    store = InMemoryChallengeStore()
    await store.issue(42, ChallengeFlow.AUTHENTICATION, "defi-1")

    assert await store.consume(42, ChallengeFlow.AUTHENTICATION) == "defi-1"
    assert await store.consume(42, ChallengeFlow.AUTHENTICATION) is None
    assert await store.get(42, ChallengeFlow.AUTHENTICATION) is None


async def test_last_issue_wins():
    store = InMemoryChallengeStore()
    await store.issue(42, ChallengeFlow.REGISTRATION, "ancien")
    await store.issue(42, ChallengeFlow.REGISTRATION, "nouveau")
    assert await store.get(42, ChallengeFlow.REGISTRATION) == "nouveau"


async def test_flows_and_principals_are_separate():
    store = InMemoryChallengeStore()
    await store.issue(42, ChallengeFlow.REGISTRATION, "reg")
    await store.issue(42, ChallengeFlow.AUTHENTICATION, "auth")
    await store.issue(43, ChallengeFlow.AUTHENTICATION, "autre")

    assert await store.consume(42, ChallengeFlow.AUTHENTICATION) == "auth"
    assert await store.get(42, ChallengeFlow.REGISTRATION) == "reg"
    assert await store.get(43, ChallengeFlow.AUTHENTICATION) == "autre"


async def test_expired_challenge_is_absent_and_swept():
    clock = FakeClock()
    store = InMemoryChallengeStore(ttl_seconds=300, clock=clock)
    await store.issue(1, ChallengeFlow.AUTHENTICATION, "vieux")
    clock.now += 200
    await store.issue(2, ChallengeFlow.AUTHENTICATION, "recent")

    clock.now += 100
    assert await store.get(1, ChallengeFlow.AUTHENTICATION) is None
    assert await store.consume(1, ChallengeFlow.AUTHENTICATION) is None

    await store.issue(3, ChallengeFlow.REGISTRATION, "abandonne")
    clock.now += 300
    removed = await store.sweep()
    assert removed == 2
    assert len(store) == 0


async def test_sweep_keeps_live_entries():
    clock = FakeClock()
    store = InMemoryChallengeStore(ttl_seconds=300, clock=clock)
    await store.issue(1, ChallengeFlow.AUTHENTICATION, "vivant")
    clock.now += 299
    assert await store.sweep() == 0
    assert await store.get(1, ChallengeFlow.AUTHENTICATION) == "vivant"
