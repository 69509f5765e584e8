"""Unit tests for the GPU allocator against an in-process Redis."""

import json

import pytest

from gpu_node_agent.adapters.outbound.redis_ledger import RedisLedger
from gpu_node_agent.domain.entities.gpu_slot import GPUSlotState
from gpu_node_agent.domain.errors import (
    GPUNotAvailable,
    InsufficientGPUs,
    PoolNotInitialized,
    ReservationConflict,
)
from gpu_node_agent.domain.services.allocator import GPUAllocator


def _ledger_dump(redis_client) -> dict:
    return {key: redis_client.get(key) for key in redis_client.keys("*")}


@pytest.mark.unit
class TestAvailability:
    """Test cross-domain availability reads."""

    def test_all_free_initially(self, allocator):
        assert allocator.get_available_gpus() == [0, 1, 2, 3]

    def test_host_owned_gpu_is_excluded(self, allocator, set_host_owner):
        set_host_owner(1)
        assert allocator.get_available_gpus() == [0, 2, 3]

    def test_cluster_owned_gpu_is_excluded(self, allocator):
        allocator.reserve_gpus_for_claim("c1", 1, gpu_ids=[2])
        assert allocator.get_available_gpus() == [0, 1, 3]

    def test_undecodable_state_is_excluded(self, allocator, ledger, redis_client):
        redis_client.set(ledger.cluster_slot_key(0), "{broken")
        assert allocator.get_available_gpus() == [1, 2, 3]

    def test_pool_not_initialized(self, redis_client):
        allocator = GPUAllocator(RedisLedger(redis_client), "n")
        with pytest.raises(PoolNotInitialized, match="GPU pool not initialized"):
            allocator.get_available_gpus()


@pytest.mark.unit
class TestReserve:
    """Test reservation semantics."""

    def test_reserve_by_count_takes_lowest_ids(self, allocator, ledger):
        assert allocator.reserve_gpus_for_claim("c1", 2, pod_name="p", namespace="ns") == [0, 1]
        assert ledger.claim_gpus("c1") == [0, 1]
        state = allocator.get_gpu_state(0)
        assert state.owner == "claim:c1"
        assert state.slot_type == "claim"
        assert state.acquired_at == 1_700_000_000.0
        info = ledger.get_reservation("c1", 1)
        assert info.pod_name == "p"
        assert info.namespace == "ns"

    def test_reserve_skips_host_owned(self, allocator, set_host_owner):
        set_host_owner(0)
        assert allocator.reserve_gpus_for_claim("c1", 2) == [1, 2]

    def test_insufficient_gpus_leaves_ledger_untouched(self, allocator, set_host_owner, redis_client):
        for gpu_id in (0, 1, 2):
            set_host_owner(gpu_id)
        before = _ledger_dump(redis_client)
        with pytest.raises(InsufficientGPUs) as excinfo:
            allocator.reserve_gpus_for_claim("c1", 2)
        assert str(excinfo.value) == "Not enough available GPUs: requested 2, available 1"
        assert _ledger_dump(redis_client) == before

    @pytest.mark.parametrize("domain", ["cluster", "host"])
    def test_explicit_id_owned_in_either_domain(self, allocator, set_host_owner, domain):
        if domain == "cluster":
            allocator.reserve_gpus_for_claim("other", 1, gpu_ids=[3])
        else:
            set_host_owner(3)
        with pytest.raises(GPUNotAvailable) as excinfo:
            allocator.reserve_gpus_for_claim("c1", 1, gpu_ids=[3])
        assert str(excinfo.value) == "GPU 3 is not available"

    def test_explicit_ids_are_all_or_nothing(self, allocator, ledger, set_host_owner):
        set_host_owner(2)
        with pytest.raises(GPUNotAvailable):
            allocator.reserve_gpus_for_claim("c1", 2, gpu_ids=[1, 2])
        assert allocator.get_available_gpus() == [0, 1, 3]
        assert ledger.claim_gpus("c1") == []

    def test_explicit_ids_override_count(self, allocator):
        assert allocator.reserve_gpus_for_claim("c1", 0, gpu_ids=[3, 1]) == [3, 1]

    def test_out_of_range_id_is_not_available(self, allocator):
        with pytest.raises(GPUNotAvailable):
            allocator.reserve_gpus_for_claim("c1", 1, gpu_ids=[9])

    def test_invalid_arguments(self, allocator):
        with pytest.raises(ValueError):
            allocator.reserve_gpus_for_claim("", 1)
        with pytest.raises(ValueError):
            allocator.reserve_gpus_for_claim("c1", 0)

    def test_host_domain_is_never_written(self, allocator, ledger, redis_client):
        allocator.reserve_gpus_for_claim("c1", 4)
        assert all(redis_client.get(ledger.host_slot_key(i)) is None for i in range(4))


@pytest.mark.unit
class TestRelease:
    """Test release semantics."""

    def test_round_trip_restores_availability(self, allocator, ledger, redis_client):
        allocator.reserve_gpus_for_claim("c1", 3)
        assert allocator.release_gpus_for_claim("c1") == [0, 1, 2]
        assert allocator.get_available_gpus() == [0, 1, 2, 3]
        assert redis_client.exists(ledger.claim_set_key("c1")) == 0
        assert redis_client.exists(ledger.reservation_key("c1", 0)) == 0
        data = json.loads(redis_client.get(ledger.cluster_slot_key(0)))
        assert data == {"user": "", "type": "", "last_released": 1_700_000_000.0}

    def test_release_is_idempotent(self, allocator):
        allocator.reserve_gpus_for_claim("c1", 1)
        allocator.release_gpus_for_claim("c1")
        assert allocator.release_gpus_for_claim("c1") == []
        assert allocator.release_gpus_for_claim("never-existed") == []

    def test_release_leaves_foreign_owner(self, allocator, ledger, redis_client):
        allocator.reserve_gpus_for_claim("c1", 1, gpu_ids=[0])
        # Slot taken over by another claim outside this claim's release
        redis_client.set(ledger.cluster_slot_key(0), GPUSlotState.reserved_for("c2", 1.0).to_json())
        assert allocator.release_gpus_for_claim("c1") == []
        assert allocator.get_gpu_state(0).owner == "claim:c2"

    def test_no_double_booking_across_sequences(self, allocator):
        first = allocator.reserve_gpus_for_claim("a", 2)
        second = allocator.reserve_gpus_for_claim("b", 2)
        assert not set(first) & set(second)
        with pytest.raises(InsufficientGPUs):
            allocator.reserve_gpus_for_claim("c", 1)
        allocator.release_gpus_for_claim("a")
        assert allocator.reserve_gpus_for_claim("c", 2) == first


@pytest.mark.unit
class TestHeartbeatAndStatus:
    """Test heartbeat refresh and node status."""

    def test_heartbeat_updates_owned_slots(self, ledger, redis_client):
        times = iter([100.0, 200.0])
        allocator = GPUAllocator(ledger, "n", clock=lambda: next(times))
        allocator.reserve_gpus_for_claim("c1", 2)
        assert allocator.update_heartbeat("c1") == 2
        state = allocator.get_gpu_state(1)
        assert state.acquired_at == 100.0
        assert state.last_heartbeat == 200.0

    def test_heartbeat_skips_missing_and_malformed(self, allocator, ledger, redis_client):
        allocator.reserve_gpus_for_claim("c1", 2)
        redis_client.delete(ledger.cluster_slot_key(0))
        redis_client.set(ledger.cluster_slot_key(1), "garbage")
        assert allocator.update_heartbeat("c1") == 0

    def test_zero_value_state(self, allocator):
        assert allocator.get_gpu_state(3) == GPUSlotState()

    def test_node_status(self, allocator, set_host_owner):
        allocator.reserve_gpus_for_claim("c1", 1, gpu_ids=[2], pod_name="trainer", namespace="ml")
        set_host_owner(0, user="alice")
        status = allocator.get_node_status()
        assert status.node_name == "gpu-node-1"
        assert status.total_gpus == 4
        assert status.available_gpus == [1, 3]
        by_id = {a.gpu_id: a for a in status.allocated_gpus}
        assert by_id[0].claim_id == "manual:alice"
        assert by_id[2].claim_id == "c1"
        assert by_id[2].pod_name == "trainer"
        assert by_id[2].namespace == "ml"


@pytest.mark.unit
@pytest.mark.concurrency
class TestOptimisticLocking:
    """Test the WATCH/MULTI guard against concurrent writers."""

    @staticmethod
    def _interfere_once(ledger, monkeypatch, write):
        """Run ``write`` through a second connection right after the watched read."""
        original = ledger._snapshots
        calls = {"count": 0}

        def _snapshots(conn, gpu_ids):
            result = original(conn, gpu_ids)
            if conn is not ledger._client and calls["count"] == 0:
                calls["count"] += 1
                write()
            return result

        monkeypatch.setattr(ledger, "_snapshots", _snapshots)
        return calls

    def test_concurrent_write_aborts_and_retry_picks_other_gpus(
        self, allocator, ledger, redis_server, monkeypatch
    ):
        import fakeredis

        rival = fakeredis.FakeRedis(server=redis_server, decode_responses=True)
        calls = self._interfere_once(
            ledger,
            monkeypatch,
            lambda: rival.set(ledger.host_slot_key(0), json.dumps({"user": "bob", "type": "run"})),
        )

        assert allocator.reserve_gpus_for_claim("c1", 2) == [1, 2]
        assert calls["count"] == 1
        assert ledger.claim_gpus("c1") == [1, 2]
        assert allocator.get_gpu_state(0) == GPUSlotState()

    def test_explicit_request_surfaces_not_available_after_conflict(
        self, allocator, ledger, redis_server, monkeypatch
    ):
        import fakeredis

        rival = fakeredis.FakeRedis(server=redis_server, decode_responses=True)
        self._interfere_once(
            ledger,
            monkeypatch,
            lambda: rival.set(ledger.host_slot_key(3), json.dumps({"user": "bob", "type": "run"})),
        )

        with pytest.raises(GPUNotAvailable, match="GPU 3 is not available"):
            allocator.reserve_gpus_for_claim("c1", 1, gpu_ids=[3])
        assert ledger.claim_gpus("c1") == []

    def test_gives_up_after_max_attempts(self, ledger, monkeypatch):
        allocator = GPUAllocator(ledger, "n", max_attempts=2)
        attempts = []

        def _always_conflict(*args, **kwargs):
            attempts.append(args)
            raise ReservationConflict("raced")

        monkeypatch.setattr(ledger, "reserve_slots", _always_conflict)
        with pytest.raises(ReservationConflict, match="after 2 attempts"):
            allocator.reserve_gpus_for_claim("c1", 1)
        assert len(attempts) == 2
