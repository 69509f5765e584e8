"""Unit tests for the Redis ledger adapter."""

from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from gpu_node_agent.adapters.outbound.redis_ledger import RedisLedger
from gpu_node_agent.domain.entities.gpu_slot import GPUSlotState
from gpu_node_agent.domain.errors import (
    LedgerError,
    LedgerUnavailable,
    ReservationConflict,
)
from gpu_node_agent.infrastructure.config import LedgerConfig


@pytest.mark.unit
class TestKeyLayout:
    """Test key names shared with the legacy host client."""

    def test_default_prefixes(self, redis_client):
        ledger = RedisLedger(redis_client)
        assert ledger.gpu_count_key() == "canhazgpu:gpu_count"
        assert ledger.cluster_slot_key(2) == "canhazgpu:k8s:gpu:2"
        assert ledger.host_slot_key(2) == "canhazgpu:gpu:2"
        assert ledger.claim_set_key("c1") == "canhazgpu:k8s:claim:c1:gpus"
        assert ledger.reservation_key("c1", 2) == "canhazgpu:k8s:claim:c1:gpu:2"

    def test_custom_prefixes(self, redis_client):
        ledger = RedisLedger(redis_client, cluster_prefix="x:k8s:", host_prefix="x:")
        assert ledger.cluster_slot_key(0) == "x:k8s:gpu:0"
        assert ledger.gpu_count_key() == "x:gpu_count"


@pytest.mark.unit
class TestPool:
    """Test pool size handling."""

    def test_initialize_pool_only_when_absent(self, redis_client):
        ledger = RedisLedger(redis_client)
        assert ledger.initialize_pool(8) is True
        assert ledger.initialize_pool(2) is False
        assert ledger.get_gpu_count() == 8

    def test_invalid_count(self, redis_client):
        ledger = RedisLedger(redis_client)
        redis_client.set(ledger.gpu_count_key(), "eight")
        with pytest.raises(LedgerError, match="Invalid GPU count"):
            ledger.get_gpu_count()


@pytest.mark.unit
class TestSlots:
    """Test slot reads and writes."""

    def test_read_slots_pairs_both_domains(self, ledger, redis_client, set_host_owner):
        set_host_owner(1, user="carol")
        snapshots = ledger.read_slots([0, 1])
        assert [s.gpu_id for s in snapshots] == [0, 1]
        assert snapshots[0].is_available
        assert snapshots[1].host.owner == "carol"
        assert not snapshots[1].cluster.is_owned

    def test_reserve_rechecks_inside_transaction(self, ledger, set_host_owner):
        set_host_owner(0)
        with pytest.raises(ReservationConflict, match=r"\[0\]"):
            ledger.reserve_slots([0, 1], "c1", "", "", 1.0)
        assert ledger.claim_gpus("c1") == []
        assert ledger.read_slots([1])[0].is_available

    def test_corrupt_cluster_state(self, ledger, redis_client):
        redis_client.set(ledger.cluster_slot_key(0), "[1, 2]")
        with pytest.raises(LedgerError, match="Corrupt GPU state"):
            ledger.get_slot_state(0)

    def test_release_of_unowned_slot_keeps_state(self, ledger, redis_client):
        state = GPUSlotState.released(5.0)
        redis_client.set(ledger.cluster_slot_key(0), state.to_json())
        assert ledger.release_slot("c1", 0, 9.0) is True
        assert ledger.get_slot_state(0).released_at == 5.0

    def test_release_clears_unreadable_slot(self, ledger, redis_client):
        redis_client.set(ledger.cluster_slot_key(0), "garbage")
        assert ledger.release_slot("c1", 0, 9.0) is True
        assert ledger.get_slot_state(0) == GPUSlotState(released_at=9.0)

    def test_touch_heartbeat_requires_ownership(self, ledger):
        ledger.reserve_slots([0], "c1", "", "", 1.0)
        assert ledger.touch_heartbeat("c2", 0, 2.0) is False
        assert ledger.touch_heartbeat("c1", 0, 3.0) is True
        assert ledger.get_slot_state(0).last_heartbeat == 3.0

    def test_claim_set_ignores_garbage_members(self, ledger, redis_client):
        redis_client.sadd(ledger.claim_set_key("c1"), "2", "x", "0")
        assert ledger.claim_gpus("c1") == [0, 2]

    def test_unreadable_reservation_info(self, ledger, redis_client):
        redis_client.set(ledger.reservation_key("c1", 0), "nope")
        assert ledger.get_reservation("c1", 0) is None


@pytest.mark.unit
class TestErrorTranslation:
    """Test mapping of redis-py errors onto ledger errors."""

    @pytest.mark.parametrize("error", [RedisConnectionError("refused"), RedisTimeoutError("slow")])
    def test_connectivity_errors(self, error):
        client = MagicMock()
        client.ping.side_effect = error
        client.get.side_effect = error
        ledger = RedisLedger(client)
        with pytest.raises(LedgerUnavailable):
            ledger.ping()
        with pytest.raises(LedgerUnavailable):
            ledger.get_gpu_count()

    def test_other_redis_errors(self):
        client = MagicMock()
        client.smembers.side_effect = ResponseError("WRONGTYPE")
        with pytest.raises(LedgerError) as excinfo:
            RedisLedger(client).claim_gpus("c1")
        assert not isinstance(excinfo.value, LedgerUnavailable)


@pytest.mark.unit
def test_from_config_uses_prefixes():
    ledger = RedisLedger.from_config(LedgerConfig(host="redis.local", port=6380, cluster_prefix="p:"))
    assert ledger.cluster_slot_key(1) == "p:gpu:1"
