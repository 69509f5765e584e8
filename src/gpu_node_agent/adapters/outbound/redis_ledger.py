"""Redis implementation of the GPU ownership ledger.

Key layout (prefixes configurable)::

    <host>gpu_count                      pool size
    <cluster>gpu:<id>                    cluster-domain slot state (JSON)
    <host>gpu:<id>                       host-domain slot state (JSON, read-only here)
    <cluster>claim:<claim>:gpus          set of GPU ids owned by a claim
    <cluster>claim:<claim>:gpu:<id>      reservation metadata (JSON)

Reservations run under optimistic locking: every candidate slot key in both
domains is WATCHed, availability is re-read, and all writes go out in one
MULTI/EXEC. A concurrent write to any watched key aborts the transaction.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Sequence, Union

import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, WatchError
from redis.exceptions import TimeoutError as RedisTimeoutError

from gpu_node_agent.domain.entities.gpu_slot import (
    GPUSlotState,
    ReservationInfo,
    SlotSnapshot,
)
from gpu_node_agent.domain.errors import (
    LedgerError,
    LedgerUnavailable,
    PoolNotInitialized,
    ReservationConflict,
)
from gpu_node_agent.infrastructure.config import LedgerConfig

logger = logging.getLogger(__name__)

DEFAULT_CLUSTER_PREFIX = "canhazgpu:k8s:"
DEFAULT_HOST_PREFIX = "canhazgpu:"

# Plain clients and pipelines in immediate (watching) mode share this interface
RedisConn = Union[redis.Redis, redis.client.Pipeline]


class RedisLedger:
    """LedgerPort backed by Redis."""

    def __init__(
        self,
        client: redis.Redis,
        cluster_prefix: str = DEFAULT_CLUSTER_PREFIX,
        host_prefix: str = DEFAULT_HOST_PREFIX,
    ) -> None:
        """Initialize the ledger.

        Args:
            client: Redis client created with ``decode_responses=True``.
            cluster_prefix: Key prefix of the cluster ownership domain.
            host_prefix: Key prefix of the host ownership domain.
        """
        self._client = client
        self._cluster_prefix = cluster_prefix
        self._host_prefix = host_prefix

    @classmethod
    def from_config(cls, config: LedgerConfig) -> RedisLedger:
        if config.socket_path is not None:
            client = redis.Redis(
                unix_socket_path=str(config.socket_path),
                db=config.db,
                socket_timeout=config.socket_timeout_seconds,
                decode_responses=True,
            )
        else:
            client = redis.Redis(
                host=config.host,
                port=config.port,
                db=config.db,
                socket_timeout=config.socket_timeout_seconds,
                socket_connect_timeout=config.socket_timeout_seconds,
                decode_responses=True,
            )
        return cls(client, config.cluster_prefix, config.host_prefix)

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------

    def gpu_count_key(self) -> str:
        return f"{self._host_prefix}gpu_count"

    def cluster_slot_key(self, gpu_id: int) -> str:
        return f"{self._cluster_prefix}gpu:{gpu_id}"

    def host_slot_key(self, gpu_id: int) -> str:
        return f"{self._host_prefix}gpu:{gpu_id}"

    def claim_set_key(self, claim_id: str) -> str:
        return f"{self._cluster_prefix}claim:{claim_id}:gpus"

    def reservation_key(self, claim_id: str, gpu_id: int) -> str:
        return f"{self._cluster_prefix}claim:{claim_id}:gpu:{gpu_id}"

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise LedgerUnavailable(f"Redis unreachable during {operation}: {exc}") from exc
        except RedisError as exc:
            raise LedgerError(f"Redis error during {operation}: {exc}") from exc

    @staticmethod
    def _decode_slot(raw: Optional[str], key: str) -> Optional[GPUSlotState]:
        if raw is None:
            return GPUSlotState()
        try:
            return GPUSlotState.from_json(raw)
        except (ValueError, TypeError) as exc:
            logger.warning(f"Undecodable GPU state at {key}: {exc}")
            return None

    def _snapshots(self, conn: RedisConn, gpu_ids: Sequence[int]) -> list[SlotSnapshot]:
        if not gpu_ids:
            return []
        keys = []
        for gpu_id in gpu_ids:
            keys.append(self.cluster_slot_key(gpu_id))
            keys.append(self.host_slot_key(gpu_id))
        values = conn.mget(keys)
        snapshots = []
        for index, gpu_id in enumerate(gpu_ids):
            snapshots.append(
                SlotSnapshot(
                    gpu_id=gpu_id,
                    cluster=self._decode_slot(values[2 * index], keys[2 * index]),
                    host=self._decode_slot(values[2 * index + 1], keys[2 * index + 1]),
                )
            )
        return snapshots

    # -------------------------------------------------------------------------
    # LedgerPort
    # -------------------------------------------------------------------------

    def ping(self) -> None:
        with self._translate_errors("ping"):
            self._client.ping()

    def get_gpu_count(self) -> int:
        with self._translate_errors("get_gpu_count"):
            raw = self._client.get(self.gpu_count_key())
        if raw is None:
            raise PoolNotInitialized()
        try:
            return int(raw)
        except ValueError as exc:
            raise LedgerError(f"Invalid GPU count {raw!r}") from exc

    def initialize_pool(self, gpu_count: int) -> bool:
        with self._translate_errors("initialize_pool"):
            created = self._client.set(self.gpu_count_key(), gpu_count, nx=True)
        if created:
            logger.info(f"Initialized GPU pool with {gpu_count} GPUs")
        return bool(created)

    def read_slots(self, gpu_ids: Sequence[int]) -> list[SlotSnapshot]:
        with self._translate_errors("read_slots"):
            return self._snapshots(self._client, list(gpu_ids))

    def get_slot_state(self, gpu_id: int) -> GPUSlotState:
        key = self.cluster_slot_key(gpu_id)
        with self._translate_errors("get_slot_state"):
            raw = self._client.get(key)
        if raw is None:
            return GPUSlotState()
        try:
            return GPUSlotState.from_json(raw)
        except (ValueError, TypeError) as exc:
            raise LedgerError(f"Corrupt GPU state at {key}: {exc}") from exc

    def reserve_slots(
        self,
        gpu_ids: Sequence[int],
        claim_id: str,
        pod_name: str,
        namespace: str,
        now: float,
    ) -> None:
        """Reserve every GPU for the claim in one transaction.

        Raises:
            ReservationConflict: A slot is no longer available, or a watched
                key changed before EXEC.
        """
        gpu_ids = list(gpu_ids)
        watched = []
        for gpu_id in gpu_ids:
            watched.append(self.cluster_slot_key(gpu_id))
            watched.append(self.host_slot_key(gpu_id))

        state = GPUSlotState.reserved_for(claim_id, now).to_json()
        with self._translate_errors("reserve_slots"):
            with self._client.pipeline() as pipe:
                try:
                    pipe.watch(*watched)
                    taken = [s.gpu_id for s in self._snapshots(pipe, gpu_ids) if not s.is_available]
                    if taken:
                        raise ReservationConflict(f"GPUs {taken} are no longer available")

                    pipe.multi()
                    for gpu_id in gpu_ids:
                        pipe.set(self.cluster_slot_key(gpu_id), state)
                        info = ReservationInfo(
                            claim_id=claim_id,
                            namespace=namespace,
                            pod_name=pod_name,
                            reserved_at=now,
                        )
                        pipe.set(self.reservation_key(claim_id, gpu_id), info.to_json())
                    pipe.sadd(self.claim_set_key(claim_id), *[str(gpu_id) for gpu_id in gpu_ids])
                    pipe.execute()
                except WatchError as exc:
                    raise ReservationConflict(
                        f"GPUs {gpu_ids} were modified concurrently"
                    ) from exc

    def claim_gpus(self, claim_id: str) -> list[int]:
        with self._translate_errors("claim_gpus"):
            members = self._client.smembers(self.claim_set_key(claim_id))
        gpu_ids = []
        for member in members:
            try:
                gpu_ids.append(int(member))
            except ValueError:
                logger.warning(f"Ignoring invalid GPU id {member!r} in claim {claim_id}")
        return sorted(gpu_ids)

    def release_slot(self, claim_id: str, gpu_id: int, now: float) -> bool:
        key = self.cluster_slot_key(gpu_id)
        reservation_key = self.reservation_key(claim_id, gpu_id)

        def _release(pipe: redis.client.Pipeline) -> bool:
            state = self._decode_slot(pipe.get(key), key)
            if state is not None and state.is_owned and not state.is_owned_by(claim_id):
                return False
            pipe.multi()
            if state is None or state.is_owned:
                pipe.set(key, GPUSlotState.released(now).to_json())
            pipe.delete(reservation_key)
            return True

        with self._translate_errors("release_slot"):
            return self._client.transaction(_release, key, value_from_callable=True)

    def delete_claim(self, claim_id: str) -> None:
        with self._translate_errors("delete_claim"):
            self._client.delete(self.claim_set_key(claim_id))

    def touch_heartbeat(self, claim_id: str, gpu_id: int, now: float) -> bool:
        key = self.cluster_slot_key(gpu_id)

        def _touch(pipe: redis.client.Pipeline) -> bool:
            raw = pipe.get(key)
            if raw is None:
                return False
            try:
                state = GPUSlotState.from_json(raw)
            except (ValueError, TypeError):
                return False
            if not state.is_owned_by(claim_id):
                return False
            state.last_heartbeat = now
            pipe.multi()
            pipe.set(key, state.to_json())
            return True

        with self._translate_errors("touch_heartbeat"):
            return self._client.transaction(_touch, key, value_from_callable=True)

    def get_reservation(self, claim_id: str, gpu_id: int) -> Optional[ReservationInfo]:
        key = self.reservation_key(claim_id, gpu_id)
        with self._translate_errors("get_reservation"):
            raw = self._client.get(key)
        if raw is None:
            return None
        try:
            return ReservationInfo.from_json(raw)
        except (ValueError, TypeError) as exc:
            logger.warning(f"Undecodable reservation info at {key}: {exc}")
            return None
