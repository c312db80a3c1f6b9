import logging
import threading
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .buffer import OverflowBuffer, Record
from .dataset import OrderedDataset
from .errors import ConfigurationError, TrainingCancelled
from .stages import FirstStageRouter, SecondStageBank
from .utils import (Constants, NetworkParameters, clamp_position, key_to_float,
                    route_to_stage, validate_parameters)

logger = logging.getLogger(__name__)


class IndexState(Enum):
    """States of the retrain state machine."""
    IDLE = 'idle'
    MERGING = 'merging'
    TRAINING_STAGE1 = 'training_stage1'
    ROUTING = 'routing'
    TRAINING_STAGE2 = 'training_stage2'


class IndexSnapshot:
    """Read-only dataset and model hierarchy, published as one unit.

    ``pending`` holds records drained from the overflow buffer by a retrain
    that has not finished yet; lookups scan them so they never disappear.
    """

    __slots__ = ('dataset', 'router', 'bank', 'pending', 'generation')

    def __init__(self,
                 dataset: OrderedDataset,
                 router: FirstStageRouter,
                 bank: SecondStageBank,
                 pending: Tuple[Record, ...] = (),
                 generation: int = 0):
        self.dataset = dataset
        self.router = router
        self.bank = bank
        self.pending = pending
        self.generation = generation

    def with_pending(self, pending: Tuple[Record, ...]) -> 'IndexSnapshot':
        return IndexSnapshot(self.dataset, self.router, self.bank, pending, self.generation)


class RecursiveModelIndex:
    """Two-stage recursive model index with an overflow buffer for new writes.

    Parameters:
    -----------
    first_stage_params : NetworkParameters
        Hyperparameters of the Stage-1 router
    second_stage_params : NetworkParameters
        Hyperparameters shared by every Stage-2 model
    max_overflow_size : int
        Buffered inserts allowed before a retrain is forced
    second_stage_size : int
        Number of Stage-2 models
    background : bool
        Retrain on a worker thread when the threshold is crossed
    search_safety : int
        Slots added to each bucket's error window at lookup time
    seed : Optional[int]
        Seed for weight initialization and batch sampling
    """

    def __init__(self,
                 first_stage_params: NetworkParameters,
                 second_stage_params: NetworkParameters,
                 max_overflow_size: int = Constants.DEFAULT_MAX_OVERFLOW_SIZE,
                 second_stage_size: int = Constants.DEFAULT_SECOND_STAGE_SIZE,
                 background: bool = False,
                 search_safety: int = Constants.DEFAULT_SEARCH_SAFETY,
                 seed: Optional[int] = None):
        validate_parameters(first_stage_params, "First stage")
        validate_parameters(second_stage_params, "Second stage")
        if second_stage_size < 1:
            raise ConfigurationError(f"second_stage_size must be at least 1, got {second_stage_size}")
        if max_overflow_size < 0:
            raise ConfigurationError(f"max_overflow_size must be >= 0, got {max_overflow_size}")
        if search_safety < 0:
            raise ConfigurationError(f"search_safety must be >= 0, got {search_safety}")

        self.first_stage_params = first_stage_params
        self.second_stage_params = second_stage_params
        self.max_overflow_size = max_overflow_size
        self.second_stage_size = second_stage_size
        self.background = background
        self.search_safety = search_safety
        self.seed = seed

        self.buffer = OverflowBuffer(max_overflow_size)
        self._snapshot = IndexSnapshot(
            OrderedDataset(),
            FirstStageRouter(first_stage_params, seed=seed),
            SecondStageBank(second_stage_params, second_stage_size, seed=seed)
        )
        self._state = IndexState.IDLE

        # Serializes inserts against each other and against snapshot swaps
        self._write_lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._worker_error: Optional[BaseException] = None
        self._cancel_event = threading.Event()

        self.retrain_count = 0
        self.last_retrain_seconds = 0.0
        # Readers update these concurrently; the lock never blocks on a retrain
        self._stats_lock = threading.Lock()
        self.lookup_stats = {
            'overflow_hits': 0,
            'model_hits': 0,
            'widened_searches': 0,
            'degraded_lookups': 0,
            'not_found': 0,
        }

        logger.info(f"Created index with {second_stage_size} second stage models, "
                    f"max overflow size {max_overflow_size}")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def insert(self, key: Any, value: Any) -> None:
        """Buffer a record, retraining once the buffer crosses its threshold."""
        key_to_float(key)
        with self._write_lock:
            needs_retrain = self.buffer.insert(key, value)

        if needs_retrain:
            logger.debug(f"Overflow buffer exceeded {self.max_overflow_size} records")
            if self.background:
                self.train_async()
            else:
                self.train()

    def train(self) -> None:
        """Synchronously merge the buffer and rebuild both stages."""
        if self._worker is not None:
            self.wait_for_training()
        self._retrain()

    def train_async(self) -> bool:
        """Start a background retrain. Returns False if one is already running."""
        with self._write_lock:
            if self._worker is not None:
                return False
            self._cancel_event.clear()
            self._worker_error = None
            self._worker = threading.Thread(target=self._background_loop, name="rmi-retrain", daemon=True)
            self._worker.start()
        return True

    def wait_for_training(self, timeout: Optional[float] = None) -> bool:
        """Block until the background retrain finishes.

        Returns False on timeout. Re-raises the error of a failed retrain.
        """
        worker = self._worker
        if worker is not None:
            worker.join(timeout)
            if worker.is_alive():
                return False

        error, self._worker_error = self._worker_error, None
        if error is not None:
            raise error
        return True

    def cancel_training(self) -> None:
        """Abort an in-flight background retrain, keeping the previous models."""
        self._cancel_event.set()

    def _background_loop(self) -> None:
        try:
            while True:
                self._retrain(self._cancel_event)
                # Inserts that landed during the retrain may have crossed the threshold again
                with self._write_lock:
                    if not self.buffer.is_full():
                        self._worker = None
                        return
        except TrainingCancelled:
            logger.info("Background retrain cancelled, keeping previous model state")
        except Exception as e:
            logger.exception("Background retrain failed, keeping previous model state")
            self._worker_error = e

        with self._write_lock:
            self._worker = None

    def _retrain(self, cancel_event: Optional[threading.Event] = None) -> None:
        with self._write_lock:
            base = self._snapshot
            pending = tuple(self.buffer.get_records())
            # Publish the pending records before the buffer forgets them
            self._snapshot = base.with_pending(pending)
            self.buffer.drain()

        start_time = time.time()
        try:
            snapshot = self._build_snapshot(base, pending, cancel_event)
        except BaseException:
            with self._write_lock:
                self.buffer.restore(pending)
                self._snapshot = base
            raise
        finally:
            self._set_state(IndexState.IDLE)

        with self._write_lock:
            self._snapshot = snapshot
            self.retrain_count += 1
            self.last_retrain_seconds = time.time() - start_time
        logger.info(f"Retrain {self.retrain_count} finished in {self.last_retrain_seconds:.3f}s, "
                    f"{len(snapshot.dataset)} records indexed")

    def _set_state(self, state: IndexState) -> None:
        logger.info(f"Index state: {self._state.value} -> {state.value}")
        self._state = state

    def _build_snapshot(self,
                        base: IndexSnapshot,
                        pending: Tuple[Record, ...],
                        cancel_event: Optional[threading.Event]) -> IndexSnapshot:
        """Run Merging -> TrainingStage1 -> Routing -> TrainingStage2 off the live snapshot."""
        logger.info(f"Retraining with {len(pending)} new records")

        self._set_state(IndexState.MERGING)
        dataset = base.dataset.merge(pending)

        self._set_state(IndexState.TRAINING_STAGE1)
        router = FirstStageRouter(self.first_stage_params, seed=self.seed)
        router.train(dataset, cancel_event)

        self._set_state(IndexState.ROUTING)
        bank = SecondStageBank(self.second_stage_params, self.second_stage_size,
                               seed=self.seed, previous=base.bank)
        buckets = bank.assign(router, dataset)

        self._set_state(IndexState.TRAINING_STAGE2)
        bank.train(dataset, buckets, cancel_event)

        return IndexSnapshot(dataset, router, bank, generation=base.generation + 1)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def find(self, key: Any) -> Optional[Record]:
        """Look up a key. Returns the (key, value) record, or None if absent."""
        float_key = key_to_float(key)
        while True:
            snapshot = self._snapshot

            record = self.buffer.scan(key)
            if record is None:
                record = self._scan_pending(snapshot.pending, key)
            if record is not None:
                self._count('overflow_hits')
                return record

            record = self._model_lookup(snapshot, key, float_key)
            if record is not None:
                self._count('model_hits')
                return record

            # A swap during the lookup may have moved the record; retry on the new snapshot
            if self._snapshot is snapshot:
                self._count('not_found')
                return None

    @staticmethod
    def _scan_pending(pending: Tuple[Record, ...], key: Any) -> Optional[Record]:
        for record in pending:
            if record[0] == key:
                return record
        return None

    def _model_lookup(self, snapshot: IndexSnapshot, key: Any, float_key: float) -> Optional[Record]:
        dataset = snapshot.dataset
        size = len(dataset)
        if size == 0:
            return None

        first_stage_position = snapshot.router.predict(float_key)
        stage = route_to_stage(first_stage_position, self.second_stage_size)

        if snapshot.bank.is_degraded(stage):
            # Never trust an untrained bucket; start from Stage-1 and let the search widen
            self._count('degraded_lookups')
            position = clamp_position(first_stage_position, size)
            window = 0
        else:
            position = clamp_position(snapshot.bank.bounded_predict(stage, float_key), size)
            window = int(snapshot.bank.max_errors[stage]) + self.search_safety

        idx, widened = dataset.locate(float_key, position, window)
        if widened:
            self._count('widened_searches')
        if idx is None:
            return None

        # Distinct keys can share a float64 (ints above 2**53); match the stored key exactly
        while idx < size and dataset.keys[idx] == float_key:
            record = dataset.record_at(idx)
            if record[0] == key:
                return record
            idx += 1
        return None

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self.lookup_stats[name] += 1

    def route(self, key: Any) -> int:
        """Stage-2 bucket the current Stage-1 router assigns to a key."""
        position = self._snapshot.router.predict(key_to_float(key))
        return route_to_stage(position, self.second_stage_size)

    def predict_position(self, key: Any) -> int:
        """Clamped model estimate of a key's rank in the ordered dataset."""
        snapshot = self._snapshot
        float_key = key_to_float(key)
        first_stage_position = snapshot.router.predict(float_key)
        stage = route_to_stage(first_stage_position, self.second_stage_size)
        if snapshot.bank.is_degraded(stage):
            return clamp_position(first_stage_position, len(snapshot.dataset))
        return clamp_position(snapshot.bank.bounded_predict(stage, float_key), len(snapshot.dataset))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def is_training(self) -> bool:
        return self._worker is not None or self._state is not IndexState.IDLE

    def records(self) -> List[Record]:
        """Records of the ordered dataset, sorted by key."""
        return list(self._snapshot.dataset.records)

    def overflow_records(self) -> List[Record]:
        """Records not yet merged: in-flight retrain records, then the buffer."""
        snapshot = self._snapshot
        return list(snapshot.pending) + self.buffer.get_records()

    def __len__(self) -> int:
        snapshot = self._snapshot
        return len(snapshot.dataset) + len(snapshot.pending) + len(self.buffer)

    def __contains__(self, key: Any) -> bool:
        return self.find(key) is not None

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the index."""
        snapshot = self._snapshot
        stats = {
            'dataset_size': len(snapshot.dataset),
            'overflow_size': self.buffer.get_size(),
            'pending_size': len(snapshot.pending),
            'max_overflow_size': self.max_overflow_size,
            'second_stage_size': self.second_stage_size,
            'state': self._state.value,
            'generation': snapshot.generation,
            'retrain_count': self.retrain_count,
            'last_retrain_seconds': self.last_retrain_seconds,
            'first_stage_loss': snapshot.router.regressor.last_loss,
            'memory_bytes': snapshot.dataset.get_memory_usage(),
        }
        stats.update(snapshot.bank.get_stats())
        with self._stats_lock:
            stats.update(self.lookup_stats)
        return stats
