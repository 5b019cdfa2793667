"""Ingest pipeline: bus frames -> topology updates -> derived telemetry."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Dict, Iterable, List, Optional

from gridloss.errors import GridLossError, TopologyError
from gridloss.indexer import ResourceIndex
from gridloss.messages import MessageError, RtdbMessage, encode_rtdb_data, parse_rtdb_data
from gridloss.profiles import ResourceType
from gridloss.topology.grid import TopologyGrid

logger = logging.getLogger(__name__)

# Queue close marker
_CLOSE = object()


class Dispatcher:
    """
    Moves telemetry from the bus into the topology graph and back out.

    The bus thread parses frames and enqueues subscribed points. A single
    receive worker owns every mutation of the topology graph; a single
    output worker publishes derived points. Both queues are bounded and
    block when full, so a slow consumer pushes back on the bus instead of
    losing data.
    """

    def __init__(
        self,
        index: ResourceIndex,
        topology_grid: TopologyGrid,
        bus,
        publisher_idx: int = 0,
        queue_size: int = 1000,
        emit_types: Iterable[int] = (),
        on_fatal: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        """
        Args:
            index: Lookup tables built at startup
            topology_grid: Graph mutated by the receive worker
            bus: Transport with ``send(publisher_idx, data)``
            publisher_idx: Publisher used for derived points
            queue_size: Capacity of the input and output queues
            emit_types: Resource types whose points receive derived state
            on_fatal: Called once when publishing becomes impossible
        """
        if queue_size <= 0:
            raise ValueError(f"queue size must be positive, got {queue_size}")

        self.index = index
        self.topology_grid = topology_grid
        self.bus = bus
        self.publisher_idx = publisher_idx
        self.emit_types: List[int] = list(emit_types)
        self.on_fatal = on_fatal

        self.input_data_queue: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self.output_data_queue: "queue.Queue" = queue.Queue(maxsize=queue_size)

        # Latest value of every subscribed measure (point id -> value)
        self.measurements: Dict[int, float] = {}
        self.fatal_error: Optional[BaseException] = None

        self._threads: List[threading.Thread] = []

    # ------------------------------------------------------------------
    # Bus side
    # ------------------------------------------------------------------
    def receive_handler(self, frames: List[bytes]) -> None:
        """Parse bus frames and enqueue the subscribed points, in frame order."""
        for data in frames:
            try:
                points = parse_rtdb_data(data)
            except MessageError as e:
                logger.error(f"Failed to parse incoming data ({data!r}): {e}")
                continue
            for point in points:
                if point.id in self.index.resource_by_point_id:
                    self.input_data_queue.put(point)

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._threads:
            logger.warning("Dispatcher already running")
            return

        for target, name in (
            (self.receive_data_worker, "grid-receive"),
            (self.output_event_worker, "grid-output"),
        ):
            thread = threading.Thread(target=target, name=name, daemon=True)
            thread.start()
            self._threads.append(thread)

        logger.info("Dispatcher started")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Close the input queue; workers drain what is queued and exit."""
        try:
            self.input_data_queue.put(_CLOSE, timeout=timeout)
        except queue.Full:
            logger.warning("Input queue still full, workers not stopped")

    def join(self, timeout: Optional[float] = None) -> None:
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = [t for t in self._threads if t.is_alive()]

    def is_alive(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def receive_data_worker(self) -> None:
        while True:
            point = self.input_data_queue.get()
            try:
                if point is _CLOSE:
                    self.output_data_queue.put(_CLOSE)
                    return
                self.handle_point(point)
            except Exception as e:
                logger.error(f"Failed to process point {point}: {e}")
            finally:
                self.input_data_queue.task_done()

    def handle_point(self, point: RtdbMessage) -> None:
        resource = self.index.resource_by_point_id.get(point.id)
        if resource is None:
            return

        if resource.resource_type_id == ResourceType.STATE:
            logger.debug(f"Toggle: {point}")
            try:
                self.topology_grid.set_switch_state_by_equipment_id(resource.equipment_id, int(point.value))
            except TopologyError as e:
                logger.warning(f"Failed to change state: {e}")
                return
            changed = self.topology_grid.set_equipment_electrical_state()
            self._emit(changed)

        elif resource.resource_type_id == ResourceType.MEASURE:
            logger.debug(f"Measure: {point}")
            self.measurements[point.id] = point.value

    def output_event_worker(self) -> None:
        while True:
            event = self.output_data_queue.get()
            if event is _CLOSE:
                return
            try:
                data = encode_rtdb_data([event])
                self.bus.send(self.publisher_idx, data)
            except GridLossError as e:
                logger.critical(f"Failed to send event ({event}): {e}")
                self._fatal(e)
                return

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _emit(self, changed_equipment: Iterable[int]) -> None:
        if not self.emit_types:
            return
        for equipment_id in changed_equipment:
            state = self.topology_grid.equipment_state(equipment_id)
            if state is None:
                continue
            for resource_type in self.emit_types:
                point_id = self.index.point_for(equipment_id, resource_type)
                if point_id is None:
                    continue
                self.output_data_queue.put(RtdbMessage(id=point_id, value=int(state.electrical_state)))

    def _fatal(self, error: BaseException) -> None:
        if self.fatal_error is not None:
            return
        self.fatal_error = error
        if self.on_fatal is not None:
            self.on_fatal(error)
