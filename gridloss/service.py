"""Grid losses service: process lifecycle and command line."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import Callable, List, Optional

from gridloss.api import DiagnosticsServer, create_app
from gridloss.bus import ZmqBus
from gridloss.config import Configuration
from gridloss.dispatcher import Dispatcher
from gridloss.errors import ConfigError, GridLossError
from gridloss.indexer import ResourceIndex, build_resource_index, check_equipment_references
from gridloss.loader import ProfileLoader
from gridloss.log import configure_level, setup_logging
from gridloss.topology import TopologyGrid, build_topology_grid

logger = logging.getLogger(__name__)

CACHE_TOPOLOGY = "cache/flisr-topology.json"
CACHE_EQUIPMENT = "cache/flisr-equipment.json"


class GridLossService:
    """
    Wires profiles, indexes, topology graphs, dispatcher and bus together.

    ``start()`` runs every startup step and raises on the first fatal one;
    ``run()`` blocks in the bus loop; ``shutdown()`` drains the workers.
    """

    def __init__(
        self,
        config: Configuration,
        use_cache_only: bool = False,
        loader: Optional[ProfileLoader] = None,
        bus_factory: Callable[..., ZmqBus] = ZmqBus,
        topology_cache: str = CACHE_TOPOLOGY,
        equipment_cache: str = CACHE_EQUIPMENT,
    ) -> None:
        self.config = config
        self.use_cache_only = use_cache_only
        self.loader = loader or ProfileLoader(config)
        self.bus_factory = bus_factory
        self.topology_cache = topology_cache
        self.equipment_cache = equipment_cache

        self.index: Optional[ResourceIndex] = None
        self.topology_flisr: Optional[TopologyGrid] = None
        self.topology_grid: Optional[TopologyGrid] = None
        self.dispatcher: Optional[Dispatcher] = None
        self.bus: Optional[ZmqBus] = None
        self.http: Optional[DiagnosticsServer] = None

    def start(self) -> None:
        steps = (
            ("load topology profile", self.load_topology_profile),
            ("load equipment profile", self.load_equipment_profile),
            ("create internal parameters", self.create_internal_parameters),
            ("load topology", self.load_topology_grid),
            ("open bus", self.open_bus),
            ("open diagnostics API", self.open_http),
        )
        for what, step in steps:
            try:
                step()
            except GridLossError as e:
                logger.critical(f"Failed to {what}: {e}")
                raise

        self.dispatcher.start()
        if self.http is not None:
            self.http.start()

    def load_topology_profile(self) -> None:
        self.loader.load_topology(self.config.grid_losses.timeout, self.use_cache_only, self.topology_cache)

    def load_equipment_profile(self) -> None:
        self.loader.load_equipment(self.config.grid_losses.timeout, self.use_cache_only, self.equipment_cache)

    def create_internal_parameters(self) -> None:
        gl = self.config.grid_losses
        self.index = build_resource_index(
            self.loader.equipment_by_id,
            include_protection=gl.include_protection,
            emit_types=gl.emit_types,
        )
        check_equipment_references(self.loader.topology, self.index.equipment_by_id)

        for model in gl.losses:
            if model.equipment not in self.index.equipment_by_id:
                logger.warning(f"Loss model refers to unknown equipment {model.equipment}")
            for point_id in (model.voltage_ac, model.current_a, model.cos_phi, model.state):
                if point_id and point_id not in self.index.point_name_by_id:
                    logger.warning(f"Loss model of equipment {model.equipment}: point {point_id} is not subscribed")

    def load_topology_grid(self) -> None:
        gl = self.config.grid_losses
        profile = self.loader.topology

        if gl.flisr_graph:
            self.topology_flisr = build_topology_grid(profile, gl.power_types, gl.ground_types)

        self.topology_grid = build_topology_grid(profile, gl.power_types, gl.ground_types)
        self.topology_grid.set_equipment_electrical_state()

    def open_bus(self) -> None:
        rtdb = self.config.rtdb
        self.bus = self.bus_factory(1, 1)

        subscriber_idx = self.bus.add_subscriber(rtdb.output_bus)
        publisher_idx = self.bus.add_publisher(rtdb.input_bus)

        self.dispatcher = Dispatcher(
            self.index,
            self.topology_grid,
            self.bus,
            publisher_idx=publisher_idx,
            queue_size=self.config.grid_losses.queue,
            emit_types=self.config.grid_losses.emit_types,
            on_fatal=self.bus.stop,
        )
        self.bus.set_receive_handler(subscriber_idx, self.dispatcher.receive_handler)

    def open_http(self) -> None:
        if self.config.grid_losses.http:
            self.http = DiagnosticsServer(create_app(self), self.config.grid_losses.http)

    def run(self) -> Optional[BaseException]:
        """Block in the bus loop; returns the error that stopped it, if any."""
        logger.info("Started")
        cause = self.bus.waiting_loop()
        if cause is not None:
            logger.error(f"Stopped: {cause}")
        else:
            logger.info("Stopped")
        return cause

    def stop(self) -> None:
        if self.bus is not None:
            self.bus.stop()

    def shutdown(self, timeout: float = 5.0) -> None:
        if self.dispatcher is not None:
            self.dispatcher.stop(timeout=timeout)
            self.dispatcher.join(timeout=timeout)
        if self.http is not None:
            self.http.stop()
        if self.bus is None:
            return
        if self.dispatcher is not None and self.dispatcher.is_alive():
            # sockets may still be in use by a worker
            logger.warning("Dispatcher workers still running, bus left open")
            return
        self.bus.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Grid losses service")
    parser.add_argument("--conf", default="grid_losses.yml", help="path to yml configuration file")
    parser.add_argument("--cache", action="store_true", help="load profile from the local cache")
    parser.add_argument("--env", action="store_true",
                        help="show a list of configuration parameters loaded from the environment")
    return parser


def main(argv: Optional[List[str]] = None, bus_factory: Callable[..., ZmqBus] = ZmqBus) -> int:
    args = build_parser().parse_args(argv)

    if args.env:
        for name in Configuration.list_env():
            print(name)
        return 0

    setup_logging()

    try:
        config = Configuration.load_from_file(args.conf)
    except ConfigError as e:
        logger.critical(f"Failed to read configuration ({args.conf}): {e}")
        return 1

    configure_level(config.grid_losses.log)

    service = GridLossService(config, use_cache_only=args.cache, bus_factory=bus_factory)
    try:
        service.start()
    except GridLossError:
        service.shutdown()
        return 1

    if threading.current_thread() is threading.main_thread():
        for signum in (signal.SIGINT, signal.SIGTERM):
            signal.signal(signum, lambda *_: service.stop())

    cause = service.run()
    service.shutdown()
    return 1 if cause is not None else 0


def main_entry() -> None:
    sys.exit(main())
