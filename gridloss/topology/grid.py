"""Switching topology graph and derived electrical state."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Dict, Iterable, List, Optional, Set, Tuple

import networkx as nx

from gridloss.errors import TopologyError
from gridloss.log import TRACE

logger = logging.getLogger(__name__)

SWITCH_OPEN = 0
SWITCH_CLOSED = 1


class ElectricalState(IntFlag):
    NONE = 0
    ENERGIZED = 1
    GROUNDED = 2
    ISOLATED = 4  # neither energized nor grounded


@dataclass(frozen=True)
class EquipmentState:
    """Runtime state of one equipment, replaced wholesale on every recompute."""
    electrical_state: ElectricalState = ElectricalState.ISOLATED
    energized_from: frozenset = field(default_factory=frozenset)
    grounded_from: frozenset = field(default_factory=frozenset)


class TopologyGrid:
    """
    Node/edge model of the grid.

    Nodes are connection points, edges are switchable equipment. Nodes whose
    equipment type is a power type act as feeders; ground types act as
    grounding points. Energization and grounding flow through closed edges.
    """

    def __init__(
        self,
        capacity: int,
        power_types: Iterable[int] = (1,),
        ground_types: Iterable[int] = (2,),
    ) -> None:
        self.capacity = capacity
        self.power_types = frozenset(power_types)
        self.ground_types = frozenset(ground_types)

        self.graph = nx.MultiGraph()
        self._edge_terminals: Dict[int, Tuple[int, int]] = {}
        self._edges_by_equipment: Dict[int, List[int]] = {}
        self._feeders: Dict[int, int] = {}  # node id -> feeder id
        self._grounds: Dict[int, int] = {}  # node id -> ground id
        self._equipment_state: Dict[int, EquipmentState] = {}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    def add_node(self, node_id: int, equipment_id: int = 0, equipment_type_id: int = 0,
                 equipment_name: str = "") -> None:
        if node_id in self.graph:
            raise TopologyError(f"duplicate node id {node_id}")
        if self.graph.number_of_nodes() >= self.capacity:
            raise TopologyError(f"node capacity {self.capacity} exceeded by node {node_id}")

        self.graph.add_node(
            node_id,
            equipment_id=equipment_id,
            equipment_type_id=equipment_type_id,
            equipment_name=equipment_name,
        )
        source_id = equipment_id or node_id
        if equipment_type_id in self.power_types:
            self._feeders[node_id] = source_id
        if equipment_type_id in self.ground_types:
            self._grounds[node_id] = source_id
        if equipment_id:
            self._equipment_state.setdefault(equipment_id, EquipmentState())

    def add_edge(self, edge_id: int, terminal1: int, terminal2: int, state_normal: int,
                 equipment_id: int = 0, equipment_type_id: int = 0, equipment_name: str = "") -> None:
        if edge_id in self._edge_terminals:
            raise TopologyError(f"duplicate edge id {edge_id}")
        for terminal in (terminal1, terminal2):
            if terminal not in self.graph:
                raise TopologyError(f"edge {edge_id}: unknown terminal {terminal}")
        if state_normal not in (SWITCH_OPEN, SWITCH_CLOSED):
            raise TopologyError(f"edge {edge_id}: invalid normal state {state_normal}")

        self.graph.add_edge(
            terminal1, terminal2, key=edge_id,
            state=state_normal,
            equipment_id=equipment_id,
            equipment_type_id=equipment_type_id,
            equipment_name=equipment_name,
        )
        self._edge_terminals[edge_id] = (terminal1, terminal2)
        if equipment_id:
            self._edges_by_equipment.setdefault(equipment_id, []).append(edge_id)
            self._equipment_state.setdefault(equipment_id, EquipmentState())

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def set_switch_state_by_equipment_id(self, equipment_id: int, state: int) -> None:
        """
        Set the switch state of every edge belonging to an equipment.

        Raises:
            TopologyError: If the state is not 0/1 or the equipment owns no edge
        """
        if state not in (SWITCH_OPEN, SWITCH_CLOSED):
            raise TopologyError(f"equipment {equipment_id}: invalid switch state {state}")
        edge_ids = self._edges_by_equipment.get(equipment_id)
        if not edge_ids:
            raise TopologyError(f"equipment {equipment_id} is not a switch in the topology")

        for edge_id in edge_ids:
            t1, t2 = self._edge_terminals[edge_id]
            self.graph.edges[t1, t2, edge_id]["state"] = state

    def set_equipment_electrical_state(self) -> List[int]:
        """
        Recompute energization and grounding for the whole graph.

        Returns:
            Equipment ids whose state differs from the previous recompute
        """
        closed = nx.Graph()
        closed.add_nodes_from(self.graph.nodes)
        closed.add_edges_from(
            (u, v) for u, v, data in self.graph.edges(data=True)
            if data["state"] == SWITCH_CLOSED
        )

        energized: Dict[int, frozenset] = {}
        grounded: Dict[int, frozenset] = {}
        for component in nx.connected_components(closed):
            feeders = frozenset(self._feeders[n] for n in component if n in self._feeders)
            grounds = frozenset(self._grounds[n] for n in component if n in self._grounds)
            for n in component:
                energized[n] = feeders
                grounded[n] = grounds

        sources: Dict[int, Tuple[Set[int], Set[int]]] = {}
        for node_id, data in self.graph.nodes(data=True):
            eq_id = data["equipment_id"]
            if eq_id:
                e, g = sources.setdefault(eq_id, (set(), set()))
                e.update(energized[node_id])
                g.update(grounded[node_id])
        for t1, t2, data in self.graph.edges(data=True):
            eq_id = data["equipment_id"]
            if eq_id:
                e, g = sources.setdefault(eq_id, (set(), set()))
                e.update(energized[t1] | energized[t2])
                g.update(grounded[t1] | grounded[t2])

        changed = []
        for eq_id, (e, g) in sources.items():
            new_state = EquipmentState(
                electrical_state=_flags(e, g),
                energized_from=frozenset(e),
                grounded_from=frozenset(g),
            )
            if self._equipment_state.get(eq_id) != new_state:
                changed.append(eq_id)
            self._equipment_state[eq_id] = new_state

        logger.log(TRACE, f"Electrical state recomputed, {len(changed)} equipment changed")
        return changed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def number_of_nodes(self) -> int:
        return self.graph.number_of_nodes()

    def number_of_edges(self) -> int:
        return self.graph.number_of_edges()

    def equipment_state(self, equipment_id: int) -> Optional[EquipmentState]:
        return self._equipment_state.get(equipment_id)

    def switch_state(self, equipment_id: int) -> Optional[int]:
        edge_ids = self._edges_by_equipment.get(equipment_id)
        if not edge_ids:
            return None
        t1, t2 = self._edge_terminals[edge_ids[0]]
        return self.graph.edges[t1, t2, edge_ids[0]]["state"]

    def feeders(self) -> List[int]:
        return sorted(set(self._feeders.values()))


def _flags(energized_from: Set[int], grounded_from: Set[int]) -> ElectricalState:
    state = ElectricalState.NONE
    if energized_from:
        state |= ElectricalState.ENERGIZED
    if grounded_from:
        state |= ElectricalState.GROUNDED
    if not state:
        state = ElectricalState.ISOLATED
    return state
