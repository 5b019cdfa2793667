"""Construction of topology graphs from the topology profile."""

from __future__ import annotations

import logging
from typing import Iterable

from gridloss.profiles import TopologyProfile
from gridloss.topology.grid import TopologyGrid

logger = logging.getLogger(__name__)


def build_topology_grid(
    profile: TopologyProfile,
    power_types: Iterable[int] = (1,),
    ground_types: Iterable[int] = (2,),
) -> TopologyGrid:
    """
    Build one graph sized to the profile: nodes first, then edges.

    Raises:
        TopologyError: If a node or edge cannot be added
    """
    grid = TopologyGrid(len(profile.nodes), power_types=power_types, ground_types=ground_types)

    for node in profile.nodes:
        grid.add_node(node.id, node.equipment_id, node.equipment_type_id, node.equipment_name)

    for edge in profile.edges:
        grid.add_edge(
            edge.id, edge.terminal1, edge.terminal2, edge.state_normal,
            edge.equipment_id, edge.equipment_type_id, edge.equipment_name,
        )

    logger.debug(f"Topology graph built: {grid.number_of_nodes()} nodes, {grid.number_of_edges()} edges")
    return grid
