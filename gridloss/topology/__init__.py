"""Topology graph engine."""

from gridloss.topology.builder import build_topology_grid
from gridloss.topology.grid import ElectricalState, EquipmentState, TopologyGrid

__all__ = ['build_topology_grid', 'ElectricalState', 'EquipmentState', 'TopologyGrid']
