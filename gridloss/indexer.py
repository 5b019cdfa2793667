"""Lookup tables derived from the equipment profile."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

from gridloss.profiles import Equipment, ResourceType, TopologyProfile

logger = logging.getLogger(__name__)

# Points whose ingress the dispatcher acts upon
LIVE_RESOURCE_TYPES: FrozenSet[int] = frozenset({
    ResourceType.MEASURE,
    ResourceType.STATE,
})

# Wider set used when protection and interlock points are wanted as well
PROTECTION_RESOURCE_TYPES: FrozenSet[int] = frozenset({
    ResourceType.PROTECT,
    ResourceType.RECLOSING,
    ResourceType.STATE,
    ResourceType.STATE_LINE_SEGMENT,
    ResourceType.LINK,
})


@dataclass(frozen=True)
class ResourceRef:
    equipment_id: int
    resource_type_id: int


@dataclass
class ResourceIndex:
    """Read-only tables built once at startup."""
    equipment_by_id: Dict[int, Equipment] = field(default_factory=dict)
    point_name_by_id: Dict[int, str] = field(default_factory=dict)
    resource_by_point_id: Dict[int, ResourceRef] = field(default_factory=dict)
    point_by_equipment_and_type: Dict[int, Dict[int, int]] = field(default_factory=dict)
    equipment_ids_by_resource_type: Dict[int, List[int]] = field(default_factory=dict)
    number_of_cb_checking_link: int = 0

    def point_for(self, equipment_id: int, resource_type: int) -> Optional[int]:
        return self.point_by_equipment_and_type.get(equipment_id, {}).get(resource_type)


def subscription_types(include_protection: bool = False) -> FrozenSet[int]:
    return PROTECTION_RESOURCE_TYPES if include_protection else LIVE_RESOURCE_TYPES


def build_resource_index(
    equipment_by_id: Mapping[int, Equipment],
    include_protection: bool = False,
    emit_types: Iterable[int] = (),
) -> ResourceIndex:
    """
    Build the runtime lookup tables.

    Args:
        equipment_by_id: Parsed equipment keyed by id
        include_protection: Subscribe to protection/interlock points instead
            of measures
        emit_types: Resource types the service publishes to; their points are
            named and reverse-indexed but never ingested

    Returns:
        A new ResourceIndex; the input is not modified
    """
    subscribed = subscription_types(include_protection)
    emitted = frozenset(int(t) for t in emit_types) - subscribed
    index = ResourceIndex(equipment_by_id=dict(equipment_by_id))

    for equipment in index.equipment_by_id.values():
        for resource in equipment.resource:
            type_id = resource.type_id

            if type_id in subscribed or type_id in emitted:
                points = index.point_by_equipment_and_type.setdefault(equipment.id, {})
                previous = points.get(type_id)
                points[type_id] = resource.point_id
                index.point_name_by_id[resource.point_id] = resource.point
                if previous is not None and previous != resource.point_id:
                    _drop_superseded(index, previous, equipment.id, type_id)

            if type_id in subscribed:
                index.resource_by_point_id[resource.point_id] = ResourceRef(
                    equipment_id=equipment.id,
                    resource_type_id=type_id,
                )

            if type_id == ResourceType.LINK:
                index.number_of_cb_checking_link += 1

            index.equipment_ids_by_resource_type.setdefault(type_id, []).append(equipment.id)

    logger.info(
        f"Indexed {len(index.equipment_by_id)} equipment, "
        f"{len(index.resource_by_point_id)} subscribed points, "
        f"{index.number_of_cb_checking_link} CB link checks"
    )
    return index


def _drop_superseded(index: ResourceIndex, point_id: int, equipment_id: int, type_id: int) -> None:
    """Forget a point replaced by a later resource of the same equipment and type."""
    logger.warning(
        f"Equipment {equipment_id}: point {point_id} of resource type {type_id} superseded, ignored"
    )
    if index.resource_by_point_id.get(point_id) == ResourceRef(equipment_id, type_id):
        del index.resource_by_point_id[point_id]
    if not any(point_id in points.values() for points in index.point_by_equipment_and_type.values()):
        index.point_name_by_id.pop(point_id, None)


def check_equipment_references(
    topology: TopologyProfile,
    equipment_by_id: Mapping[int, Equipment],
) -> List[int]:
    """Return (and log) topology equipment ids missing from the equipment profile."""
    missing = [eq_id for eq_id in topology.equipment_ids() if eq_id not in equipment_by_id]
    for eq_id in missing:
        logger.warning(f"Equipment {eq_id} referenced by topology is not in the equipment profile")
    return missing
