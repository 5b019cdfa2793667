"""Topology and equipment profile documents."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Union

from gridloss.errors import ProfileParseError


class ResourceType(IntEnum):
    """Resource discriminators used by the configuration API."""
    NOT_DEFINED = 0
    MEASURE = 1
    STATE = 2
    CONTROL = 3
    PROTECT = 4
    LINK = 5
    CHANGE_SET_GROUP = 6
    RECLOSING = 7
    STATE_LINE_SEGMENT = 8


@dataclass
class TopologyNode:
    id: int
    equipment_id: int = 0
    equipment_type_id: int = 0
    equipment_name: str = ""
    equipment_voltage_class_id: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return _omit_empty({
            "id": self.id,
            "equipment_id": self.equipment_id,
            "equipment_type_id": self.equipment_type_id,
            "equipment_name": self.equipment_name,
            "equipment_voltage_class_id": self.equipment_voltage_class_id,
        }, keep=("id",))


@dataclass
class TopologyEdge:
    id: int
    terminal1: int
    terminal2: int
    state_normal: int = 0  # 0 normally open, 1 normally closed
    equipment_id: int = 0
    equipment_type_id: int = 0
    equipment_type: str = ""
    equipment_name: str = ""
    equipment_voltage_class_id: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return _omit_empty({
            "id": self.id,
            "terminal1": self.terminal1,
            "terminal2": self.terminal2,
            "state_normal": self.state_normal,
            "equipment_id": self.equipment_id,
            "equipment_type_id": self.equipment_type_id,
            "equipment_type": self.equipment_type,
            "equipment_name": self.equipment_name,
            "equipment_voltage_class_id": self.equipment_voltage_class_id,
        }, keep=("id", "terminal1", "terminal2", "state_normal"))


@dataclass
class TopologyProfile:
    nodes: List[TopologyNode] = field(default_factory=list)
    edges: List[TopologyEdge] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": [n.to_dict() for n in self.nodes],
            "edge": [e.to_dict() for e in self.edges],
        }

    def equipment_ids(self) -> List[int]:
        """Equipment ids referenced by nodes and edges, in document order."""
        seen: Dict[int, None] = {}
        for item in list(self.nodes) + list(self.edges):
            if item.equipment_id:
                seen.setdefault(item.equipment_id, None)
        return list(seen)


@dataclass
class Resource:
    id: int
    point: str = ""
    point_id: int = 0
    point_type_id: int = 0
    type: str = ""
    type_id: int = ResourceType.NOT_DEFINED


@dataclass
class Equipment:
    id: int
    name: str = ""
    type_id: int = 0
    voltage_class_id: int = 0
    equipment_type: str = ""
    equipment_voltage_class: str = ""
    resource: List[Resource] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type_id": self.type_id,
            "voltage_class_id": self.voltage_class_id,
            "equipment_type": self.equipment_type,
            "equipment_voltage_class": self.equipment_voltage_class,
            "resource": [
                {
                    "id": r.id,
                    "point": r.point,
                    "point_id": r.point_id,
                    "point_type_id": r.point_type_id,
                    "type": r.type,
                    "type_id": r.type_id,
                }
                for r in self.resource
            ],
        }


def parse_topology_data(data: Union[bytes, str]) -> TopologyProfile:
    """
    Decode a topology document.

    Raises:
        ProfileParseError: If the document is not valid JSON or is missing ids
    """
    doc = _decode(data, "topology")
    if not isinstance(doc, dict):
        raise ProfileParseError("topology document must be a JSON object")

    try:
        nodes = [
            TopologyNode(
                id=int(item["id"]),
                equipment_id=int(item.get("equipment_id") or 0),
                equipment_type_id=int(item.get("equipment_type_id") or 0),
                equipment_name=item.get("equipment_name") or "",
                equipment_voltage_class_id=int(item.get("equipment_voltage_class_id") or 0),
            )
            for item in doc.get("node") or []
        ]
        edges = [
            TopologyEdge(
                id=int(item["id"]),
                terminal1=int(item.get("terminal1") or 0),
                terminal2=int(item.get("terminal2") or 0),
                state_normal=int(item.get("state_normal") or 0),
                equipment_id=int(item.get("equipment_id") or 0),
                equipment_type_id=int(item.get("equipment_type_id") or 0),
                equipment_type=item.get("equipment_type") or "",
                equipment_name=item.get("equipment_name") or "",
                equipment_voltage_class_id=int(item.get("equipment_voltage_class_id") or 0),
            )
            for item in doc.get("edge") or []
        ]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ProfileParseError(f"invalid topology document: {e!r}") from e

    return TopologyProfile(nodes=nodes, edges=edges)


def parse_equipment_data(data: Union[bytes, str]) -> List[Equipment]:
    """
    Decode an equipment document (a JSON array of equipment).

    Raises:
        ProfileParseError: If the document is not valid JSON or has the wrong shape
    """
    doc = _decode(data, "equipment")
    if not isinstance(doc, list):
        raise ProfileParseError("equipment document must be a JSON array")

    equipments = []
    try:
        for item in doc:
            resources = [
                Resource(
                    id=int(r.get("id") or 0),
                    point=r.get("point") or "",
                    point_id=int(r.get("point_id") or 0),
                    point_type_id=int(r.get("point_type_id") or 0),
                    type=r.get("type") or "",
                    type_id=int(r.get("type_id") or 0),
                )
                for r in item.get("resource") or []
            ]
            equipments.append(Equipment(
                id=int(item["id"]),
                name=item.get("name") or "",
                type_id=int(item.get("type_id") or 0),
                voltage_class_id=int(item.get("voltage_class_id") or 0),
                equipment_type=item.get("equipment_type") or "",
                equipment_voltage_class=item.get("equipment_voltage_class") or "",
                resource=resources,
            ))
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ProfileParseError(f"invalid equipment document: {e!r}") from e

    return equipments


def _decode(data: Union[bytes, str], kind: str) -> Any:
    try:
        return json.loads(data)
    except ValueError as e:
        raise ProfileParseError(f"cannot decode {kind} document: {e}") from e


def _omit_empty(d: Dict[str, Any], keep: tuple) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if k in keep or v not in (0, "", None)}
