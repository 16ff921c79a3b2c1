"""
Mesh entities consumed by the assembly.

Mesh generation and partitioning happen elsewhere; this module only holds the
data the element loop needs:

- Node: a point in 3D space
- MeshElement: node connectivity, dimension tag, subdomain id and the
  boundary ids attached to each element side
- MeshModel: the node and element containers
"""

from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np


class ElementType(Enum):
    """Supported reference cells as ``(name, dimension, node count)``."""

    EDGE2 = ("edge2", 1, 2)
    QUAD4 = ("quad4", 2, 4)
    HEXA8 = ("hexa8", 3, 8)

    @property
    def dim(self) -> int:
        return self.value[1]

    @property
    def node_count(self) -> int:
        return self.value[2]


ELEMENT_NODES_MAP = {
    (1, 2): ElementType.EDGE2,
    (2, 4): ElementType.QUAD4,
    (3, 8): ElementType.HEXA8,
}


class Node:
    """
    Represents a node with 3D coordinates.

    If fewer than 3 coordinates are provided, zeros are appended. Nodes
    built without an id are numbered after the largest id seen so far.

    Attributes
    ----------
    coords : np.ndarray
        Array of coordinates in the form [x, y, z].
    id : int
        Unique identifier for the node.
    """

    _id_counter = 0

    def __init__(self, coords: Union[Iterable[float], np.ndarray], id: Optional[int] = None):
        coords_arr = np.array(coords, dtype=float)
        if coords_arr.size < 3:
            coords_arr = np.concatenate((coords_arr, np.zeros(3 - coords_arr.size)))
        self.coords = coords_arr
        if id is None:
            id = Node._id_counter
        Node._id_counter = max(Node._id_counter, id + 1)
        self.id = id

    def __repr__(self):
        return f"<Node id={self.id} coords={self.coords.tolist()}>"


class MeshElement:
    """
    Mesh element defined by node connectivity.

    Attributes
    ----------
    nodes : Sequence[Node]
        Element nodes, ordered as the reference cell expects.
    element_type : ElementType
        Reference cell of the element.
    subdomain_id : int
        Identifier of the region the element belongs to; selects the
        property card and the volume loads.
    side_boundary_ids : Dict[int, Tuple[int, ...]]
        Boundary ids attached to each element side. Sides without ids are absent.
    """

    _id_counter = 0

    def __init__(
        self,
        nodes: Sequence[Node],
        element_type: Optional[ElementType] = None,
        subdomain_id: int = 0,
        side_boundary_ids: Optional[Dict[int, Iterable[int]]] = None,
        id: Optional[int] = None,
        dim: Optional[int] = None,
    ):
        self.nodes = list(nodes)
        if element_type is None and dim is not None:
            element_type = ELEMENT_NODES_MAP.get((dim, len(self.nodes)))
        self.element_type = element_type
        self._dim = dim if dim is not None else (element_type.dim if element_type else None)
        self.subdomain_id = subdomain_id
        self.side_boundary_ids: Dict[int, Tuple[int, ...]] = {
            side: tuple(ids) for side, ids in (side_boundary_ids or {}).items() if ids
        }
        if id is None:
            id = MeshElement._id_counter
        MeshElement._id_counter = max(MeshElement._id_counter, id + 1)
        self.id = id

    @property
    def dim(self) -> Optional[int]:
        return self._dim

    @property
    def node_ids(self) -> Tuple[int, ...]:
        return tuple(node.id for node in self.nodes)

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def node_coords(self) -> np.ndarray:
        return np.array([node.coords for node in self.nodes])

    def boundary_ids(self, side: int) -> Tuple[int, ...]:
        return self.side_boundary_ids.get(side, ())

    def add_boundary_id(self, side: int, boundary_id: int) -> None:
        ids = self.side_boundary_ids.get(side, ())
        if boundary_id not in ids:
            self.side_boundary_ids[side] = ids + (boundary_id,)

    def __repr__(self):
        name = self.element_type.name if self.element_type else f"dim{self.dim}"
        return f"<MeshElement id={self.id} type={name} subdomain={self.subdomain_id}>"


class MeshModel:
    """Container of nodes and elements with id based lookup."""

    def __init__(self, nodes: Optional[List[Node]] = None, elements: Optional[List[MeshElement]] = None):
        self.node_map: Dict[int, Node] = {}
        self.element_map: Dict[int, MeshElement] = {}
        for node in nodes or []:
            self.add_node(node)
        for element in elements or []:
            self.add_element(element)

    @property
    def nodes(self) -> List[Node]:
        return list(self.node_map.values())

    @property
    def elements(self) -> List[MeshElement]:
        return list(self.element_map.values())

    @property
    def node_count(self) -> int:
        return len(self.node_map)

    @property
    def element_count(self) -> int:
        return len(self.element_map)

    def add_node(self, node: Node) -> Node:
        if node.id in self.node_map:
            raise ValueError(f"Node with id {node.id} already exists")
        self.node_map[node.id] = node
        return node

    def add_element(self, element: MeshElement) -> MeshElement:
        if element.id in self.element_map:
            raise ValueError(f"Element with id {element.id} already exists")
        for node in element.nodes:
            if node.id not in self.node_map:
                self.add_node(node)
        self.element_map[element.id] = element
        return element

    def get_element(self, element_id: int) -> MeshElement:
        if element_id not in self.element_map:
            raise ValueError(f"Element {element_id} not found")
        return self.element_map[element_id]

    def __repr__(self):
        return f"<MeshModel nodes={self.node_count} elements={self.element_count}>"
