from typing import Dict, Tuple

import numpy as np

from fem_struct.core.mesh import MeshElement, MeshModel

DOFS_PER_NODE = 6
DOF_NAMES = ("ux", "uy", "uz", "θx", "θy", "θz")


class DofMap:
    """
    Node-interleaved DOF numbering with 6 DOFs per node.

    Global index of component ``k`` of the ``i``-th mesh node is ``6*i + k``,
    where ``i`` is the position of the node in ``MeshModel.node_map``
    (insertion order, not sorted by id), so node ids need neither be
    contiguous nor ascending.

    Parameters
    ----------
    mesh : MeshModel
        Mesh whose nodes are numbered.
    """

    def __init__(self, mesh: MeshModel):
        self.dofs_per_node = DOFS_PER_NODE
        self._node_index: Dict[int, int] = {
            node_id: i for i, node_id in enumerate(mesh.node_map)
        }
        self.n_dofs = len(self._node_index) * self.dofs_per_node

    def node_dofs(self, node_id: int) -> Tuple[int, ...]:
        start = self._node_index[node_id] * self.dofs_per_node
        return tuple(range(start, start + self.dofs_per_node))

    def element_dofs(self, element: MeshElement) -> np.ndarray:
        """Global DOF indices of an element, in element node order."""
        return np.array(
            [dof for node_id in element.node_ids for dof in self.node_dofs(node_id)],
            dtype=np.int64,
        )
