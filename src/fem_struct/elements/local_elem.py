"""
Local element coordinate systems.

Beams and shells compute their contributions in a local frame attached to
the element; solids use the global frame directly. ``T`` is the 3×3
rotation whose columns are the local axes in global coordinates, so that a
nodal 3-vector transforms as ``v_global = T @ v_local``.

The element-level block transformation repeats ``T`` on the diagonal once
per node for the translations and once for the rotations::

    T_b = kron(I_(2n), T)      v_global = T_b @ v_local
"""

import numpy as np


class LocalElemBase:
    """Local frame of one element.

    Parameters
    ----------
    node_coords : np.ndarray
        Global nodal coordinates (n_nodes × 3)

    Attributes
    ----------
    T : np.ndarray
        3×3 rotation, columns are the local axes.
    origin : np.ndarray
        Global location of the local origin.
    local_coords : np.ndarray
        Nodal coordinates in the local frame (n_nodes × 3)
    """

    is_identity = False

    def __init__(self, node_coords: np.ndarray):
        self.node_coords = np.asarray(node_coords, dtype=float)
        self.origin, self.T = self._compute_frame()
        self.local_coords = (self.node_coords - self.origin) @ self.T
        self.n_nodes = len(self.node_coords)

    def _compute_frame(self):
        raise NotImplementedError

    def global_coordinates_location(self, local_point: np.ndarray) -> np.ndarray:
        """Global position of a point given in local coordinates."""
        return self.origin + self.T @ np.asarray(local_point)

    def block_transformation(self) -> np.ndarray:
        """6n × 6n block transformation ``T_b`` (local to global)."""
        return np.kron(np.eye(2 * self.n_nodes), self.T)

    def to_local(self, vec: np.ndarray) -> np.ndarray:
        """``T_bᵀ @ vec`` for a global element vector of length 6n."""
        return (np.asarray(vec).reshape(-1, 3) @ self.T).reshape(-1)

    def to_global(self, vec: np.ndarray) -> np.ndarray:
        """``T_b @ vec`` for a local element vector of length 6n."""
        return (np.asarray(vec).reshape(-1, 3) @ self.T.T).reshape(-1)

    def matrix_to_global(self, mat: np.ndarray) -> np.ndarray:
        """Similarity transform ``T_b @ mat @ T_bᵀ``."""
        m = 2 * self.n_nodes
        blocks = np.asarray(mat).reshape(m, 3, m, 3)
        out = np.einsum("ik,akbl,jl->aibj", self.T, blocks, self.T)
        return out.reshape(3 * m, 3 * m)

    def matrix_to_local(self, mat: np.ndarray) -> np.ndarray:
        """Inverse similarity transform ``T_bᵀ @ mat @ T_b``."""
        m = 2 * self.n_nodes
        blocks = np.asarray(mat).reshape(m, 3, m, 3)
        out = np.einsum("ki,akbl,lj->aibj", self.T, blocks, self.T)
        return out.reshape(3 * m, 3 * m)

    def __repr__(self):
        return f"<{type(self).__name__} nodes={self.n_nodes}>"


class Local1DElem(LocalElemBase):
    """Beam frame: x along node 0 → node 1, y fixed by a reference vector.

    Parameters
    ----------
    node_coords : np.ndarray
        Global nodal coordinates (n_nodes × 3)
    y_vector : np.ndarray
        Global direction lying in the local x-y plane.
    """

    def __init__(self, node_coords: np.ndarray, y_vector: np.ndarray):
        self.y_vector = np.asarray(y_vector, dtype=float)
        super().__init__(node_coords)

    def _compute_frame(self):
        nodes = self.node_coords
        x_axis = nodes[1] - nodes[0]
        length = np.linalg.norm(x_axis)
        if length == 0.0:
            raise ValueError("Beam element has zero length")
        x_axis = x_axis / length

        z_axis = np.cross(x_axis, self.y_vector)
        if np.linalg.norm(z_axis) < 1e-12 * np.linalg.norm(self.y_vector):
            raise ValueError(f"y_vector {self.y_vector} is parallel to the beam axis")
        z_axis = z_axis / np.linalg.norm(z_axis)
        y_axis = np.cross(z_axis, x_axis)

        return nodes[0].copy(), np.column_stack([x_axis, y_axis, z_axis])


class Local2DElem(LocalElemBase):
    """Shell frame: x along the first edge, z normal to the element plane.

    The normal is taken from the cross product of the diagonals so that
    slightly warped quadrilaterals get an averaged plane.
    """

    def _compute_frame(self):
        nodes = self.node_coords
        x_axis = nodes[1] - nodes[0]

        if len(nodes) >= 4:
            z_axis = np.cross(nodes[2] - nodes[0], nodes[3] - nodes[1])
        else:
            z_axis = np.cross(nodes[1] - nodes[0], nodes[2] - nodes[0])
        z_axis = z_axis / np.linalg.norm(z_axis)

        x_axis = x_axis - np.dot(x_axis, z_axis) * z_axis
        x_axis = x_axis / np.linalg.norm(x_axis)
        y_axis = np.cross(z_axis, x_axis)

        return nodes[0].copy(), np.column_stack([x_axis, y_axis, z_axis])


class Local3DElem(LocalElemBase):
    """Solid frame, identical to the global frame.

    All transforms return their argument unchanged.
    """

    is_identity = True

    def _compute_frame(self):
        return np.zeros(3), np.eye(3)

    def global_coordinates_location(self, local_point):
        return np.asarray(local_point)

    def to_local(self, vec):
        return vec

    def to_global(self, vec):
        return vec

    def matrix_to_global(self, mat):
        return mat

    def matrix_to_local(self, mat):
        return mat
