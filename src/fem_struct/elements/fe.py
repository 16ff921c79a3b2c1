"""
Reference cells, Gauss quadrature and finite element values.

Supported reference cells (natural coordinates in [-1, 1]):

- EDGE2: 2-node line
- QUAD4: 4-node bilinear quadrilateral
- HEXA8: 8-node trilinear hexahedron

Values are always computed on the element's *local* nodal coordinates
(see :mod:`fem_struct.elements.local_elem`), so derivatives of 1D and 2D
elements are taken along the local in-plane axes.

Nodal DOFs are interleaved, 6 per node: ``[ux, uy, uz, θx, θy, θz]``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from fem_struct.core.mesh import ElementType

DOFS_PER_NODE = 6


def gauss_points(n_points: int, dim: int) -> Tuple[np.ndarray, np.ndarray]:
    """Tensor-product Gauss-Legendre rule on [-1, 1]^dim.

    Returns
    -------
    points : np.ndarray
        Natural coordinates (n_points**dim × dim), first coordinate fastest.
    weights : np.ndarray
        Integration weights (n_points**dim,)
    """
    if dim == 0:
        return np.zeros((1, 0)), np.ones(1)
    x, w = np.polynomial.legendre.leggauss(n_points)
    grids = np.meshgrid(*([x] * dim), indexing="ij")
    wgrids = np.meshgrid(*([w] * dim), indexing="ij")
    points = np.column_stack([g.ravel(order="F") for g in grids])
    weights = np.prod(np.column_stack([g.ravel(order="F") for g in wgrids]), axis=1)
    return points, weights


class ReferenceCell(ABC):
    """Isoparametric reference cell.

    Subclasses define the shape functions, their natural derivatives and the
    sides, each side being the set of points where one natural coordinate is
    fixed at -1 or +1.
    """

    dim: int
    n_nodes: int
    #: per side: (fixed natural axis, fixed value, local node indices)
    sides: List[Tuple[int, float, Tuple[int, ...]]]

    @abstractmethod
    def shape(self, xi: np.ndarray) -> np.ndarray:
        """Shape function values (n_nodes,)"""

    @abstractmethod
    def dshape(self, xi: np.ndarray) -> np.ndarray:
        """Natural derivatives (dim × n_nodes)"""

    @property
    def n_sides(self) -> int:
        return len(self.sides)

    def quadrature(self, order: int) -> Tuple[np.ndarray, np.ndarray]:
        return gauss_points(order, self.dim)

    def side_quadrature(self, side: int, order: int) -> Tuple[np.ndarray, np.ndarray]:
        """Side Gauss points mapped to parent natural coordinates."""
        axis, value, _ = self.sides[side]
        free_points, weights = gauss_points(order, self.dim - 1)
        points = np.empty((len(weights), self.dim))
        points[:, axis] = value
        free_axes = [a for a in range(self.dim) if a != axis]
        for col, a in enumerate(free_axes):
            points[:, a] = free_points[:, col]
        return points, weights


class Edge2(ReferenceCell):
    dim = 1
    n_nodes = 2
    sides = [(0, -1.0, (0,)), (0, 1.0, (1,))]

    def shape(self, xi):
        r = xi[0]
        return 0.5 * np.array([1 - r, 1 + r])

    def dshape(self, xi):
        return np.array([[-0.5, 0.5]])


class Quad4(ReferenceCell):
    """Bilinear quadrilateral.

    Node ordering::

        3 --------- 2
        |           |
        |  (0,0)    |
        |           |
        0 --------- 1
    """

    dim = 2
    n_nodes = 4
    sides = [
        (1, -1.0, (0, 1)),
        (0, 1.0, (1, 2)),
        (1, 1.0, (2, 3)),
        (0, -1.0, (3, 0)),
    ]

    def shape(self, xi):
        r, s = xi
        return 0.25 * np.array([(1 - r) * (1 - s), (1 + r) * (1 - s), (1 + r) * (1 + s), (1 - r) * (1 + s)])

    def dshape(self, xi):
        r, s = xi
        return 0.25 * np.array(
            [
                [-(1 - s), (1 - s), (1 + s), -(1 + s)],
                [-(1 - r), -(1 + r), (1 + r), (1 - r)],
            ]
        )


class Hexa8(ReferenceCell):
    """8-node linear hexahedron (brick) element.

    Node ordering::

            7-------6
           /|      /|
          / |     / |
         4-------5  |
         |  3----|--2
         | /     | /
         |/      |/
         0-------1
    """

    dim = 3
    n_nodes = 8
    sides = [
        (2, -1.0, (0, 1, 2, 3)),
        (1, -1.0, (0, 1, 5, 4)),
        (0, 1.0, (1, 2, 6, 5)),
        (1, 1.0, (2, 3, 7, 6)),
        (0, -1.0, (3, 0, 4, 7)),
        (2, 1.0, (4, 5, 6, 7)),
    ]

    _signs = np.array(
        [
            [-1, -1, -1],
            [1, -1, -1],
            [1, 1, -1],
            [-1, 1, -1],
            [-1, -1, 1],
            [1, -1, 1],
            [1, 1, 1],
            [-1, 1, 1],
        ],
        dtype=float,
    )

    def shape(self, xi):
        return 0.125 * np.prod(1 + self._signs * np.asarray(xi), axis=1)

    def dshape(self, xi):
        factors = 1 + self._signs * np.asarray(xi)
        d = np.empty((3, 8))
        for a in range(3):
            others = [b for b in range(3) if b != a]
            d[a] = 0.125 * self._signs[:, a] * factors[:, others[0]] * factors[:, others[1]]
        return d


REFERENCE_CELLS = {
    ElementType.EDGE2: Edge2(),
    ElementType.QUAD4: Quad4(),
    ElementType.HEXA8: Hexa8(),
}


@dataclass
class FEValues:
    """Finite element data at a set of quadrature points.

    Attributes
    ----------
    phi : np.ndarray
        Shape function values (n_qp × n_nodes)
    dphi : np.ndarray
        Shape function derivatives along the local axes (n_qp × n_nodes × dim)
    JxW : np.ndarray
        Quadrature weight times Jacobian determinant (n_qp,)
    xyz : np.ndarray
        Quadrature point locations in the local frame (n_qp × 3)
    normals : np.ndarray or None
        Outward unit normals in the local frame, side values only (n_qp × 3)
    """

    phi: np.ndarray
    dphi: np.ndarray
    JxW: np.ndarray
    xyz: np.ndarray
    normals: Optional[np.ndarray] = None

    @property
    def n_qp(self) -> int:
        return len(self.JxW)


def _point_values(cell: ReferenceCell, xi: np.ndarray, coords: np.ndarray):
    N = cell.shape(xi)
    dN = cell.dshape(xi)
    tangents = dN @ coords  # dim × 3, rows are dx/dξ_a
    J = tangents[:, : cell.dim]
    detJ = np.linalg.det(J)
    if detJ <= 1e-14:
        raise ValueError(f"Non-positive Jacobian determinant at {tuple(xi)}: {detJ}")
    dphi = np.linalg.solve(J, dN).T
    return N, dphi, detJ, tangents


def volume_values(cell: ReferenceCell, coords: np.ndarray, order: int) -> FEValues:
    """FE values at the interior Gauss points of an element."""
    points, weights = cell.quadrature(order)
    phi, dphi, JxW, xyz = [], [], [], []
    for xi, w in zip(points, weights):
        N, dN, detJ, _ = _point_values(cell, xi, coords)
        phi.append(N)
        dphi.append(dN)
        JxW.append(detJ * w)
        xyz.append(N @ coords)
    return FEValues(np.array(phi), np.array(dphi), np.array(JxW), np.array(xyz))


def side_values(cell: ReferenceCell, coords: np.ndarray, side: int, order: int) -> FEValues:
    """FE values on one side, with outward normals.

    The outward direction at a side point is the parent tangent across the
    side (``±dx/dξ_fixed``) made orthogonal to the side tangents.
    """
    axis, value, _ = cell.sides[side]
    points, weights = cell.side_quadrature(side, order)
    phi, dphi, JxW, xyz, normals = [], [], [], [], []
    for xi, w in zip(points, weights):
        N, dN, _, tangents = _point_values(cell, xi, coords)
        normal, measure = _side_normal(tangents, axis, value)
        phi.append(N)
        dphi.append(dN)
        JxW.append(measure * w)
        xyz.append(N @ coords)
        normals.append(normal)
    return FEValues(np.array(phi), np.array(dphi), np.array(JxW), np.array(xyz), np.array(normals))


def _side_normal(tangents: np.ndarray, axis: int, value: float) -> Tuple[np.ndarray, float]:
    across = np.sign(value) * tangents[axis]
    along = np.delete(tangents, axis, axis=0)
    if len(along) == 0:
        measure = 1.0
        normal = across
    elif len(along) == 1:
        t = along[0]
        measure = np.linalg.norm(t)
        t_hat = t / measure
        normal = across - np.dot(across, t_hat) * t_hat
    else:
        normal = np.cross(along[0], along[1])
        measure = np.linalg.norm(normal)
        if np.dot(normal, across) < 0:
            normal = -normal
    return normal / np.linalg.norm(normal), measure


def _carried_normal(tangent: np.ndarray) -> np.ndarray:
    """``-y`` rotated by the smallest rotation taking ``x`` onto ``tangent``."""
    t_hat = tangent / np.linalg.norm(tangent)
    axis = np.cross([1.0, 0.0, 0.0], t_hat)
    c = t_hat[0]
    if 1.0 + c <= 1e-12:
        raise ValueError("Element axis reversed by the deformation")
    K = np.array([[0.0, -axis[2], axis[1]], [axis[2], 0.0, -axis[0]], [-axis[1], axis[0], 0.0]])
    R = np.eye(3) + K + K @ K / (1.0 + c)
    return R @ np.array([0.0, -1.0, 0.0])


def current_surface_values(cell: ReferenceCell, coords: np.ndarray, side: Optional[int], order: int) -> FEValues:
    """Loaded-surface values on arbitrary (deformed) nodal positions.

    Measures and normals come from the full 3D tangents, so the surface may
    leave the local reference plane. With ``side=None`` the element itself
    is the surface: the normal is ``-(t_ξ × t_η)`` for 2D cells and the
    local ``-y`` carried along with the axis for 1D cells. ``dphi`` is not
    computed.
    """
    if side is None:
        if cell.dim == 3:
            raise ValueError("Whole-element pressure applies to 1D and 2D elements only")
        points, weights = cell.quadrature(order)
    else:
        axis, value, _ = cell.sides[side]
        points, weights = cell.side_quadrature(side, order)

    phi, JxW, xyz, normals = [], [], [], []
    for xi, w in zip(points, weights):
        N = cell.shape(xi)
        tangents = cell.dshape(xi) @ coords
        if side is not None:
            normal, measure = _side_normal(tangents, axis, value)
        elif cell.dim == 2:
            normal = -np.cross(tangents[0], tangents[1])
            measure = np.linalg.norm(normal)
            normal = normal / measure
        else:
            measure = np.linalg.norm(tangents[0])
            normal = _carried_normal(tangents[0])
        phi.append(N)
        JxW.append(measure * w)
        xyz.append(N @ coords)
        normals.append(normal)
    n_nodes = len(coords)
    return FEValues(
        np.array(phi), np.zeros((len(phi), n_nodes, cell.dim)), np.array(JxW), np.array(xyz), np.array(normals)
    )


def shape_operator(phi: np.ndarray, n_rows: int = DOFS_PER_NODE) -> np.ndarray:
    """Operator mapping nodal DOFs to the first ``n_rows`` field components.

    ``(N @ q)[k] = Σ_i phi[i] * q[6 i + k]``

    Returns
    -------
    np.ndarray
        n_rows × 6·n_nodes matrix
    """
    n = len(phi)
    N = np.zeros((n_rows, DOFS_PER_NODE * n))
    for k in range(n_rows):
        N[k, k::DOFS_PER_NODE] = phi
    return N


def dof_row(values: np.ndarray, component: int) -> np.ndarray:
    """Row vector applying nodal ``values`` to one DOF component."""
    row = np.zeros(DOFS_PER_NODE * len(values))
    row[component::DOFS_PER_NODE] = values
    return row
