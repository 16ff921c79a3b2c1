"""8-node hexahedron for 3D linear elasticity.

Only the translational DOFs carry stiffness; the rotational DOFs of the
6-DOF node layout are left without stiffness and mass, and are expected to
be constrained by the caller on solid-only regions.

Strain vector (Voigt notation)::

    ε = [εxx, εyy, εzz, γxy, γyz, γzx]ᵀ
"""

from typing import Callable, List

import numpy as np

from fem_struct.core.mesh import ElementType
from fem_struct.core.properties import SectionStiffness, SolidPropertyCard
from fem_struct.elements.elements import ElementFamily, ElementStrategy
from fem_struct.elements.fe import DOFS_PER_NODE
from fem_struct.elements.local_elem import Local3DElem
from fem_struct.elements.strain import StrainTerm


def strain_displacement_matrix(dN: np.ndarray) -> np.ndarray:
    """B matrix (6 × 6n) from the global shape function derivatives (n × 3).

    The B matrix relates nodal displacements to strains:
        B = | ∂N/∂x    0       0    |
            |   0    ∂N/∂y     0    |
            |   0      0     ∂N/∂z  |
            | ∂N/∂y  ∂N/∂x     0    |
            |   0    ∂N/∂z  ∂N/∂y   |
            | ∂N/∂z    0    ∂N/∂x   |
    """
    n_nodes = len(dN)
    B = np.zeros((6, DOFS_PER_NODE * n_nodes))
    for i in range(n_nodes):
        col = DOFS_PER_NODE * i
        dN_dx, dN_dy, dN_dz = dN[i]
        B[0, col] = dN_dx
        B[1, col + 1] = dN_dy
        B[2, col + 2] = dN_dz
        B[3, col] = dN_dy
        B[3, col + 1] = dN_dx
        B[4, col + 1] = dN_dz
        B[4, col + 2] = dN_dy
        B[5, col] = dN_dz
        B[5, col + 2] = dN_dx
    return B


class SolidStrategy(ElementStrategy):
    family = ElementFamily.SOLID
    element_type = ElementType.HEXA8
    card_type = SolidPropertyCard

    @classmethod
    def make_local_elem(cls, node_coords: np.ndarray, card: SolidPropertyCard) -> Local3DElem:
        return Local3DElem(node_coords)

    def strain_terms(self, section_at: Callable[[np.ndarray], SectionStiffness]) -> List[StrainTerm]:
        fe = self.volume_fe
        terms = []
        for qp in range(fe.n_qp):
            section = section_at(fe.xyz[qp])
            terms.append(
                StrainTerm(
                    B=strain_displacement_matrix(fe.dphi[qp]),
                    D=section.extension,
                    JxW=fe.JxW[qp],
                    xyz=fe.xyz[qp],
                    thermal_strain=section.thermal_strain,
                )
            )
        return terms
