"""Two-node Timoshenko beam.

Local DOFs per node: ``[u, v, w, θx, θy, θz]`` with ``x`` along the beam axis.

Generalized strains::

    ε  = u'  (+ ½(v'² + w'²) with von Kármán strain)
    κ  = [θx', θy', θz']       torsion, bending about y, bending about z
    γy = v' - θz               transverse shear, reduced (1 point) integration
    γz = w' + θy
"""

from typing import Callable, List

import numpy as np

from fem_struct.core.mesh import ElementType
from fem_struct.core.properties import BeamPropertyCard, SectionStiffness
from fem_struct.elements.elements import ElementFamily, ElementStrategy
from fem_struct.elements.fe import dof_row
from fem_struct.elements.local_elem import Local1DElem
from fem_struct.elements.strain import StrainTerm


class BeamStrategy(ElementStrategy):
    family = ElementFamily.BEAM
    element_type = ElementType.EDGE2
    card_type = BeamPropertyCard

    @classmethod
    def make_local_elem(cls, node_coords: np.ndarray, card: BeamPropertyCard) -> Local1DElem:
        return Local1DElem(node_coords, card.y_vector)

    def strain_terms(self, section_at: Callable[[np.ndarray], SectionStiffness]) -> List[StrainTerm]:
        terms = []

        fe = self.volume_fe
        for qp in range(fe.n_qp):
            dN = fe.dphi[qp][:, 0]
            section = section_at(fe.xyz[qp])
            G = np.vstack([dof_row(dN, 1), dof_row(dN, 2)]) if self.nonlinear else None
            terms.append(
                StrainTerm(
                    B=dof_row(dN, 0)[np.newaxis, :],
                    D=section.extension,
                    JxW=fe.JxW[qp],
                    xyz=fe.xyz[qp],
                    G=G,
                    thermal_strain=section.thermal_strain,
                )
            )
            terms.append(
                StrainTerm(
                    B=np.vstack([dof_row(dN, 3), dof_row(dN, 4), dof_row(dN, 5)]),
                    D=section.bending,
                    JxW=fe.JxW[qp],
                    xyz=fe.xyz[qp],
                )
            )

        fe = self.reduced_fe
        for qp in range(fe.n_qp):
            N = fe.phi[qp]
            dN = fe.dphi[qp][:, 0]
            section = section_at(fe.xyz[qp])
            terms.append(
                StrainTerm(
                    B=np.vstack(
                        [
                            dof_row(dN, 1) - dof_row(N, 5),
                            dof_row(dN, 2) + dof_row(N, 4),
                        ]
                    ),
                    D=section.shear,
                    JxW=fe.JxW[qp],
                    xyz=fe.xyz[qp],
                )
            )
        return terms
