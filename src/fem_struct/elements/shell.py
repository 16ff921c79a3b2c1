"""Four-node Mindlin shell: membrane + plate bending + transverse shear + drilling.

Local DOFs per node: ``[u, v, w, θx, θy, θz]`` with ``z`` normal to the
element. The displacement through the thickness is ``u + zθy``,
``v - zθx``, which gives the generalized strains::

    membrane  ε = [u,x, v,y, u,y + v,x]   (+ [½w,x², ½w,y², w,x w,y])
    bending   κ = [θy,x, -θx,y, θy,y - θx,x]
    shear     γ = [w,x + θy, w,y - θx]              reduced integration
    drilling  γ = θz - ½(v,x - u,y)                 reduced integration

The drilling term only removes the zero-energy mode of ``θz``; its
stiffness is ``shell_drilling_factor`` times the section drilling value.
"""

from typing import Callable, List

import numpy as np

from fem_struct.core.mesh import ElementType
from fem_struct.core.properties import SectionStiffness, ShellPropertyCard
from fem_struct.elements.elements import ElementFamily, ElementStrategy
from fem_struct.elements.fe import dof_row
from fem_struct.elements.local_elem import Local2DElem
from fem_struct.elements.strain import StrainTerm


class ShellStrategy(ElementStrategy):
    family = ElementFamily.SHELL
    element_type = ElementType.QUAD4
    card_type = ShellPropertyCard

    @classmethod
    def make_local_elem(cls, node_coords: np.ndarray, card: ShellPropertyCard) -> Local2DElem:
        return Local2DElem(node_coords)

    def strain_terms(self, section_at: Callable[[np.ndarray], SectionStiffness]) -> List[StrainTerm]:
        terms = []

        fe = self.volume_fe
        for qp in range(fe.n_qp):
            dNx, dNy = fe.dphi[qp][:, 0], fe.dphi[qp][:, 1]
            section = section_at(fe.xyz[qp])

            B_m = np.vstack(
                [
                    dof_row(dNx, 0),
                    dof_row(dNy, 1),
                    dof_row(dNy, 0) + dof_row(dNx, 1),
                ]
            )
            G = np.vstack([dof_row(dNx, 2), dof_row(dNy, 2)]) if self.nonlinear else None
            terms.append(
                StrainTerm(
                    B=B_m,
                    D=section.extension,
                    JxW=fe.JxW[qp],
                    xyz=fe.xyz[qp],
                    G=G,
                    thermal_strain=section.thermal_strain,
                )
            )

            B_b = np.vstack(
                [
                    dof_row(dNx, 4),
                    -dof_row(dNy, 3),
                    dof_row(dNy, 4) - dof_row(dNx, 3),
                ]
            )
            terms.append(StrainTerm(B=B_b, D=section.bending, JxW=fe.JxW[qp], xyz=fe.xyz[qp]))

        fe = self.reduced_fe
        drilling_factor = self.config.elements.shell_drilling_factor
        for qp in range(fe.n_qp):
            N = fe.phi[qp]
            dNx, dNy = fe.dphi[qp][:, 0], fe.dphi[qp][:, 1]
            section = section_at(fe.xyz[qp])

            B_s = np.vstack(
                [
                    dof_row(dNx, 2) + dof_row(N, 4),
                    dof_row(dNy, 2) - dof_row(N, 3),
                ]
            )
            terms.append(StrainTerm(B=B_s, D=section.shear, JxW=fe.JxW[qp], xyz=fe.xyz[qp]))

            B_d = dof_row(N, 5) - 0.5 * (dof_row(dNx, 1) - dof_row(dNy, 0))
            terms.append(
                StrainTerm(
                    B=B_d[np.newaxis, :],
                    D=np.array([[drilling_factor * section.drilling]]),
                    JxW=fe.JxW[qp],
                    xyz=fe.xyz[qp],
                )
            )
        return terms
