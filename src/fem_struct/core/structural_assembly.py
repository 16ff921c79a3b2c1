"""
Structural specialization of the nonlinear implicit assembly.

Each element contributes::

    R_e = M_e ẍ + f_int(x) + side loads + volume loads

with the inertial term feeding ∂R/∂Ẍ, and the stiffness and
solution-dependent load terms feeding ∂R/∂X.
"""

import logging
from dataclasses import replace
from typing import List, Optional, Tuple

import numpy as np

from fem_struct.core.assembler import ElementContribution, NonlinearImplicitAssembly
from fem_struct.core.config import AssemblyConfig
from fem_struct.core.field_function import Parameter
from fem_struct.elements.elements import StructuralElement, build_structural_element

logger = logging.getLogger(__name__)


class StructuralNonlinearAssembly(NonlinearImplicitAssembly):
    """Residual/Jacobian assembly for beam, shell and solid elements.

    Parameters
    ----------
    config : AssemblyConfig, optional
        Assembly settings.
    value_type : type
        ``float`` for static and transient analysis, ``complex`` for
        small-disturbance (frequency-domain) analysis.

    Examples
    --------
    >>> assembly = StructuralNonlinearAssembly()
    >>> assembly.attach(discipline, system)          # doctest: +SKIP
    >>> R, J = assembly.residual_and_jacobian(X)     # doctest: +SKIP
    """

    def _element_config(self) -> AssemblyConfig:
        if self._discipline.follower_forces and not self.config.elements.follower_forces:
            elements = replace(self.config.elements, follower_forces=True)
            return replace(self.config, elements=elements)
        return self.config

    def _build_elements(self) -> List[Tuple[StructuralElement, np.ndarray]]:
        config = self._element_config()
        dof_map = self._system.dof_map
        pairs = []
        for mesh_element in self._system.mesh.elements:
            card = self._discipline.get_property_card(mesh_element.subdomain_id)
            elem = build_structural_element(mesh_element, card, config, self.value_type)
            if card.if_diagonal_mass_matrix():
                elem.check_lumped_mass()
            pairs.append((elem, dof_map.element_dofs(mesh_element)))
        logger.debug("Built %d structural elements (%s)", len(pairs), self.value_type.__name__)
        return pairs

    def _elem_set_state(self, elem: StructuralElement, X_e: np.ndarray) -> None:
        dofs = self._system.dof_map.element_dofs(elem.mesh_element)
        elem.set_solution(X_e)
        elem.set_velocity(self._system.velocity[dofs])
        elem.set_acceleration(self._system.acceleration[dofs])
        elem.set_base_solution(self._system.base_solution[dofs])
        elem.set_time(self._system.time)

    def _elem_calculations(self, elem: StructuralElement, request_jacobian: bool) -> ElementContribution:
        n = elem.n_dofs
        dtype = self.value_type
        f = np.zeros(n, dtype=dtype)
        jac = jac_xdot = jac_xddot = None
        if request_jacobian:
            jac = np.zeros((n, n), dtype=dtype)
            jac_xdot = np.zeros((n, n), dtype=dtype)
            jac_xddot = np.zeros((n, n), dtype=dtype)

        elem.internal_residual(request_jacobian, f, jac)
        elem.inertial_residual(request_jacobian, f, jac_xddot, jac_xdot, jac)
        elem.side_external_residual(request_jacobian, f, jac, self._discipline.side_loads)
        elem.volume_external_residual(request_jacobian, f, jac, self._discipline.volume_loads)

        return ElementContribution(f=f, jac=jac, jac_xdot=jac_xdot, jac_xddot=jac_xddot)

    def _elem_linearized_jacobian_solution_product(self, elem: StructuralElement, dX_e: np.ndarray) -> np.ndarray:
        f = np.zeros(elem.n_dofs, dtype=np.result_type(self.value_type, dX_e))
        elem.linearized_jacobian_solution_product(f, dX_e)
        return f

    def _elem_second_derivative_dot_solution(self, elem: StructuralElement, dX_e: np.ndarray) -> np.ndarray:
        jac = np.zeros((elem.n_dofs, elem.n_dofs), dtype=np.result_type(self.value_type, dX_e))
        elem.second_derivative_dot_solution(jac, dX_e)
        return jac

    def _elem_sensitivity(self, elem: StructuralElement, param: Parameter) -> Optional[np.ndarray]:
        f = np.zeros(elem.n_dofs, dtype=self.value_type)
        available = (
            elem.internal_residual_sensitivity(param, f)
            and elem.inertial_residual_sensitivity(param, f)
            and elem.side_external_residual_sensitivity(param, f, self._discipline.side_loads)
            and elem.volume_external_residual_sensitivity(param, f, self._discipline.volume_loads)
        )
        return f if available else None
