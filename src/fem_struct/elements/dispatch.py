"""
Routing of boundary conditions to the element load routines.

Side loads are looked up by the boundary ids attached to each element side,
volume loads by the element subdomain id. Every matching condition is
routed through a fixed table keyed by its type tag; tags outside the table
are a precondition violation and raise ``ValueError``.

Handlers accumulate into the *local* frame buffers they are given; the
caller applies a single transform to the global frame afterwards.
"""

import logging
from typing import TYPE_CHECKING, Iterator, Optional, Tuple

import numpy as np

from fem_struct.core.bc import BoundaryCondition, BoundaryConditionMap, BoundaryConditionType
from fem_struct.core.field_function import Parameter

if TYPE_CHECKING:
    from fem_struct.elements.elements import StructuralElement

logger = logging.getLogger(__name__)

BCT = BoundaryConditionType

# type tag -> element handler; None marks a tag handled elsewhere (no-op here)
SIDE_HANDLERS = {
    BCT.SURFACE_PRESSURE: "_add_surface_pressure",
    BCT.SMALL_DISTURBANCE_MOTION: "_add_small_disturbance_pressure",
    BCT.DIRICHLET: None,
}

VOLUME_HANDLERS = {
    BCT.SURFACE_PRESSURE: "_add_surface_pressure",
    BCT.SMALL_DISTURBANCE_MOTION: "_add_small_disturbance_pressure",
    BCT.TEMPERATURE: "_add_thermal",
    BCT.DIRICHLET: None,
}

SIDE_SENSITIVITY_HANDLERS = {
    BCT.SURFACE_PRESSURE: "_add_surface_pressure_sensitivity",
    BCT.SMALL_DISTURBANCE_MOTION: "_small_disturbance_sensitivity",
    BCT.DIRICHLET: None,
}

VOLUME_SENSITIVITY_HANDLERS = {
    BCT.SURFACE_PRESSURE: "_add_surface_pressure_sensitivity",
    BCT.SMALL_DISTURBANCE_MOTION: "_small_disturbance_sensitivity",
    BCT.TEMPERATURE: "_thermal_sensitivity",
    BCT.DIRICHLET: None,
}


class BoundaryLoadDispatcher:
    """Finds the boundary conditions acting on one element and routes them.

    Parameters
    ----------
    element : StructuralElement
        Element engine providing the load handlers.
    """

    def __init__(self, element: "StructuralElement"):
        self.element = element

    def side_loads(self, bc_map: BoundaryConditionMap) -> Iterator[Tuple[int, BoundaryCondition]]:
        """Yield ``(side, condition)`` for every condition on a side of the element."""
        mesh_element = self.element.mesh_element
        for side in range(self.element.strategy.cell.n_sides):
            for boundary_id in mesh_element.boundary_ids(side):
                for bc in bc_map.equal_range(boundary_id):
                    yield side, bc

    def volume_loads(self, bc_map: BoundaryConditionMap) -> Iterator[BoundaryCondition]:
        yield from bc_map.equal_range(self.element.mesh_element.subdomain_id)

    def _handler(self, table, bc: BoundaryCondition, where: str):
        if bc.type not in table:
            raise ValueError(
                f"Boundary condition type {bc.type.name} is not supported as a {where} load "
                f"(element {self.element.mesh_element.id})"
            )
        name = table[bc.type]
        return None if name is None else getattr(self.element, name)

    def side_residual(
        self,
        request_jacobian: bool,
        f: np.ndarray,
        jac: Optional[np.ndarray],
        bc_map: BoundaryConditionMap,
    ) -> bool:
        """Accumulate all side loads; returns ``calculated OR request_jacobian``."""
        calculated = False
        for side, bc in self.side_loads(bc_map):
            handler = self._handler(SIDE_HANDLERS, bc, "side")
            if handler is None:
                continue
            calculated |= handler(request_jacobian, f, jac, bc, side)
        return calculated or request_jacobian

    def volume_residual(
        self,
        request_jacobian: bool,
        f: np.ndarray,
        jac: Optional[np.ndarray],
        bc_map: BoundaryConditionMap,
    ) -> bool:
        """Accumulate all subdomain loads; returns ``calculated OR request_jacobian``."""
        calculated = False
        for bc in self.volume_loads(bc_map):
            handler = self._handler(VOLUME_HANDLERS, bc, "volume")
            if handler is None:
                continue
            calculated |= handler(request_jacobian, f, jac, bc, None)
        return calculated or request_jacobian

    def side_sensitivity(self, param: Parameter, f: np.ndarray, bc_map: BoundaryConditionMap) -> bool:
        """Accumulate d(side loads)/d(param); False when a load has no analytic path."""
        for side, bc in self.side_loads(bc_map):
            handler = self._handler(SIDE_SENSITIVITY_HANDLERS, bc, "side")
            if handler is not None and not handler(param, f, bc, side):
                logger.debug("No analytic sensitivity of %s load to %s", bc.type.name, param.name)
                return False
        return True

    def volume_sensitivity(self, param: Parameter, f: np.ndarray, bc_map: BoundaryConditionMap) -> bool:
        """Accumulate d(volume loads)/d(param); False when a load has no analytic path."""
        for bc in self.volume_loads(bc_map):
            handler = self._handler(VOLUME_SENSITIVITY_HANDLERS, bc, "volume")
            if handler is not None and not handler(param, f, bc, None):
                logger.debug("No analytic sensitivity of %s load to %s", bc.type.name, param.name)
                return False
        return True
