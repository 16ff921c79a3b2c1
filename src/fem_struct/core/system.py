"""
System and discipline collaborators of the structural assembly.

- SystemInitialization: mesh, DOF numbering and the global solution state
- StructuralDiscipline: property cards per subdomain and the side/volume
  boundary condition maps
"""

from typing import Dict, Optional

import numpy as np

from fem_struct.core.bc import BoundaryCondition, BoundaryConditionMap
from fem_struct.core.dofs import DofMap
from fem_struct.core.field_function import Parameter
from fem_struct.core.mesh import MeshModel
from fem_struct.core.properties import ElementPropertyCard


class SystemInitialization:
    """Mesh, DOF map and global solution state.

    Parameters
    ----------
    mesh : MeshModel
        Mesh providing the elements to assemble.
    value_type : type
        ``float`` or ``complex``; dtype of the solution vectors. The base
        solution is always real.

    Attributes
    ----------
    solution, velocity, acceleration : np.ndarray
        Global vectors of length ``n_dofs``.
    base_solution : np.ndarray
        Steady state about which small-disturbance analyses are linearized.
    time : float
        Current analysis time.
    """

    def __init__(self, mesh: MeshModel, value_type: type = float):
        self.mesh = mesh
        self.dof_map = DofMap(mesh)
        self.value_type = value_type
        n = self.dof_map.n_dofs
        self.solution = np.zeros(n, dtype=value_type)
        self.velocity = np.zeros(n, dtype=value_type)
        self.acceleration = np.zeros(n, dtype=value_type)
        self.base_solution = np.zeros(n)
        self.time = 0.0

    @property
    def n_dofs(self) -> int:
        return self.dof_map.n_dofs

    def _checked(self, name: str, vec) -> np.ndarray:
        vec = np.asarray(vec)
        if vec.shape != (self.n_dofs,):
            raise ValueError(f"{name} must have length {self.n_dofs}, got shape {vec.shape}")
        return vec

    def update(
        self,
        solution=None,
        velocity=None,
        acceleration=None,
        base_solution=None,
        time: Optional[float] = None,
    ) -> None:
        """Replace any subset of the solution state."""
        if solution is not None:
            self.solution = self._checked("solution", solution)
        if velocity is not None:
            self.velocity = self._checked("velocity", velocity)
        if acceleration is not None:
            self.acceleration = self._checked("acceleration", acceleration)
        if base_solution is not None:
            self.base_solution = self._checked("base_solution", base_solution)
        if time is not None:
            self.time = time

    def __repr__(self):
        return f"<SystemInitialization dofs={self.n_dofs} value_type={self.value_type.__name__}>"


class StructuralDiscipline:
    """Physics definition of a structural analysis.

    Parameters
    ----------
    follower_forces : bool
        Pressure loads follow the deformed geometry. Their Jacobian is not
        available, so Jacobian requests fail when this is set.
    """

    def __init__(self, follower_forces: bool = False):
        self.follower_forces = follower_forces
        self.property_cards: Dict[int, ElementPropertyCard] = {}
        self.side_loads = BoundaryConditionMap()
        self.volume_loads = BoundaryConditionMap()

    def set_property_card(self, subdomain_id: int, card: ElementPropertyCard) -> None:
        self.property_cards[subdomain_id] = card

    def get_property_card(self, subdomain_id: int) -> ElementPropertyCard:
        if subdomain_id not in self.property_cards:
            raise KeyError(f"No property card for subdomain {subdomain_id}")
        return self.property_cards[subdomain_id]

    def add_side_load(self, boundary_id: int, bc: BoundaryCondition) -> None:
        self.side_loads.add(boundary_id, bc)

    def add_volume_load(self, subdomain_id: int, bc: BoundaryCondition) -> None:
        self.volume_loads.add(subdomain_id, bc)

    def depends_on(self, param: Parameter) -> bool:
        """True if any card or load depends on ``param``."""
        return (
            any(card.depends_on(param) for card in self.property_cards.values())
            or any(bc.depends_on(param) for _, bc in self.side_loads.items())
            or any(bc.depends_on(param) for _, bc in self.volume_loads.items())
        )

    def __repr__(self):
        return (
            f"<StructuralDiscipline cards={sorted(self.property_cards)} "
            f"side_loads={len(self.side_loads)} volume_loads={len(self.volume_loads)}>"
        )
