"""
Structural element engine.

A :class:`StructuralElement` computes the residual and Jacobian
contributions of one mesh element. Everything is computed in the element's
local frame and transformed to the global frame before it is added to the
caller's buffers. Dimension specific behavior lives in a strategy selected
at construction from the element dimension:

============  ======  =======================================
Family        Cell    Formulation
============  ======  =======================================
BEAM (1)      EDGE2   Timoshenko beam
SHELL (2)     QUAD4   Mindlin plate + membrane + drilling
SOLID (3)     HEXA8   3D linear elasticity
============  ======  =======================================

Residual sign convention: ``R = M ẍ + f_int(x) - f_ext``. Loads therefore
enter the residual with a negative sign, e.g. a pressure ``p`` acting
against the outward normal ``n`` contributes ``+p n``.

The engine works for real (static/transient) and complex
(small-disturbance) analyses. In the complex case the stiffness is
linearized about the base solution, ``f = K_t(x_base) q``.
"""

import logging
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Callable, Dict, List, Optional, Tuple, Type

import numpy as np

from fem_struct.core.bc import BoundaryCondition, BoundaryConditionMap
from fem_struct.core.config import AssemblyConfig
from fem_struct.core.field_function import Parameter
from fem_struct.core.mesh import ElementType, MeshElement
from fem_struct.core.properties import ElementPropertyCard, SectionStiffness, StrainType
from fem_struct.elements.dispatch import BoundaryLoadDispatcher
from fem_struct.elements.fe import (
    DOFS_PER_NODE,
    REFERENCE_CELLS,
    FEValues,
    current_surface_values,
    shape_operator,
    side_values,
    volume_values,
)
from fem_struct.elements.local_elem import LocalElemBase
from fem_struct.elements.strain import StrainTerm

logger = logging.getLogger(__name__)


class ElementFamily(IntEnum):
    BEAM = 1
    SHELL = 2
    SOLID = 3


class ElementStrategy(ABC):
    """Dimension specific part of the element formulation.

    Parameters
    ----------
    local_elem : LocalElemBase
        Local frame of the element.
    card : ElementPropertyCard
        Section properties; must be an instance of ``card_type``.
    config : AssemblyConfig
        Formulation settings (quadrature order, drilling factor).
    """

    family: ElementFamily
    element_type: ElementType
    card_type: Type[ElementPropertyCard]

    def __init__(self, local_elem: LocalElemBase, card: ElementPropertyCard, config: AssemblyConfig):
        self.local_elem = local_elem
        self.card = card
        self.config = config
        self.cell = REFERENCE_CELLS[self.element_type]
        coords = local_elem.local_coords
        self.volume_fe = volume_values(self.cell, coords, config.elements.quadrature_order)
        self.reduced_fe = volume_values(self.cell, coords, 1)

    @property
    def nonlinear(self) -> bool:
        return self.card.strain_type == StrainType.VON_KARMAN

    @classmethod
    @abstractmethod
    def make_local_elem(cls, node_coords: np.ndarray, card: ElementPropertyCard) -> LocalElemBase:
        """Build the local frame for this family."""

    @abstractmethod
    def strain_terms(self, section_at: Callable[[np.ndarray], SectionStiffness]) -> List[StrainTerm]:
        """Strain terms at all quadrature points.

        Parameters
        ----------
        section_at : Callable
            Section stiffness at a local point. Passing a parameter
            derivative of the section yields the stiffness sensitivity.
        """

    def __repr__(self):
        return f"<{type(self).__name__} cell={self.element_type.name}>"


def _strategy_class(family: ElementFamily) -> Type[ElementStrategy]:
    from .beam import BeamStrategy
    from .shell import ShellStrategy
    from .solid import SolidStrategy

    STRATEGY_MAP = {
        ElementFamily.BEAM: BeamStrategy,
        ElementFamily.SHELL: ShellStrategy,
        ElementFamily.SOLID: SolidStrategy,
    }
    return STRATEGY_MAP[family]


def _as_value_type(value, value_type) -> np.ndarray:
    value = np.asarray(value)
    if np.iscomplexobj(value) and np.dtype(value_type).kind != "c":
        raise ValueError("Complex small-disturbance data requires a complex value type")
    return value.astype(value_type)


class StructuralElement:
    """Residual and Jacobian contributions of one structural element.

    Parameters
    ----------
    mesh_element : MeshElement
        Geometry, subdomain id and side boundary ids.
    card : ElementPropertyCard
        Section properties of the element's region.
    config : AssemblyConfig, optional
        Formulation settings; defaults are used when omitted.
    value_type : type
        ``float`` for static/transient analysis, ``complex`` for
        small-disturbance analysis.

    Raises
    ------
    ValueError
        If the dimension is outside {1, 2, 3}, the reference cell is not the
        one of the family, or the card belongs to another family.
    """

    def __init__(
        self,
        mesh_element: MeshElement,
        card: ElementPropertyCard,
        config: Optional[AssemblyConfig] = None,
        value_type: type = float,
    ):
        dim = mesh_element.dim
        if dim not in (1, 2, 3):
            raise ValueError(f"Unsupported element dimension {dim} (element {mesh_element.id})")
        self.family = ElementFamily(dim)
        strategy_cls = _strategy_class(self.family)

        if mesh_element.element_type is not strategy_cls.element_type:
            raise ValueError(
                f"{self.family.name} elements require {strategy_cls.element_type.name} cells, "
                f"element {mesh_element.id} has {mesh_element.node_count} nodes"
            )
        if not isinstance(card, strategy_cls.card_type):
            raise ValueError(
                f"{self.family.name} element {mesh_element.id} needs a "
                f"{strategy_cls.card_type.__name__}, got {type(card).__name__}"
            )

        self.mesh_element = mesh_element
        self.card = card
        self.config = config or AssemblyConfig()
        self.value_type = value_type
        self.local_elem = strategy_cls.make_local_elem(mesh_element.node_coords, card)
        self.strategy = strategy_cls(self.local_elem, card, self.config)
        self.dispatcher = BoundaryLoadDispatcher(self)

        self._inertia = card.inertia_matrix()
        self._section = card.section_stiffness()
        self._side_fe: Dict[int, FEValues] = {}

        self.n_dofs = DOFS_PER_NODE * mesh_element.node_count
        self._solution = np.zeros(self.n_dofs, dtype=value_type)
        self._velocity = np.zeros(self.n_dofs, dtype=value_type)
        self._acceleration = np.zeros(self.n_dofs, dtype=value_type)
        self._base_solution = np.zeros(self.n_dofs)
        self.time = 0.0

    @property
    def dim(self) -> int:
        return int(self.family)

    @property
    def complex_mode(self) -> bool:
        return np.dtype(self.value_type).kind == "c"

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _local_copy(self, vec: np.ndarray) -> np.ndarray:
        vec = np.asarray(vec)
        if vec.shape != (self.n_dofs,):
            raise ValueError(f"Expected an element vector of length {self.n_dofs}, got {vec.shape}")
        return self.local_elem.to_local(vec)

    def set_solution(self, vec: np.ndarray) -> None:
        self._solution = self._local_copy(vec)

    def set_velocity(self, vec: np.ndarray) -> None:
        self._velocity = self._local_copy(vec)

    def set_acceleration(self, vec: np.ndarray) -> None:
        self._acceleration = self._local_copy(vec)

    def set_base_solution(self, vec: np.ndarray) -> None:
        self._base_solution = self._local_copy(vec)

    def set_time(self, time: float) -> None:
        self.time = time

    @property
    def local_solution(self) -> np.ndarray:
        return self._solution

    @property
    def local_acceleration(self) -> np.ndarray:
        return self._acceleration

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _global_point(self, xyz: np.ndarray) -> np.ndarray:
        return self.local_elem.global_coordinates_location(xyz)

    def _inertia_at(self, xyz: np.ndarray) -> np.ndarray:
        return self._inertia(self._global_point(xyz), self.time)

    def _section_at(self, xyz: np.ndarray) -> SectionStiffness:
        return self._section(self._global_point(xyz), self.time)

    def _linearization_point(self) -> np.ndarray:
        return self._base_solution if self.complex_mode else self._solution

    def _in_local_frame(self, compute, request_jacobian: bool, f, jac, dtype=None) -> bool:
        """Run ``compute`` on fresh local buffers, then add them in the global frame."""
        if dtype is None:
            dtype = self.value_type
        f_loc = np.zeros(self.n_dofs, dtype=dtype)
        jac_loc = np.zeros((self.n_dofs, self.n_dofs), dtype=dtype) if request_jacobian else None
        calculated = compute(request_jacobian, f_loc, jac_loc)
        f += self.local_elem.to_global(f_loc)
        if request_jacobian and jac is not None:
            jac += self.local_elem.matrix_to_global(jac_loc)
        return calculated

    def _check_follower_forces(self, request_jacobian: bool) -> None:
        if request_jacobian and self.config.elements.follower_forces:
            raise NotImplementedError("Jacobian of follower pressure loads is not implemented")

    def side_fe(self, side: int) -> FEValues:
        """FE values on an element side, cached per side."""
        if not 0 <= side < self.strategy.cell.n_sides:
            raise ValueError(f"Element {self.mesh_element.id} has no side {side}")
        if side not in self._side_fe:
            self._side_fe[side] = side_values(
                self.strategy.cell,
                self.local_elem.local_coords,
                side,
                self.config.elements.quadrature_order,
            )
        return self._side_fe[side]

    def _current_coords(self) -> np.ndarray:
        """Local nodal positions displaced by the current translations."""
        u = np.real(self._linearization_point()).reshape(-1, DOFS_PER_NODE)[:, :3]
        return self.local_elem.local_coords + u

    def _pressure_geometry(self, side: Optional[int], current: bool = False) -> Tuple[FEValues, np.ndarray]:
        if current:
            fe = current_surface_values(
                self.strategy.cell, self._current_coords(), side, self.config.elements.quadrature_order
            )
            return fe, fe.normals
        if side is not None:
            fe = self.side_fe(side)
            return fe, fe.normals
        if self.dim == 3:
            raise ValueError("Whole-element pressure applies to 1D and 2D elements only")
        fe = self.strategy.volume_fe
        # local y for beams, local z for shells
        normal = np.zeros(3)
        normal[self.dim] = -1.0
        return fe, np.tile(normal, (fe.n_qp, 1))

    # ------------------------------------------------------------------
    # Inertia
    # ------------------------------------------------------------------

    def _lumped_mass_diagonal(self, inertia_at) -> np.ndarray:
        fe = self.strategy.volume_fe
        sample = self.config.lumped_mass.sample_point
        if sample >= fe.n_qp:
            raise ValueError(f"lumped_mass.sample_point={sample} but the element has {fe.n_qp} points")
        inertia = inertia_at(fe.xyz[sample])
        n_nodes = self.mesh_element.node_count
        return np.tile(np.diag(inertia), n_nodes) * fe.JxW.sum() / n_nodes

    def _consistent_mass(self, inertia_at) -> np.ndarray:
        fe = self.strategy.volume_fe
        M = np.zeros((self.n_dofs, self.n_dofs))
        for qp in range(fe.n_qp):
            N = shape_operator(fe.phi[qp])
            M += fe.JxW[qp] * (N.T @ inertia_at(fe.xyz[qp]) @ N)
        return M

    def _mass_matrix(self, inertia_at) -> np.ndarray:
        if self.card.if_diagonal_mass_matrix():
            return np.diag(self._lumped_mass_diagonal(inertia_at))
        return self._consistent_mass(inertia_at)

    def mass_matrix(self) -> np.ndarray:
        """Element mass matrix in the global frame."""
        return self.local_elem.matrix_to_global(self._mass_matrix(self._inertia_at))

    def inertial_residual(
        self,
        request_jacobian: bool,
        f: np.ndarray,
        jac_xddot: Optional[np.ndarray],
        jac_xdot: Optional[np.ndarray],
        jac: Optional[np.ndarray],
    ) -> bool:
        """Add ``M a`` to ``f`` and ``M`` to ``jac_xddot``.

        The mass matrix is lumped or consistent according to the property
        card. The inertial term has no velocity or solution dependence, so
        ``jac_xdot`` and ``jac`` are left untouched.
        """
        M = self._mass_matrix(self._inertia_at)
        f += self.local_elem.to_global(M @ self._acceleration)
        if request_jacobian and jac_xddot is not None:
            jac_xddot += self.local_elem.matrix_to_global(M)
        return request_jacobian

    def check_lumped_mass(self) -> float:
        """Relative deviation of the lumped diagonal from the consistent row sums.

        Logs a warning when the deviation exceeds ``lumped_mass.tolerance``.
        """
        row_sums = self._consistent_mass(self._inertia_at).sum(axis=1)
        lumped = self._lumped_mass_diagonal(self._inertia_at)
        scale = np.abs(row_sums).max()
        if scale == 0.0:
            return 0.0
        deviation = np.abs(lumped - row_sums).max() / scale
        if deviation > self.config.lumped_mass.tolerance:
            logger.warning(
                "Element %d: lumped mass deviates %.3g from consistent row sums (tolerance %.3g)",
                self.mesh_element.id,
                deviation,
                self.config.lumped_mass.tolerance,
            )
        return deviation

    # ------------------------------------------------------------------
    # Stiffness
    # ------------------------------------------------------------------

    def _stiffness(
        self, q: np.ndarray, need_jacobian: bool, section_at=None
    ) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        f = np.zeros(self.n_dofs, dtype=np.result_type(q, float))
        jac = np.zeros((self.n_dofs, self.n_dofs)) if need_jacobian else None
        for term in self.strategy.strain_terms(section_at or self._section_at):
            term.add_internal(q, f, jac)
        return f, jac

    def internal_residual(self, request_jacobian: bool, f: np.ndarray, jac: Optional[np.ndarray]) -> bool:
        """Add the internal (stiffness) force and optionally its tangent."""
        if self.complex_mode:
            _, K = self._stiffness(np.real(self._base_solution), True)
            f_loc = K @ self._solution
        else:
            f_loc, K = self._stiffness(self._solution, request_jacobian)
        f += self.local_elem.to_global(f_loc)
        if request_jacobian and jac is not None:
            jac += self.local_elem.matrix_to_global(K)
        return request_jacobian

    def tangent_stiffness(self) -> np.ndarray:
        """Tangent stiffness at the current linearization point, global frame."""
        _, K = self._stiffness(np.real(self._linearization_point()), True)
        return self.local_elem.matrix_to_global(K)

    def linearized_jacobian_solution_product(self, f: np.ndarray, dX: np.ndarray) -> None:
        """Add ``K_t dX`` (internal terms only) for a global element vector ``dX``."""
        _, K = self._stiffness(np.real(self._linearization_point()), True)
        f += self.local_elem.to_global(K @ self._local_copy(dX))

    def second_derivative_dot_solution(self, jac: np.ndarray, dX: np.ndarray) -> None:
        """Add ``d(K_t(x) dX)/dx``; non-zero for von Kármán strain only."""
        q = np.real(self._linearization_point())
        dX_loc = self._local_copy(dX)
        out = np.zeros((self.n_dofs, self.n_dofs), dtype=np.result_type(dX_loc, float))
        for term in self.strategy.strain_terms(self._section_at):
            term.add_second_derivative(q, dX_loc, out)
        jac += self.local_elem.matrix_to_global(out)

    # ------------------------------------------------------------------
    # External loads
    # ------------------------------------------------------------------

    def side_external_residual(
        self, request_jacobian: bool, f: np.ndarray, jac: Optional[np.ndarray], bc_map: BoundaryConditionMap
    ) -> bool:
        """Add all loads on the element sides; returns ``calculated OR request_jacobian``."""
        return self._in_local_frame(
            lambda rj, fl, jl: self.dispatcher.side_residual(rj, fl, jl, bc_map), request_jacobian, f, jac
        )

    def volume_external_residual(
        self, request_jacobian: bool, f: np.ndarray, jac: Optional[np.ndarray], bc_map: BoundaryConditionMap
    ) -> bool:
        """Add all loads on the element subdomain; returns ``calculated OR request_jacobian``."""
        return self._in_local_frame(
            lambda rj, fl, jl: self.dispatcher.volume_residual(rj, fl, jl, bc_map), request_jacobian, f, jac
        )

    def surface_pressure_residual(
        self,
        request_jacobian: bool,
        f: np.ndarray,
        jac: Optional[np.ndarray],
        bc: BoundaryCondition,
        side: Optional[int] = None,
    ) -> bool:
        """Pressure on one side, or on the whole element when ``side`` is None.

        Without a side the element itself is the loaded surface (beams and
        shells) and the pressure acts along local ``+y`` (1D) or ``+z`` (2D).
        With follower forces the normals and areas are taken on the current
        (displaced) surface.

        Raises
        ------
        NotImplementedError
            If a Jacobian is requested with follower forces enabled.
        ValueError
            For a whole-element pressure on a 3D element.
        """
        return self._in_local_frame(
            lambda rj, fl, jl: self._add_surface_pressure(rj, fl, jl, bc, side), request_jacobian, f, jac
        )

    def small_disturbance_surface_pressure_residual(
        self,
        request_jacobian: bool,
        f: np.ndarray,
        jac: Optional[np.ndarray],
        bc: BoundaryCondition,
        side: Optional[int] = None,
        value_type: Optional[type] = None,
    ) -> bool:
        """Linearized pressure ``press·δn + δpress·n`` on a side or the whole element.

        ``pressure`` is the real steady pressure; ``dpressure`` and
        ``dnormal`` (given in the element's local frame) are of
        ``value_type``, real or complex.
        """
        value_type = value_type or self.value_type
        return self._in_local_frame(
            lambda rj, fl, jl: self._add_small_disturbance_pressure(rj, fl, jl, bc, side, value_type),
            request_jacobian,
            f,
            jac,
            dtype=np.result_type(self.value_type, value_type),
        )

    def thermal_residual(
        self, request_jacobian: bool, f: np.ndarray, jac: Optional[np.ndarray], bc: BoundaryCondition
    ) -> bool:
        """Thermal load ``-∫ B_nlᵀ D α (T - T_ref)``.

        Returns True when a Jacobian contribution was computed, which is
        the case for von Kármán strain.
        """
        return self._in_local_frame(
            lambda rj, fl, jl: self._add_thermal(rj, fl, jl, bc, None), request_jacobian, f, jac
        )

    def _add_pressure_force(self, pressure_at, f: np.ndarray, side: Optional[int]) -> None:
        # follower pressure acts on the current surface
        fe, normals = self._pressure_geometry(side, current=self.config.elements.follower_forces)
        for qp in range(fe.n_qp):
            press = pressure_at(self._global_point(fe.xyz[qp]))
            N = shape_operator(fe.phi[qp], 3)
            f += fe.JxW[qp] * press * (N.T @ normals[qp])

    def _add_surface_pressure(self, request_jacobian, f, jac, bc, side) -> bool:
        self._check_follower_forces(request_jacobian)
        pressure = bc.get("pressure")
        self._add_pressure_force(lambda x: pressure(x, self.time), f, side)
        return False

    def _add_small_disturbance_pressure(self, request_jacobian, f, jac, bc, side, value_type=None) -> bool:
        self._check_follower_forces(request_jacobian)
        value_type = value_type or self.value_type
        press_fn = bc.get("pressure")
        dpress_fn = bc.get("dpressure")
        dnormal_fn = bc.get("dnormal")

        fe, normals = self._pressure_geometry(side)
        for qp in range(fe.n_qp):
            pt = self._global_point(fe.xyz[qp])
            press = press_fn(pt, self.time)
            dpress = _as_value_type(dpress_fn(pt, self.time), value_type)
            dnormal = _as_value_type(dnormal_fn(pt, self.time), value_type)

            force = press * dnormal + dpress * normals[qp]
            N = shape_operator(fe.phi[qp], 3)
            f += fe.JxW[qp] * (N.T @ force)
        return False

    def _add_thermal(self, request_jacobian, f, jac, bc, side) -> bool:
        if side is not None:
            raise ValueError("Temperature loads apply to whole elements only")
        temperature = bc.get("temperature")
        ref_temperature = bc.get("ref_temperature")
        q = np.real(self._linearization_point())

        calculated = False
        for term in self.strategy.strain_terms(self._section_at):
            if term.thermal_strain is None:
                continue
            pt = self._global_point(term.xyz)
            delta_t = temperature(pt, self.time) - ref_temperature(pt, self.time)
            calculated |= term.add_thermal(q, term.thermal_strain * delta_t, f, jac)
        return calculated

    # ------------------------------------------------------------------
    # Sensitivities (contributions to dR/dp at fixed solution)
    # ------------------------------------------------------------------

    def internal_residual_sensitivity(self, param: Parameter, f: np.ndarray) -> bool:
        if not self.card.depends_on(param):
            return True
        if not self.card.has_derivative(param):
            return False

        def section_at(xyz):
            return self._section.derivative(param, self._global_point(xyz), self.time)

        if self.complex_mode:
            _, dK = self._stiffness(np.real(self._base_solution), True, section_at)
            f_loc = dK @ self._solution
        else:
            f_loc, _ = self._stiffness(self._solution, False, section_at)
        f += self.local_elem.to_global(f_loc)
        return True

    def inertial_residual_sensitivity(self, param: Parameter, f: np.ndarray) -> bool:
        if not self.card.depends_on(param):
            return True
        if not self.card.has_derivative(param):
            return False
        dM = self._mass_matrix(
            lambda xyz: self._inertia.derivative(param, self._global_point(xyz), self.time)
        )
        f += self.local_elem.to_global(dM @ self._acceleration)
        return True

    def side_external_residual_sensitivity(
        self, param: Parameter, f: np.ndarray, bc_map: BoundaryConditionMap
    ) -> bool:
        f_loc = np.zeros(self.n_dofs, dtype=self.value_type)
        if not self.dispatcher.side_sensitivity(param, f_loc, bc_map):
            return False
        f += self.local_elem.to_global(f_loc)
        return True

    def volume_external_residual_sensitivity(
        self, param: Parameter, f: np.ndarray, bc_map: BoundaryConditionMap
    ) -> bool:
        f_loc = np.zeros(self.n_dofs, dtype=self.value_type)
        if not self.dispatcher.volume_sensitivity(param, f_loc, bc_map):
            return False
        f += self.local_elem.to_global(f_loc)
        return True

    def _add_surface_pressure_sensitivity(self, param, f, bc, side) -> bool:
        pressure = bc.get("pressure")
        if not pressure.depends_on(param):
            return True
        if not pressure.has_derivative(param):
            return False
        self._add_pressure_force(lambda x: pressure.derivative(param, x, self.time), f, side)
        return True

    def _small_disturbance_sensitivity(self, param, f, bc, side) -> bool:
        return not bc.depends_on(param)

    def _thermal_sensitivity(self, param, f, bc, side) -> bool:
        return not (bc.depends_on(param) or self.card.depends_on(param))

    def __repr__(self):
        return f"<StructuralElement id={self.mesh_element.id} family={self.family.name}>"


def build_structural_element(
    mesh_element: MeshElement,
    card: ElementPropertyCard,
    config: Optional[AssemblyConfig] = None,
    value_type: type = float,
) -> StructuralElement:
    """Build the element engine for a mesh element and its property card."""
    return StructuralElement(mesh_element, card, config, value_type)
