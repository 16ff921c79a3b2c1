"""
Boundary condition descriptors for structural residual assembly.

Loads are attached either to element sides (through the boundary ids stored
on each mesh element side) or to whole elements (through the subdomain id).
Both associations are many-to-many and are stored in a
:class:`BoundaryConditionMap`.
"""

from collections import defaultdict
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Tuple

from fem_struct.core.field_function import FieldFunction, Parameter, as_field_function


class BoundaryConditionType(Enum):
    """Type tags understood by the boundary load dispatcher."""

    SURFACE_PRESSURE = "surface_pressure"
    TEMPERATURE = "temperature"
    SMALL_DISTURBANCE_MOTION = "small_disturbance_motion"
    DIRICHLET = "dirichlet"
    POINT_LOAD = "point_load"


class BoundaryCondition:
    """Typed boundary condition carrying named field functions.

    Parameters
    ----------
    bc_type : BoundaryConditionType
        Type tag used for dispatch.
    **functions
        Named field data. Plain values, callables ``(p, t)`` and
        :class:`Parameter` objects are wrapped into field functions.

    Examples
    --------
    >>> bc = BoundaryCondition(BoundaryConditionType.SURFACE_PRESSURE, pressure=1.0e3)
    >>> bc.get("pressure")([0.0, 0.0, 0.0], 0.0)
    1000.0
    """

    def __init__(self, bc_type: BoundaryConditionType, **functions: Any):
        self.type = bc_type
        self._functions: Dict[str, FieldFunction] = {
            name: as_field_function(name, value) for name, value in functions.items()
        }

    def add(self, name: str, value: Any) -> None:
        self._functions[name] = as_field_function(name, value)

    def get(self, name: str) -> FieldFunction:
        if name not in self._functions:
            raise KeyError(f"Boundary condition {self.type.name} has no field '{name}'")
        return self._functions[name]

    def contains(self, name: str) -> bool:
        return name in self._functions

    @property
    def functions(self) -> Dict[str, FieldFunction]:
        return dict(self._functions)

    def depends_on(self, param: Parameter) -> bool:
        return any(f.depends_on(param) for f in self._functions.values())

    def __repr__(self):
        return f"<BoundaryCondition type={self.type.name} fields={sorted(self._functions)}>"


class SurfacePressure(BoundaryCondition):
    """Pressure acting against the outward normal of a face."""

    def __init__(self, pressure: Any):
        super().__init__(BoundaryConditionType.SURFACE_PRESSURE, pressure=pressure)


class TemperatureLoad(BoundaryCondition):
    """Temperature field producing thermal strains relative to a reference temperature."""

    def __init__(self, temperature: Any, ref_temperature: Any = 0.0):
        super().__init__(
            BoundaryConditionType.TEMPERATURE,
            temperature=temperature,
            ref_temperature=ref_temperature,
        )


class SmallDisturbanceMotion(BoundaryCondition):
    """Linearized pressure about a steady state.

    Parameters
    ----------
    pressure : Any
        Steady (base) pressure, real.
    dpressure : Any
        Perturbation pressure, real or complex.
    dnormal : Any
        Perturbation of the face normal induced by the motion, real or complex
        3-vector.
    """

    def __init__(self, pressure: Any, dpressure: Any, dnormal: Any):
        super().__init__(
            BoundaryConditionType.SMALL_DISTURBANCE_MOTION,
            pressure=pressure,
            dpressure=dpressure,
            dnormal=dnormal,
        )


class DirichletCondition(BoundaryCondition):
    """Represents a Dirichlet boundary condition (fixed DOFs).

    Dirichlet conditions are enforced by the solver on the global system, so
    the residual assembly skips them.

    Parameters
    ----------
    dofs : Iterable[int]
        Global degree of freedom indices (0-based) where the condition is applied.
    value : float
        Fixed value imposed on the specified DOFs.

    Examples
    --------
    >>> bc = DirichletCondition([0, 1], 0.0)  # Fix DOFs 0 and 1 at 0 displacement
    """

    def __init__(self, dofs: Iterable[int], value: float = 0.0):
        super().__init__(BoundaryConditionType.DIRICHLET)
        self.dofs = tuple(sorted(set(dofs)))
        self.value = value


class BoundaryConditionMap:
    """Multimap from boundary or subdomain id to boundary conditions.

    Insertion order is kept per id, but callers must not rely on it: all
    conditions under an id are applied additively.
    """

    def __init__(self):
        self._map: Dict[int, List[BoundaryCondition]] = defaultdict(list)

    def add(self, key: int, bc: BoundaryCondition) -> None:
        self._map[key].append(bc)

    def equal_range(self, key: int) -> Tuple[BoundaryCondition, ...]:
        """All conditions registered under ``key`` (empty when none)."""
        return tuple(self._map.get(key, ()))

    def keys(self) -> Tuple[int, ...]:
        return tuple(self._map)

    def items(self) -> Iterator[Tuple[int, BoundaryCondition]]:
        for key, bcs in self._map.items():
            for bc in bcs:
                yield key, bc

    def __contains__(self, key: int) -> bool:
        return bool(self._map.get(key))

    def __len__(self) -> int:
        return sum(len(bcs) for bcs in self._map.values())

    def __repr__(self):
        return f"<BoundaryConditionMap ids={list(self._map)} conditions={len(self)}>"
