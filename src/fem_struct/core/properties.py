"""
Element property cards.

A property card collects the material and section data of one physical
region and exposes it to the element routines as field functions:

- ``inertia_matrix()``: 6×6 inertia per unit length/area/volume, ordered as
  the nodal DOFs ``[ux, uy, uz, θx, θy, θz]``
- ``section_stiffness()``: section resultants consumed by the stiffness and
  thermal routines
- ``if_diagonal_mass_matrix()``: lumped (True) or consistent (False) mass

Every scalar entry of a card (``E``, ``nu``, ``A``, ``h``...) is itself a
field function, so cards can vary in space and depend on design parameters.
Parameter sensitivities of the composite quantities are obtained with the
chain rule: the analytic derivative of each scalar field times the partial
derivative of the closed-form section formula, evaluated with a complex step
(exact to round-off for these analytic formulas).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Iterable, Optional

import numpy as np

from fem_struct.core.field_function import FieldFunction, Parameter, as_field_function
from fem_struct.core.material import IsotropicMaterial

_COMPLEX_STEP = 1.0e-30


class StrainType(Enum):
    """Strain measure used by the stiffness routines."""

    LINEAR = "linear"
    VON_KARMAN = "von_karman"


@dataclass
class SectionStiffness:
    """Section resultant matrices at a point.

    Attributes
    ----------
    extension : np.ndarray
        Axial (1×1) for beams, membrane (3×3) for shells, 3D elasticity (6×6)
        for solids.
    bending : np.ndarray or None
        Torsion and bending (3×3) for beams, plate bending (3×3) for shells.
    shear : np.ndarray or None
        Transverse shear (2×2).
    drilling : float
        Reference drilling stiffness for shells, scaled by the element
        drilling factor.
    thermal_strain : np.ndarray
        Free thermal strain per unit temperature change, same layout as
        ``extension``.
    """

    extension: np.ndarray
    bending: Optional[np.ndarray] = None
    shear: Optional[np.ndarray] = None
    drilling: float = 0.0
    thermal_strain: Optional[np.ndarray] = None

    def scale_add(self, scale: float, other: "SectionStiffness") -> "SectionStiffness":
        """Return ``self + scale * other`` field by field."""
        values = {}
        for f in fields(self):
            a, b = getattr(self, f.name), getattr(other, f.name)
            values[f.name] = None if a is None else a + scale * b
        return SectionStiffness(**values)

    def imag(self) -> "SectionStiffness":
        values = {}
        for f in fields(self):
            a = getattr(self, f.name)
            values[f.name] = None if a is None else np.imag(a)
        return SectionStiffness(**values)

    def zeros_like(self) -> "SectionStiffness":
        values = {}
        for f in fields(self):
            a = getattr(self, f.name)
            values[f.name] = None if a is None else np.zeros_like(np.real(a))
        return SectionStiffness(**values)


class _SectionFunction(FieldFunction):
    """Card quantity exposed as a field function with card-level sensitivities."""

    def __init__(self, name: str, card: "ElementPropertyCard", evaluate):
        super().__init__(name, lambda p, t: evaluate(card._values(p, t)))
        self._card = card
        self._evaluate = evaluate

    def depends_on(self, param: Parameter) -> bool:
        return self._card.depends_on(param)

    def has_derivative(self, param: Parameter) -> bool:
        return self._card.has_derivative(param)

    def derivative(self, param: Parameter, p, t):
        p = np.asarray(p, dtype=float)
        values = self._card._values(p, t)
        result = _zero(self._evaluate(values))
        for name, func in self._card.fields.items():
            if not func.depends_on(param):
                continue
            dvalue = func.derivative(param, p, t)
            perturbed = dict(values)
            perturbed[name] = values[name] + 1j * _COMPLEX_STEP
            partial = _imag(self._evaluate(perturbed))
            result = _axpy(result, dvalue / _COMPLEX_STEP, partial)
        return result


def _zero(value):
    if isinstance(value, SectionStiffness):
        return value.zeros_like()
    return np.zeros_like(np.real(value))


def _imag(value):
    if isinstance(value, SectionStiffness):
        return value.imag()
    return np.imag(value)


def _axpy(result, scale, value):
    if isinstance(result, SectionStiffness):
        return result.scale_add(scale, value)
    return result + scale * value


class ElementPropertyCard(ABC):
    """Base class for the section property cards.

    Parameters
    ----------
    material : IsotropicMaterial
        Material providing default ``E``, ``nu``, ``rho`` and ``alpha``.
    diagonal_mass : bool
        Use the lumped (diagonal) mass approximation.
    strain_type : StrainType
        Strain measure for the stiffness routines.
    **overrides
        Field values replacing or complementing the material and section
        data. Floats, callables ``(p, t)``, :class:`FieldFunction` and
        :class:`Parameter` objects are accepted.
    """

    dim: int = 0
    section_fields: Iterable[str] = ()

    def __init__(
        self,
        material: IsotropicMaterial,
        diagonal_mass: bool = False,
        strain_type: StrainType = StrainType.LINEAR,
        **overrides: Any,
    ):
        self.material = material
        self.diagonal_mass = diagonal_mass
        self.strain_type = StrainType(strain_type)

        values: Dict[str, Any] = {
            "E": material.E,
            "nu": material.nu,
            "rho": material.rho,
            "alpha": material.alpha,
        }
        values.update(overrides)
        missing = [name for name in self.section_fields if name not in values]
        if missing:
            raise KeyError(f"{type(self).__name__} is missing section data: {missing}")
        unknown = set(values) - set(self.section_fields) - {"E", "nu", "rho", "alpha"}
        if unknown:
            raise KeyError(f"{type(self).__name__} got unknown section data: {sorted(unknown)}")

        self.fields: Dict[str, FieldFunction] = {
            name: as_field_function(name, value) for name, value in values.items()
        }

    def _values(self, p, t) -> Dict[str, Any]:
        return {name: func(p, t) for name, func in self.fields.items()}

    def if_diagonal_mass_matrix(self) -> bool:
        return self.diagonal_mass

    def inertia_matrix(self) -> FieldFunction:
        """6×6 inertia matrix field ``(p, t) -> M``."""
        return _SectionFunction("inertia_matrix", self, self._inertia)

    def section_stiffness(self) -> FieldFunction:
        """Section resultant field ``(p, t) -> SectionStiffness``."""
        return _SectionFunction("section_stiffness", self, self._stiffness)

    def depends_on(self, param: Parameter) -> bool:
        return any(func.depends_on(param) for func in self.fields.values())

    def has_derivative(self, param: Parameter) -> bool:
        return all(func.has_derivative(param) for func in self.fields.values())

    @abstractmethod
    def _inertia(self, values: Dict[str, Any]) -> np.ndarray: ...

    @abstractmethod
    def _stiffness(self, values: Dict[str, Any]) -> SectionStiffness: ...

    def __repr__(self):
        return (
            f"<{type(self).__name__} material={self.material.name} "
            f"lumped={self.diagonal_mass} strain={self.strain_type.value}>"
        )


class BeamPropertyCard(ElementPropertyCard):
    """Timoshenko beam section.

    Section data: ``A`` (area), ``Iy``/``Iz`` (second moments about the
    local y/z axes), ``J`` (torsion constant) and optionally ``kappa``
    (shear correction factor, default 5/6).

    Parameters
    ----------
    y_vector : Iterable[float]
        Global direction fixing the local y axis of the beam; must not be
        parallel to the beam axis.
    """

    dim = 1
    section_fields = ("A", "Iy", "Iz", "J", "kappa")

    def __init__(self, material, y_vector=(0.0, 1.0, 0.0), **kwargs):
        kwargs.setdefault("kappa", 5.0 / 6.0)
        super().__init__(material, **kwargs)
        y_vector = np.asarray(y_vector, dtype=float)
        if y_vector.shape != (3,) or np.linalg.norm(y_vector) == 0.0:
            raise ValueError(f"y_vector must be a non-zero 3-vector, got {y_vector}")
        self.y_vector = y_vector

    def _inertia(self, v):
        rho, A, Iy, Iz = v["rho"], v["A"], v["Iy"], v["Iz"]
        return np.diag([rho * A, rho * A, rho * A, rho * (Iy + Iz), rho * Iy, rho * Iz])

    def _stiffness(self, v):
        E, nu = v["E"], v["nu"]
        G = E / (2.0 * (1.0 + nu))
        return SectionStiffness(
            extension=np.array([[E * v["A"]]]),
            bending=np.diag([G * v["J"], E * v["Iy"], E * v["Iz"]]),
            shear=np.diag([v["kappa"] * G * v["A"], v["kappa"] * G * v["A"]]),
            thermal_strain=np.array([v["alpha"]]),
        )


class ShellPropertyCard(ElementPropertyCard):
    """Mindlin shell section of thickness ``h``.

    Rotational inertia uses ρh³/12 for the three rotations, the drilling
    rotation included.
    """

    dim = 2
    section_fields = ("h", "kappa")

    def __init__(self, material, **kwargs):
        kwargs.setdefault("kappa", 5.0 / 6.0)
        super().__init__(material, **kwargs)

    def _inertia(self, v):
        rho, h = v["rho"], v["h"]
        I_rot = rho * h**3 / 12.0
        return np.diag([rho * h, rho * h, rho * h, I_rot, I_rot, I_rot])

    def _stiffness(self, v):
        E, nu, h = v["E"], v["nu"], v["h"]
        G = E / (2.0 * (1.0 + nu))
        plane_stress = np.array([[1.0, nu, 0.0], [nu, 1.0, 0.0], [0.0, 0.0, (1.0 - nu) / 2.0]])
        return SectionStiffness(
            extension=E * h / (1.0 - nu**2) * plane_stress,
            bending=E * h**3 / (12.0 * (1.0 - nu**2)) * plane_stress,
            shear=v["kappa"] * G * h * np.eye(2),
            drilling=G * h,
            thermal_strain=v["alpha"] * np.array([1.0, 1.0, 0.0]),
        )


class SolidPropertyCard(ElementPropertyCard):
    """3D isotropic continuum. Rotational DOFs carry neither mass nor stiffness."""

    dim = 3

    def __init__(self, material, **kwargs):
        if StrainType(kwargs.get("strain_type", StrainType.LINEAR)) != StrainType.LINEAR:
            raise ValueError("Solid elements only support linear strain")
        super().__init__(material, **kwargs)

    def _inertia(self, v):
        rho = v["rho"]
        return np.diag([rho, rho, rho, 0.0, 0.0, 0.0])

    def _stiffness(self, v):
        E, nu = v["E"], v["nu"]

        # Lamé constants
        lambd = E * nu / ((1 + nu) * (1 - 2 * nu))
        mu = E / (2 * (1 + nu))

        C = np.array(
            [
                [lambd + 2 * mu, lambd, lambd, 0, 0, 0],
                [lambd, lambd + 2 * mu, lambd, 0, 0, 0],
                [lambd, lambd, lambd + 2 * mu, 0, 0, 0],
                [0, 0, 0, mu, 0, 0],
                [0, 0, 0, 0, mu, 0],
                [0, 0, 0, 0, 0, mu],
            ]
        )
        return SectionStiffness(
            extension=C,
            thermal_strain=v["alpha"] * np.array([1.0, 1.0, 1.0, 0.0, 0.0, 0.0]),
        )
