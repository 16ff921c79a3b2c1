from dataclasses import dataclass
from numbers import Real
from typing import Any


def _plain(value: Any) -> bool:
    return isinstance(value, Real)


@dataclass
class IsotropicMaterial:
    """
    Class representing an isotropic material with uniform properties in all directions.

    Any property may be a :class:`~fem_struct.core.field_function.Parameter`
    (or another field value accepted by the property cards); only plain
    numbers are range checked.

    Parameters
    ----------
    name : str
        The name of the material.
    E : float
        Young's Modulus of the material.
    nu : float
        Poisson's ratio of the material.
    rho : float
        Density of the material.
    alpha : float
        Coefficient of thermal expansion, used by thermal loads.
    """

    name: str
    E: Any
    nu: Any
    rho: Any
    alpha: Any = 0.0

    def __post_init__(self):
        if _plain(self.E) and self.E <= 0:
            raise ValueError(f"Young's modulus must be positive, got {self.E}")
        if _plain(self.nu) and not -1.0 < self.nu < 0.5:
            raise ValueError(f"Poisson's ratio must lie in (-1, 0.5), got {self.nu}")
        if _plain(self.rho) and self.rho < 0:
            raise ValueError(f"Density must be non-negative, got {self.rho}")

    @property
    def G(self) -> float:
        """Shear modulus E / (2(1+ν)); plain numbers only."""
        if not (_plain(self.E) and _plain(self.nu)):
            raise TypeError("Shear modulus is only available for plain E and nu values")
        return self.E / (2.0 * (1.0 + self.nu))
