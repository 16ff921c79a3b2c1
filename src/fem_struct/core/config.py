"""
Assembly Configuration Module.

YAML-based settings for the structural residual/Jacobian assembly.

Example YAML configuration:
    assembly:
      n_workers: 4
      acceleration_coefficient: 0.0
      velocity_coefficient: 0.0

    elements:
      follower_forces: false
      quadrature_order: 2
      shell_drilling_factor: 1.0e-3

    lumped_mass:
      sample_point: 0
      tolerance: 0.05

    jacobian_check:
      step: 1.0e-7
      rtol: 1.0e-4
      atol: 1.0e-8

    sensitivity:
      fd_step: 1.0e-6

Every section and every key is optional; missing values take the defaults
shown above.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml


@dataclass
class DriverConfig:
    """Element loop and Jacobian combination settings.

    The assembled Jacobian is ``∂R/∂X + c_a ∂R/∂Ẍ + c_v ∂R/∂Ẋ``, with the
    coefficients supplied by the time integration scheme. Both are zero for
    static analysis.
    """

    n_workers: int = 1
    acceleration_coefficient: float = 0.0
    velocity_coefficient: float = 0.0

    def __post_init__(self):
        if self.n_workers < 1:
            raise ValueError(f"n_workers must be at least 1: {self.n_workers}")


@dataclass
class ElementsConfig:
    """Element formulation settings."""

    follower_forces: bool = False
    quadrature_order: int = 2
    shell_drilling_factor: float = 1.0e-3

    def __post_init__(self):
        if self.quadrature_order < 1:
            raise ValueError(f"quadrature_order must be at least 1: {self.quadrature_order}")
        if self.shell_drilling_factor < 0:
            raise ValueError(f"shell_drilling_factor must be non-negative: {self.shell_drilling_factor}")


@dataclass
class LumpedMassConfig:
    """Lumped mass approximation.

    ``sample_point`` is the quadrature point index where the inertia field
    is sampled; ``tolerance`` is the relative row-sum deviation from the
    consistent mass above which a warning is logged.
    """

    sample_point: int = 0
    tolerance: float = 0.05

    def __post_init__(self):
        if self.sample_point < 0:
            raise ValueError(f"sample_point must be non-negative: {self.sample_point}")
        if self.tolerance <= 0:
            raise ValueError(f"tolerance must be positive: {self.tolerance}")


@dataclass
class JacobianCheckConfig:
    """Central-difference Jacobian verification."""

    step: float = 1.0e-7
    rtol: float = 1.0e-4
    atol: float = 1.0e-8

    def __post_init__(self):
        if self.step <= 0:
            raise ValueError(f"step must be positive: {self.step}")


@dataclass
class SensitivityConfig:
    """Finite-difference fallback for residual sensitivities."""

    fd_step: float = 1.0e-6

    def __post_init__(self):
        if self.fd_step <= 0:
            raise ValueError(f"fd_step must be positive: {self.fd_step}")


@dataclass
class AssemblyConfig:
    """Complete assembly configuration."""

    assembly: DriverConfig = field(default_factory=DriverConfig)
    elements: ElementsConfig = field(default_factory=ElementsConfig)
    lumped_mass: LumpedMassConfig = field(default_factory=LumpedMassConfig)
    jacobian_check: JacobianCheckConfig = field(default_factory=JacobianCheckConfig)
    sensitivity: SensitivityConfig = field(default_factory=SensitivityConfig)

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> "AssemblyConfig":
        """Load configuration from YAML file.

        Parameters
        ----------
        yaml_path : str or Path
            Path to the YAML configuration file.

        Returns
        -------
        AssemblyConfig
            Validated configuration object.

        Raises
        ------
        FileNotFoundError
            If the YAML file does not exist.
        ValueError
            If the configuration is invalid.
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssemblyConfig":
        """Create configuration from dictionary.

        Raises
        ------
        ValueError
            On unknown sections or keys, or invalid values.
        """
        sections = {
            "assembly": DriverConfig,
            "elements": ElementsConfig,
            "lumped_mass": LumpedMassConfig,
            "jacobian_check": JacobianCheckConfig,
            "sensitivity": SensitivityConfig,
        }
        unknown = set(data) - set(sections)
        if unknown:
            raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")

        kwargs = {}
        for name, section_cls in sections.items():
            section_data = data.get(name) or {}
            try:
                kwargs[name] = section_cls(**section_data)
            except TypeError as e:
                raise ValueError(f"Invalid '{name}' configuration: {e}") from e
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for serialization."""
        return asdict(self)

    def save_yaml(self, yaml_path: Union[str, Path]) -> None:
        """Save configuration to YAML file.

        Parameters
        ----------
        yaml_path : str or Path
            Path to the output YAML file.
        """
        with open(yaml_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def validate(self) -> List[str]:
        """Validate the complete configuration.

        Returns
        -------
        list of str
            List of validation warnings (empty if all OK).
        """
        warnings = []

        if self.elements.follower_forces:
            warnings.append("Follower forces are enabled: Jacobians of pressure loads are unavailable")
        if self.lumped_mass.sample_point >= self.elements.quadrature_order:
            warnings.append(
                f"lumped_mass.sample_point={self.lumped_mass.sample_point} exceeds the points of "
                f"a 1D rule of order {self.elements.quadrature_order}; beams will reject it"
            )
        if self.jacobian_check.step > 1.0e-3:
            warnings.append(f"jacobian_check.step={self.jacobian_check.step} is large for a derivative check")
        if self.sensitivity.fd_step > 1.0e-2:
            warnings.append(f"sensitivity.fd_step={self.sensitivity.fd_step} is large for a derivative estimate")

        return warnings

    def __str__(self) -> str:
        """Human-readable string representation."""
        lines = [
            "Assembly Configuration",
            "=" * 40,
            f"Workers: {self.assembly.n_workers}",
            f"  c_a={self.assembly.acceleration_coefficient}, c_v={self.assembly.velocity_coefficient}",
            f"Elements: quadrature order {self.elements.quadrature_order}, "
            f"follower forces {'on' if self.elements.follower_forces else 'off'}",
            f"Lumped mass: sample point {self.lumped_mass.sample_point}, "
            f"tolerance {self.lumped_mass.tolerance}",
        ]
        return "\n".join(lines)
