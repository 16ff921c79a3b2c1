"""
Core module for fem-struct.

Provides mesh entities, DOF numbering, materials, property cards, boundary
conditions, field functions, configuration and the assembly driver.
"""

from .assembler import JacobianCheckResult, NonlinearImplicitAssembly, PostAssemblyOperation
from .bc import (
    BoundaryCondition,
    BoundaryConditionMap,
    BoundaryConditionType,
    DirichletCondition,
    SmallDisturbanceMotion,
    SurfacePressure,
    TemperatureLoad,
)
from .config import AssemblyConfig
from .dofs import DofMap
from .field_function import ConstantFunction, FieldFunction, Parameter
from .material import IsotropicMaterial
from .mesh import ElementType, MeshElement, MeshModel, Node
from .properties import (
    BeamPropertyCard,
    ElementPropertyCard,
    SectionStiffness,
    ShellPropertyCard,
    SolidPropertyCard,
    StrainType,
)
from .system import StructuralDiscipline, SystemInitialization

__all__ = [
    "AssemblyConfig",
    "BeamPropertyCard",
    "BoundaryCondition",
    "BoundaryConditionMap",
    "BoundaryConditionType",
    "ConstantFunction",
    "DirichletCondition",
    "DofMap",
    "ElementPropertyCard",
    "ElementType",
    "FieldFunction",
    "IsotropicMaterial",
    "JacobianCheckResult",
    "MeshElement",
    "MeshModel",
    "Node",
    "NonlinearImplicitAssembly",
    "Parameter",
    "PostAssemblyOperation",
    "SectionStiffness",
    "ShellPropertyCard",
    "SmallDisturbanceMotion",
    "SolidPropertyCard",
    "StrainType",
    "StructuralDiscipline",
    "SurfacePressure",
    "SystemInitialization",
    "TemperatureLoad",
]
