"""
fem-struct: residual and Jacobian assembly for nonlinear structural analysis.

Beam, shell and solid elements with 6 DOFs per node, assembled into the
residual, Jacobian, Jacobian-vector products and parameter sensitivities
consumed by an external nonlinear solver.
"""

from .core import (
    AssemblyConfig,
    BoundaryConditionMap,
    BoundaryConditionType,
    DofMap,
    IsotropicMaterial,
    MeshElement,
    MeshModel,
    Node,
    Parameter,
    StructuralDiscipline,
    SystemInitialization,
)
from .core.structural_assembly import StructuralNonlinearAssembly
from .elements import ElementFamily, StructuralElement, build_structural_element

__version__ = "0.1.0"

__all__ = [
    "AssemblyConfig",
    "BoundaryConditionMap",
    "BoundaryConditionType",
    "DofMap",
    "ElementFamily",
    "IsotropicMaterial",
    "MeshElement",
    "MeshModel",
    "Node",
    "Parameter",
    "StructuralDiscipline",
    "StructuralElement",
    "StructuralNonlinearAssembly",
    "SystemInitialization",
    "build_structural_element",
]
