from .beam import BeamStrategy
from .elements import ElementFamily, ElementStrategy, StructuralElement, build_structural_element
from .local_elem import Local1DElem, Local2DElem, Local3DElem, LocalElemBase
from .shell import ShellStrategy
from .solid import SolidStrategy

__all__ = [
    "BeamStrategy",
    "ElementFamily",
    "ElementStrategy",
    "Local1DElem",
    "Local2DElem",
    "Local3DElem",
    "LocalElemBase",
    "ShellStrategy",
    "SolidStrategy",
    "StructuralElement",
    "build_structural_element",
]
