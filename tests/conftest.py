"""Shared fixtures: materials, property cards and small meshes."""

import numpy as np
import pytest

from fem_struct.core.material import IsotropicMaterial
from fem_struct.core.mesh import ElementType, MeshElement, MeshModel, Node
from fem_struct.core.properties import (
    BeamPropertyCard,
    ShellPropertyCard,
    SolidPropertyCard,
    StrainType,
)

UNIT_SQUARE = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]])

UNIT_CUBE = np.array(
    [
        [0.0, 0.0, 0.0],
        [1.0, 0.0, 0.0],
        [1.0, 1.0, 0.0],
        [0.0, 1.0, 0.0],
        [0.0, 0.0, 1.0],
        [1.0, 0.0, 1.0],
        [1.0, 1.0, 1.0],
        [0.0, 1.0, 1.0],
    ]
)


# =============================================================================
# Materials and cards
# =============================================================================


@pytest.fixture
def aluminum():
    """Aluminum isotropic material with thermal expansion."""
    return IsotropicMaterial(name="aluminum", E=70e9, nu=0.33, rho=2700, alpha=2.3e-5)


@pytest.fixture
def beam_card(aluminum):
    def build(strain_type=StrainType.LINEAR, diagonal_mass=False, y_vector=(0.0, 1.0, 0.0), **kwargs):
        section = {"A": 1.0e-3, "Iy": 2.0e-7, "Iz": 8.0e-8, "J": 1.5e-7}
        section.update(kwargs)
        return BeamPropertyCard(
            aluminum,
            y_vector=y_vector,
            diagonal_mass=diagonal_mass,
            strain_type=strain_type,
            **section,
        )

    return build


@pytest.fixture
def shell_card(aluminum):
    def build(strain_type=StrainType.LINEAR, diagonal_mass=False, **kwargs):
        kwargs.setdefault("h", 0.01)
        return ShellPropertyCard(aluminum, diagonal_mass=diagonal_mass, strain_type=strain_type, **kwargs)

    return build


@pytest.fixture
def solid_card(aluminum):
    def build(diagonal_mass=False, **kwargs):
        return SolidPropertyCard(aluminum, diagonal_mass=diagonal_mass, **kwargs)

    return build


# =============================================================================
# Meshes
# =============================================================================


@pytest.fixture
def mesh_builder():
    """Build a mesh from coordinates and connectivity, with explicit ids."""

    def build(coords, connectivity, element_type, side_boundary_ids=None, subdomain_id=0):
        nodes = [Node(c, id=i) for i, c in enumerate(coords)]
        elements = [
            MeshElement(
                [nodes[i] for i in conn],
                element_type,
                subdomain_id=subdomain_id,
                side_boundary_ids=side_boundary_ids,
                id=e,
            )
            for e, conn in enumerate(connectivity)
        ]
        return MeshModel(nodes, elements)

    return build


@pytest.fixture
def beam_mesh(mesh_builder):
    def build(direction=(1.0, 0.0, 0.0), length=2.0, side_boundary_ids=None):
        end = length * np.asarray(direction, dtype=float) / np.linalg.norm(direction)
        return mesh_builder([np.zeros(3), end], [(0, 1)], ElementType.EDGE2, side_boundary_ids)

    return build


@pytest.fixture
def quad_mesh(mesh_builder):
    def build(coords=UNIT_SQUARE, side_boundary_ids=None):
        return mesh_builder(coords, [(0, 1, 2, 3)], ElementType.QUAD4, side_boundary_ids)

    return build


@pytest.fixture
def hexa_mesh(mesh_builder):
    def build(coords=UNIT_CUBE, side_boundary_ids=None):
        return mesh_builder(coords, [tuple(range(8))], ElementType.HEXA8, side_boundary_ids)

    return build


@pytest.fixture
def shell_grid(mesh_builder):
    """nx × ny grid of QUAD4 elements on [0, 1] × [0, 1] in the xy plane."""

    def build(nx=2, ny=2, side_boundary_ids=None):
        xs = np.linspace(0.0, 1.0, nx + 1)
        ys = np.linspace(0.0, 1.0, ny + 1)
        coords = [[x, y, 0.0] for y in ys for x in xs]
        connectivity = []
        for j in range(ny):
            for i in range(nx):
                n0 = j * (nx + 1) + i
                connectivity.append((n0, n0 + 1, n0 + nx + 2, n0 + nx + 1))
        return mesh_builder(coords, connectivity, ElementType.QUAD4, side_boundary_ids)

    return build
