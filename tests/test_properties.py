"""
Tests for materials, field functions, property cards and boundary conditions.
"""

import numpy as np
import pytest

from fem_struct.core.bc import (
    BoundaryCondition,
    BoundaryConditionMap,
    BoundaryConditionType,
    DirichletCondition,
    SmallDisturbanceMotion,
    SurfacePressure,
    TemperatureLoad,
)
from fem_struct.core.field_function import (
    ConstantFunction,
    FieldFunction,
    Parameter,
    as_field_function,
)
from fem_struct.core.material import IsotropicMaterial
from fem_struct.core.properties import (
    BeamPropertyCard,
    ShellPropertyCard,
    SolidPropertyCard,
    StrainType,
)

ORIGIN = np.zeros(3)


# =============================================================================
# Materials
# =============================================================================


class TestIsotropicMaterial:
    def test_shear_modulus(self, aluminum):
        assert aluminum.G == pytest.approx(70e9 / 2.66)

    @pytest.mark.parametrize(
        "kwargs",
        [{"E": -1.0, "nu": 0.3, "rho": 1.0}, {"E": 1.0, "nu": 0.5, "rho": 1.0}, {"E": 1.0, "nu": 0.3, "rho": -1.0}],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            IsotropicMaterial(name="bad", **kwargs)

    def test_parameter_properties(self):
        E, rho = Parameter("E", 70e9), Parameter("rho", 2700.0)
        material = IsotropicMaterial(name="param", E=E, nu=0.33, rho=rho)
        card = ShellPropertyCard(material, h=0.01)
        assert card.depends_on(E) and card.depends_on(rho)

        section = card.section_stiffness()(ORIGIN, 0.0)
        dsection = card.section_stiffness().derivative(E, ORIGIN, 0.0)
        np.testing.assert_allclose(dsection.extension, section.extension / 70e9, rtol=1e-12)
        np.testing.assert_allclose(dsection.bending, section.bending / 70e9, rtol=1e-12)

        E.value = 35e9
        np.testing.assert_allclose(card.section_stiffness()(ORIGIN, 0.0).extension, section.extension / 2.0)


# =============================================================================
# Field functions
# =============================================================================


class TestFieldFunctions:
    def test_constant(self):
        f = as_field_function("E", 2.0)
        assert isinstance(f, ConstantFunction)
        assert f(ORIGIN, 0.0) == 2.0
        assert f.derivative(Parameter("p", 1.0), ORIGIN, 0.0) == 0.0

    def test_callable_of_position_and_time(self):
        f = as_field_function("T", lambda p, t: p[0] + 10.0 * t)
        assert f([1.0, 0.0, 0.0], 0.5) == pytest.approx(6.0)

    def test_parameter_has_unit_derivative(self):
        p = Parameter("p", 3.0)
        f = as_field_function("pressure", p)
        assert f(ORIGIN, 0.0) == 3.0
        assert f.depends_on(p)
        assert f.has_derivative(p)
        assert f.derivative(p, ORIGIN, 0.0) == 1.0
        p.value = 4.0
        assert f(ORIGIN, 0.0) == 4.0

    def test_dependency_without_derivative(self):
        p = Parameter("p", 3.0)
        f = FieldFunction("h", lambda x, t: p.value**2, parameters=[p])
        assert f.depends_on(p)
        assert not f.has_derivative(p)
        with pytest.raises(KeyError):
            f.derivative(p, ORIGIN, 0.0)

    def test_explicit_derivative(self):
        p = Parameter("p", 3.0)
        f = FieldFunction("h", lambda x, t: p.value**2, derivatives={p: lambda x, t: 2.0 * p.value})
        assert f.depends_on(p)
        assert f.derivative(p, ORIGIN, 0.0) == 6.0

    def test_existing_field_function_is_kept(self):
        f = FieldFunction("x", lambda p, t: 1.0)
        assert as_field_function("x", f) is f


# =============================================================================
# Property cards
# =============================================================================


class TestPropertyCards:
    def test_beam_inertia(self, beam_card):
        card = beam_card()
        M = card.inertia_matrix()(ORIGIN, 0.0)
        rho, A = 2700, 1.0e-3
        np.testing.assert_allclose(
            np.diag(M), [rho * A, rho * A, rho * A, rho * 2.8e-7, rho * 2.0e-7, rho * 8.0e-8]
        )

    def test_beam_section(self, beam_card, aluminum):
        section = beam_card().section_stiffness()(ORIGIN, 0.0)
        assert section.extension[0, 0] == pytest.approx(70e9 * 1.0e-3)
        np.testing.assert_allclose(
            np.diag(section.bending), [aluminum.G * 1.5e-7, 70e9 * 2.0e-7, 70e9 * 8.0e-8]
        )
        np.testing.assert_allclose(np.diag(section.shear), 5.0 / 6.0 * aluminum.G * 1.0e-3)
        np.testing.assert_allclose(section.thermal_strain, [2.3e-5])

    def test_shell_section(self, shell_card):
        section = shell_card(h=0.02).section_stiffness()(ORIGIN, 0.0)
        factor = 70e9 / (1 - 0.33**2)
        assert section.extension[0, 0] == pytest.approx(factor * 0.02)
        assert section.extension[0, 1] == pytest.approx(factor * 0.02 * 0.33)
        assert section.bending[2, 2] == pytest.approx(factor * 0.02**3 / 12 * 0.335)
        np.testing.assert_allclose(section.thermal_strain, [2.3e-5, 2.3e-5, 0.0])

    def test_solid_inertia_has_no_rotational_mass(self, solid_card):
        M = solid_card().inertia_matrix()(ORIGIN, 0.0)
        np.testing.assert_allclose(np.diag(M), [2700, 2700, 2700, 0, 0, 0])

    def test_spatially_varying_field(self, shell_card):
        card = shell_card(h=lambda p, t: 0.01 * (1.0 + p[0]))
        M = card.inertia_matrix()
        assert M([1.0, 0.0, 0.0], 0.0)[0, 0] == pytest.approx(2700 * 0.02)

    def test_missing_section_data(self, aluminum):
        with pytest.raises(KeyError, match="missing"):
            BeamPropertyCard(aluminum, A=1.0, Iy=1.0, Iz=1.0)

    def test_unknown_section_data(self, aluminum):
        with pytest.raises(KeyError, match="unknown"):
            ShellPropertyCard(aluminum, h=0.01, width=1.0)

    def test_zero_y_vector(self, beam_card):
        with pytest.raises(ValueError):
            beam_card(y_vector=(0.0, 0.0, 0.0))

    def test_solid_rejects_von_karman(self, aluminum):
        with pytest.raises(ValueError):
            SolidPropertyCard(aluminum, strain_type=StrainType.VON_KARMAN)

    def test_mass_flag(self, shell_card):
        assert shell_card(diagonal_mass=True).if_diagonal_mass_matrix()
        assert not shell_card().if_diagonal_mass_matrix()


class TestCardSensitivities:
    def test_shell_thickness_derivative(self, shell_card):
        h = Parameter("h", 0.02)
        card = shell_card(h=h)
        assert card.depends_on(h) and card.has_derivative(h)

        dsection = card.section_stiffness().derivative(h, ORIGIN, 0.0)
        section = card.section_stiffness()(ORIGIN, 0.0)
        np.testing.assert_allclose(dsection.extension, section.extension / 0.02, rtol=1e-12)
        np.testing.assert_allclose(dsection.bending, 3.0 * section.bending / 0.02, rtol=1e-12)
        np.testing.assert_allclose(dsection.shear, section.shear / 0.02, rtol=1e-12)
        assert dsection.drilling == pytest.approx(section.drilling / 0.02)
        np.testing.assert_allclose(dsection.thermal_strain, 0.0)

        dM = card.inertia_matrix().derivative(h, ORIGIN, 0.0)
        rot = 2700 * 3 * 0.02**2 / 12
        np.testing.assert_allclose(np.diag(dM), [2700, 2700, 2700, rot, rot, rot], rtol=1e-12)

    def test_beam_modulus_derivative(self, beam_card):
        E = Parameter("E", 70e9)
        card = beam_card(E=E)
        dsection = card.section_stiffness().derivative(E, ORIGIN, 0.0)
        assert dsection.extension[0, 0] == pytest.approx(1.0e-3)
        assert dsection.bending[1, 1] == pytest.approx(2.0e-7)
        np.testing.assert_allclose(card.inertia_matrix().derivative(E, ORIGIN, 0.0), 0.0)

    def test_chain_rule_through_field_derivative(self, shell_card):
        s = Parameter("s", 2.0)
        thickness = FieldFunction(
            "h", lambda p, t: 0.01 * s.value, derivatives={s: lambda p, t: 0.01}
        )
        card = shell_card(h=thickness)
        dM = card.inertia_matrix().derivative(s, ORIGIN, 0.0)
        assert dM[0, 0] == pytest.approx(2700 * 0.01)

    def test_unrelated_parameter(self, shell_card):
        card = shell_card()
        p = Parameter("p", 1.0)
        assert not card.depends_on(p)
        assert card.has_derivative(p)
        dsection = card.section_stiffness().derivative(p, ORIGIN, 0.0)
        np.testing.assert_allclose(dsection.extension, 0.0)

    def test_dependency_without_derivative(self, shell_card):
        p = Parameter("p", 0.01)
        card = shell_card(h=FieldFunction("h", lambda x, t: p.value, parameters=[p]))
        assert card.depends_on(p)
        assert not card.has_derivative(p)
        with pytest.raises(KeyError):
            card.section_stiffness().derivative(p, ORIGIN, 0.0)


# =============================================================================
# Boundary conditions
# =============================================================================


class TestBoundaryConditions:
    def test_typed_constructors(self):
        assert SurfacePressure(1.0).type is BoundaryConditionType.SURFACE_PRESSURE
        temp = TemperatureLoad(300.0, ref_temperature=293.0)
        assert temp.get("ref_temperature")(ORIGIN, 0.0) == 293.0
        motion = SmallDisturbanceMotion(1.0, 0.5j, [0.0, 0.0, 1.0])
        assert motion.get("dpressure")(ORIGIN, 0.0) == 0.5j
        np.testing.assert_array_equal(motion.get("dnormal")(ORIGIN, 0.0), [0.0, 0.0, 1.0])

    def test_missing_field(self):
        with pytest.raises(KeyError):
            SurfacePressure(1.0).get("temperature")

    def test_parameter_dependency(self):
        p = Parameter("p", 1.0)
        bc = SurfacePressure(p)
        assert bc.depends_on(p)
        assert not TemperatureLoad(300.0).depends_on(p)

    def test_add_field(self):
        bc = BoundaryCondition(BoundaryConditionType.POINT_LOAD)
        assert not bc.contains("force")
        bc.add("force", [1.0, 0.0, 0.0])
        assert bc.contains("force")

    def test_dirichlet_dofs(self):
        bc = DirichletCondition([3, 1, 3], 0.5)
        assert bc.dofs == (1, 3)
        assert bc.value == 0.5


class TestBoundaryConditionMap:
    def test_multimap(self):
        bcs = BoundaryConditionMap()
        a, b, c = SurfacePressure(1.0), SurfacePressure(2.0), TemperatureLoad(10.0)
        bcs.add(1, a)
        bcs.add(1, b)
        bcs.add(2, c)
        assert bcs.equal_range(1) == (a, b)
        assert bcs.equal_range(3) == ()
        assert 2 in bcs and 3 not in bcs
        assert len(bcs) == 3
        assert sorted(bcs.keys()) == [1, 2]
        assert list(bcs.items()) == [(1, a), (1, b), (2, c)]
