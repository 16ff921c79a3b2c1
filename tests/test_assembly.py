"""
Tests for the nonlinear implicit assembly driver.

The structural assembly is exercised end to end on small meshes: residual
and Jacobian values, the lifecycle and post-assembly hook, worker count
independence, complex (small-disturbance) assembly and the Jacobian
diagnostic.
"""

import logging

import numpy as np
import pytest

from fem_struct import StructuralNonlinearAssembly
from fem_struct.core.assembler import ElementContribution, PostAssemblyOperation
from fem_struct.core.bc import SmallDisturbanceMotion, SurfacePressure, TemperatureLoad
from fem_struct.core.config import AssemblyConfig, DriverConfig
from fem_struct.core.properties import StrainType
from fem_struct.core.system import StructuralDiscipline, SystemInitialization

VK = StrainType.VON_KARMAN


class RecordingOperation(PostAssemblyOperation):
    def __init__(self):
        self.calls = []

    def post_assembly(self, X, R, J, system):
        self.calls.append((X, R, J, system))


class ZeroJacobianAssembly(StructuralNonlinearAssembly):
    """Assembly reporting a wrong (zero) Jacobian."""

    def _elem_calculations(self, elem, request_jacobian):
        contribution = super()._elem_calculations(elem, request_jacobian)
        if request_jacobian:
            contribution = ElementContribution(f=contribution.f, jac=np.zeros_like(contribution.jac))
        return contribution


@pytest.fixture
def rng():
    return np.random.default_rng(7)


def attach(mesh, card, config=None, value_type=float, side_loads=(), volume_loads=(), cls=StructuralNonlinearAssembly):
    discipline = StructuralDiscipline()
    discipline.set_property_card(0, card)
    for boundary_id, bc in side_loads:
        discipline.add_side_load(boundary_id, bc)
    for bc in volume_loads:
        discipline.add_volume_load(0, bc)
    system = SystemInitialization(mesh, value_type=value_type)
    assembly = cls(config, value_type=value_type)
    assembly.attach(discipline, system)
    return assembly


def config_with(**driver):
    return AssemblyConfig(assembly=DriverConfig(**driver))


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    def test_requires_attachment(self, shell_grid):
        assembly = StructuralNonlinearAssembly()
        assert not assembly.attached
        with pytest.raises(RuntimeError):
            assembly.residual_and_jacobian(np.zeros(54))
        with pytest.raises(RuntimeError):
            assembly.reattach()
        with pytest.raises(RuntimeError):
            assembly.set_post_assembly_operation(RecordingOperation())

    def test_attach_builds_elements(self, shell_grid, shell_card):
        assembly = attach(shell_grid(2, 2), shell_card())
        assert assembly.attached
        assert len(assembly.elements) == 4
        assert assembly.system.n_dofs == 54

    def test_reattach_rebuilds_elements(self, shell_grid, shell_card):
        assembly = attach(shell_grid(2, 1), shell_card())
        before = assembly.elements
        assembly.discipline.set_property_card(0, shell_card(h=0.02))
        assembly.reattach()
        after = assembly.elements
        assert all(a is not b for a, b in zip(before, after))
        assert after[0].card.fields["h"]([0, 0, 0], 0.0) == 0.02

    def test_missing_property_card(self, shell_grid):
        system = SystemInitialization(shell_grid(1, 1))
        with pytest.raises(KeyError):
            StructuralNonlinearAssembly().attach(StructuralDiscipline(), system)

    def test_post_assembly_operation(self, shell_grid, shell_card, rng):
        assembly = attach(shell_grid(2, 1), shell_card())
        operation = RecordingOperation()
        assembly.set_post_assembly_operation(operation)
        assert assembly.post_assembly_operation is operation

        X = 1e-3 * rng.standard_normal(36)
        R, J = assembly.residual_and_jacobian(X)
        assert len(operation.calls) == 1
        X_seen, R_seen, J_seen, system = operation.calls[0]
        assert R_seen is R and J_seen is J
        assert system is assembly.system
        np.testing.assert_array_equal(X_seen, X)

        assembly.residual_and_jacobian(X, jacobian=False)
        assert operation.calls[1][2] is None

    def test_detach_forgets_operation(self, shell_grid, shell_card):
        assembly = attach(shell_grid(1, 1), shell_card())
        assembly.set_post_assembly_operation(RecordingOperation())
        assembly.detach()
        assert not assembly.attached
        assert assembly.post_assembly_operation is None
        assert assembly.elements == []
        with pytest.raises(RuntimeError):
            assembly.residual_and_jacobian(np.zeros(24))

    def test_clear_operation(self, shell_grid, shell_card):
        assembly = attach(shell_grid(1, 1), shell_card())
        operation = RecordingOperation()
        assembly.set_post_assembly_operation(operation)
        assembly.clear_post_assembly_operation()
        assembly.residual_and_jacobian(np.zeros(24))
        assert operation.calls == []

    def test_both_withheld_is_a_no_op(self, shell_grid, shell_card):
        assembly = attach(shell_grid(1, 1), shell_card())
        operation = RecordingOperation()
        assembly.set_post_assembly_operation(operation)
        assert assembly.residual_and_jacobian(np.zeros(24), residual=False, jacobian=False) == (None, None)
        assert operation.calls == []

    def test_solution_length_checked(self, shell_grid, shell_card):
        assembly = attach(shell_grid(1, 1), shell_card())
        with pytest.raises(ValueError, match="length 24"):
            assembly.residual_and_jacobian(np.zeros(23))


# =============================================================================
# Residual and Jacobian
# =============================================================================


class TestSingleBeam:
    """Free beam with a prescribed acceleration and no loads."""

    @pytest.fixture
    def setup(self, beam_mesh, beam_card):
        direction = np.array([1.0, 1.0, 0.0]) / np.sqrt(2.0)
        mesh = beam_mesh(direction=direction, length=2.0)
        card = beam_card(y_vector=(0.0, 0.0, 1.0))

        x_axis = direction
        z_axis = np.cross(x_axis, [0.0, 0.0, 1.0])
        z_axis /= np.linalg.norm(z_axis)
        y_axis = np.cross(z_axis, x_axis)
        T = np.column_stack([x_axis, y_axis, z_axis])

        rho, A, Iy, Iz = 2700, 1.0e-3, 2.0e-7, 8.0e-8
        inertia = np.diag([rho * A, rho * A, rho * A, rho * (Iy + Iz), rho * Iy, rho * Iz])
        M_local = np.kron(2.0 / 6.0 * np.array([[2.0, 1.0], [1.0, 2.0]]), inertia)
        T_b = np.kron(np.eye(4), T)
        return mesh, card, T_b @ M_local @ T_b.T

    def test_inertial_residual(self, setup, rng):
        mesh, card, M = setup
        assembly = attach(mesh, card)
        a = rng.standard_normal(12)
        assembly.system.update(acceleration=a)
        R, J = assembly.residual_and_jacobian(np.zeros(12))
        np.testing.assert_allclose(R, M @ a, rtol=1e-12, atol=1e-12)
        assert J.shape == (12, 12)

    def test_acceleration_coefficient(self, setup):
        mesh, card, M = setup
        _, J0 = attach(mesh, card).residual_and_jacobian(np.zeros(12), residual=False)
        _, J2 = attach(mesh, card, config_with(acceleration_coefficient=2.0)).residual_and_jacobian(
            np.zeros(12), residual=False
        )
        np.testing.assert_allclose((J2 - J0).toarray(), 2.0 * M, rtol=1e-12, atol=1e-12)

    def test_velocity_coefficient_has_no_effect(self, setup):
        mesh, card, _ = setup
        _, J0 = attach(mesh, card).residual_and_jacobian(np.zeros(12))
        _, J3 = attach(mesh, card, config_with(velocity_coefficient=3.0)).residual_and_jacobian(np.zeros(12))
        np.testing.assert_array_equal(J0.toarray(), J3.toarray())


class TestShellGrid:
    def test_matches_element_sum(self, shell_grid, shell_card, rng):
        mesh = shell_grid(2, 1)
        assembly = attach(mesh, shell_card(strain_type=VK))
        X = 1e-3 * rng.standard_normal(36)
        R, J = assembly.residual_and_jacobian(X)

        R_expected = np.zeros(36)
        J_expected = np.zeros((36, 36))
        dof_map = assembly.system.dof_map
        for elem in assembly.elements:
            dofs = dof_map.element_dofs(elem.mesh_element)
            elem.set_solution(X[dofs])
            f = np.zeros(24)
            jac = np.zeros((24, 24))
            elem.internal_residual(True, f, jac)
            R_expected[dofs] += f
            J_expected[np.ix_(dofs, dofs)] += jac
        np.testing.assert_allclose(R, R_expected, rtol=1e-12, atol=1e-12 * np.abs(R).max())
        np.testing.assert_allclose(J.toarray(), J_expected, rtol=1e-12, atol=1e-12 * np.abs(J_expected).max())

    def test_shared_edge_pressure(self, shell_grid, shell_card):
        assembly = attach(shell_grid(2, 2), shell_card(), volume_loads=[SurfacePressure(10.0)])
        R, _ = assembly.residual_and_jacobian(np.zeros(54))
        uz = R[2::6]
        # bilinear tributary areas on a 2×2 grid of 0.5×0.5 elements
        expected = -10.0 * 0.0625 * np.array([1, 2, 1, 2, 4, 2, 1, 2, 1])
        np.testing.assert_allclose(uz, expected, rtol=1e-12)
        assert uz.sum() == pytest.approx(-10.0)

    def test_worker_count_does_not_change_results(self, shell_grid, shell_card, rng):
        mesh = shell_grid(3, 3)
        loads = dict(
            volume_loads=[SurfacePressure(lambda p, t: 1.0e3 * p[0]), TemperatureLoad(330.0, 300.0)]
        )
        serial = attach(mesh, shell_card(strain_type=VK), config_with(n_workers=1), **loads)
        threaded = attach(mesh, shell_card(strain_type=VK), config_with(n_workers=4), **loads)
        X = 1e-3 * rng.standard_normal(serial.system.n_dofs)

        R1, J1 = serial.residual_and_jacobian(X)
        R4, J4 = threaded.residual_and_jacobian(X)
        np.testing.assert_array_equal(R1, R4)
        np.testing.assert_array_equal(J1.toarray(), J4.toarray())

    def test_linearized_product(self, shell_grid, shell_card, rng):
        assembly = attach(shell_grid(2, 1), shell_card(strain_type=VK))
        X = 1e-3 * rng.standard_normal(36)
        dX = rng.standard_normal(36)
        _, J = assembly.residual_and_jacobian(X, residual=False)
        expected = J @ dX
        np.testing.assert_allclose(
            assembly.linearized_jacobian_solution_product(X, dX),
            expected,
            rtol=1e-10,
            atol=1e-12 * np.abs(expected).max(),
        )

    def test_second_derivative_assembly(self, shell_grid, shell_card, rng):
        assembly = attach(shell_grid(2, 1), shell_card(strain_type=VK))
        X = 1e-3 * rng.standard_normal(36)
        dX = rng.standard_normal(36)
        H = assembly.second_derivative_dot_solution_assembly(X, dX).toarray()

        step = 1e-3
        fd = np.zeros((36, 36))
        for k in range(36):
            X_p = X.copy()
            X_p[k] += step
            plus = assembly.linearized_jacobian_solution_product(X_p, dX)
            X_p[k] -= 2.0 * step
            minus = assembly.linearized_jacobian_solution_product(X_p, dX)
            fd[:, k] = (plus - minus) / (2.0 * step)
        np.testing.assert_allclose(H, fd, rtol=1e-6, atol=1e-8 * np.abs(H).max())

    def test_follower_forces_reject_jacobian(self, shell_grid, shell_card):
        mesh = shell_grid(1, 1)
        discipline = StructuralDiscipline(follower_forces=True)
        discipline.set_property_card(0, shell_card())
        discipline.add_volume_load(0, SurfacePressure(1.0))
        assembly = StructuralNonlinearAssembly()
        assembly.attach(discipline, SystemInitialization(mesh))

        R, J = assembly.residual_and_jacobian(np.zeros(24), jacobian=False)
        assert J is None and R.any()
        with pytest.raises(NotImplementedError):
            assembly.residual_and_jacobian(np.zeros(24))

    def test_follower_pressure_turns_with_rigid_rotation(self, shell_grid, shell_card):
        mesh = shell_grid(1, 1)
        system = SystemInitialization(mesh)
        # soft card: the finite rotation strains the linear element, so its
        # internal forces are removed with an unloaded twin
        card = shell_card(E=1.0)
        loaded = StructuralDiscipline(follower_forces=True)
        loaded.set_property_card(0, card)
        loaded.add_volume_load(0, SurfacePressure(1.0e3))
        unloaded = StructuralDiscipline(follower_forces=True)
        unloaded.set_property_card(0, card)

        assembly = StructuralNonlinearAssembly()
        assembly.attach(loaded, system)
        internal = StructuralNonlinearAssembly()
        internal.attach(unloaded, system)

        a = 0.5
        R_x = np.array([[1.0, 0.0, 0.0], [0.0, np.cos(a), -np.sin(a)], [0.0, np.sin(a), np.cos(a)]])
        X = np.zeros(24)
        for node in mesh.nodes:
            X[list(system.dof_map.node_dofs(node.id)[:3])] = R_x @ node.coords - node.coords

        F0 = assembly.residual_and_jacobian(np.zeros(24), jacobian=False)[0]
        F1 = (
            assembly.residual_and_jacobian(X, jacobian=False)[0]
            - internal.residual_and_jacobian(X, jacobian=False)[0]
        )

        loads0, loads1 = F0.reshape(-1, 6)[:, :3], F1.reshape(-1, 6)[:, :3]
        np.testing.assert_allclose(loads0.sum(axis=0), [0.0, 0.0, -1.0e3], atol=1e-9)
        np.testing.assert_allclose(loads1.sum(axis=0), [0.0, 1.0e3 * np.sin(a), -1.0e3 * np.cos(a)], atol=1e-9)


class TestComplexAssembly:
    def test_linear_about_base_state(self, shell_grid, shell_card, rng):
        mesh = shell_grid(2, 1)
        base = 1e-3 * rng.standard_normal(36)
        X = rng.standard_normal(36) + 1j * rng.standard_normal(36)

        assembly = attach(mesh, shell_card(strain_type=VK), value_type=complex)
        assembly.system.update(base_solution=base)
        R, J = assembly.residual_and_jacobian(X)
        assert np.iscomplexobj(R)
        np.testing.assert_allclose(R, J @ X, rtol=1e-10, atol=1e-10 * np.abs(R).max())

        _, J_real = attach(mesh, shell_card(strain_type=VK)).residual_and_jacobian(base, residual=False)
        np.testing.assert_allclose(J.toarray(), J_real.toarray(), rtol=1e-12, atol=1e-6)

    def test_small_disturbance_load(self, shell_grid, shell_card):
        motion = SmallDisturbanceMotion(pressure=2.0, dpressure=1.0 + 2.0j, dnormal=[0.0, 0.0, 0.1j])
        assembly = attach(shell_grid(2, 2), shell_card(), value_type=complex, volume_loads=[motion])
        R, _ = assembly.residual_and_jacobian(np.zeros(54, dtype=complex), jacobian=False)
        assert R[2::6].sum() == pytest.approx(-1.0 - 1.8j)
        np.testing.assert_allclose(R[0::6], 0.0, atol=1e-14)


# =============================================================================
# Jacobian diagnostic
# =============================================================================


class TestJacobianCheck:
    def test_beam(self, beam_mesh, beam_card, rng):
        mesh = beam_mesh(direction=(1.0, 2.0, 0.5), side_boundary_ids={1: [3]})
        assembly = attach(
            mesh,
            beam_card(strain_type=VK),
            side_loads=[(3, SurfacePressure(1.0e3))],
            volume_loads=[SurfacePressure(50.0), TemperatureLoad(340.0, 300.0)],
        )
        results = assembly.check_numerical_jacobian(1e-3 * rng.standard_normal(12))
        assert len(results) == 1
        assert results[0].passed, results

    def test_shell(self, shell_grid, shell_card, rng):
        mesh = shell_grid(2, 2, side_boundary_ids={1: [4]})
        assembly = attach(
            mesh,
            shell_card(strain_type=VK, diagonal_mass=True),
            side_loads=[(4, SurfacePressure(2.0e3))],
            volume_loads=[
                SurfacePressure(1.0e3),
                TemperatureLoad(lambda p, t: 300.0 + 50.0 * p[0], 300.0),
                SmallDisturbanceMotion(1.0, 0.2, [0.0, 0.1, 0.0]),
            ],
        )
        assembly.system.update(acceleration=rng.standard_normal(54))
        results = assembly.check_numerical_jacobian(1e-3 * rng.standard_normal(54))
        assert [r.element_id for r in results] == [0, 1, 2, 3]
        assert all(r.passed for r in results), results

    def test_solid(self, hexa_mesh, solid_card, rng):
        assembly = attach(
            hexa_mesh(side_boundary_ids={5: [1], 2: [2]}),
            solid_card(),
            side_loads=[(1, SurfacePressure(1.0e5)), (2, SurfacePressure(-3.0e4))],
            volume_loads=[TemperatureLoad(400.0, 300.0)],
        )
        results = assembly.check_numerical_jacobian(1e-3 * rng.standard_normal(48))
        assert results[0].passed, results

    def test_wrong_jacobian_is_reported(self, shell_grid, shell_card, rng, caplog):
        assembly = attach(shell_grid(1, 1), shell_card(), cls=ZeroJacobianAssembly)
        with caplog.at_level(logging.WARNING, logger="fem_struct.core.assembler"):
            results = assembly.check_numerical_jacobian(1e-3 * rng.standard_normal(24))
        assert not results[0].passed
        assert results[0].max_abs_error > 0.0
        assert "Jacobian check failed" in caplog.text
