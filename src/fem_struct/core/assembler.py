"""
Nonlinear implicit assembly driver.

The driver loops over the element engines built at :meth:`attach`, asks a
subclass hook for each element's contribution and scatter-adds the results
into a fresh global residual vector and ``scipy.sparse`` Jacobian.

Element evaluation may run on a thread pool (``assembly.n_workers``).
Contributions are gathered in element order and scattered sequentially, so
the assembled values are identical for any number of workers.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp

from fem_struct.core.config import AssemblyConfig
from fem_struct.core.field_function import Parameter

logger = logging.getLogger(__name__)


class PostAssemblyOperation(ABC):
    """User operation run after each full residual/Jacobian assembly.

    Typical uses are diagnostics and coupled-physics side effects. The
    driver holds at most one operation and forgets it on :meth:`detach`.
    """

    @abstractmethod
    def post_assembly(
        self,
        X: np.ndarray,
        R: Optional[np.ndarray],
        J: Optional[sp.csr_matrix],
        system: Any,
    ) -> None: ...


@dataclass
class ElementContribution:
    """Residual and Jacobian blocks of one element, global frame.

    ``jac`` is ∂R/∂X, ``jac_xdot`` ∂R/∂Ẋ and ``jac_xddot`` ∂R/∂Ẍ.
    """

    f: np.ndarray
    jac: Optional[np.ndarray] = None
    jac_xdot: Optional[np.ndarray] = None
    jac_xddot: Optional[np.ndarray] = None


@dataclass
class JacobianCheckResult:
    """Comparison of one element Jacobian with central differences."""

    element_id: int
    max_abs_error: float
    max_rel_error: float
    passed: bool


class NonlinearImplicitAssembly(ABC):
    """Solver-facing assembly of residuals, Jacobians and sensitivities.

    Subclasses build the element engines and provide the per-element
    calculations through the ``_elem_*`` hooks.

    Parameters
    ----------
    config : AssemblyConfig, optional
        Worker count, Jacobian coefficients and diagnostic settings.
    value_type : type
        ``float`` or ``complex``; dtype of the assembled quantities.
    """

    def __init__(self, config: Optional[AssemblyConfig] = None, value_type: type = float):
        self.config = config or AssemblyConfig()
        self.value_type = value_type
        self._discipline = None
        self._system = None
        self._elements: List[Any] = []
        self._elem_dofs: List[np.ndarray] = []
        self._post_assembly: Optional[PostAssemblyOperation] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def attached(self) -> bool:
        return self._system is not None

    @property
    def elements(self) -> List[Any]:
        return list(self._elements)

    @property
    def discipline(self):
        return self._discipline

    @property
    def system(self):
        return self._system

    def attach(self, discipline, system) -> None:
        """Associate the driver with a discipline and a system and build the elements."""
        self._discipline = discipline
        self._system = system
        self._build()
        logger.debug("Attached assembly with %d elements", len(self._elements))

    def reattach(self) -> None:
        """Rebuild the elements with the last attached discipline and system."""
        self._require_attached()
        self._build()
        logger.debug("Reattached assembly with %d elements", len(self._elements))

    def detach(self) -> None:
        """Drop the elements and the post-assembly operation."""
        self._elements = []
        self._elem_dofs = []
        self._discipline = None
        self._system = None
        self._post_assembly = None
        logger.debug("Detached assembly")

    def set_post_assembly_operation(self, operation: PostAssemblyOperation) -> None:
        """Register the operation run after each assembly, replacing any previous one."""
        self._require_attached()
        self._post_assembly = operation

    def clear_post_assembly_operation(self) -> None:
        self._post_assembly = None

    @property
    def post_assembly_operation(self) -> Optional[PostAssemblyOperation]:
        return self._post_assembly

    def _require_attached(self) -> None:
        if not self.attached:
            raise RuntimeError("Assembly is not attached to a discipline and system")

    def _build(self) -> None:
        pairs = self._build_elements()
        self._elements = [elem for elem, _ in pairs]
        self._elem_dofs = [np.asarray(dofs, dtype=np.int64) for _, dofs in pairs]

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _build_elements(self) -> List[Tuple[Any, np.ndarray]]:
        """Element engines paired with their global DOF indices."""

    @abstractmethod
    def _elem_set_state(self, elem, X_e: np.ndarray) -> None:
        """Push the element solution and the remaining system state."""

    @abstractmethod
    def _elem_calculations(self, elem, request_jacobian: bool) -> ElementContribution: ...

    @abstractmethod
    def _elem_linearized_jacobian_solution_product(self, elem, dX_e: np.ndarray) -> np.ndarray: ...

    @abstractmethod
    def _elem_second_derivative_dot_solution(self, elem, dX_e: np.ndarray) -> np.ndarray: ...

    @abstractmethod
    def _elem_sensitivity(self, elem, param: Parameter) -> Optional[np.ndarray]:
        """dR_e/dp at the current state, or None when no analytic path exists."""

    # ------------------------------------------------------------------
    # Element loop
    # ------------------------------------------------------------------

    def _map(self, func: Callable[[int], Any]) -> List[Any]:
        """Evaluate ``func`` for every element index, results in element order."""
        indices = range(len(self._elements))
        n_workers = self.config.assembly.n_workers
        if n_workers == 1 or len(self._elements) < 2:
            return [func(i) for i in indices]
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            return list(executor.map(func, indices))

    def _checked_vector(self, name: str, vec) -> np.ndarray:
        vec = np.asarray(vec)
        if vec.shape != (self._system.n_dofs,):
            raise ValueError(f"{name} must have length {self._system.n_dofs}, got shape {vec.shape}")
        return vec

    def _scatter_vector(self, blocks: Sequence[np.ndarray]) -> np.ndarray:
        out = np.zeros(self._system.n_dofs, dtype=np.result_type(self.value_type, *blocks))
        for dofs, block in zip(self._elem_dofs, blocks):
            np.add.at(out, dofs, block)
        return out

    def _scatter_matrix(self, blocks: Sequence[np.ndarray]) -> sp.csr_matrix:
        n = self._system.n_dofs
        dtype = np.result_type(self.value_type, *blocks)
        if not blocks:
            return sp.csr_matrix((n, n), dtype=dtype)
        rows = np.concatenate([np.repeat(dofs, len(dofs)) for dofs in self._elem_dofs])
        cols = np.concatenate([np.tile(dofs, len(dofs)) for dofs in self._elem_dofs])
        vals = np.concatenate([block.ravel() for block in blocks]).astype(dtype)
        return sp.coo_matrix((vals, (rows, cols)), shape=(n, n)).tocsr()

    def _combined_jacobian(self, contribution: ElementContribution) -> np.ndarray:
        c_a = self.config.assembly.acceleration_coefficient
        c_v = self.config.assembly.velocity_coefficient
        J = contribution.jac.copy()
        if c_a != 0.0 and contribution.jac_xddot is not None:
            J += c_a * contribution.jac_xddot
        if c_v != 0.0 and contribution.jac_xdot is not None:
            J += c_v * contribution.jac_xdot
        return J

    def _assemble(
        self, X: np.ndarray, residual: bool, jacobian: bool
    ) -> Tuple[Optional[np.ndarray], Optional[sp.csr_matrix]]:
        def evaluate(i):
            elem = self._elements[i]
            self._elem_set_state(elem, X[self._elem_dofs[i]])
            return self._elem_calculations(elem, jacobian)

        contributions = self._map(evaluate)
        R = self._scatter_vector([c.f for c in contributions]) if residual else None
        J = self._scatter_matrix([self._combined_jacobian(c) for c in contributions]) if jacobian else None
        return R, J

    # ------------------------------------------------------------------
    # Solver surface
    # ------------------------------------------------------------------

    def residual_and_jacobian(
        self, X: np.ndarray, residual: bool = True, jacobian: bool = True
    ) -> Tuple[Optional[np.ndarray], Optional[sp.csr_matrix]]:
        """Assemble the residual and/or Jacobian at the solution ``X``.

        Parameters
        ----------
        X : np.ndarray
            Global solution vector.
        residual, jacobian : bool
            Which quantities the solver wants; withheld ones are returned as
            None. Withholding both is a no-op.

        Returns
        -------
        R : np.ndarray or None
            Global residual.
        J : scipy.sparse.csr_matrix or None
            ``∂R/∂X + c_a ∂R/∂Ẍ + c_v ∂R/∂Ẋ``.
        """
        self._require_attached()
        if not (residual or jacobian):
            return None, None
        X = self._checked_vector("X", X)

        logger.debug(
            "Assembling %s over %d elements",
            " and ".join(n for n, on in (("residual", residual), ("jacobian", jacobian)) if on),
            len(self._elements),
        )
        R, J = self._assemble(X, residual, jacobian)

        if self._post_assembly is not None:
            self._post_assembly.post_assembly(X, R, J, self._system)
        logger.debug("Assembly finished")
        return R, J

    def linearized_jacobian_solution_product(self, X: np.ndarray, dX: np.ndarray) -> np.ndarray:
        """``K_t(X) dX`` from the state-dependent (internal) terms, without forming ``J``."""
        self._require_attached()
        X = self._checked_vector("X", X)
        dX = self._checked_vector("dX", dX)

        def evaluate(i):
            elem = self._elements[i]
            dofs = self._elem_dofs[i]
            self._elem_set_state(elem, X[dofs])
            return self._elem_linearized_jacobian_solution_product(elem, dX[dofs])

        return self._scatter_vector(self._map(evaluate))

    def second_derivative_dot_solution_assembly(self, X: np.ndarray, dX: np.ndarray) -> sp.csr_matrix:
        """Matrix ``d(K_t(X) dX)/dX``."""
        self._require_attached()
        X = self._checked_vector("X", X)
        dX = self._checked_vector("dX", dX)

        def evaluate(i):
            elem = self._elements[i]
            dofs = self._elem_dofs[i]
            self._elem_set_state(elem, X[dofs])
            return self._elem_second_derivative_dot_solution(elem, dX[dofs])

        return self._scatter_matrix(self._map(evaluate))

    def sensitivity_assemble(self, parameters: Sequence[Parameter], i: int, rhs: np.ndarray) -> bool:
        """Fill ``rhs`` with ``-dR/dp_i`` at the current system state.

        Returns False, leaving ``rhs`` untouched, when any element lacks an
        analytic derivative; the caller then falls back to finite
        differences (see :meth:`sensitivity_rhs`).
        """
        self._require_attached()
        param = parameters[i]
        X = self._system.solution

        def evaluate(k):
            elem = self._elements[k]
            self._elem_set_state(elem, X[self._elem_dofs[k]])
            return self._elem_sensitivity(elem, param)

        blocks = self._map(evaluate)
        if any(block is None for block in blocks):
            logger.debug("No analytic residual sensitivity for parameter %s", param.name)
            return False
        rhs[:] = -self._scatter_vector(blocks)
        return True

    def sensitivity_rhs(self, parameters: Sequence[Parameter], i: int) -> np.ndarray:
        """``-dR/dp_i``, analytic when available, central differences otherwise.

        The finite-difference path perturbs ``parameters[i].value`` and
        restores it afterwards. The post-assembly operation is not run for
        the perturbed evaluations.
        """
        self._require_attached()
        rhs = np.zeros(self._system.n_dofs, dtype=self.value_type)
        if self.sensitivity_assemble(parameters, i, rhs):
            return rhs

        param = parameters[i]
        logger.info("Using finite differences for the sensitivity to parameter %s", param.name)
        X = self._system.solution
        value = param.value
        h = self.config.sensitivity.fd_step * max(1.0, abs(value))
        try:
            param.value = value + h
            R_plus, _ = self._assemble(X, True, False)
            param.value = value - h
            R_minus, _ = self._assemble(X, True, False)
        finally:
            param.value = value
        return -(R_plus - R_minus) / (2.0 * h)

    def check_numerical_jacobian(self, X: np.ndarray) -> List[JacobianCheckResult]:
        """Compare every element Jacobian ∂R/∂X with central differences.

        Diagnostic only: discrepancies beyond ``jacobian_check.rtol`` and
        ``jacobian_check.atol`` (taken relative to the largest entry of the
        element Jacobian) are logged as warnings and reported in the
        returned list.
        """
        self._require_attached()
        X = self._checked_vector("X", X)
        settings = self.config.jacobian_check
        results = []

        for elem, dofs in zip(self._elements, self._elem_dofs):
            X_e = X[dofs]
            self._elem_set_state(elem, X_e)
            analytic = self._elem_calculations(elem, True).jac

            numerical = np.zeros_like(analytic)
            for k in range(len(dofs)):
                X_p = X_e.copy()
                X_p[k] += settings.step
                self._elem_set_state(elem, X_p)
                f_plus = self._elem_calculations(elem, False).f
                X_p[k] -= 2.0 * settings.step
                self._elem_set_state(elem, X_p)
                f_minus = self._elem_calculations(elem, False).f
                numerical[:, k] = (f_plus - f_minus) / (2.0 * settings.step)
            self._elem_set_state(elem, X_e)

            max_abs_error = float(np.abs(numerical - analytic).max())
            scale = float(np.abs(analytic).max())
            if scale > 0.0:
                max_rel_error = max_abs_error / scale
            else:
                max_rel_error = 0.0 if max_abs_error == 0.0 else np.inf
            result = JacobianCheckResult(
                element_id=elem.mesh_element.id,
                max_abs_error=max_abs_error,
                max_rel_error=max_rel_error,
                passed=bool(np.allclose(numerical, analytic, rtol=settings.rtol, atol=settings.atol * scale)),
            )
            if not result.passed:
                logger.warning(
                    "Jacobian check failed for element %d: max abs error %.3e, max rel error %.3e",
                    result.element_id,
                    result.max_abs_error,
                    result.max_rel_error,
                )
            results.append(result)
        return results
