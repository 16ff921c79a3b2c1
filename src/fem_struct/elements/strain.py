"""
Strain terms and their residual, tangent and second-derivative contributions.

Each element strategy describes its strain energy as a list of
:class:`StrainTerm` objects, one per (strain group, quadrature point). A
term with a slope operator ``G`` carries the von Kármán membrane
nonlinearity::

    θ = G q
    ε = B q + ½ A(θ) θ
    B_nl = B + A(θ) G

where ``A(θ)`` is linear in ``θ`` and symmetric in the sense
``A(θ) φ = A(φ) θ``. With the stress resultant ``N = D ε`` the term
contributes::

    f = JxW · B_nlᵀ N
    K = JxW · (B_nlᵀ D B_nl + Gᵀ S(N) G),     S(N) θ = A(θ)ᵀ N

Two von Kármán layouts are used:

- beam: ``θ = [v', w']``, ``A(θ) = θᵀ`` (1×2), ``S(N) = N·I``
- shell: ``θ = [w,x, w,y]``, ``A(θ) = [[θx, 0], [0, θy], [θy, θx]]``,
  ``S(N) = [[N0, N2], [N2, N1]]``
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np


def slope_matrix(theta: np.ndarray) -> np.ndarray:
    """Shell ``A(θ)`` mapping the two slopes to the three membrane strains."""
    if len(theta) != 2:
        raise ValueError(f"Expected two slopes, got {len(theta)}")
    return np.array([[theta[0], 0.0], [0.0, theta[1]], [theta[1], theta[0]]], dtype=theta.dtype)


def resultant_matrix(resultant: np.ndarray) -> np.ndarray:
    """``S(N)`` such that ``A(θ)ᵀ N = S(N) θ``."""
    if len(resultant) == 1:
        return resultant[0] * np.eye(2, dtype=resultant.dtype)
    return np.array(
        [[resultant[0], resultant[2]], [resultant[2], resultant[1]]], dtype=resultant.dtype
    )


@dataclass
class StrainTerm:
    """One strain group sampled at one quadrature point.

    Attributes
    ----------
    B : np.ndarray
        Linear strain operator (n_strain × 6n)
    D : np.ndarray
        Resultant stiffness (n_strain × n_strain)
    JxW : float
        Quadrature weight times Jacobian determinant.
    xyz : np.ndarray
        Quadrature point in local coordinates.
    G : np.ndarray, optional
        Slope operator (2 × 6n) for von Kármán terms.
    thermal_strain : np.ndarray, optional
        Free strain per unit temperature change for terms loaded by
        temperature.
    """

    B: np.ndarray
    D: np.ndarray
    JxW: float
    xyz: np.ndarray
    G: Optional[np.ndarray] = None
    thermal_strain: Optional[np.ndarray] = None

    @property
    def nonlinear(self) -> bool:
        return self.G is not None

    def _slope_term(self, theta: np.ndarray) -> np.ndarray:
        # beam: ½(θ0² + θ1²); the shell layout gives [½θ0², ½θ1², θ0θ1]
        if self.B.shape[0] == 1:
            return 0.5 * np.array([theta @ theta])
        return 0.5 * slope_matrix(theta) @ theta

    def slope_operator(self, theta: np.ndarray) -> np.ndarray:
        """``A(θ)`` in the layout of this term."""
        if self.B.shape[0] == 1:
            return theta.reshape(1, 2)
        return slope_matrix(theta)

    def strain(self, q: np.ndarray) -> np.ndarray:
        eps = self.B @ q
        if self.nonlinear:
            eps = eps + self._slope_term(self.G @ q)
        return eps

    def tangent_operator(self, q: np.ndarray) -> np.ndarray:
        """``B_nl(q)``, equal to ``B`` for linear terms."""
        if not self.nonlinear:
            return self.B
        return self.B + self.slope_operator(self.G @ q) @ self.G

    def add_internal(self, q: np.ndarray, f: np.ndarray, jac: Optional[np.ndarray]) -> None:
        """Accumulate ``B_nlᵀ D ε`` and optionally its tangent."""
        B_nl = self.tangent_operator(q)
        N = self.D @ self.strain(q)
        f += self.JxW * (B_nl.T @ N)
        if jac is not None:
            jac += self.JxW * (B_nl.T @ self.D @ B_nl)
            if self.nonlinear:
                jac += self.JxW * (self.G.T @ resultant_matrix(N) @ self.G)

    def add_thermal(
        self, q: np.ndarray, thermal_strain: np.ndarray, f: np.ndarray, jac: Optional[np.ndarray]
    ) -> bool:
        """Accumulate ``-B_nlᵀ D ε_T``; returns True when a Jacobian was added."""
        B_nl = self.tangent_operator(q)
        N_T = self.D @ thermal_strain
        f -= self.JxW * (B_nl.T @ N_T)
        if jac is not None and self.nonlinear:
            jac -= self.JxW * (self.G.T @ resultant_matrix(N_T) @ self.G)
            return True
        return False

    def add_second_derivative(self, q: np.ndarray, dX: np.ndarray, out: np.ndarray) -> None:
        """Accumulate ``d(K_t(q) dX)/dq``; zero for linear terms."""
        if not self.nonlinear:
            return
        B_nl = self.tangent_operator(q)
        phi = self.G @ dX
        A_phi = self.slope_operator(phi)
        e = self.D @ (B_nl @ dX)
        out += self.JxW * (
            self.G.T @ resultant_matrix(e) @ self.G
            + B_nl.T @ self.D @ A_phi @ self.G
            + self.G.T @ A_phi.T @ self.D @ B_nl
        )
