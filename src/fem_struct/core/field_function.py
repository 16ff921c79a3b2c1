"""
Field functions and design parameters.

A field function is a callable of ``(position, time)`` returning a scalar,
vector or matrix. Property cards and boundary conditions expose all of their
data through field functions so that element routines can sample them at
quadrature points, and so that residual sensitivities can be propagated
through them when a function declares an analytic derivative with respect
to a design :class:`Parameter`.
"""

from typing import Any, Callable, Dict, Iterable, Optional, Union

import numpy as np

Position = Union[np.ndarray, Iterable[float]]


class Parameter:
    """Named scalar design variable.

    Parameters
    ----------
    name : str
        Parameter name, used for reporting only.
    value : float
        Current value. Field functions built on the parameter read it at
        evaluation time, so finite-difference perturbations only need to
        update ``value``.
    """

    def __init__(self, name: str, value: float):
        self.name = name
        self.value = value

    def __call__(self) -> float:
        return self.value

    def __repr__(self):
        return f"<Parameter name={self.name} value={self.value}>"


class FieldFunction:
    """Function of position and time with optional parameter derivatives.

    Parameters
    ----------
    name : str
        Field name (e.g. ``"pressure"`` or ``"E"``).
    func : Callable[[np.ndarray, float], Any]
        Evaluator returning the field value at a global position and time.
    parameters : Iterable[Parameter], optional
        Parameters the value depends on. A dependency without an entry in
        ``derivatives`` has no analytic sensitivity.
    derivatives : Dict[Parameter, Callable], optional
        Analytic derivative evaluators, one per parameter.

    Examples
    --------
    >>> t = Parameter("thickness", 0.01)
    >>> h = FieldFunction("h", lambda p, time: t.value, derivatives={t: lambda p, time: 1.0})
    >>> h([0.0, 0.0, 0.0], 0.0)
    0.01
    """

    def __init__(
        self,
        name: str,
        func: Callable[[np.ndarray, float], Any],
        parameters: Optional[Iterable[Parameter]] = None,
        derivatives: Optional[Dict[Parameter, Callable[[np.ndarray, float], Any]]] = None,
    ):
        self.name = name
        self._func = func
        self._derivatives = dict(derivatives or {})
        self._parameters = set(parameters or ()) | set(self._derivatives)

    def __call__(self, p: Position, t: float):
        return self._func(np.asarray(p, dtype=float), t)

    def depends_on(self, param: Parameter) -> bool:
        return param in self._parameters

    def has_derivative(self, param: Parameter) -> bool:
        """True when the sensitivity to ``param`` is known analytically.

        Functions that do not depend on ``param`` have a trivially known
        (zero) derivative.
        """
        return not self.depends_on(param) or param in self._derivatives

    def derivative(self, param: Parameter, p: Position, t: float):
        """Evaluate d(value)/d(param) at ``p`` and ``t``.

        Raises
        ------
        KeyError
            If the function depends on ``param`` without an analytic derivative.
        """
        p = np.asarray(p, dtype=float)
        if not self.depends_on(param):
            return np.zeros_like(self._func(p, t))
        if param not in self._derivatives:
            raise KeyError(f"Field function '{self.name}' has no derivative for {param!r}")
        return self._derivatives[param](p, t)

    def __repr__(self):
        return f"<FieldFunction name={self.name}>"


class ConstantFunction(FieldFunction):
    """Field function with a position and time independent value."""

    def __init__(self, name: str, value: Any):
        self.value = value
        super().__init__(name, lambda p, t: self.value)

    @classmethod
    def from_parameter(cls, name: str, param: Parameter) -> "FieldFunction":
        """Field equal to the current parameter value, with unit derivative."""
        return FieldFunction(
            name,
            lambda p, t: param.value,
            derivatives={param: lambda p, t: 1.0},
        )


def as_field_function(name: str, value: Any) -> FieldFunction:
    """Wrap constants and parameters so every property is a field function."""
    if isinstance(value, FieldFunction):
        return value
    if isinstance(value, Parameter):
        return ConstantFunction.from_parameter(name, value)
    if callable(value):
        return FieldFunction(name, value)
    return ConstantFunction(name, value)
