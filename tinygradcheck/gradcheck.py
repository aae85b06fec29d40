import logging
import math
from dataclasses import dataclass, field, asdict
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .config import CheckConfig
from .device import DOUBLE, get_xp_from_array, manual_seed, resolve_precision, to_numpy
from .errors import GradientShapeError, NumericalInstability, PrecisionError

log = logging.getLogger(__name__)

ForwardFn = Callable[[Dict[str, np.ndarray]], object]
LossFn = Callable[[List[np.ndarray]], float]


def relative_error(numerical: float, analytic: float) -> float:
    denom = max(abs(numerical), abs(analytic))
    if denom == 0.0:
        return 0.0
    return abs(numerical - analytic) / denom


@dataclass
class FailureDetail:
    input_name: str
    index: int
    numerical_gradient: float
    analytic_gradient: float
    relative_error: float
    shape: Tuple[int, ...] = ()

    @property
    def absolute_error(self) -> float:
        return abs(self.numerical_gradient - self.analytic_gradient)

    @property
    def multi_index(self) -> Tuple[int, ...]:
        # position of the row-major flat index inside the input tensor
        if self.shape == ():
            return ()
        return tuple(int(i) for i in np.unravel_index(self.index, self.shape))


@dataclass
class CheckResult:
    total_parameters_checked: int = 0
    total_failures: int = 0
    max_relative_error_observed: float = 0.0
    max_relative_error_compared: float = 0.0
    failures: List[FailureDetail] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.total_failures == 0

    def summary(self) -> str:
        if self.passed:
            return f"all {self.total_parameters_checked} parameters passed"
        return (
            f"{self.total_failures} of {self.total_parameters_checked} failed, "
            f"max relative error = {self.max_relative_error_observed:.6e}"
        )

    def to_dict(self) -> dict:
        d = asdict(self)
        d["passed"] = self.passed
        return d


def _as_arrays(inputs: Mapping[str, object]) -> Dict[str, object]:
    # keeps numpy/cupy arrays as they are, wraps python scalars and lists
    out = {}
    for name, value in inputs.items():
        if hasattr(value, "dtype") and hasattr(value, "reshape"):
            out[name] = value
        else:
            out[name] = np.asarray(value)
    return out


def _as_outputs(outs) -> List[np.ndarray]:
    # snapshot every output: the forward may hand back a view of the working copy
    if not isinstance(outs, (list, tuple)):
        outs = [outs]
    return [np.array(to_numpy(o), copy=True) for o in outs]


class GradientChecker:
    """
    Central-difference gradient checker.

    Every scalar of every input is perturbed by +epsilon and -epsilon in turn,
    the forward function is re-run for each, and the resulting slope of the
    summed outputs is compared with the analytic gradient for that scalar.

    precision: explicit compute precision ("double", np.float64, ...). When None
        the common dtype of the inputs is used. Anything but float64 is refused.
    seed_fn: called with config.random_seed right before every forward
        evaluation, so stochastic ops see the same randomness on the plus
        and minus passes. Defaults to seeding numpy (and cupy, if present).
    loss_fn: optional reduction of the output list to a scalar. When None every
        element of every output is summed.
    """

    def __init__(self, config: Optional[CheckConfig] = None, precision=None,
                 seed_fn: Optional[Callable[[int], None]] = None, loss_fn: Optional[LossFn] = None):
        self.config = config if config is not None else CheckConfig()
        self.precision = precision
        self.seed_fn = seed_fn if seed_fn is not None else manual_seed
        self.loss_fn = loss_fn
        self.evaluations = 0

    def check(self, analytic_grads: Mapping[str, object], inputs: Mapping[str, object],
              forward_fn: ForwardFn) -> CheckResult:
        cfg = self.config.validate()
        inputs = _as_arrays(inputs)
        self._check_precision(inputs)
        expected = self._flat_analytic(analytic_grads, inputs)

        self.evaluations = 0
        result = CheckResult()
        n_inputs = len(inputs)

        for t, name in enumerate(inputs):
            eval_inputs, flat = self._working_copy(inputs, name)
            shape = tuple(inputs[name].shape)
            n_params = flat.size

            for i in range(n_params):
                numerical = self._numerical_at(eval_inputs, flat, i, forward_fn)
                if math.isnan(numerical):
                    raise NumericalInstability(name, i, n_params)

                analytic = float(expected[name][i])
                result.total_parameters_checked += 1
                ok, rel_err = self._compare(numerical, analytic)
                if rel_err is not None and not math.isinf(rel_err):
                    result.max_relative_error_compared = max(result.max_relative_error_compared, rel_err)

                if not ok:
                    result.total_failures += 1
                    result.max_relative_error_observed = max(result.max_relative_error_observed, rel_err)
                    detail = FailureDetail(name, i, numerical, analytic, rel_err, shape)
                    result.failures.append(detail)
                    log.warning(
                        "Param %d (%s%s) FAILED: analytic=%.10e numerical=%.10e absError=%.6e relError=%.6e",
                        i, name, list(detail.multi_index), analytic, numerical, detail.absolute_error, rel_err,
                    )

                if cfg.print_progress:
                    n_pass = result.total_parameters_checked - result.total_failures
                    log.info(
                        "GradientChecker: %d params checked (%d of %d inputs), %d passed, %d failed. "
                        "Largest relative error = %.6e",
                        result.total_parameters_checked, t + 1, n_inputs, n_pass,
                        result.total_failures, result.max_relative_error_observed,
                    )

                if not ok and cfg.exit_on_first_failure:
                    if cfg.print_progress:
                        log.info("GradientChecker: stopping at first failure, %s", result.summary())
                    return result

        if cfg.print_progress:
            log.info("GradientChecker: %s", result.summary())
        return result

    def numerical_gradient(self, inputs: Mapping[str, object], name: str, forward_fn: ForwardFn) -> np.ndarray:
        self.config.validate()
        inputs = _as_arrays(inputs)
        self._check_precision(inputs)

        self.evaluations = 0
        eval_inputs, flat = self._working_copy(inputs, name)
        g = np.zeros(flat.size, dtype=np.float64)
        for i in range(flat.size):
            g[i] = self._numerical_at(eval_inputs, flat, i, forward_fn)
            if math.isnan(g[i]):
                raise NumericalInstability(name, i, flat.size)
        return g.reshape(inputs[name].shape)

    def _check_precision(self, inputs):
        try:
            precision = resolve_precision(self.precision, inputs)
        except (TypeError, ValueError) as e:
            raise PrecisionError(f"Cannot perform gradient check: unknown precision {self.precision!r}") from e
        if precision != DOUBLE:
            raise PrecisionError(
                f"Cannot perform gradient check: precision is not set to double (is: {precision}). "
                "Double precision must be used for gradient checks."
            )
        for name, value in inputs.items():
            if np.dtype(value.dtype) != DOUBLE:
                raise PrecisionError(
                    f"Cannot perform gradient check: input '{name}' has dtype {value.dtype}, expected float64"
                )

    def _flat_analytic(self, analytic_grads, inputs) -> Dict[str, np.ndarray]:
        flat = {}
        for name, value in inputs.items():
            if name not in analytic_grads:
                raise GradientShapeError(f"No analytic gradient supplied for input '{name}'")
            g = to_numpy(analytic_grads[name])
            if tuple(g.shape) != tuple(value.shape):
                raise GradientShapeError(
                    f"Analytic gradient for '{name}' has shape {tuple(g.shape)}, input has shape {tuple(value.shape)}"
                )
            flat[name] = np.asarray(g, dtype=np.float64).reshape(-1)
        return flat

    def _working_copy(self, inputs, name):
        # one private C-ordered copy per input, so the flat view writes through to it
        xp = get_xp_from_array(inputs[name])
        params = xp.array(inputs[name], copy=True, order="C")
        eval_inputs = dict(inputs)
        eval_inputs[name] = params
        return eval_inputs, params.reshape(-1)

    def _forward(self, forward_fn, eval_inputs) -> List[np.ndarray]:
        self.seed_fn(self.config.random_seed)
        outs = forward_fn(eval_inputs)
        self.evaluations += 1
        return _as_outputs(outs)

    def _numerical_at(self, eval_inputs, flat, i, forward_fn) -> float:
        eps = self.config.epsilon
        orig = float(flat[i])
        try:
            flat[i] = orig + eps
            plus = self._forward(forward_fn, eval_inputs)
            flat[i] = orig - eps
            minus = self._forward(forward_fn, eval_inputs)
        finally:
            flat[i] = orig
        return self._score_delta(plus, minus)

    def _score_delta(self, plus: Sequence[np.ndarray], minus: Sequence[np.ndarray]) -> float:
        eps = self.config.epsilon
        if self.loss_fn is not None:
            return (float(self.loss_fn(plus)) - float(self.loss_fn(minus))) / (2 * eps)

        if len(plus) != len(minus):
            raise GradientShapeError(
                f"Forward pass returned {len(plus)} outputs for +epsilon but {len(minus)} for -epsilon"
            )
        # each output differenced on its own; epsilon divided out exactly once
        score_delta = 0.0
        for k, (p, m) in enumerate(zip(plus, minus)):
            if p.shape != m.shape:
                raise GradientShapeError(f"Output {k} changed shape between passes: {p.shape} vs {m.shape}")
            score_delta += float(((p - m) / (2 * eps)).sum())
        return score_delta

    def _compare(self, numerical: float, analytic: float):
        abs_err = abs(numerical - analytic)
        if not math.isfinite(abs_err):
            return False, math.inf
        if abs_err < self.config.min_absolute_error:
            return True, None
        rel_err = relative_error(numerical, analytic)
        return rel_err <= self.config.max_relative_error, rel_err


def check_gradients(analytic_grads: Mapping[str, object], config: Optional[CheckConfig],
                    inputs: Mapping[str, object], forward_fn: ForwardFn, precision=None,
                    seed_fn: Optional[Callable[[int], None]] = None,
                    loss_fn: Optional[LossFn] = None) -> CheckResult:
    checker = GradientChecker(config, precision=precision, seed_fn=seed_fn, loss_fn=loss_fn)
    return checker.check(analytic_grads, inputs, forward_fn)


def numerical_gradient(forward_fn: ForwardFn, inputs: Mapping[str, object], name: str,
                       epsilon: float = 1e-6, random_seed: int = 12345, precision=None,
                       seed_fn: Optional[Callable[[int], None]] = None,
                       loss_fn: Optional[LossFn] = None) -> np.ndarray:
    cfg = CheckConfig(epsilon=epsilon, random_seed=random_seed)
    checker = GradientChecker(cfg, precision=precision, seed_fn=seed_fn, loss_fn=loss_fn)
    return checker.numerical_gradient(inputs, name, forward_fn)
