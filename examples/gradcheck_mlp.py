import json
import logging
import os
import time
from dataclasses import dataclass, asdict
from typing import List

import numpy as np

from tinygradcheck import CheckConfig, check_gradients


# -------------------------
# Model (hand-written forward/backward)
# -------------------------

def init_params(in_dim, hidden_dim, out_dim, seed=0):
    rng = np.random.RandomState(seed)
    return {
        "W1": rng.randn(in_dim, hidden_dim) * np.sqrt(2.0 / in_dim),
        "b1": np.zeros(hidden_dim),
        "W2": rng.randn(hidden_dim, out_dim) * np.sqrt(2.0 / hidden_dim),
        "b2": np.zeros(out_dim),
    }

def cross_entropy_logits(logits, y):
    z = logits - logits.max(axis=1, keepdims=True)
    lse = np.log(np.exp(z).sum(axis=1, keepdims=True))
    return float(np.mean(lse[:, 0] - z[np.arange(len(y)), y]))

def forward(params, X, y, dropout_p=0.0):
    h = np.tanh(X @ params["W1"] + params["b1"])
    if dropout_p > 0:
        mask = (np.random.rand(*h.shape) > dropout_p) / (1.0 - dropout_p)
        h = h * mask
    logits = h @ params["W2"] + params["b2"]
    return cross_entropy_logits(logits, y)

def backward(params, X, y, dropout_p=0.0, seed=None, bug=None):
    if seed is not None:
        np.random.seed(seed)
    a = np.tanh(X @ params["W1"] + params["b1"])
    mask = np.ones_like(a)
    if dropout_p > 0:
        mask = (np.random.rand(*a.shape) > dropout_p) / (1.0 - dropout_p)
    h = a * mask
    logits = h @ params["W2"] + params["b2"]

    z = logits - logits.max(axis=1, keepdims=True)
    p = np.exp(z) / np.exp(z).sum(axis=1, keepdims=True)
    dlogits = p.copy()
    dlogits[np.arange(len(y)), y] -= 1.0
    dlogits /= len(y)

    dh = dlogits @ params["W2"].T
    da = dh * mask * (1 - a ** 2)
    grads = {
        "W1": X.T @ da,
        "b1": da.sum(axis=0),
        "W2": h.T @ dlogits,
        "b2": dlogits.sum(axis=0),
    }
    if bug == "sign":
        grads["b1"] = -grads["b1"]
    elif bug == "half":
        grads["W2"] = grads["W2"] * 0.5
    elif bug == "double":
        grads["W2"] = grads["W2"] * 2.0
    return grads


# -------------------------
# Result record
# -------------------------

@dataclass
class GradCheckRun:
    bug: str
    dropout_p: float
    params_checked: int
    failures: int
    max_rel_error: float
    evaluations_per_sec: float
    passed: bool


def run_check(bug, dropout_p, cfg, n=16, in_dim=5, hidden_dim=8, classes=3):
    rng = np.random.RandomState(1)
    X = rng.randn(n, in_dim)
    y = rng.randint(0, classes, size=n)
    params = init_params(in_dim, hidden_dim, classes)

    grads = backward(params, X, y, dropout_p=dropout_p, seed=cfg.random_seed, bug=bug)

    t0 = time.perf_counter()
    result = check_gradients(grads, cfg, params, lambda p: forward(p, X, y, dropout_p))
    dt = time.perf_counter() - t0

    run = GradCheckRun(
        bug=bug or "none",
        dropout_p=dropout_p,
        params_checked=result.total_parameters_checked,
        failures=result.total_failures,
        max_rel_error=result.max_relative_error_observed,
        evaluations_per_sec=2 * result.total_parameters_checked / dt,
        passed=result.passed,
    )
    return run, result


# -------------------------
# Main
# -------------------------

def main():
    import argparse
    parser = argparse.ArgumentParser()
    parser.add_argument('--epsilon', type=float, default=1e-6)
    parser.add_argument('--max-rel-error', type=float, default=1e-3)
    parser.add_argument('--min-abs-error', type=float, default=1e-8)
    parser.add_argument('--seed', type=int, default=12345)
    parser.add_argument('--exit-on-first-failure', action='store_true')
    parser.add_argument('--verbose', action='store_true')
    parser.add_argument('--output', type=str, default='examples/results/gradcheck_mlp.json')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    cfg = CheckConfig(
        epsilon=args.epsilon,
        max_relative_error=args.max_rel_error,
        min_absolute_error=args.min_abs_error,
        print_progress=args.verbose,
        exit_on_first_failure=args.exit_on_first_failure,
        random_seed=args.seed,
    )

    runs: List[GradCheckRun] = []
    details = []
    for bug in (None, "sign", "half", "double"):
        for dropout_p in (0.0, 0.3):
            print(f"\nRunning: bug={bug or 'none'} dropout={dropout_p}")
            run, result = run_check(bug, dropout_p, cfg)
            print(result.summary())
            runs.append(run)
            details.append(result.to_dict())

    print("\n" + "=" * 78)
    print(f"{'BUG':<11} {'DROPOUT':>7} {'CHECKED':>8} {'FAILED':>7} {'MAX_REL_ERR':>12} {'EVAL/S':>10} {'OK':>5}")
    print("=" * 78)
    for r in runs:
        print(
            f"{r.bug:<11} {r.dropout_p:>7.2f} {r.params_checked:>8d} {r.failures:>7d} "
            f"{r.max_rel_error:>12.3e} {r.evaluations_per_sec:>10.1f} {str(r.passed):>5}"
        )
    print("=" * 78)

    os.makedirs(os.path.dirname(args.output) or ".", exist_ok=True)
    with open(args.output, "w") as f:
        json.dump({"config": cfg.to_dict(), "runs": [asdict(r) for r in runs], "results": details}, f, indent=2)

    print(f"\nResults saved to {args.output}")


if __name__ == "__main__":
    main()
