import numpy as np

from tinygradcheck import CheckConfig, GradientChecker, check_gradients, numerical_gradient
from tinygradcheck.device import manual_seed


def dropout_forward(p=0.5):
    # inverted dropout on w, then squared sum; mask drawn from numpy's global RNG
    def forward(inputs):
        w = inputs["w"]
        mask = (np.random.rand(*w.shape) > p).astype(np.float64) / (1.0 - p)
        return np.sum((w * mask) ** 2)
    return forward

def expected_dropout_grad(w, seed, p=0.5):
    manual_seed(seed)
    mask = (np.random.rand(*w.shape) > p).astype(np.float64) / (1.0 - p)
    return 2 * w * mask ** 2

def test_seed_fn_called_before_every_evaluation():
    seeds = []
    calls = []

    def seed_fn(seed):
        seeds.append(seed)
        calls.append("seed")

    def forward(inputs):
        calls.append("fwd")
        return np.sum(inputs["w"])

    w = np.ones(3)
    cfg = CheckConfig(epsilon=1e-5, random_seed=42)
    result = check_gradients({"w": np.ones(3)}, cfg, {"w": w}, forward, seed_fn=seed_fn)

    assert result.passed
    assert seeds == [42] * 6
    assert calls == ["seed", "fwd"] * 6

def test_stochastic_forward_passes_with_reseeding():
    np.random.seed(0)
    w = np.random.randn(2, 4)
    seed = 123

    analytic = expected_dropout_grad(w, seed)
    cfg = CheckConfig(epsilon=1e-5, random_seed=seed)
    result = check_gradients({"w": analytic}, cfg, {"w": w}, dropout_forward())

    assert result.passed, result.summary()
    # dropped elements have zero gradient on both sides
    assert np.any(analytic == 0)

def test_stochastic_forward_fails_without_reseeding():
    np.random.seed(0)
    w = np.random.randn(2, 4)
    seed = 123
    analytic = expected_dropout_grad(w, seed)

    cfg = CheckConfig(epsilon=1e-5, random_seed=seed)
    # a seed_fn that does nothing lets the mask drift between the plus and minus pass
    result = check_gradients({"w": analytic}, cfg, {"w": w}, dropout_forward(), seed_fn=lambda s: None)
    assert result.total_failures > 0

def test_different_seed_gives_different_numerical_gradient():
    np.random.seed(0)
    w = np.random.randn(16)
    g1 = numerical_gradient(dropout_forward(), {"w": w}, "w", epsilon=1e-5, random_seed=1)
    g2 = numerical_gradient(dropout_forward(), {"w": w}, "w", epsilon=1e-5, random_seed=1)
    g3 = numerical_gradient(dropout_forward(), {"w": w}, "w", epsilon=1e-5, random_seed=2)
    assert np.array_equal(g1, g2)
    assert not np.allclose(g1, g3)

def test_out_of_range_seeds_wrap():
    # any int is a valid random_seed; numpy only takes [0, 2**32), so it wraps
    manual_seed(-1)
    a = np.random.rand(3)
    manual_seed(2**32 - 1)
    b = np.random.rand(3)
    manual_seed(2**32)
    c = np.random.rand(3)
    manual_seed(0)
    d = np.random.rand(3)
    assert np.array_equal(a, b)
    assert np.array_equal(c, d)

    w = np.array([1.0, 2.0])
    for seed in (-1, 2**32, -(2**40)):
        result = check_gradients({"w": 2 * w}, CheckConfig(epsilon=1e-5, random_seed=seed), {"w": w},
                                 lambda d: np.sum(d["w"] ** 2))
        assert result.passed, result.summary()

def test_checker_counts_evaluations():
    checker = GradientChecker(CheckConfig(epsilon=1e-5))
    w = np.ones((2, 3))
    result = checker.check({"w": 2 * w}, {"w": w}, lambda d: np.sum(d["w"] ** 2))
    assert checker.evaluations == 2 * result.total_parameters_checked == 12

if __name__ == "__main__":
    test_seed_fn_called_before_every_evaluation()
    test_stochastic_forward_passes_with_reseeding()
    test_stochastic_forward_fails_without_reseeding()
    test_different_seed_gives_different_numerical_gradient()
    test_out_of_range_seeds_wrap()
    test_checker_counts_evaluations()
    print("[OK] seeded gradcheck tests passed.")
