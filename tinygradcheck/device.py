import numpy as np

try:
    import cupy as cp
except Exception:
    cp = None

DOUBLE = np.dtype(np.float64)

_PRECISION_ALIASES = {
    "double": np.float64,
    "float64": np.float64,
    "fp64": np.float64,
    "single": np.float32,
    "float": np.float32,
    "float32": np.float32,
    "fp32": np.float32,
    "half": np.float16,
    "float16": np.float16,
    "fp16": np.float16,
}

def get_xp_from_array(x):
    # works for numpy and cuda ndarrays
    mod = type(x).__module__.split(".")[0]
    if mod == "cupy":
        return cp
    return np

def to_numpy(x):
    # outputs of a cupy forward pass are moved back before differencing
    if cp is not None and isinstance(x, cp.ndarray):
        return cp.asnumpy(x)
    return np.asarray(x)

def manual_seed(seed: int):
    # numpy only takes seeds in [0, 2**32); negative or larger ints wrap around
    seed = int(seed) % 2**32
    np.random.seed(seed)
    if cp is not None:
        cp.random.seed(seed)

def as_dtype(precision):
    if isinstance(precision, str):
        key = precision.lower()
        if key not in _PRECISION_ALIASES:
            raise ValueError(f"unknown precision: {precision}")
        return np.dtype(_PRECISION_ALIASES[key])
    return np.dtype(precision)

def is_double(precision) -> bool:
    return as_dtype(precision) == DOUBLE

def resolve_precision(precision, inputs):
    """
    Explicit precision wins; otherwise the common dtype of all inputs.
    Integer inputs promote to float64 here, so each input is checked on its own as well.
    """
    if precision is not None:
        return as_dtype(precision)
    dtypes = [np.dtype(v.dtype) for v in inputs.values()]
    if not dtypes:
        return DOUBLE
    return np.result_type(*dtypes)
