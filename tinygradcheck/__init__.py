from .config import CheckConfig
from .errors import GradCheckError, GradientShapeError, InvalidConfig, NumericalInstability, PrecisionError
from .gradcheck import (
    CheckResult,
    FailureDetail,
    GradientChecker,
    check_gradients,
    numerical_gradient,
    relative_error,
)
