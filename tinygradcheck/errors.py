class GradCheckError(Exception):
    """Base class for every error that aborts a gradient check."""


class InvalidConfig(GradCheckError, ValueError):
    pass


class PrecisionError(GradCheckError, TypeError):
    pass


class GradientShapeError(GradCheckError, ValueError):
    pass


class NumericalInstability(GradCheckError, FloatingPointError):
    def __init__(self, input_name: str, index: int, n_params: int):
        self.input_name = input_name
        self.index = index
        self.n_params = n_params
        super().__init__(
            f"Numerical gradient was NaN for parameter {index} of {n_params} in input '{input_name}'"
        )
