from dataclasses import dataclass, asdict

from .errors import InvalidConfig


@dataclass
class CheckConfig:
    epsilon: float = 1e-6
    max_relative_error: float = 1e-3
    min_absolute_error: float = 1e-8
    print_progress: bool = False
    exit_on_first_failure: bool = False
    random_seed: int = 12345

    def validate(self):
        # usually 1e-4 .. 1e-6; larger steps swamp the estimate with truncation error
        if not (0.0 < self.epsilon <= 0.1):
            raise InvalidConfig(f"Invalid epsilon: expect epsilon in range (0,0.1], got {self.epsilon}")
        if not (0.0 < self.max_relative_error <= 0.25):
            raise InvalidConfig(
                f"Invalid max_relative_error: expect value in range (0,0.25], got {self.max_relative_error}"
            )
        if not (self.min_absolute_error >= 0.0):
            raise InvalidConfig(f"Invalid min_absolute_error: must be >= 0, got {self.min_absolute_error}")
        return self

    def to_dict(self) -> dict:
        return asdict(self)
