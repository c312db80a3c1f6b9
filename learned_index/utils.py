import math
import numbers
from typing import NamedTuple

from .errors import ConfigurationError


class Constants:
    """Constants used throughout the learned index implementation."""
    DEFAULT_MAX_OVERFLOW_SIZE = 10000  # Inserts buffered before a forced retrain
    DEFAULT_SECOND_STAGE_SIZE = 16
    DEFAULT_SEARCH_SAFETY = 8  # Extra slots added to each bucket's error window

    # Stage defaults
    DEFAULT_BATCH_SIZE = 64
    DEFAULT_MAX_NUM_EPOCHS = 200
    DEFAULT_LEARNING_RATE = 0.01
    DEFAULT_FIRST_STAGE_NEURONS = 16
    DEFAULT_SECOND_STAGE_NEURONS = 0  # Linear models


class NetworkParameters(NamedTuple):
    """Hyperparameters for one stage of the index."""
    batch_size: int = Constants.DEFAULT_BATCH_SIZE
    max_num_epochs: int = Constants.DEFAULT_MAX_NUM_EPOCHS
    learning_rate: float = Constants.DEFAULT_LEARNING_RATE
    num_neurons: int = Constants.DEFAULT_FIRST_STAGE_NEURONS


def validate_parameters(params: NetworkParameters, stage_name: str) -> None:
    """Reject stage parameters the index cannot train with."""
    if not isinstance(params, NetworkParameters):
        raise ConfigurationError(f"{stage_name} parameters must be NetworkParameters, got {type(params).__name__}")
    if params.batch_size < 1:
        raise ConfigurationError(f"{stage_name} batch_size must be positive, got {params.batch_size}")
    if params.max_num_epochs < 0:
        raise ConfigurationError(f"{stage_name} max_num_epochs must be >= 0, got {params.max_num_epochs}")
    if not params.learning_rate > 0:
        raise ConfigurationError(f"{stage_name} learning_rate must be positive, got {params.learning_rate}")
    if params.num_neurons < 0:
        raise ConfigurationError(f"{stage_name} num_neurons must be >= 0, got {params.num_neurons}")


def key_to_float(key) -> float:
    """Cast a key to the real-valued scalar the models consume.

    Only real numbers are keys; strings, bools and Decimals would compare
    differently in the buffer and in the dataset.
    """
    if isinstance(key, bool) or not isinstance(key, numbers.Real):
        raise TypeError(f"Key must be a real number, got {type(key).__name__}")
    value = float(key)
    if math.isnan(value) or math.isinf(value):
        raise ValueError(f"Key must be finite, got {key!r}")
    return value


def clamp_position(position: float, size: int) -> int:
    """Clamp a predicted position to a valid index in [0, size - 1]."""
    if size <= 0 or math.isnan(position):
        return 0
    return int(math.floor(max(0.0, min(float(size - 1), position))))


def route_to_stage(position: float, second_stage_size: int) -> int:
    """Map a Stage-1 position estimate to the owning Stage-2 bucket."""
    if math.isnan(position):
        return 0
    # Cap the range of stages to 0 -> (second_stage_size - 1)
    stage = max(0.0, min(float(second_stage_size - 1), position / second_stage_size))
    return int(math.floor(stage))
