from .network import PositionNetwork
from .regressor import PositionRegressor, TrainingCancelled

__all__ = ['PositionNetwork', 'PositionRegressor', 'TrainingCancelled']
