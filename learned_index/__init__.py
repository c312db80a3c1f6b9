from .utils import Constants, NetworkParameters
from .errors import LearnedIndexError, ConfigurationError, TrainingCancelled
from .buffer import OverflowBuffer
from .dataset import OrderedDataset
from .stages import FirstStageRouter, SecondStageBank
from .index import RecursiveModelIndex, IndexState, IndexSnapshot

__all__ = ['Constants', 'NetworkParameters', 'LearnedIndexError', 'ConfigurationError', 'TrainingCancelled',
           'OverflowBuffer', 'OrderedDataset', 'FirstStageRouter', 'SecondStageBank',
           'RecursiveModelIndex', 'IndexState', 'IndexSnapshot']
