from position_models import TrainingCancelled


class LearnedIndexError(Exception):
    """Base class for learned index errors."""


class ConfigurationError(LearnedIndexError, ValueError):
    """Raised at construction time for invalid index or stage parameters."""


__all__ = ['LearnedIndexError', 'ConfigurationError', 'TrainingCancelled']
