import pytest

from learned_index import NetworkParameters, RecursiveModelIndex


FAST_FIRST_STAGE = NetworkParameters(batch_size=8, max_num_epochs=40, learning_rate=0.05, num_neurons=8)
FAST_SECOND_STAGE = NetworkParameters(batch_size=8, max_num_epochs=40, learning_rate=0.05, num_neurons=0)


@pytest.fixture
def index_factory():
    """Build small, seeded indexes that train in milliseconds."""

    def make_index(**kwargs) -> RecursiveModelIndex:
        options = {
            'max_overflow_size': 5,
            'second_stage_size': 4,
            'seed': 0,
        }
        options.update(kwargs)
        return RecursiveModelIndex(FAST_FIRST_STAGE, FAST_SECOND_STAGE, **options)

    return make_index


@pytest.fixture
def index(index_factory):
    return index_factory()
