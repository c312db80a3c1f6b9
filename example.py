import logging
from learned_index import RecursiveModelIndex, NetworkParameters

logging.basicConfig(level=logging.INFO)


def main():
    # Small index: 4 second stage models, retrain after 5 buffered inserts
    first_stage = NetworkParameters(batch_size=4, max_num_epochs=200, learning_rate=0.05, num_neurons=8)
    second_stage = NetworkParameters(batch_size=4, max_num_epochs=200, learning_rate=0.05, num_neurons=0)
    index = RecursiveModelIndex(first_stage, second_stage, max_overflow_size=5, second_stage_size=4, seed=0)

    print("Inserting key-value pairs...")
    for key in [10, 3, 7, 1, 9, 2]:
        index.insert(key, f"value_{key}")
        print(f"Inserted {key}: overflow={index.buffer.get_size()} indexed={len(index.records())}")

    # Test point lookups
    print("\nTesting point lookups:")
    for key in [7, 1, 10, 99]:
        record = index.find(key)
        if record is not None:
            print(f"Found key {key}: {record[1]} (predicted position {index.predict_position(key)})")
        else:
            print(f"Key {key} not found")

    # Get index statistics
    print("\nIndex statistics:")
    stats = index.get_stats()
    for key, value in stats.items():
        print(f"{key}: {value}")


if __name__ == "__main__":
    main()
