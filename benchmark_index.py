import os
import time
import bisect
import random
import logging
import argparse
import statistics
import numpy as np
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from learned_index import RecursiveModelIndex, NetworkParameters
from learned_index.datasets import DatasetGenerator

# Configure logging to reduce verbosity
logging.basicConfig(level=logging.WARNING)

DISTRIBUTIONS = {
    'sequential': DatasetGenerator.generate_sequential,
    'uniform': DatasetGenerator.generate_uniform,
    'lognormal': DatasetGenerator.generate_lognormal,
    'mixed': DatasetGenerator.generate_mixed,
}


def build_index(keys, second_stage_size, epochs):
    """Insert every key and force a final retrain so nothing stays buffered."""
    first_stage = NetworkParameters(batch_size=256, max_num_epochs=epochs, learning_rate=0.01, num_neurons=16)
    second_stage = NetworkParameters(batch_size=64, max_num_epochs=epochs, learning_rate=0.01, num_neurons=0)
    index = RecursiveModelIndex(first_stage, second_stage,
                                max_overflow_size=len(keys),
                                second_stage_size=second_stage_size,
                                seed=0)
    start_time = time.perf_counter()
    for key in keys:
        index.insert(float(key), f"v{key:.6f}")
    index.train()
    build_ms = (time.perf_counter() - start_time) * 1000.0
    return index, build_ms


def time_lookups(lookup, queries):
    """Return per-query lookup latency in nanoseconds and the hit count."""
    times_ns = []
    hits = 0
    for q in queries:
        t0 = time.perf_counter()
        result = lookup(q)
        t1 = time.perf_counter()
        times_ns.append((t1 - t0) * 1e9)
        hits += int(result is not None)
    return times_ns, hits


def bisect_lookup(sorted_keys):
    def lookup(q):
        idx = bisect.bisect_left(sorted_keys, q)
        return idx if idx < len(sorted_keys) and sorted_keys[idx] == q else None
    return lookup


def scan_lookup(sorted_keys):
    def lookup(q):
        for idx, k in enumerate(sorted_keys):
            if k >= q:
                return idx if k == q else None
        return None
    return lookup


def run_benchmark(num_keys, num_queries, second_stage_size, epochs):
    results = {}
    rng = random.Random(0)
    for name, generate in DISTRIBUTIONS.items():
        keys = generate(num_keys)
        index, build_ms = build_index(keys, second_stage_size, epochs)

        # Query set: half existing keys, half random in-range keys
        existing = [float(k) for k in rng.choices(list(keys), k=num_queries // 2)]
        randoms = [rng.uniform(float(keys[0]), float(keys[-1])) for _ in range(num_queries // 2)]
        queries = existing + randoms
        rng.shuffle(queries)

        learned_ns, learned_hits = time_lookups(index.find, queries)
        sorted_keys = list(map(float, keys))
        baseline_ns, baseline_hits = time_lookups(bisect_lookup(sorted_keys), queries)
        scan_ns, scan_hits = time_lookups(scan_lookup(sorted_keys), queries)
        if learned_hits != baseline_hits:
            print(f"WARNING: {name}: learned index found {learned_hits}, bisect found {baseline_hits}")
        if scan_hits != baseline_hits:
            print(f"WARNING: {name}: scan found {scan_hits}, bisect found {baseline_hits}")

        stats = index.get_stats()
        results[name] = {
            'build_ms': build_ms,
            'learned_mean_ns': statistics.mean(learned_ns),
            'bisect_mean_ns': statistics.mean(baseline_ns),
            'scan_mean_ns': statistics.mean(scan_ns),
            'hits': learned_hits,
            'widened': stats['widened_searches'],
            'degraded': stats['degraded_lookups'],
            'empty_buckets': stats['empty_buckets'],
            'mean_max_error': float(np.mean(stats['max_errors'])),
        }
        print(f"{name:>10}: build {build_ms:9.1f} ms | learned {results[name]['learned_mean_ns']:9.1f} ns | "
              f"bisect {results[name]['bisect_mean_ns']:9.1f} ns | scan {results[name]['scan_mean_ns']:11.1f} ns | "
              f"hits {learned_hits} | "
              f"widened {stats['widened_searches']} | empty buckets {stats['empty_buckets']}")
    return results


def plot_results(results, output_dir="plots"):
    os.makedirs(output_dir, exist_ok=True)
    names = list(results.keys())
    x = np.arange(len(names))
    width = 0.27

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.bar(x - width, [results[n]['learned_mean_ns'] for n in names], width, label='Learned index')
    ax.bar(x, [results[n]['bisect_mean_ns'] for n in names], width, label='Bisect')
    ax.bar(x + width, [results[n]['scan_mean_ns'] for n in names], width, label='Sorted scan')
    ax.set_yscale('log')
    ax.set_ylabel('Mean lookup latency (ns)')
    ax.set_title('Point lookup latency by key distribution')
    ax.set_xticks(x)
    ax.set_xticklabels(names)
    ax.legend()
    fig.tight_layout()
    path = os.path.join(output_dir, "lookup_latency.png")
    fig.savefig(path)
    plt.close(fig)

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.bar(names, [results[n]['mean_max_error'] for n in names])
    ax.set_ylabel('Mean per-bucket max error (positions)')
    ax.set_title('Second stage prediction error')
    fig.tight_layout()
    error_path = os.path.join(output_dir, "bucket_error.png")
    fig.savefig(error_path)
    plt.close(fig)
    print(f"Saved plots to {path} and {error_path}")


def main():
    parser = argparse.ArgumentParser(description="Benchmark the recursive model index against bisect and a sorted scan")
    parser.add_argument("--keys", type=int, default=20_000)
    parser.add_argument("--queries", type=int, default=2_000)
    parser.add_argument("--second-stage-size", type=int, default=64)
    parser.add_argument("--epochs", type=int, default=300)
    parser.add_argument("--no-plot", action="store_true")
    args = parser.parse_args()

    results = run_benchmark(args.keys, args.queries, args.second_stage_size, args.epochs)
    if not args.no_plot:
        plot_results(results)


if __name__ == "__main__":
    main()
