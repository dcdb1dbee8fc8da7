"""
Benchmark: Archive Throughput and Latency

Measures:
1. Single-file archive latency (p50, p95, p99)
2. Crawl throughput (files archived/second) across tree sizes
3. Listing latency as the archive grows

Usage:
    python -m benchmarks.bench_archive
    python -m benchmarks.bench_archive --scenario push --samples 500
    python -m benchmarks.bench_archive --scenario crawl --files 5000
    python -m benchmarks.bench_archive --scenario list
"""

import argparse
import random
import shutil
import statistics
import sys
import tempfile
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from env_archive.crawler import crawl
from env_archive.query import list_all, search
from env_archive.store import ArchiveStore
from env_archive.tagging import archive_file


def percentile(data, p):
    """Calculate percentile of data."""
    if not data:
        return 0
    sorted_data = sorted(data)
    k = (len(sorted_data) - 1) * (p / 100)
    f = int(k)
    c = f + 1 if f + 1 < len(sorted_data) else f
    return sorted_data[f] + (sorted_data[c] - sorted_data[f]) * (k - f)


def report(label, latencies):
    ms = [x * 1000 for x in latencies]
    print(
        f"  {label}: p50={percentile(ms, 50):.2f}ms  p95={percentile(ms, 95):.2f}ms  "
        f"p99={percentile(ms, 99):.2f}ms  mean={statistics.mean(ms):.2f}ms"
    )


def generate_tree(path: Path, num_files: int, num_dirs: int = 50):
    """Spread .env files (and some noise) over a directory tree."""
    dirs = [path]
    for i in range(num_dirs):
        d = path / f"service_{i:04d}" / "config"
        d.mkdir(parents=True, exist_ok=True)
        dirs.append(d)

    suffixes = ["", ".local", ".production", ".test"]
    for i in range(num_files):
        d = dirs[i % len(dirs)] / f"app_{i:06d}"
        d.mkdir(exist_ok=True)
        name = ".env" + suffixes[i % len(suffixes)]
        (d / name).write_text(f"KEY_{i}={random.randint(0, 999999)}\n" * 20)
        (d / "README.md").write_text("noise\n")


def bench_push(samples=200):
    tmpdir = Path(tempfile.mkdtemp(prefix="env_archive_bench_"))
    try:
        env = tmpdir / ".env"
        env.write_text("SECRET=value\n" * 50)
        with ArchiveStore.init(tmpdir / "archive.db") as store:
            latencies = []
            for _ in range(samples):
                start = time.perf_counter()
                archive_file(store, env)
                latencies.append(time.perf_counter() - start)
        print(f"\nPush latency ({samples} archives of one file):")
        report("push", latencies)
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


def bench_crawl(file_counts=None):
    if file_counts is None:
        file_counts = [100, 1000, 5000]

    print("\nCrawl throughput:")
    for count in file_counts:
        tmpdir = Path(tempfile.mkdtemp(prefix="env_archive_bench_"))
        try:
            project = tmpdir / "project"
            generate_tree(project, count, num_dirs=max(10, count // 100))
            with ArchiveStore.init(tmpdir / "archive.db") as store:
                start = time.perf_counter()
                result = crawl(store, project)
                elapsed = time.perf_counter() - start
            rate = len(result.archived) / elapsed if elapsed else 0
            print(f"  {count:>6} files: {elapsed:.2f}s  ({rate:,.0f} files/s)")
        finally:
            shutil.rmtree(tmpdir, ignore_errors=True)


def bench_list(sizes=None, samples=20):
    if sizes is None:
        sizes = [1000, 10000]

    print("\nListing latency:")
    for size in sizes:
        tmpdir = Path(tempfile.mkdtemp(prefix="env_archive_bench_"))
        try:
            project = tmpdir / "project"
            generate_tree(project, size, num_dirs=max(10, size // 100))
            with ArchiveStore.init(tmpdir / "archive.db") as store:
                crawl(store, project)
                list_times, search_times = [], []
                for _ in range(samples):
                    start = time.perf_counter()
                    list_all(store)
                    list_times.append(time.perf_counter() - start)
                    start = time.perf_counter()
                    search(store, "service_0001")
                    search_times.append(time.perf_counter() - start)
            report(f"list-all @{size}", list_times)
            report(f"search   @{size}", search_times)
        finally:
            shutil.rmtree(tmpdir, ignore_errors=True)


def main():
    parser = argparse.ArgumentParser(description="env-archive benchmarks")
    parser.add_argument("--scenario", choices=["push", "crawl", "list", "all"], default="all")
    parser.add_argument("--samples", type=int, default=200)
    parser.add_argument("--files", type=int, default=None)
    args = parser.parse_args()

    if args.scenario in ("push", "all"):
        bench_push(args.samples)
    if args.scenario in ("crawl", "all"):
        bench_crawl([args.files] if args.files else None)
    if args.scenario in ("list", "all"):
        bench_list([args.files] if args.files else None)


if __name__ == "__main__":
    main()
