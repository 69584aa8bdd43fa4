"""
Performance Analysis Script for the static file server.

This script:
1. Starts a server on a temporary directory holding one test file
   (or targets an already running server with --url)
2. Issues GET requests at increasing concurrency levels
3. Plots concurrency vs. average and p95 latency
4. Checks that every response body matches the file byte for byte
"""

import argparse
import json
import os
import sys
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Tuple

import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend
import matplotlib.pyplot as plt
import numpy as np
import requests

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from simpleserver.server import Server

# Test parameters
CONCURRENCY_LEVELS = [1, 2, 5, 10, 20, 50]
REQUESTS_PER_LEVEL = 200
FILE_SIZE = 256 * 1024
FILE_NAME = 'payload.bin'


def perform_get(url: str, expected: Optional[bytes]) -> Tuple[bool, float]:
    """
    Perform one GET and return (success, latency_ms).
    Success means status 200 and, when known, the exact expected body.
    """
    start_time = time.time()
    try:
        response = requests.get(url, timeout=30)
        latency = (time.time() - start_time) * 1000
        ok = response.status_code == 200
        if ok and expected is not None:
            ok = response.content == expected
        return ok, latency
    except requests.exceptions.RequestException as e:
        latency = (time.time() - start_time) * 1000
        print(f"Request failed: {e}")
        return False, latency


def run_level(url: str, concurrency: int, total: int, expected: Optional[bytes]) -> List[Tuple[bool, float]]:
    with ThreadPoolExecutor(max_workers=concurrency) as executor:
        futures = [executor.submit(perform_get, url, expected) for _ in range(total)]
        return [f.result() for f in as_completed(futures)]


def summarize(results: List[Tuple[bool, float]]) -> Dict[str, float]:
    latencies = [r[1] for r in results if r[0]]
    summary = {
        "total_requests": len(results),
        "successful_requests": len(latencies),
        "failed_requests": len(results) - len(latencies),
    }
    if latencies:
        summary.update({
            "avg_latency_ms": float(np.mean(latencies)),
            "min_latency_ms": float(np.min(latencies)),
            "max_latency_ms": float(np.max(latencies)),
            "std_latency_ms": float(np.std(latencies)),
            "p50_latency_ms": float(np.percentile(latencies, 50)),
            "p95_latency_ms": float(np.percentile(latencies, 95)),
        })
    else:
        summary["avg_latency_ms"] = float('inf')
    return summary


def run_performance_analysis(url: str, expected: Optional[bytes], levels: List[int], total: int) -> Dict[int, Dict]:
    results = {}
    for concurrency in levels:
        print(f"\n{'='*60}")
        print(f"Concurrency = {concurrency} ({total} requests)")
        print(f"{'='*60}")
        started = time.time()
        summary = summarize(run_level(url, concurrency, total, expected))
        summary["elapsed_s"] = time.time() - started
        results[concurrency] = summary

        print(f"  Successful: {summary['successful_requests']}/{summary['total_requests']}")
        if summary['successful_requests']:
            print(f"  Average latency: {summary['avg_latency_ms']:.2f}ms")
            print(f"  P95 latency: {summary['p95_latency_ms']:.2f}ms")
        print(f"  Throughput: {total / summary['elapsed_s']:.1f} req/s")
    return results


def plot_results(results: Dict[int, Dict], output_path: str):
    """Plot concurrency vs. average and p95 latency."""
    levels = [c for c in sorted(results) if np.isfinite(results[c]['avg_latency_ms'])]
    if not levels:
        print("No successful requests to plot")
        return
    avg = [results[c]['avg_latency_ms'] for c in levels]
    p95 = [results[c]['p95_latency_ms'] for c in levels]

    plt.figure(figsize=(10, 6))
    plt.plot(levels, avg, 'o-', label='average')
    plt.plot(levels, p95, 's--', label='p95')
    plt.xlabel('Concurrent clients')
    plt.ylabel('Latency (ms)')
    plt.title('Static file server: concurrency vs. latency')
    plt.grid(True, alpha=0.3)
    plt.legend()
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    plt.close()
    print(f"Plot saved to: {output_path}")


def main():
    p = argparse.ArgumentParser(description='Latency under concurrency for the static file server')
    p.add_argument('--url', help='URL of a file on an already running server')
    p.add_argument('--requests', type=int, default=REQUESTS_PER_LEVEL, help='Requests per concurrency level')
    p.add_argument('--levels', type=int, nargs='+', default=CONCURRENCY_LEVELS, help='Concurrency levels to test')
    p.add_argument('--size', type=int, default=FILE_SIZE, help='Size in bytes of the generated test file')
    p.add_argument('--out', default=os.path.dirname(os.path.abspath(__file__)), help='Directory for results')
    args = p.parse_args()

    print("="*80)
    print("Static File Server Performance Analysis")
    print("="*80)

    server = thread = None
    expected = None
    with tempfile.TemporaryDirectory() as root:
        url = args.url
        if not url:
            expected = os.urandom(args.size)
            with open(os.path.join(root, FILE_NAME), 'wb') as f:
                f.write(expected)
            server = Server(int(os.environ.get('PORT', 8765)), root, True)
            thread = server.start()
            host, port = server.address
            url = f"http://{host}:{port}/{FILE_NAME}"
        print(f"Target: {url}")

        try:
            results = run_performance_analysis(url, expected, args.levels, args.requests)
        finally:
            if server is not None:
                server.stop()
                thread.join()
                server.close()

    output_path = os.path.join(args.out, 'performance_results.json')
    with open(output_path, 'w') as f:
        json.dump({str(k): v for k, v in results.items()}, f, indent=2)
    print(f"\nRaw results saved to: {output_path}")

    plot_results(results, os.path.join(args.out, 'concurrency_vs_latency.png'))

    failed = sum(r['failed_requests'] for r in results.values())
    if failed:
        print(f"\nWARNING: {failed} requests failed or returned a different body")
    print("\n" + "="*80)
    print("Analysis complete!")
    print("="*80)


if __name__ == '__main__':
    main()
