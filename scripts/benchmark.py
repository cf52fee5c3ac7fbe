import argparse
import json
import random
import shutil
import subprocess
import sys
import time
from pathlib import Path

# Common packages for generating import statements
LIBRARIES = [
    "react", "react-dom", "lodash", "lodash/map", "express", "axios", "@mobily/ts-belt",
    "@tanstack/react-query", "zod", "dayjs", "./local", "../shared/util", "node:fs", "chalk",
]

BENCHMARK_DIR = Path("benchmark_src")


def import_line(lib: str) -> str:
    if random.random() < 0.5:
        return f'import x from "{lib}";\n'
    return f"const x = require('{lib}');\n"


def generate_files(num_files: int):
    """Generate a specified number of source files for benchmarking."""
    if BENCHMARK_DIR.exists():
        # Clean up previous benchmark files
        shutil.rmtree(BENCHMARK_DIR)
    (BENCHMARK_DIR / "src").mkdir(parents=True)

    for i in range(num_files):
        filename = BENCHMARK_DIR / "src" / f"file_{i}.{random.choice(['ts', 'tsx', 'js', 'jsx'])}"
        with open(filename, "w") as f:
            num_imports = random.randint(1, 10)
            imports = random.sample(LIBRARIES, num_imports)
            for lib in imports:
                f.write(import_line(lib))
            f.write("\nexport function main() {}\n")

    # Create a dummy package.json
    with open(BENCHMARK_DIR / "package.json", "w") as f:
        json.dump(
            {
                "name": "benchmark-project",
                "version": "0.1.0",
                "dependencies": {"react": "^18.0.0", "lodash": "^4.0.0", "left-pad": "^1.0.0"},
                "devDependencies": {"express": "^4.0.0", "typescript": "^5.0.0"},
            },
            f,
            indent=2,
        )

    print(f"Generated {num_files} source files in {BENCHMARK_DIR}/src/")


def run_benchmark(num_files: int):
    """Run the benchmark and print the results."""
    generate_files(num_files)

    # Install the tool in the current environment
    print("Installing dep-guard...")
    result = subprocess.run(["uv", "pip", "install", "."], check=False, capture_output=True, text=True)
    if result.returncode != 0:
        print("Error installing dep-guard:")
        print(result.stderr)
        sys.exit(1)

    base_cmd = [
        "dep-guard",
        "-d",
        str(BENCHMARK_DIR / "src"),
        "-p",
        str(BENCHMARK_DIR / "package.json"),
    ]

    # dep-guard exits with 1 when it finds issues, which the generated project always has
    print("\nRunning benchmark in sequential mode...")
    start_time = time.perf_counter()
    subprocess.run(base_cmd, check=False, capture_output=True)
    sequential_time = time.perf_counter() - start_time

    print("Running benchmark in parallel mode...")
    start_time = time.perf_counter()
    subprocess.run([*base_cmd, "--parallel"], check=False, capture_output=True)
    parallel_time = time.perf_counter() - start_time

    # --- Print results ---
    print("\n--- Benchmark Results ---")
    print(f"Number of files: {num_files}")
    print(f"Sequential mode: {sequential_time:.4f} seconds")
    print(f"Parallel mode:   {parallel_time:.4f} seconds")

    if parallel_time < sequential_time:
        improvement = (sequential_time - parallel_time) / sequential_time * 100
        print(f"\n🚀 Improvement of {improvement:.2f}% with --parallel flag!")
    else:
        slowdown = (parallel_time - sequential_time) / sequential_time * 100
        print(f"\n⚠️ Parallel mode was {slowdown:.2f}% slower.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Benchmark for dep-guard.")
    parser.add_argument(
        "--num-files",
        type=int,
        default=5000,
        help="Number of source files to generate for the benchmark.",
    )
    args = parser.parse_args()

    run_benchmark(args.num_files)
