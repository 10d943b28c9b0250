#!/usr/bin/env python3
"""
Test runner for the certsync engine.

Usage:
    python run_tests.py                           # Run all tests
    python run_tests.py -k orchestrator           # Run specific test pattern
    python run_tests.py --cov                     # Run with coverage
    python run_tests.py --unit                    # Run tests without a database
    python run_tests.py --integration             # Run record-store backed tests only
    python run_tests.py --last-failed -x          # Re-run failures, stop at the first one
"""

import sys
import subprocess
from pathlib import Path

ROOT = Path(__file__).parent


def run_tests(args=None):
    """Run the suite under tests/ with pytest."""
    cmd = [sys.executable, "-m", "pytest", "tests", "--tb=short", *(args or [])]

    print(f"Running: {' '.join(cmd)}")
    return subprocess.run(cmd, cwd=ROOT).returncode


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Run tests for the certsync engine")
    parser.add_argument("-k", "--keyword", help="Run tests matching keyword")
    parser.add_argument("--cov", action="store_true", help="Run with coverage")
    selection = parser.add_mutually_exclusive_group()
    selection.add_argument(
        "--integration", action="store_true", help="Run record-store backed tests only"
    )
    selection.add_argument("--unit", action="store_true", help="Run unit tests only")
    parser.add_argument(
        "--last-failed", action="store_true", help="Only re-run tests that failed last time"
    )
    parser.add_argument("-x", "--exitfirst", action="store_true", help="Stop on first failure")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--pdb", action="store_true", help="Drop into debugger on failure")

    args = parser.parse_args()

    pytest_args = ["-vv" if args.verbose else "-v"]

    if args.keyword:
        pytest_args.extend(["-k", args.keyword])

    if args.cov:
        pytest_args.extend(
            ["--cov=certsync", "--cov-report=html", "--cov-report=term-missing"]
        )

    if args.integration:
        pytest_args.extend(["-m", "integration"])
    elif args.unit:
        pytest_args.extend(["-m", "unit"])

    if args.last_failed:
        pytest_args.append("--last-failed")
    if args.exitfirst:
        pytest_args.append("-x")
    if args.pdb:
        pytest_args.append("--pdb")

    return run_tests(pytest_args)


if __name__ == "__main__":
    sys.exit(main())
