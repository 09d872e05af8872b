#!/usr/bin/env python3
"""
Sample History Generator Script

Generates seeded synthetic GRC histories (risk scores, control
effectiveness, issue counts, compliance scores) for demos and for
exercising the prediction endpoints without production data.

Usage:
    python scripts/generate_sample_history.py [--output data/sample_history.json] [--risks 5] [--seed 42]
"""

import argparse
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from detection.synthetic import SyntheticHistoryGenerator


def main():
    parser = argparse.ArgumentParser(
        description="Generate synthetic GRC histories"
    )
    parser.add_argument(
        "--output", "-o",
        default="data/sample_history.json",
        help="Output file path (default: data/sample_history.json)"
    )
    parser.add_argument(
        "--risks", "-r",
        type=int,
        default=5,
        help="Number of risk histories (default: 5)"
    )
    parser.add_argument(
        "--controls", "-c",
        type=int,
        default=5,
        help="Number of control histories (default: 5)"
    )
    parser.add_argument(
        "--seed", "-s",
        type=int,
        default=None,
        help="Random seed for reproducible output"
    )

    args = parser.parse_args()

    print("=" * 60)
    print("GRC Analytics Engine - Sample History Generator")
    print("=" * 60)
    print()

    generator = SyntheticHistoryGenerator(seed=args.seed)
    data = generator.save(args.output, risks=args.risks, controls=args.controls)

    print(f"Risk histories:     {len(data['riskHistories'])}")
    print(f"Control histories:  {len(data['controlHistories'])}")
    print(f"Issue periods:      {len(data['issueCounts'])}")
    print(f"Compliance periods: {len(data['complianceHistory'])}")
    print(f"Saved to:           {args.output}")

    print()
    print("=" * 60)
    print("Sample history generation complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
