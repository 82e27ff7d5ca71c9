#!/usr/bin/env python3
"""
π の16進桁を計算する bbp_hex ジョブをまとめてエンキューするスクリプト
"""
import argparse
import os
import random
import sys
import requests

from bbp import MAX_DIGITS_PER_JOB

DEFAULT_BASE = os.environ.get("PI_SERVER_BASE", "http://localhost:8099")


def build_payloads(start: int, count: int, digits: int, randomize: bool = False) -> list:
    """ジョブ i は start + i*digits 桁目から digits 桁を担当する"""
    job_indices = list(range(count))
    if randomize:
        random.shuffle(job_indices)
    return [
        {"type": "bbp_hex", "start": start + i * digits, "count": digits}
        for i in job_indices
    ]


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="複数のbbp_hexジョブをエンキューします"
    )
    parser.add_argument(
        "--start",
        type=int,
        required=True,
        help="開始位置（必須、0始まり）"
    )
    parser.add_argument(
        "--count",
        type=int,
        required=True,
        help="エンキューするジョブ数（必須）"
    )
    parser.add_argument(
        "--digits",
        type=int,
        default=1,
        help=f"各ジョブで計算する桁数（デフォルト: 1、最大: {MAX_DIGITS_PER_JOB}）"
    )
    parser.add_argument(
        "--base",
        type=str,
        default=DEFAULT_BASE,
        help=f"サーバーのベースURL（デフォルト: {DEFAULT_BASE}）"
    )
    parser.add_argument(
        "--randomize",
        action="store_true",
        help="エンキューの順序をランダマイズします"
    )

    args = parser.parse_args(argv)

    if args.start < 0:
        print(f"Error: start must be non-negative, got {args.start}", file=sys.stderr)
        sys.exit(1)

    if args.count <= 0:
        print(f"Error: count must be positive, got {args.count}", file=sys.stderr)
        sys.exit(1)

    if not 0 < args.digits <= MAX_DIGITS_PER_JOB:
        print(f"Error: digits must be in 1..{MAX_DIGITS_PER_JOB}, got {args.digits}", file=sys.stderr)
        sys.exit(1)

    enqueue_url = f"{args.base.rstrip('/')}/enqueue"
    payloads = build_payloads(args.start, args.count, args.digits, args.randomize)

    order = ", randomized" if args.randomize else ""
    print(f"Enqueueing {args.count} jobs (start={args.start}, digits={args.digits}{order})...")

    session = requests.Session()
    success_count = 0
    fail_count = 0

    for job_num, payload in enumerate(payloads, 1):
        label = f"Job {job_num}/{args.count}: start={payload['start']}, count={payload['count']}"
        try:
            response = session.post(enqueue_url, json=payload, timeout=10)
            response.raise_for_status()
            success_count += 1
            print(f"  ✓ {label} -> {response.json().get('job_id')}")
        except requests.exceptions.RequestException as e:
            fail_count += 1
            print(f"  ✗ {label} - Error: {e}", file=sys.stderr)

    print(f"\nCompleted: {success_count} succeeded, {fail_count} failed")

    if fail_count > 0:
        sys.exit(1)

if __name__ == "__main__":
    main()
