#!/usr/bin/env python3
"""
BBP (Bailey–Borwein–Plouffe) 公式で π の16進小数桁を1桁ずつ直接求める。

pi = sum_k 16^-k * (4/(8k+1) - 2/(8k+4) - 1/(8k+5) - 1/(8k+6))

桁 n の値は frac(16^n * pi) の先頭16進桁なので、前の桁は一切計算しない。
整数は 32bit 符号なしの範囲、小数は double のみで計算する。
"""
import argparse
import math

HEX_ALPHABET = "0123456789ABCDEF"
SERIES_CONSTANTS = (1, 4, 5, 6)
MAX32 = 0xFFFFFFFF

# double の累積誤差で桁が狂い始める目安（強制はしない）
PRECISION_CEILING = 10_000_000

# 1ジョブあたりの最大桁数（worker / server 共通）
MAX_DIGITS_PER_JOB = 512

# 1桁の計算時間はほぼ index に比例する（index=1e5 で約1.4秒）
SEC_PER_INDEX = 1.5e-5


def estimate_digit_sec(index: int) -> float:
    """index 桁目1桁を計算するおおよその秒数"""
    return SEC_PER_INDEX * index


def modpow(base: int, exp: int, modulus: int) -> int:
    """(base ** exp) % modulus, right-to-left binary method."""
    if modulus == 0:
        raise ValueError("modulus must be positive")
    base %= modulus
    acc = 1 % modulus
    while exp > 0:
        if exp & 1:
            acc = (acc * base) % modulus
        base = (base * base) % modulus
        exp >>= 1
    return acc


def ipow(base: int, exp: int) -> int:
    """
    base ** exp。32bit に収まらない場合は 0 を返す（飽和）。
    exp == 0 なら base に関わらず 1。
    """
    if exp == 0:
        return 1
    if base <= 1:
        # 0 と 1 は飽和しない
        return base
    value = 1
    for _ in range(exp):
        if (MAX32 - 1) // base < value:
            return 0
        value *= base
    return value


def _frac(x: float) -> float:
    # 整数部を切り捨てる（C の (int) キャストと同じく 0 方向）
    return x - int(x)


def series(constant: int, index: int) -> float:
    """
    S_M(n) の小数部に相当する値:
        sum_{k=0..n-1} (16^(n-k) mod (8k+M)) / (8k+M)
      + sum_{k=0..}    1 / (16^k * (8(k+n)+M))
    どちらの和も1項ごとに整数部を捨てる。
    """
    if constant not in SERIES_CONSTANTS:
        raise ValueError(f"series constant must be one of {SERIES_CONSTANTS}, got {constant}")

    # 前半（mod で厳密に）
    head = 0.0
    for k in range(index):
        ak = 8 * k + constant
        head = _frac(head + modpow(16, index - k, ak) / ak)

    # 後半: 16^k が 32bit を超えた時点で項は無視できる
    tail = 0.0
    k = 0
    while True:
        p = ipow(16, k)
        if p == 0:
            break
        tail = _frac(tail + 1.0 / (p * (8.0 * (k + index) + constant)))
        k += 1

    return head + tail


def fraction(index: int) -> float:
    """frac(16^index * pi), in [0, 1)."""
    raw = (4.0 * series(1, index)
           - 2.0 * series(4, index)
           - series(5, index)
           - series(6, index))
    # raw は負になり得るので +1.0 してからもう一度整数部を捨てる
    return _frac(_frac(raw) + 1.0)


def hex_digit(value: float) -> str:
    """Leading hexadecimal digit of a fraction in [0, 1)."""
    if not math.isfinite(value):
        raise ValueError(f"fraction must be finite, got {value}")
    x = abs(value)
    d = int(16.0 * (x - int(x)))
    if not 0 <= d < len(HEX_ALPHABET):
        raise ValueError(f"digit out of range: {d}")
    return HEX_ALPHABET[d]


def compute_hex_digit(index: int) -> str:
    """
    π の16進小数点以下 index 桁目（0始まり）を '0'..'F' で返す。
    """
    if index < 0:
        raise ValueError(f"index must be non-negative, got {index}")
    return hex_digit(fraction(index))


def compute_hex_digits(start: int, count: int) -> str:
    if start < 0:
        raise ValueError(f"start must be non-negative, got {start}")
    if count < 0:
        raise ValueError(f"count must be non-negative, got {count}")
    return "".join(compute_hex_digit(start + i) for i in range(count))


def main():
    parser = argparse.ArgumentParser(
        description="BBP 公式で π の16進小数桁を計算します"
    )
    parser.add_argument(
        "--start",
        type=int,
        default=0,
        help="開始位置（0始まり、デフォルト: 0）"
    )
    parser.add_argument(
        "--count",
        type=int,
        default=4,
        help="計算する桁数（デフォルト: 4）"
    )
    args = parser.parse_args()

    if args.start + args.count > PRECISION_CEILING:
        print(f"Warning: digits beyond {PRECISION_CEILING} may be inaccurate")

    try:
        print(compute_hex_digits(args.start, args.count))
    except ValueError as e:
        parser.error(str(e))


if __name__ == "__main__":
    main()
