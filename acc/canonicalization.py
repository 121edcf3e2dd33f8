"""
acc Canonical JSON (RFC 8785 JSON Canonicalization Scheme)

Semantically identical documents produce identical byte representations,
so hashes and signatures over them are stable across producers.
"""

import json
import math
from typing import Any, List

# Largest integer an IEEE-754 double represents exactly
MAX_SAFE_INTEGER = 2 ** 53


def canonicalize(obj: Any) -> bytes:
    """
    Convert an object to its JCS canonical form.

    Rules (RFC 8785):
    - Object keys sorted by their UTF-16 code units, at every level
    - No whitespace between tokens
    - Numbers serialized the way ECMAScript serializes doubles
    - Strings with minimal escaping, lowercase \\u escapes
    - Arrays preserve order
    - UTF-8 output, no BOM

    Raises:
        ValueError: for NaN/Infinity, unsafe integers, non-string keys
            or unsupported types

    Returns:
        UTF-8 encoded bytes of canonical JSON
    """
    parts: List[str] = []
    _serialize(obj, parts)
    return "".join(parts).encode('utf-8')


def canonicalize_str(obj: Any) -> str:
    """Return canonical JSON as string."""
    return canonicalize(obj).decode('utf-8')


def _serialize(value: Any, out: List[str]) -> None:
    if value is None:
        out.append("null")
    elif value is True:
        out.append("true")
    elif value is False:
        out.append("false")
    elif isinstance(value, (int, float)):
        out.append(format_number(value))
    elif isinstance(value, str):
        out.append(json.dumps(value, ensure_ascii=False))
    elif isinstance(value, dict):
        _serialize_object(value, out)
    elif isinstance(value, (list, tuple)):
        out.append("[")
        for i, item in enumerate(value):
            if i:
                out.append(",")
            _serialize(item, out)
        out.append("]")
    else:
        raise ValueError(f"Cannot canonicalize type: {type(value)}")


def _serialize_object(obj: dict, out: List[str]) -> None:
    """
    Serialize an object with keys sorted by UTF-16 code units.

    Sorting on UTF-16 big-endian bytes gives code-unit order, which differs
    from code-point order for characters outside the BMP.
    """
    for key in obj:
        if not isinstance(key, str):
            raise ValueError(f"Object keys must be strings, got {type(key)}")
    out.append("{")
    for i, key in enumerate(sorted(obj, key=lambda k: k.encode('utf-16-be'))):
        if i:
            out.append(",")
        out.append(json.dumps(key, ensure_ascii=False))
        out.append(":")
        _serialize(obj[key], out)
    out.append("}")


def format_number(value: Any) -> str:
    """
    Serialize a number per ECMAScript Number.prototype.toString.

    Integers are emitted as-is when within the exactly-representable
    range; floats use the shortest round-trip digits, switching to
    exponent notation outside [1e-6, 1e21).
    """
    if isinstance(value, int):
        if abs(value) > MAX_SAFE_INTEGER:
            raise ValueError(f"Integer {value} exceeds the IEEE-754 safe range")
        return str(value)

    if math.isnan(value) or math.isinf(value):
        raise ValueError("NaN and Infinity are not valid JSON numbers")
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    digits, point = _shortest_digits(abs(value))
    k = len(digits)
    n = point

    if k <= n <= 21:
        text = digits + "0" * (n - k)
    elif 0 < n <= 21:
        text = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        text = "0." + "0" * (-n) + digits
    else:
        exp = n - 1
        exp_text = ("+" if exp >= 0 else "-") + str(abs(exp))
        mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
        text = mantissa + "e" + exp_text
    return sign + text


def _shortest_digits(value: float):
    """
    Return (digits, point) such that value == 0.digits * 10**point.

    Python's repr already yields the shortest round-trip representation;
    only its layout needs normalizing.
    """
    text = repr(value)
    if "e" in text:
        mantissa, exp_text = text.split("e")
        exp = int(exp_text)
    else:
        mantissa, exp = text, 0
    if "." in mantissa:
        int_part, frac_part = mantissa.split(".")
    else:
        int_part, frac_part = mantissa, ""

    all_digits = int_part + frac_part
    point = len(int_part) + exp
    stripped = all_digits.lstrip("0")
    point -= len(all_digits) - len(stripped)
    return stripped.rstrip("0"), point
