from __future__ import annotations


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value


def name_hash(name: str) -> int:
    """Rolling hash (multiplier 31) folded into a signed 32-bit integer.

    Characters are consumed as UTF-16 code units so names outside the BMP
    hash the same way a browser computes them.
    """
    encoded = (name or '').encode('utf-16-le')
    value = 0
    for index in range(0, len(encoded), 2):
        unit = encoded[index] | (encoded[index + 1] << 8)
        value = _to_int32(unit + _to_int32((value << 5) - value))
    return value


def derive_color(name: str) -> str:
    value = name_hash(name)
    return '#' + ''.join(f'{(value >> (index * 8)) & 0xFF:02x}' for index in range(3))
