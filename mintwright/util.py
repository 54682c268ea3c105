"""Utility helpers for mintwright."""


def upper_first(name: str) -> str:
    return name[:1].upper() + name[1:]


def parse_int(text: str) -> int:
    value = text.strip()
    if value.lower().startswith("0x"):
        return int(value, 16)
    return int(value, 10)
