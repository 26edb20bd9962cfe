"""
响应形状归一化

后端的列表接口返回格式并不稳定：有时是裸数组，有时包在 items / data / results
等信封里。这里用按优先级排列的匹配器依次尝试，返回第一个命中的列表，都不命中时返回空列表。
"""

from __future__ import annotations

from typing import Any, Callable, Sequence

ShapeMatcher = Callable[[Any], "list[Any] | None"]


def bare_list(payload: Any) -> list[Any] | None:
    return payload if isinstance(payload, list) else None


def envelope(key: str) -> ShapeMatcher:
    """匹配 {key: [...]} 形式的信封"""

    def _matcher(payload: Any) -> list[Any] | None:
        if not isinstance(payload, dict):
            return None
        value = payload.get(key)
        return value if isinstance(value, list) else None

    _matcher.__name__ = f"envelope_{key}"
    return _matcher


CANDIDATE_SHAPES: tuple[ShapeMatcher, ...] = (
    bare_list,
    envelope("items"),
    envelope("data"),
    envelope("results"),
)

ASSIGNMENT_SHAPES: tuple[ShapeMatcher, ...] = (
    bare_list,
    envelope("assignments"),
    envelope("items"),
    envelope("data"),
    envelope("results"),
)


def normalize_collection(payload: Any, matchers: Sequence[ShapeMatcher]) -> list[Any]:
    for matcher in matchers:
        found = matcher(payload)
        if found is not None:
            return found
    return []


__all__ = [
    "ShapeMatcher",
    "bare_list",
    "envelope",
    "CANDIDATE_SHAPES",
    "ASSIGNMENT_SHAPES",
    "normalize_collection",
]
