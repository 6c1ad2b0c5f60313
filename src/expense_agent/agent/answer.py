"""Normalize a terminal model message into a plain answer string."""

from __future__ import annotations

from typing import Any


def extract_answer(message: Any) -> str:
    if message is None:
        return ""
    if isinstance(message, dict):
        content = message.get("content")
    else:
        content = getattr(message, "content", None)
    if content is None:
        return ""
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                if "text" in item:
                    parts.append(str(item["text"]))
                continue
            parts.append(str(item))
        return " ".join(part.strip() for part in parts if part.strip())
    return str(content).strip()
