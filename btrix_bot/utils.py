"""Shared utilities used across the dialogue core."""

import re
from typing import Any, Optional


def normalize_menu_input(value: str) -> str:
    """Lowercase and strip everything except letters, digits and spaces.

    Examples:
        >>> normalize_menu_input("  1) Pricing & Plans! ")
        '1 pricing  plans'
        >>> normalize_menu_input("AI-Agents?")
        'aiagents'
    """
    return re.sub(r"[^a-z0-9\s]", "", value.lower()).strip()


def count_digits(value: str) -> int:
    return sum(1 for ch in value if ch.isdigit())


def truncate(value: Optional[str], limit: int) -> str:
    """Cut text to ``limit`` characters for logging."""
    if not value:
        return ""
    return value if len(value) <= limit else value[:limit]


def mask_pii(data: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """Return a copy of collected booking data with name, email and phone masked.

    Examples:
        >>> mask_pii({"name": "Maria", "email": "maria@acme.io", "phone": "+351912345678"})
        {'name': 'M***', 'email': 'ma***@acme.io', 'phone': '***5678'}
    """
    if not data:
        return data

    masked = dict(data)
    email = masked.get("email")
    if isinstance(email, str) and "@" in email:
        local, _, domain = email.partition("@")
        masked["email"] = f"{local[:2]}***@{domain}"
    phone = masked.get("phone")
    if isinstance(phone, str) and phone:
        masked["phone"] = f"***{phone[-4:]}"
    name = masked.get("name")
    if isinstance(name, str) and name:
        masked["name"] = f"{name[0]}***"
    return masked
