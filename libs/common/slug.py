import re


def slugify(value: str) -> str:
    """"Joe's Pizza & Grill" -> "joe-s-pizza-grill"."""
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").lower()).strip("-")
    return slug or "item"
