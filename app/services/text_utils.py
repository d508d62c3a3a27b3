"""Normalización de texto para comparar palabras clave."""

import unicodedata


def fold(text: str) -> str:
    """Minúsculas y sin acentos: "Preço" -> "preco"."""
    decomposed = unicodedata.normalize("NFKD", text or "")
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


def contains_term(folded_text: str, term: str) -> bool:
    """True si `term` aparece en un texto ya normalizado con fold()."""
    needle = fold(term).strip()
    return bool(needle) and needle in folded_text
