"""
🔧 NORMALIZADOR DE TEXTO
========================

Normaliza respuestas libres del usuario antes de resolver una opción:
- Accent folding (elimina acentos)
- Minúsculas y espacios colapsados
- Alias configurables por paso ("pay later" → "30_days")
"""

import re
import unicodedata
from typing import Dict, Optional


def _fold_accents(s: str) -> str:
    """
    Elimina acentos usando Unicode normalization.
    'Confirmár' → 'confirmar'
    """
    return ''.join(
        c for c in unicodedata.normalize('NFD', s.lower())
        if unicodedata.category(c) != 'Mn'
    )


def normalize_reply(text: Optional[str]) -> str:
    """Minúsculas, sin acentos, sin emojis de los botones y con espacios colapsados."""
    folded = _fold_accents(text or "")
    folded = re.sub(r"[^\w\s]", " ", folded)
    return re.sub(r"\s+", " ", folded).strip()


def resolve_alias(text: Optional[str], aliases: Dict[str, str]) -> str:
    """
    Devuelve el id canónico para el texto, o el texto normalizado si no hay alias.

    Los ids con guion bajo ("30_days") también se aceptan escritos con espacio.
    """
    normalized = normalize_reply(text)
    if normalized in aliases:
        return aliases[normalized]
    underscored = normalized.replace(" ", "_")
    if underscored in aliases.values():
        return underscored
    return normalized
