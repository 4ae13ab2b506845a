from __future__ import annotations

import re
import unicodedata
from typing import Optional


# Canonical word -> spellings seen on the floor (pt-BR, abbreviations, English).
MATERIAL_SYNONYMS: dict[str, tuple[str, ...]] = {
    "ferro": ("ferro", "fe", "iron"),
    "aluminio": ("aluminio", "alumínio", "al", "aluminum"),
    "cobre": ("cobre", "cu", "copper"),
    "lata": ("lata", "latinhas", "alumínio lata"),
    "papel": ("papel", "papelao", "papelão", "cardboard"),
    "plastico": ("plastico", "plástico", "plastic"),
    "vidro": ("vidro", "glass"),
    "miudo": ("miudo", "miúdo", "miuda", "miúda", "pequeno", "fino"),
    "grosso": ("grosso", "pesado", "grande", "espesso"),
    "chapa": ("chapa", "folha", "lamina", "lâmina"),
    "fio": ("fio", "cabo", "wire"),
    "sucata": ("sucata", "scrap", "resto"),
}

_SYNONYM_INDEX = {s: canonical for canonical, spellings in MATERIAL_SYNONYMS.items() for s in spellings}


def _strip_trailing_zeros(name: str) -> str:
    # Keypad/scale integrations sometimes append "0"s to the material label.
    while name.endswith("0") and len(name) > 1:
        name = name[:-1].strip()
    return name


def clean_material_name(name: Optional[str]) -> Optional[str]:
    if not name or not isinstance(name, str):
        return name
    return _strip_trailing_zeros(name.strip())


def normalize_material_name(name: Optional[str]) -> str:
    if not name or not isinstance(name, str):
        return ""
    s = unicodedata.normalize("NFD", name.lower().strip())
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = re.sub(r"[^\w\s]", " ", s)
    s = re.sub(r"\s+", " ", s).strip()
    return _strip_trailing_zeros(s)


def canonical_key(name: Optional[str]) -> str:
    words = normalize_material_name(name).split(" ")
    mapped = [_SYNONYM_INDEX.get(w, w) for w in words]
    return " ".join(sorted(" ".join(mapped).strip().split(" ")))


def materials_equivalent(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return canonical_key(a) == canonical_key(b)
