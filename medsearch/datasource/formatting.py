"""
Display-name helpers for terminology data: casing, name parsing, categories.
"""

import re

from medsearch.models import Medication, MedicationCategory

# Dosage-form and route abbreviations kept upper-case
PRESERVED_ABBREVIATIONS = {
    "ER", "XR", "SR", "CR", "LA", "XL", "CD", "HCL", "HCT", "HFA",
    "IV", "IM", "PO", "PR", "SL", "TD", "MG", "MCG", "ML", "DPI",
}
# Spelled the way pharmacists write them rather than all caps
SPECIAL_CASING = {"HCL": "HCl"}

_WHITESPACE = re.compile(r"\s+")
_LEADING_PUNCTUATION = re.compile(r"^([^A-Za-z0-9]*)(.*)$", re.DOTALL)
_GENERIC_BRAND = re.compile(r"^([^(]+)\s*\(([^)]+)\)")
_BRAND_GENERIC = re.compile(r"^([^\[]+)\s*\[([^\]]+)\]")

# (keywords contained in the name, suffixes, category)
CATEGORY_RULES: list[tuple[tuple[str, ...], tuple[str, ...], MedicationCategory]] = [
    (
        ("ibuprofen", "acetaminophen", "aspirin", "naproxen"),
        (),
        MedicationCategory(broad="Pain Management", specific="Analgesics"),
    ),
    (
        ("amoxicillin", "azithromycin", "ciprofloxacin"),
        ("cillin", "mycin"),
        MedicationCategory(broad="Antibiotics", specific="Antibacterial"),
    ),
    (
        ("atenolol", "lisinopril", "metoprolol"),
        ("pril", "olol"),
        MedicationCategory(broad="Cardiovascular", specific="Heart Medications"),
    ),
    (
        ("metformin", "insulin", "glipizide"),
        (),
        MedicationCategory(broad="Diabetes", specific="Antidiabetic"),
    ),
    (
        ("sertraline", "fluoxetine", "escitalopram", "lorazepam"),
        (),
        MedicationCategory(broad="Mental Health", specific="Psychiatric"),
    ),
    (
        ("atorvastatin", "simvastatin"),
        ("statin",),
        MedicationCategory(broad="Cardiovascular", specific="Cholesterol"),
    ),
]
DEFAULT_CATEGORY = MedicationCategory(broad="General", specific="Miscellaneous")


def to_sentence_case(text: str) -> str:
    """Sentence-case every word, keeping known abbreviations upper-case."""
    if not text:
        return text

    words = []
    for word in text.split(" "):
        upper = word.upper()
        if upper in PRESERVED_ABBREVIATIONS:
            words.append(SPECIAL_CASING.get(upper, upper))
        elif "/" in word:
            words.append("/".join(to_sentence_case(part) for part in word.split("/")))
        elif "-" in word:
            words.append("-".join(to_sentence_case(part) for part in word.split("-")))
        else:
            # "(advil)" -> "(Advil)"
            lead, rest = _LEADING_PUNCTUATION.match(word).groups()
            words.append(lead + rest[:1].upper() + rest[1:].lower())
    return " ".join(words)


def normalize_display_name(name: str) -> str:
    """Collapse whitespace and apply sentence case."""
    if not name:
        return name
    return to_sentence_case(_WHITESPACE.sub(" ", name.strip()))


def categorize(name: str) -> MedicationCategory:
    """Rough therapeutic category from name keywords."""
    lower = name.lower()
    for keywords, suffixes, category in CATEGORY_RULES:
        if any(k in lower for k in keywords) or (suffixes and lower.endswith(suffixes)):
            return category
    return DEFAULT_CATEGORY


def parse_medication(display_name: str) -> Medication:
    """
    Build a Medication from an already normalized display name.

    ``Generic (Brand)`` and ``Brand [Generic]`` yield generic and brand names;
    anything else is its own generic name.
    """
    brand_names: list[str] | None = None

    if match := _GENERIC_BRAND.match(display_name):
        generic_name = normalize_display_name(match.group(1))
        brand_names = [normalize_display_name(match.group(2))]
    elif match := _BRAND_GENERIC.match(display_name):
        brand_names = [normalize_display_name(match.group(1))]
        generic_name = normalize_display_name(match.group(2))
    else:
        generic_name = display_name

    return Medication.from_name(
        display_name,
        generic_name=generic_name,
        brand_names=brand_names,
        categories=categorize(display_name),
    )
