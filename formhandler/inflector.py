"""
English text utilities used by rule resolution and filters.

Covers pluralization, singularization, ordinals, case transforms and identifier case
conversion. The rules are deliberately small English heuristics, not a full
inflection dictionary.
"""

import re
from typing import List

IRREGULAR_PLURALS = {
    "person": "people",
    "child": "children",
    "man": "men",
    "woman": "women",
    "foot": "feet",
    "tooth": "teeth",
    "mouse": "mice",
    "goose": "geese",
    "ox": "oxen",
}

IRREGULAR_SINGULARS = {plural: singular for singular, plural in IRREGULAR_PLURALS.items()}

UNCOUNTABLE = {
    "equipment", "information", "rice", "money", "species", "series", "fish",
    "sheep", "news", "data", "media", "feedback",
}

# Words ending in 'f' or 'fe' whose plural uses 'ves'
F_TO_VES = {
    "calf", "elf", "half", "knife", "leaf", "life", "loaf", "self", "sheaf",
    "shelf", "thief", "wife", "wolf",
}

ORDINAL_SUFFIXES = {1: 'st', 2: 'nd', 3: 'rd'}


def _match_case(source: str, target: str) -> str:
    if source.isupper() and len(source) > 1:
        return target.upper()
    if source[:1].isupper():
        return target[:1].upper() + target[1:]
    return target


def pluralize(word: str) -> str:
    """
    Simple English pluralization.

    Example:
        >>> pluralize("category")
        'categories'
        >>> pluralize("wife")
        'wives'
    """
    if not word:
        return word

    lower = word.lower()
    if lower in UNCOUNTABLE or lower in IRREGULAR_SINGULARS:
        return word
    if lower in IRREGULAR_PLURALS:
        return _match_case(word, IRREGULAR_PLURALS[lower])

    if lower in F_TO_VES:
        stem = word[:-2] if lower.endswith("fe") else word[:-1]
        return stem + "ves"
    if lower.endswith(("s", "x", "z", "ch", "sh")):
        return word + "es"
    if lower.endswith("y") and lower[-2:-1] not in ("a", "e", "i", "o", "u"):
        return word[:-1] + "ies"
    return word + "s"


def singularize(word: str) -> str:
    """
    Simple English singularization.

    Example:
        >>> singularize("wives")
        'wife'
    """
    if not word:
        return word

    lower = word.lower()
    if lower in UNCOUNTABLE or lower in IRREGULAR_PLURALS:
        return word
    if lower in IRREGULAR_SINGULARS:
        return _match_case(word, IRREGULAR_SINGULARS[lower])

    if lower.endswith("ives") and lower[:-3] + "fe" in F_TO_VES:
        return word[:-3] + "fe"
    if lower.endswith("ves") and lower[:-3] + "f" in F_TO_VES:
        return word[:-3] + "f"
    if lower.endswith("ies") and len(lower) > 4:
        return word[:-3] + "y"
    if lower.endswith("es") and lower[:-2].endswith(("ch", "sh", "ss", "x", "zz")):
        return word[:-2]
    if lower.endswith(("ss", "us", "is")):
        return word
    if lower.endswith("s"):
        return word[:-1]
    return word


def is_plural(word: str) -> bool:
    """Return True when ``word`` looks like the plural form of a countable noun."""
    lower = word.lower()
    if not lower or lower in UNCOUNTABLE:
        return False
    singular = singularize(lower)
    return singular != lower and pluralize(singular) == lower


def split_words(text: str) -> List[str]:
    """Split an identifier on separators and camelCase humps."""
    text = re.sub(r"([a-z\d])([A-Z])", r"\1 \2", text)
    return [part for part in re.split(r"[_\-.\s]+", text) if part]


def last_word(text: str) -> str:
    words = split_words(text)
    return words[-1] if words else ''


def ordinalize(value) -> str:
    """
    Append the English ordinal suffix to an integer-like value.

    Example:
        >>> ordinalize('1')
        '1st'
        >>> ordinalize(12)
        '12th'
    """
    text = str(value).strip()
    try:
        number = abs(int(float(text)))
    except ValueError:
        return text

    if 10 <= number % 100 <= 20:
        suffix = 'th'
    else:
        suffix = ORDINAL_SUFFIXES.get(number % 10, 'th')
    return text + suffix


def capitalize(text: str) -> str:
    """Uppercase the first character and lowercase the rest."""
    return text[:1].upper() + text[1:].lower()


def titleize(text: str) -> str:
    """Capitalize every whitespace separated word."""
    return re.sub(r"\S+", lambda match: capitalize(match.group(0)), text)


def snake_case(text: str) -> str:
    """
    Convert text to snake_case.

    Example:
        >>> snake_case("firstName")
        'first_name'
    """
    text = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", text)
    text = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", text)
    text = re.sub(r"[-\s]+", "_", text)
    return text.lower()


def camel_case(text: str) -> str:
    """
    Convert text to camelCase.

    Example:
        >>> camel_case("first_name")
        'firstName'
    """
    parts = [part for part in re.split(r"[_\-\s]+", text) if part]
    if not parts:
        return ""
    head = parts[0]
    if head.isupper() or "_" in text or "-" in text or " " in text:
        head = head.lower()
    else:
        head = head[:1].lower() + head[1:]
    return head + "".join(part[:1].upper() + part[1:].lower() for part in parts[1:])
