"""
i18n.py -- Translation of user-facing strings returned in response bodies.

Keys are the English source strings. Unknown keys and unknown languages fall
back to the key itself so a missing translation never breaks a response.
"""

_TRANSLATIONS: dict[str, dict[str, str]] = {
    "de": {
        "Invalid Patron Login": "Ungültige Anmeldedaten",
    },
    "en": {},
}


def translate(key: str, language: str = "en") -> str:
    return _TRANSLATIONS.get(language, {}).get(key, key)
