"""
Supported languages.

WHAT: Language codes the marketplace can transform messages between
WHY: Vendor and customer pick their own working language at create/join
HOW: Static table plus a normalizer that rejects unknown codes
"""

from ..utils.exceptions import ValidationError

SUPPORTED_LANGUAGES = [
    {"code": "en", "name": "English", "native_name": "English"},
    {"code": "hi", "name": "Hindi", "native_name": "हिन्दी"},
    {"code": "ta", "name": "Tamil", "native_name": "தமிழ்"},
]

_BY_CODE = {lang["code"]: lang for lang in SUPPORTED_LANGUAGES}


def normalize_language(code: str | None, default: str = "en") -> str:
    """Lower-case language code; None means the default."""
    if code is None or code == "":
        return default
    normalized = str(code).strip().lower()
    if normalized not in _BY_CODE:
        raise ValidationError(
            f"Unsupported language: {code}",
            field_errors=[{"loc": "language", "msg": f"expected one of {sorted(_BY_CODE)}"}],
        )
    return normalized


def language_name(code: str) -> str:
    lang = _BY_CODE.get(code)
    return lang["name"] if lang else code
