from typing import Any, Dict, List

MAX_FIELD_LENGTH = 255
REQUIRED_STR_FIELDS = ["name", "domain"]
OPTIONAL_STR_FIELDS = ["contact_email"]


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _add(errors: Dict[str, List[str]], key: str, message: str) -> None:
    errors.setdefault(key, []).append(message)


def validate_organization(data: Any, prefix: str = "") -> Dict[str, List[str]]:
    """
    Check the shape of one organization record.

    Email format is not checked here; the worker rejects bad addresses
    during onboarding.
    """
    errors: Dict[str, List[str]] = {}
    if not isinstance(data, dict):
        _add(errors, prefix.rstrip("."), "Each organization must be an object")
        return errors

    for f in REQUIRED_STR_FIELDS:
        key = f"{prefix}{f}"
        if f not in data or data[f] is None:
            _add(errors, key, f"The {f} field is required")
        elif not _is_non_empty_str(data[f]):
            _add(errors, key, f"The {f} field must be a non-empty string")
        elif len(data[f]) > MAX_FIELD_LENGTH:
            _add(errors, key, f"The {f} field must not exceed {MAX_FIELD_LENGTH} characters")

    # Optional strings: null or absent is fine
    for f in OPTIONAL_STR_FIELDS:
        value = data.get(f)
        if value is None:
            continue
        key = f"{prefix}{f}"
        if not isinstance(value, str):
            _add(errors, key, f"The {f} field must be a string if provided")
        elif len(value) > MAX_FIELD_LENGTH:
            _add(errors, key, f"The {f} field must not exceed {MAX_FIELD_LENGTH} characters")

    return errors


def validate_bulk_request(payload: Any) -> Dict[str, List[str]]:
    """
    Returns validation errors keyed by field path
    (``organizations.<index>.<field>``). Empty dict means valid.
    """
    if not isinstance(payload, dict):
        return {"organizations": ["The request body must be an object"]}

    organizations = payload.get("organizations")
    if organizations is None:
        return {"organizations": ["The organizations field is required"]}
    if not isinstance(organizations, list):
        return {"organizations": ["The organizations field must be a list"]}
    if not organizations:
        return {"organizations": ["The organizations field must not be empty"]}

    errors: Dict[str, List[str]] = {}
    for i, org in enumerate(organizations):
        errors.update(validate_organization(org, prefix=f"organizations.{i}."))
    return errors


def clean_records(organizations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep only the known fields of already-validated records."""
    return [
        {
            "name": org["name"],
            "domain": org["domain"],
            "contact_email": org.get("contact_email"),
        }
        for org in organizations
    ]
