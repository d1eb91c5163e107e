"""
Input validation functions for doc_link.

Validates repository (mirror) names before they become directory names
under the output directory.
"""

# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Repo name")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_repo_name(name: str) -> tuple[bool, str]:
    """
    Validate a repository mirror name.

    Args:
        name: The mirror subdirectory name to validate

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot be '.' or '..'
        - Cannot contain path separators or NUL bytes

    Anything else (unicode, spaces, punctuation) is a legal directory name.
    """
    if not name or not name.strip():
        return (
            False,
            format_validation_error("Repo name", "cannot be empty"),
        )

    if name in (".", ".."):
        return (
            False,
            format_validation_error("Repo name", f"cannot be '{name}'"),
        )

    if "/" in name or "\\" in name:
        return (
            False,
            format_validation_error(
                "Repo name", f"'{name}' cannot contain path separators"
            ),
        )

    if "\0" in name:
        return (
            False,
            format_validation_error("Repo name", "cannot contain NUL bytes"),
        )

    return (True, "")
