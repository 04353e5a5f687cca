"""
Spec Validation - JSON Schema checks for upstream resource specs.

Every resource kind declares the shape of its spec as a JSON Schema
(Draft 7). Specs are checked on ingestion so that a malformed resource is
rejected before the renderer ever reads it.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, SchemaError, ValidationError

logger = logging.getLogger(__name__)


def check_schema(schema: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Check that a resource kind's schema is itself a valid Draft 7 schema.

    Args:
        schema: The schema to check

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        Draft7Validator.check_schema(schema)
        return True, None
    except SchemaError as e:
        return False, f"Invalid schema: {e.message}"


def validate_spec_against_schema(
    spec: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a resource spec against its kind's schema.

    All errors are collected, not just the first one, and reported with
    the dotted path of the offending value.

    Args:
        spec: The resource spec to validate
        schema: The JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        validator = Draft7Validator(schema)
        errors = sorted(
            validator.iter_errors(spec), key=lambda e: [str(p) for p in e.path]
        )

        if not errors:
            return True, None

        error_messages = []
        for error in errors:
            path = ".".join(str(p) for p in error.absolute_path) or "(root)"
            error_messages.append(f"{path}: {error.message}")

        return False, "; ".join(error_messages)

    except ValidationError as e:
        return False, f"Validation error: {e.message}"
