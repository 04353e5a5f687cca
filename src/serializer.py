"""
Canonical Serializer - Deterministic YAML encoding of target documents.

Output is block-style YAML with sorted keys, so identical documents always
produce identical bytes. Encoding is strict: the document type must be
known, its ``apiVersion``/``kind`` must match the type, and the encoded data
must validate back into the same type. A converter bug therefore fails the
render instead of writing a config the control plane cannot load.
"""

import logging
from typing import Dict, Iterable, Optional, Tuple, Type

import yaml
from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from converters import DOCUMENT_TYPES, TargetDocument, format_validation_error

logger = logging.getLogger(__name__)


class SerializationError(Exception):
    """Raised when a document cannot be encoded."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class Serializer:
    """YAML serializer with a fixed scheme of document types."""

    def __init__(
        self, document_types: Optional[Iterable[Type[TargetDocument]]] = None
    ):
        self._scheme: Dict[Type[TargetDocument], Tuple[str, str]] = {
            document_type: (document_type.API_VERSION, document_type.KIND)
            for document_type in (document_types or DOCUMENT_TYPES)
        }

    def encode(self, document: TargetDocument) -> bytes:
        """
        Encode a document as pretty YAML.

        Args:
            document: The typed document to encode

        Returns:
            UTF-8 encoded YAML

        Raises:
            SerializationError: If the document is not encodable
        """
        document_type = type(document)
        expected = self._scheme.get(document_type)
        if expected is None:
            raise SerializationError(
                f"no kind is registered for type {document_type.__name__}"
            )

        actual = (document.api_version, document.kind)
        if actual != expected:
            raise SerializationError(
                f"{document_type.__name__} must be {expected[0]}/{expected[1]}, "
                f"got {actual[0] or '<empty>'}/{actual[1] or '<empty>'}"
            )

        try:
            data = document.model_dump(mode="json", by_alias=True, exclude_none=True)
        except PydanticSerializationError as e:
            raise SerializationError(f"error encoding {expected[1]}: {e}") from e

        try:
            document_type.model_validate(data)
        except ValidationError as e:
            raise SerializationError(
                f"{expected[1]} does not match its schema: "
                f"{format_validation_error(e)}"
            ) from e

        return yaml.safe_dump(
            data,
            default_flow_style=False,
            sort_keys=True,
            allow_unicode=True,
            indent=2,
        ).encode("utf-8")

