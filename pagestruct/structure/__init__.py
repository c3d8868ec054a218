"""Schema-driven structuring of extracted text."""

from pagestruct.structure.schema_client import SchemaClient, SchemaDescriptor
from pagestruct.structure.structurer import Structurer, parse_model_output
from pagestruct.structure.validation import validate_instance

__all__ = [
    "SchemaClient",
    "SchemaDescriptor",
    "Structurer",
    "parse_model_output",
    "validate_instance",
]
