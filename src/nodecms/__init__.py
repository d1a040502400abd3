"""nodecms kernel: field schema and block encoding."""

from .block_codec import BlockCodecError, decode_blocks, encode_blocks, new_block_id
from .fields import (
    FieldDefinition,
    FieldType,
    FieldUI,
    FieldValidation,
    SchemaError,
    SelectOption,
    find_field,
    parse_fields,
)

__all__ = [
    "BlockCodecError",
    "FieldDefinition",
    "FieldType",
    "FieldUI",
    "FieldValidation",
    "SchemaError",
    "SelectOption",
    "decode_blocks",
    "encode_blocks",
    "find_field",
    "new_block_id",
    "parse_fields",
]
