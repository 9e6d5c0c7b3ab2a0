"""Marmot groups: group-data extension, key packages and the group engine."""

from .engine import AdmitResult, GroupEngine, GroupInfo
from .extensions import (
    LAST_RESORT_EXTENSION_ID,
    MARMOT_EXTENSION_ID,
    ExtensionDecodeError,
    MarmotGroupData,
    decode_group_data,
    encode_group_data,
)
from .key_package import GeneratedKeyPackage, ciphersuite_hex_id, generate_key_package, parse_key_package_event

__all__ = [
    "AdmitResult",
    "ExtensionDecodeError",
    "GeneratedKeyPackage",
    "GroupEngine",
    "GroupInfo",
    "LAST_RESORT_EXTENSION_ID",
    "MARMOT_EXTENSION_ID",
    "MarmotGroupData",
    "ciphersuite_hex_id",
    "decode_group_data",
    "encode_group_data",
    "generate_key_package",
    "parse_key_package_event",
]
