#!/usr/bin/env python3
# Copyright (c) 2026 Red Hat, Inc.
# Copyright Contributors to the Open Cluster Management project

"""
Typed bundle properties.

A property is a ``{type, value}`` pair carried in a bundle's ``properties`` list.
Only a handful of types are interpreted here; everything else is passed through
untouched so that catalog files round-trip without reordering.
"""

import base64
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import ValidationError

TYPE_CHANNEL = "olm.channel"
TYPE_SKIPS = "olm.skips"
TYPE_BUNDLE_OBJECT = "olm.bundle.object"


@dataclass
class Property:
    type: str
    value: Any

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise ValidationError(f"property must be an object, got {type(data).__name__}")
        return cls(type=data.get("type", ""), value=data.get("value"))

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "value": self.value}

    def is_bundle_object(self) -> bool:
        return self.type == TYPE_BUNDLE_OBJECT


def build_bundle_object_data(obj: bytes) -> Property:
    """Build an ``olm.bundle.object`` property that embeds ``obj`` inline."""
    return Property(TYPE_BUNDLE_OBJECT, {"data": base64.b64encode(obj).decode("ascii")})


def bundle_object_ref(prop: Property) -> Optional[str]:
    """Return the relative file path referenced by a bundle object property, if any."""
    if not prop.is_bundle_object() or not isinstance(prop.value, dict):
        return None
    return prop.value.get("ref") or None


def bundle_object_data(prop: Property) -> Optional[bytes]:
    """Return the inline manifest bytes of a bundle object property, if any."""
    if not prop.is_bundle_object() or not isinstance(prop.value, dict):
        return None
    data = prop.value.get("data")
    if not data:
        return None
    return base64.b64decode(data)


def validate(props: List[Property]) -> None:
    """
    Check that a property list is well formed.

    Args:
        props (list): The bundle's properties, in declaration order.

    Raises:
        ValidationError: On the first malformed property found.
    """
    for i, prop in enumerate(props):
        if not prop.type:
            raise ValidationError(f"property[{i}] has no type")
        if prop.value is None:
            raise ValidationError(f"property[{i}] ({prop.type}) has no value")

        if prop.type == TYPE_BUNDLE_OBJECT:
            if not isinstance(prop.value, dict):
                raise ValidationError(f"property[{i}] ({prop.type}) value must be an object")
            has_ref = bool(prop.value.get("ref"))
            has_data = bool(prop.value.get("data"))
            if has_ref == has_data:
                raise ValidationError(f"property[{i}] ({prop.type}) must set exactly one of 'ref' or 'data'")
        elif prop.type == TYPE_CHANNEL:
            if not isinstance(prop.value, dict) or not prop.value.get("name"):
                raise ValidationError(f"property[{i}] ({prop.type}) must set a channel name")
        elif prop.type == TYPE_SKIPS:
            if not isinstance(prop.value, str):
                raise ValidationError(f"property[{i}] ({prop.type}) value must be a string")
