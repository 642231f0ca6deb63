#!/usr/bin/env python3
# Copyright (c) 2026 Red Hat, Inc.
# Copyright Contributors to the Open Cluster Management project

"""
Validated package/channel/bundle model built from declarative config blobs.

Ownership is a plain tree: a Package owns its Channels, a Channel owns its
Bundles. Links back to the owner are stored as names and are only used by
validation.
"""

import base64
import binascii
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

from . import property as prop
from .errors import GraphError, ValidationError


@dataclass
class Icon:
    data: bytes
    media_type: str


@dataclass
class RelatedImage:
    name: str
    image: str


@dataclass
class Bundle:
    name: str
    package: str
    channel: str
    image: str = ""
    replaces: str = ""
    skips: List[str] = field(default_factory=list)
    properties: List[prop.Property] = field(default_factory=list)
    related_images: List[RelatedImage] = field(default_factory=list)
    objects: List[str] = field(default_factory=list)
    csv_json: str = ""

    def validate(self, channel):
        if not self.name:
            raise ValidationError("name must be set")
        if not self.channel:
            raise ValidationError("channel must be set")
        if not self.package:
            raise ValidationError("package must be set")
        if self.package != channel.package:
            raise ValidationError("package does not match channel's package")
        if self.replaces and self.replaces not in channel.bundles:
            raise ValidationError(f"replaces {self.replaces!r} not found in channel")
        for i, skip in enumerate(self.skips):
            if not skip:
                raise ValidationError(f"skip[{i}] is empty")
        prop.validate(self.properties)


@dataclass
class Channel:
    name: str
    package: str
    bundles: Dict[str, Bundle] = field(default_factory=dict)

    def head(self) -> Bundle:
        """
        Find the channel head: the only bundle no other bundle replaces or skips.

        Returns:
            Bundle: The head of the channel's upgrade graph.

        Raises:
            GraphError: If the graph has no head (every bundle is pointed to) or
                        more than one (the graph is forked or disconnected).
        """
        incoming = {}
        for b in self.bundles.values():
            if b.replaces:
                incoming[b.replaces] = incoming.get(b.replaces, 0) + 1
            for skip in b.skips:
                incoming[skip] = incoming.get(skip, 0) + 1

        heads = [b for b in self.bundles.values() if b.name not in incoming]
        if not heads:
            raise GraphError("no head found")
        if len(heads) > 1:
            names = ", ".join(sorted(b.name for b in heads))
            raise GraphError(f"multiple heads found: {names}")
        return heads[0]

    def validate(self):
        if not self.name:
            raise ValidationError("channel name must not be empty")
        if not self.package:
            raise ValidationError("package must be set")
        if not self.bundles:
            raise ValidationError("channel must contain at least one bundle")

        self.head()

        for name, b in self.bundles.items():
            if name != b.name:
                raise ValidationError(f"bundle key {name!r} does not match bundle name {b.name!r}")
            if b.channel != self.name:
                raise ValidationError(f"bundle {b.name!r} not correctly linked to parent channel")
            try:
                b.validate(self)
            except ValidationError as e:
                raise type(e)(f"invalid bundle {b.name!r}: {e}") from e


@dataclass
class Package:
    name: str
    description: str = ""
    icon: Optional[Icon] = None
    default_channel: str = ""
    channels: Dict[str, Channel] = field(default_factory=dict)

    def validate(self):
        if not self.name:
            raise ValidationError("package name must not be empty")
        if not self.channels:
            raise ValidationError("package must contain at least one channel")
        if not self.default_channel:
            raise ValidationError("default channel must be set")

        for name, ch in self.channels.items():
            if name != ch.name:
                raise ValidationError(f"channel key {name!r} does not match channel name {ch.name!r}")
            if ch.package != self.name:
                raise ValidationError(f"channel {ch.name!r} not correctly linked to parent package")
            try:
                ch.validate()
            except ValidationError as e:
                raise type(e)(f"invalid channel {ch.name!r}: {e}") from e

        if self.default_channel not in self.channels:
            raise ValidationError(f"default channel {self.default_channel!r} not found in channels list")


def validate(model: Dict[str, Package]):
    """Validate every package of a model, raising on the first violation found."""
    for name, pkg in model.items():
        if name != pkg.name:
            raise ValidationError(f"package key {name!r} does not match package name {pkg.name!r}")
        try:
            pkg.validate()
        except ValidationError as e:
            raise type(e)(f"invalid package {pkg.name!r}: {e}") from e


def _decode_icon(icon):
    if not icon:
        return None
    try:
        data = base64.b64decode(icon.get("base64data") or "")
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"invalid icon: {e}") from e
    return Icon(data=data, media_type=icon.get("mediatype") or "")


def _add_bundle(pkg, channel_name, b, replaces, skips):
    ch = pkg.channels.setdefault(channel_name, Channel(name=channel_name, package=pkg.name))
    if b.name in ch.bundles:
        raise ValidationError(f"bundle {b.name!r} declared more than once in channel {channel_name!r}")
    ch.bundles[b.name] = Bundle(
        name=b.name,
        package=b.package,
        channel=channel_name,
        image=b.image,
        replaces=replaces or "",
        skips=list(skips),
        properties=list(b.properties),
        related_images=[RelatedImage(name=r.get("name", ""), image=r.get("image", "")) for r in b.related_images],
        objects=list(b.objects),
        csv_json=b.csv_json,
    )


def convert_to_model(cfg) -> Dict[str, Package]:
    """
    Convert declarative config blobs into a validated model.

    Channel membership comes from ``olm.channel`` blobs and from ``olm.channel``
    bundle properties; skips come from channel entries and ``olm.skips``
    bundle properties.

    Args:
        cfg (DeclarativeConfig): The whole catalog.

    Returns:
        dict: Package name -> Package.

    Raises:
        ValidationError: On the first structural violation.
        GraphError: If a channel does not have exactly one head.
    """
    model = {}
    for p in cfg.packages:
        if not p.name:
            raise ValidationError("config contains package with no name")
        if p.name in model:
            raise ValidationError(f"duplicate package {p.name!r}")
        model[p.name] = Package(
            name=p.name,
            description=p.description or "",
            icon=_decode_icon(p.icon),
            default_channel=p.default_channel or "",
        )

    bundles = {}
    for b in cfg.bundles:
        if b.package not in model:
            raise ValidationError(f"unknown package {b.package!r} for bundle {b.name!r}")
        key = (b.package, b.name)
        if key in bundles:
            raise ValidationError(f"duplicate bundle {b.name!r} in package {b.package!r}")
        bundles[key] = b

        pkg = model[b.package]
        prop_skips = [p.value for p in b.properties if p.type == prop.TYPE_SKIPS]
        for p in b.properties:
            if p.type != prop.TYPE_CHANNEL:
                continue
            if not isinstance(p.value, dict) or not p.value.get("name"):
                raise ValidationError(f"bundle {b.name!r}: olm.channel property must set a channel name")
            _add_bundle(pkg, p.value["name"], b, p.value.get("replaces"), prop_skips)

    for ch in cfg.channels:
        if ch.package not in model:
            raise ValidationError(f"unknown package {ch.package!r} for channel {ch.name!r}")
        pkg = model[ch.package]
        for entry in ch.entries:
            b = bundles.get((ch.package, entry.name))
            if b is None:
                raise ValidationError(f"channel {ch.name!r} entry {entry.name!r}: bundle not found in package {ch.package!r}")
            skips = list(entry.skips)
            skips.extend(s for s in (p.value for p in b.properties if p.type == prop.TYPE_SKIPS) if s not in skips)
            _add_bundle(pkg, ch.name, b, entry.replaces, skips)

    in_channels = {(pkg.name, name) for pkg in model.values() for ch in pkg.channels.values() for name in ch.bundles}
    for pkg_name, name in bundles:
        if (pkg_name, name) not in in_channels:
            raise ValidationError(f"package {pkg_name!r}, bundle {name!r} not found in any channel entries")

    validate(model)
    return model


def non_channel_heads(model: Dict[str, Package]) -> FrozenSet[Tuple[str, str]]:
    """
    Return the ``(package, bundle)`` keys of every bundle that heads none of its channels.

    A bundle listed in several channels counts as a head if it heads any of them.
    """
    keys = set()
    for pkg in model.values():
        for ch in pkg.channels.values():
            for b in ch.bundles.values():
                keys.add((pkg.name, b.name))
    for pkg in model.values():
        for ch in pkg.channels.values():
            head = ch.head()
            keys.discard((pkg.name, head.name))
    return frozenset(keys)
