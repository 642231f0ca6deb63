#!/usr/bin/env python3
# Copyright (c) 2026 Red Hat, Inc.
# Copyright Contributors to the Open Cluster Management project

"""
Loading and writing declarative config (declcfg) catalog files.

A catalog directory holds YAML (``.yaml``/``.yml``) and JSON files. Each file is a
stream of documents ("blobs") keyed by a ``schema`` field:

    olm.package   - package name, default channel, icon and description
    olm.channel   - channel name, package and upgrade entries
    olm.bundle    - bundle name, package, image and properties

Blobs of any other schema are kept as-is. Every blob remembers the document it was
parsed from, so writing a file back only changes what the caller mutated.
"""

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .errors import LoadError, SerializationError, ValidationError
from .property import Property, bundle_object_data, bundle_object_ref

SCHEMA_PACKAGE = "olm.package"
SCHEMA_CHANNEL = "olm.channel"
SCHEMA_BUNDLE = "olm.bundle"

YAML_EXTENSIONS = (".yaml", ".yml")
CATALOG_EXTENSIONS = YAML_EXTENSIONS + (".json",)

# Directory name used for externally stored bundle objects; never walked for blobs.
OBJECTS_DIR = "objects"


@dataclass
class Package:
    name: str
    default_channel: str = ""
    description: str = ""
    icon: Optional[Dict[str, Any]] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data):
        return cls(
            name=data.get("name", ""),
            default_channel=data.get("defaultChannel", ""),
            description=data.get("description", ""),
            icon=data.get("icon"),
            raw=data,
        )

    def to_dict(self):
        return self.raw


@dataclass
class ChannelEntry:
    name: str
    replaces: str = ""
    skips: List[str] = field(default_factory=list)


@dataclass
class Channel:
    name: str
    package: str
    entries: List[ChannelEntry] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data):
        entries = []
        for entry in data.get("entries") or []:
            entries.append(ChannelEntry(
                name=entry.get("name", ""),
                replaces=entry.get("replaces") or "",
                skips=list(entry.get("skips") or []),
            ))
        return cls(name=data.get("name", ""), package=data.get("package", ""), entries=entries, raw=data)

    def to_dict(self):
        return self.raw


@dataclass
class Bundle:
    name: str
    package: str
    image: str = ""
    properties: List[Property] = field(default_factory=list)
    related_images: List[Dict[str, str]] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    # Populated from bundle object properties at load time. Never serialized.
    objects: List[str] = field(default_factory=list)
    csv_json: str = ""

    @classmethod
    def from_dict(cls, data):
        props = data.get("properties") or []
        if not isinstance(props, list):
            raise LoadError(f"bundle {data.get('name', '')!r}: properties must be a list")
        return cls(
            name=data.get("name", ""),
            package=data.get("package", ""),
            image=data.get("image") or "",
            properties=[Property.from_dict(p) for p in props],
            related_images=list(data.get("relatedImages") or []),
            raw=data,
        )

    def to_dict(self):
        data = dict(self.raw)
        if self.properties or "properties" in data:
            data["properties"] = [p.to_dict() for p in self.properties]
        return data


@dataclass
class Meta:
    schema: str
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self):
        return self.raw


@dataclass
class DeclarativeConfig:
    """The blobs of one catalog file (or of several merged files), in document order."""

    blobs: List[Any] = field(default_factory=list)
    path: Optional[str] = None

    @property
    def packages(self) -> List[Package]:
        return [b for b in self.blobs if isinstance(b, Package)]

    @property
    def channels(self) -> List[Channel]:
        return [b for b in self.blobs if isinstance(b, Channel)]

    @property
    def bundles(self) -> List[Bundle]:
        return [b for b in self.blobs if isinstance(b, Bundle)]

    @property
    def others(self) -> List[Meta]:
        return [b for b in self.blobs if isinstance(b, Meta)]

    def has_catalog_content(self) -> bool:
        return any(not isinstance(b, Meta) or b.schema for b in self.blobs)

    @classmethod
    def merge(cls, configs):
        merged = cls()
        for cfg in configs:
            merged.blobs.extend(cfg.blobs)
        return merged


def is_yaml(path) -> bool:
    return os.path.splitext(path)[1].lower() in YAML_EXTENSIONS


def _iter_json_documents(text, path):
    decoder = json.JSONDecoder()
    pos = 0
    while True:
        while pos < len(text) and text[pos].isspace():
            pos += 1
        if pos >= len(text):
            return
        try:
            doc, pos = decoder.raw_decode(text, pos)
        except json.JSONDecodeError as e:
            raise LoadError(f"parse {path}: {e}") from e
        yield doc


def _read_documents(path):
    try:
        with open(path, 'r', encoding='utf-8') as f:
            text = f.read()
    except OSError as e:
        raise LoadError(f"read {path}: {e}") from e

    if is_yaml(path):
        try:
            return [doc for doc in yaml.safe_load_all(text) if doc is not None]
        except yaml.YAMLError as e:
            raise LoadError(f"parse {path}: {e}") from e
    return list(_iter_json_documents(text, path))


def blob_from_dict(doc):
    """Wrap one parsed document in the blob type its schema names."""
    schema = doc.get("schema") or ""
    if schema == SCHEMA_PACKAGE:
        return Package.from_dict(doc)
    if schema == SCHEMA_CHANNEL:
        return Channel.from_dict(doc)
    if schema == SCHEMA_BUNDLE:
        return Bundle.from_dict(doc)
    return Meta(schema=schema, raw=doc)


def find_csv_json(objects):
    """Return the first ClusterServiceVersion among ``objects`` as JSON, or an empty string."""
    for obj in objects:
        try:
            parsed = yaml.safe_load(obj)
        except yaml.YAMLError:
            continue
        if isinstance(parsed, dict) and parsed.get("kind") == "ClusterServiceVersion":
            return json.dumps(parsed)
    return ""


def _load_bundle_objects(bundle, base_dir):
    for prop in bundle.properties:
        ref = bundle_object_ref(prop)
        if ref:
            obj_path = os.path.join(base_dir, ref)
            try:
                with open(obj_path, 'r', encoding='utf-8') as f:
                    bundle.objects.append(f.read())
            except OSError as e:
                raise LoadError(f"bundle {bundle.name!r}: read object {ref!r}: {e}") from e
            continue
        try:
            data = bundle_object_data(prop)
        except ValueError as e:
            raise LoadError(f"bundle {bundle.name!r}: decode inline object: {e}") from e
        if data is not None:
            bundle.objects.append(data.decode('utf-8', errors='replace'))
    bundle.csv_json = find_csv_json(bundle.objects)


def load_file(path) -> DeclarativeConfig:
    """
    Load a single catalog file.

    Args:
        path (str): Path to a ``.yaml``, ``.yml`` or ``.json`` file.

    Returns:
        DeclarativeConfig: The file's blobs in document order, with ``path`` set.

    Raises:
        LoadError: If the file cannot be read or parsed, or a referenced
                   bundle object file is missing.
    """
    cfg = DeclarativeConfig(path=path)
    base_dir = os.path.dirname(path)
    for doc in _read_documents(path):
        if not isinstance(doc, dict):
            raise LoadError(f"parse {path}: expected an object, got {type(doc).__name__}")
        try:
            blob = blob_from_dict(doc)
        except (LoadError, ValidationError) as e:
            raise LoadError(f"parse {path}: {e}") from e
        if isinstance(blob, Bundle):
            _load_bundle_objects(blob, base_dir)
        cfg.blobs.append(blob)
    return cfg


def walk_files(root) -> List[str]:
    """Return every candidate catalog file under ``root``, sorted by path."""
    if not os.path.isdir(root):
        raise LoadError(f"catalog directory {root} does not exist")

    paths = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d != OBJECTS_DIR and not d.startswith("."))
        for filename in sorted(filenames):
            if filename.startswith("."):
                continue
            if os.path.splitext(filename)[1].lower() in CATALOG_EXTENSIONS:
                paths.append(os.path.join(dirpath, filename))
    return sorted(paths)


def load_files(root) -> List[DeclarativeConfig]:
    """Load every catalog file under ``root``; files without catalog blobs are skipped."""
    configs = []
    for path in walk_files(root):
        cfg = load_file(path)
        if not cfg.has_catalog_content():
            logging.debug(f"Skipping {path}: no catalog blobs found")
            continue
        configs.append(cfg)
    return configs


def load_dir(root) -> DeclarativeConfig:
    return DeclarativeConfig.merge(load_files(root))


def write_yaml(cfg, f):
    yaml.safe_dump_all(
        [blob.to_dict() for blob in cfg.blobs],
        f,
        explicit_start=True,
        default_flow_style=False,
        sort_keys=False,
        width=float("inf"),
    )


def write_json(cfg, f):
    for blob in cfg.blobs:
        json.dump(blob.to_dict(), f, indent=4, ensure_ascii=False)
        f.write("\n")


def write_file(cfg, path=None):
    """
    Write a catalog file back to disk in the format implied by its extension.

    The content goes to a temporary sibling first and is moved over the target
    with ``os.replace``, so an interrupted write never leaves a partial file at
    ``path``.

    Raises:
        SerializationError: If the file cannot be written.
    """
    path = path or cfg.path
    if not path:
        raise SerializationError("no path given for catalog file")

    writer = write_yaml if is_yaml(path) else write_json
    dir_name, base_name = os.path.split(path)
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile('w', encoding='utf-8', dir=dir_name or ".",
                                         prefix=f".{base_name}.", suffix=".tmp",
                                         delete=False) as f:
            tmp_path = f.name
            writer(cfg, f)
        if os.path.exists(path):
            shutil.copymode(path, tmp_path)
        os.replace(tmp_path, path)
    except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
        if tmp_path and os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise SerializationError(f"write {path}: {e}") from e
    logging.debug(f"Wrote catalog file {path}")
