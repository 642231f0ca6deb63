"""
Fakes and catalog builders shared by the unit tests.
"""

import json
import os
import threading

import yaml

from .lib import declcfg
from .lib.errors import RegistryError


def package(name, default_channel="stable", **extra):
    doc = {"schema": "olm.package", "name": name, "defaultChannel": default_channel}
    doc.update(extra)
    return doc


def bundle(name, pkg, image="", channels=None, skips=None, properties=None, **extra):
    """
    Build an olm.bundle document.

    ``channels`` maps a channel name to the name of the bundle replaced in that
    channel (or None). Channel and skips properties come first, followed by
    ``properties``.
    """
    props = [{"type": "olm.package", "value": {"packageName": pkg, "version": name.split(".v")[-1]}}]
    for channel, replaces in (channels or {}).items():
        value = {"name": channel}
        if replaces:
            value["replaces"] = replaces
        props.append({"type": "olm.channel", "value": value})
    for skip in skips or []:
        props.append({"type": "olm.skips", "value": skip})
    props.extend(properties or [])

    doc = {"schema": "olm.bundle", "name": name, "package": pkg, "image": image, "properties": props}
    doc.update(extra)
    return doc


def channel(name, pkg, entries):
    return {"schema": "olm.channel", "name": name, "package": pkg, "entries": entries}


def config(*docs):
    return declcfg.DeclarativeConfig(blobs=[declcfg.blob_from_dict(doc) for doc in docs])


def write_catalog_file(path, docs):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        if declcfg.is_yaml(path):
            yaml.safe_dump_all(docs, f, explicit_start=True, sort_keys=False)
        else:
            for doc in docs:
                json.dump(doc, f, indent=4)
                f.write("\n")


def read_catalog_file(path):
    with open(path, 'r', encoding='utf-8') as f:
        text = f.read()
    if declcfg.is_yaml(path):
        return [doc for doc in yaml.safe_load_all(text) if doc is not None]
    return list(declcfg._iter_json_documents(text, path))


class FakeRegistry:
    """
    In-memory registry.

    Args:
        images (dict): image ref -> {relative path: bytes} of the unpacked image.
        labels (dict): image ref -> labels.
        pull_errors (dict): image ref -> list of exceptions raised by successive pulls.
    """

    def __init__(self, images=None, labels=None, pull_errors=None):
        self.images = images or {}
        self.image_labels = labels or {}
        self.pull_errors = {ref: list(errs) for ref, errs in (pull_errors or {}).items()}
        self.pull_calls = []
        self.unpack_dirs = []
        self.cache_dir = None
        self.destroyed = False
        self._lock = threading.Lock()

    def pull(self, ref):
        with self._lock:
            self.pull_calls.append(ref)
            errors = self.pull_errors.get(ref)
            if errors:
                raise errors.pop(0)
        if ref not in self.images:
            raise RegistryError(f"reading manifest {ref}: manifest unknown")

    def labels(self, ref):
        return dict(self.image_labels.get(ref, {}))

    def unpack(self, ref, dest):
        with self._lock:
            self.unpack_dirs.append(dest)
        for rel_path, data in self.images[ref].items():
            path = os.path.join(dest, rel_path)
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, 'wb') as f:
                f.write(data)

    def destroy(self):
        self.destroyed = True
