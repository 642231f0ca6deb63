#!/usr/bin/env python3
# Copyright (c) 2026 Red Hat, Inc.
# Copyright Contributors to the Open Cluster Management project

"""
Container image registry client backed by skopeo.

Images are copied with ``skopeo copy docker://<ref> dir:<path>`` into a private
cache directory. Labels are read from the image config blob and layers are
unpacked with ``tarfile``, so skopeo is the only external binary needed.
"""

import json
import logging
import os
import shutil
import subprocess
import tarfile
import tempfile

from .errors import RegistryError
from .image_ref import image_dir_name

WHITEOUT_PREFIX = ".wh."
OPAQUE_WHITEOUT = ".wh..wh..opq"


def _blob_name(digest):
    # The dir: transport stores blobs as files named after the bare hex digest.
    return digest.split(":", 1)[-1]


def _apply_whiteout(dest_dir, member_name):
    name = os.path.normpath(member_name.lstrip("/"))
    if name.startswith(".."):
        return
    parent, base = os.path.split(name)
    target_parent = os.path.join(dest_dir, parent)
    if base == OPAQUE_WHITEOUT:
        if os.path.isdir(target_parent):
            for entry in os.listdir(target_parent):
                _remove_path(os.path.join(target_parent, entry))
        return
    _remove_path(os.path.join(target_parent, base[len(WHITEOUT_PREFIX):]))


def _remove_path(path):
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.remove(path)


class SkopeoRegistry:
    """Pulls, inspects and unpacks images with skopeo."""

    def __init__(self, skopeo="skopeo", cache_dir=None, tls_verify=True, timeout=600):
        self.skopeo = skopeo
        self.tls_verify = tls_verify
        self.timeout = timeout
        self._owns_cache = cache_dir is None
        if cache_dir is None:
            cache_dir = tempfile.mkdtemp(prefix=".tmp.declcfg-inline-bundles-registry-")
        else:
            os.makedirs(cache_dir, exist_ok=True)
        self.cache_dir = cache_dir

    def _run(self, args):
        cmd = [self.skopeo] + args
        logging.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as e:
            raise RegistryError(f"skopeo binary {self.skopeo!r} not found") from e
        except subprocess.TimeoutExpired as e:
            raise RegistryError(f"{' '.join(cmd)} timed out after {self.timeout}s") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise RegistryError(stderr or f"{' '.join(cmd)} exited with status {result.returncode}")
        return result.stdout

    def image_dir(self, ref):
        return os.path.join(self.cache_dir, image_dir_name(ref))

    def _read_json(self, ref, name):
        path = os.path.join(self.image_dir(ref), name)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError as e:
            raise RegistryError(f"image {ref} has not been pulled: {name} not found") from e
        except (OSError, json.JSONDecodeError) as e:
            raise RegistryError(f"read {name} of image {ref}: {e}") from e

    def _manifest(self, ref):
        manifest = self._read_json(ref, "manifest.json")
        if "config" not in manifest or "layers" not in manifest:
            raise RegistryError(f"image {ref}: manifest.json is not an image manifest")
        return manifest

    def pull(self, ref):
        """
        Copy an image into the local cache. Pulling an already cached image is a no-op.

        Raises:
            RegistryError: If skopeo fails. The message is skopeo's stderr.
        """
        dest = self.image_dir(ref)
        if os.path.exists(os.path.join(dest, "manifest.json")):
            logging.debug(f"Image {ref} already present in {dest}")
            return

        tmp = tempfile.mkdtemp(prefix=".pull-", dir=self.cache_dir)
        try:
            args = ["copy"]
            if not self.tls_verify:
                args.append("--src-tls-verify=false")
            args.extend([f"docker://{ref}", f"dir:{tmp}"])
            self._run(args)
            try:
                os.rename(tmp, dest)
            except OSError as e:
                # Another task finished pulling the same reference first.
                if not os.path.exists(os.path.join(dest, "manifest.json")):
                    raise RegistryError(f"store image {ref} in {dest}: {e}") from e
        finally:
            if os.path.exists(tmp):
                shutil.rmtree(tmp, ignore_errors=True)

    def labels(self, ref):
        """Return the labels of a pulled image."""
        manifest = self._manifest(ref)
        config = self._read_json(ref, _blob_name(manifest["config"]["digest"]))
        return (config.get("config") or {}).get("Labels") or {}

    def unpack(self, ref, dest_dir):
        """
        Extract every layer of a pulled image into ``dest_dir``, in order.

        Whiteout entries remove what lower layers created. Members that would
        land outside ``dest_dir`` are rejected by tarfile's data filter.

        Raises:
            RegistryError: If a layer is missing or is not a readable tarball.
        """
        manifest = self._manifest(ref)
        for layer in manifest["layers"]:
            digest = layer.get("digest", "")
            path = os.path.join(self.image_dir(ref), _blob_name(digest))
            try:
                with tarfile.open(path, "r:*") as tar:
                    members = []
                    for member in tar.getmembers():
                        if os.path.basename(member.name).startswith(WHITEOUT_PREFIX):
                            _apply_whiteout(dest_dir, member.name)
                        else:
                            members.append(member)
                    tar.extractall(dest_dir, members=members, filter="data")
            except (tarfile.TarError, OSError, TypeError) as e:
                raise RegistryError(f"unpack layer {digest} of image {ref}: {e}") from e

    def destroy(self):
        """Remove the image cache if this registry created it."""
        if self._owns_cache and os.path.exists(self.cache_dir):
            shutil.rmtree(self.cache_dir)
