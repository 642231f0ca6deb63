#!/usr/bin/env python3
# Copyright (c) 2026 Red Hat, Inc.
# Copyright Contributors to the Open Cluster Management project

"""
Turning a bundle image reference into the raw bytes of its manifest files.
"""

import logging
import os
import re
import tempfile
import time
from typing import List

from ..utils.retry import Backoff, on_error
from .errors import PullError, ReadError, RegistryError, UnpackError

MANIFESTS_LABEL = "operators.operatorframework.io.bundle.manifests.v1"
DEFAULT_MANIFESTS_DIR = "manifests/"

# Pull errors matching this are not worth retrying: the registry host cannot be resolved.
DEFAULT_PERMANENT_ERROR_PATTERN = (
    r"no such host|Name or service not known|Temporary failure in name resolution"
    r"|nodename nor servname provided"
)

SCRATCH_PREFIX = ".tmp.declcfg-inline-bundles-"


def manifest_dir_path(image_ref, root, manifest_dir):
    """
    Resolve the manifests directory named by an image label under the unpacked image root.

    The label is always relative to ``root``; leading separators are ignored.

    Raises:
        ReadError: If the resolved directory is outside of ``root``.
    """
    root = os.path.realpath(root)
    path = os.path.realpath(os.path.join(root, manifest_dir.lstrip("/" + os.sep)))
    if path != root and not path.startswith(root + os.sep):
        raise ReadError(f"image {image_ref!r}: manifest directory {manifest_dir!r} is outside of the image")
    return path


def _raise_read_error(image_ref, root):
    def onerror(err):
        rel_path = os.path.relpath(err.filename or root, root)
        raise ReadError(f"image {image_ref!r}: read directory {rel_path!r}: {err}") from err
    return onerror


def read_manifests(image_ref, root, manifest_dir) -> List[bytes]:
    """
    Read every regular file below ``manifest_dir``, recursively.

    Files are returned in lexicographic order of their path components, so an
    unchanged image always yields the same object order.

    Raises:
        ReadError: If the directory is missing, or a directory or file cannot be read.
    """
    if not os.path.isdir(manifest_dir):
        raise ReadError(f"image {image_ref!r}: manifest directory {os.path.relpath(manifest_dir, root)!r} not found")

    paths = []
    for dirpath, _, filenames in os.walk(manifest_dir, onerror=_raise_read_error(image_ref, root)):
        for filename in filenames:
            paths.append(os.path.join(dirpath, filename))
    paths.sort(key=lambda p: os.path.relpath(p, manifest_dir).split(os.sep))

    objects = []
    for path in paths:
        if not os.path.isfile(path):
            continue
        try:
            with open(path, 'rb') as f:
                objects.append(f.read())
        except OSError as e:
            raise ReadError(f"image {image_ref!r}: read file {os.path.relpath(path, root)!r}: {e}") from e
    return objects


class Materializer:
    """
    Pulls a bundle image, unpacks it into a private scratch directory and reads
    its manifests.

    Args:
        registry: Object with ``pull(ref)``, ``labels(ref)`` and ``unpack(ref, dest)``.
        backoff (Backoff, optional): Retry budget for pulls.
        permanent_error_pattern (str, optional): Regex; matching pull errors are not retried.
        sleep (callable, optional): Used between pull attempts.
    """

    def __init__(self, registry, backoff=None, permanent_error_pattern=DEFAULT_PERMANENT_ERROR_PATTERN,
                 sleep=time.sleep):
        self.registry = registry
        self.backoff = backoff or Backoff()
        self.permanent_error = re.compile(permanent_error_pattern) if permanent_error_pattern else None
        self._sleep = sleep

    def is_retriable(self, err) -> bool:
        if self.permanent_error is not None and self.permanent_error.search(str(err)):
            logging.error(f"    Permanent error pulling image: {err}. Not retrying.")
            return False
        return True

    def pull(self, image_ref):
        logging.info(f"Pulling bundle image {image_ref}")
        try:
            on_error(self.backoff, self.is_retriable, lambda: self.registry.pull(image_ref),
                     sleep=self._sleep, exceptions=(RegistryError, OSError))
        except (RegistryError, OSError) as e:
            raise PullError(f"pull image {image_ref!r}: {e}") from e

    def materialize(self, image_ref) -> List[bytes]:
        """
        Return the raw bytes of every manifest file in a bundle image.

        Raises:
            PullError: The image could not be pulled or its labels read.
            UnpackError: The image could not be unpacked.
            ReadError: A manifest file could not be read.
        """
        self.pull(image_ref)

        try:
            labels = self.registry.labels(image_ref)
        except (RegistryError, OSError) as e:
            raise PullError(f"get labels for image {image_ref!r}: {e}") from e

        with tempfile.TemporaryDirectory(prefix=SCRATCH_PREFIX) as scratch:
            try:
                self.registry.unpack(image_ref, scratch)
            except (RegistryError, OSError) as e:
                raise UnpackError(f"unpack image {image_ref!r}: {e}") from e

            manifest_dir = manifest_dir_path(image_ref, scratch, labels.get(MANIFESTS_LABEL) or DEFAULT_MANIFESTS_DIR)
            objects = read_manifests(image_ref, os.path.realpath(scratch), manifest_dir)

        logging.debug(f"Read {len(objects)} manifest(s) from {image_ref}")
        return objects
