#!/usr/bin/env python3
# Copyright (c) 2026 Red Hat, Inc.
# Copyright Contributors to the Open Cluster Management project

"""
Image reference helpers.
"""

import hashlib
import re


def repository_name(image_ref):
    """
    Return the last path component of an image reference, without tag or digest.

    Only the text after the last slash is split on the tag colon, so
    ``localhost:5000/bundle`` yields ``bundle``.
    """
    name = image_ref.split("@", 1)[0].rsplit("/", 1)[-1]
    return name.split(":", 1)[0]


def image_dir_name(image_ref):
    """
    Return a filesystem-safe, collision-free directory name for an image reference.

    The repository name keeps the name readable; a hash of the full reference keeps
    two tags or digests of the same repository apart.
    """
    repository = re.sub(r'[^A-Za-z0-9._-]', '_', repository_name(image_ref)) or "image"
    ref_hash = hashlib.sha256(image_ref.encode('utf-8')).hexdigest()[:16]
    return f"{repository}-{ref_hash}"
