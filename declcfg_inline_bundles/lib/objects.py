#!/usr/bin/env python3
# Copyright (c) 2026 Red Hat, Inc.
# Copyright Contributors to the Open Cluster Management project

"""
Rewriting a bundle's ``olm.bundle.object`` properties.

Both operations leave every other property exactly where it was, in the same
relative order.
"""

from .declcfg import find_csv_json
from .property import build_bundle_object_data, bundle_object_ref


def delete_bundle_objects(bundle, remove_ref=None):
    """
    Remove every bundle object property from a bundle.

    Args:
        bundle (declcfg.Bundle): The bundle to prune, modified in place.
        remove_ref (callable, optional): Called with the relative path of each
            referenced object file before its property is dropped.

    Returns:
        bool: True if any object or object property was removed.
    """
    deleted = False

    bundle.csv_json = ""
    if bundle.objects:
        bundle.objects = []
        deleted = True

    kept = []
    for p in bundle.properties:
        if not p.is_bundle_object():
            kept.append(p)
            continue
        ref = bundle_object_ref(p)
        if ref and remove_ref is not None:
            remove_ref(ref)
        deleted = True
    bundle.properties = kept
    return deleted


def inline_bundle_objects(bundle, objects, remove_ref=None):
    """
    Replace a bundle's object properties with inline copies of ``objects``.

    Existing object properties (and, through ``remove_ref``, the files they
    reference) are removed first. One property is then appended per object, in
    the order given.

    Returns:
        bool: True if stale objects were removed before inlining.
    """
    deleted = delete_bundle_objects(bundle, remove_ref=remove_ref)

    for obj in objects:
        bundle.properties.append(build_bundle_object_data(obj))
        bundle.objects.append(obj.decode('utf-8', errors='replace'))
    bundle.csv_json = find_csv_json(bundle.objects)

    return deleted
