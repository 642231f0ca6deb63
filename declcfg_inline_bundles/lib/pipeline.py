#!/usr/bin/env python3
# Copyright (c) 2026 Red Hat, Inc.
# Copyright Contributors to the Open Cluster Management project

"""
Inline or prune bundle objects across a whole catalog directory.

The catalog is classified once, before anything is changed: every bundle that
heads none of its channels is a "non-head". Each catalog file is then processed
by its own task on a thread pool. Within a file, bundles are handled one after
another because they share the file's in-memory blobs.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass

from . import declcfg
from .errors import AggregateError, InlineError, SerializationError
from .model import convert_to_model, non_channel_heads
from .objects import delete_bundle_objects, inline_bundle_objects


@dataclass
class InlineResult:
    inlined: int = 0
    pruned: int = 0
    files_written: int = 0

    def add(self, other):
        self.inlined += other.inlined
        self.pruned += other.pruned
        self.files_written += other.files_written


def remove_object_file(base_dir, ref):
    """
    Delete an externally stored bundle object, resolved against ``base_dir``.

    The containing directory is removed as well once it is empty.
    """
    base_dir = os.path.abspath(base_dir)
    path = os.path.normpath(os.path.join(base_dir, ref))
    if not path.startswith(base_dir + os.sep):
        raise SerializationError(f"refusing to delete object {ref!r}: outside of {base_dir}")

    try:
        os.remove(path)
        logging.debug(f"Deleted object file {path}")
    except FileNotFoundError:
        logging.warning(f"Object file {path} does not exist")
    except OSError as e:
        raise SerializationError(f"delete object file {path}: {e}") from e

    parent = os.path.dirname(path)
    if parent != base_dir and os.path.isdir(parent) and not os.listdir(parent):
        try:
            os.rmdir(parent)
        except OSError as e:
            logging.debug(f"Could not remove directory {parent}: {e}")


class Inliner:
    """
    Rewrites the bundle object properties of a catalog directory.

    Args:
        configs_dir (str): The declarative config directory.
        bundle_images (list): Images whose bundles get their objects inlined.
                              Empty means every bundle in the catalog.
        delete_non_head_objects (bool): Prune objects of non-head bundles instead.
        materializer (Materializer): Reads manifests out of bundle images.
        max_workers (int): Number of catalog files processed in parallel.
    """

    def __init__(self, configs_dir, bundle_images=None, delete_non_head_objects=False,
                 materializer=None, max_workers=4):
        self.configs_dir = configs_dir
        self.bundle_images = list(bundle_images or [])
        self.delete_non_head_objects = delete_non_head_objects
        self.materializer = materializer
        self.max_workers = max_workers

    def run(self) -> InlineResult:
        """
        Classify the catalog, process every file and write back the changed ones.

        Raises:
            LoadError: A catalog file could not be loaded.
            ValidationError: The catalog is structurally invalid (nothing is changed).
            GraphError: A channel has no head or several heads (nothing is changed).
            AggregateError: At least one file failed. Every other file was still
                            processed to completion.
        """
        configs = declcfg.load_files(self.configs_dir)
        whole = declcfg.DeclarativeConfig.merge(configs)
        logging.info(f"Loaded {len(configs)} catalog file(s) with {len(whole.bundles)} bundle(s) from {self.configs_dir}")

        try:
            model = convert_to_model(whole)
        except InlineError as e:
            raise type(e)(f"convert catalog to model: {e}") from e

        non_heads = non_channel_heads(model)
        requested = frozenset(self.bundle_images)

        known_images = {b.image for b in whole.bundles}
        for image in self.bundle_images:
            if image not in known_images:
                logging.warning(f"Skipping bundle image {image}: not found in catalog")

        result = InlineResult()
        errors = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(self._process_file, cfg, non_heads, requested): cfg.path
                       for cfg in configs}
            wait(futures)

        for future, path in futures.items():
            err = future.exception()
            if err is not None:
                logging.error(f"Failed to process {path}: {err}")
                errors.append((path, err))
                continue
            result.add(future.result())

        if errors:
            raise AggregateError(errors) from errors[0][1]

        logging.info(f"Inlined objects for {result.inlined} bundle(s), pruned {result.pruned} bundle(s), "
                     f"wrote {result.files_written} file(s)")
        return result

    def _process_file(self, cfg, non_heads, requested) -> InlineResult:
        result = InlineResult()
        base_dir = os.path.dirname(cfg.path)

        def remove_ref(ref):
            remove_object_file(base_dir, ref)

        for bundle in cfg.bundles:
            is_requested = not requested or bundle.image in requested

            if self.delete_non_head_objects and (bundle.package, bundle.name) in non_heads:
                if is_requested and requested:
                    logging.warning(f"Skipping bundle image {bundle.image}: not a channel head")
                if delete_bundle_objects(bundle, remove_ref=remove_ref):
                    logging.info(f"Deleted objects for non-channel-head bundle {bundle.name}")
                    result.pruned += 1
                continue

            if not is_requested:
                continue
            if not bundle.image:
                logging.warning(f"Skipping bundle {bundle.name}: no image set")
                continue

            try:
                objects = self.materializer.materialize(bundle.image)
                inline_bundle_objects(bundle, objects, remove_ref=remove_ref)
            except InlineError as e:
                raise type(e)(f"populate objects for bundle {bundle.name!r}: {e}") from e
            logging.info(f"Inlined {len(objects)} object(s) for bundle {bundle.name}")
            result.inlined += 1

        if result.inlined or result.pruned:
            declcfg.write_file(cfg)
            result.files_written = 1
        return result
