#!/usr/bin/env python3
# Copyright (c) 2026 Red Hat, Inc.
# Copyright Contributors to the Open Cluster Management project

"""
declcfg-inline-bundles - inline bundle image manifests into a declarative catalog

For every requested bundle image (or every bundle, if no image is given) the
manifests under the image's manifests directory are stored as inline
``olm.bundle.object`` properties of the bundle. With --delete-non-head-objects,
bundles that are not the head of any of their channels have their object
properties removed instead.

The catalog directory is copied to ``<configsDir>.bak`` first and restored from
that copy if anything fails.

Usage:
  # Inline objects for two bundles
  declcfg-inline-bundles catalog/ quay.io/example/op-bundle:v1.1.0 quay.io/example/op-bundle:v1.2.0

  # Inline objects for every bundle, pruning non-heads
  declcfg-inline-bundles --delete-non-head-objects catalog/
"""

import argparse
import logging
import os
import shutil
import sys

from .config import Config
from .lib.errors import ConfigError, InlineError
from .lib.materializer import Materializer
from .lib.pipeline import Inliner
from .lib.registry import SkopeoRegistry
from .utils.common import log_header, setup_logging


def backup_path(configs_dir):
    return os.path.normpath(configs_dir) + ".bak"


def create_backup(configs_dir):
    """Copy the catalog directory next to itself and return the copy's path."""
    backup = backup_path(configs_dir)
    if os.path.exists(backup):
        raise InlineError(f"Backup directory {backup} already exists; remove it before running again")
    shutil.copytree(configs_dir, backup, symlinks=True)
    logging.debug(f"Backed up {configs_dir} to {backup}")
    return backup


def restore_backup(configs_dir, backup):
    shutil.rmtree(configs_dir)
    os.rename(backup, configs_dir)
    logging.info(f"Restored {configs_dir} from {backup}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="declcfg-inline-bundles",
        description="Inline bundle image manifests into a declarative config catalog",
    )
    parser.add_argument("configs_dir", metavar="configsDir", nargs="?", help="Declarative config catalog directory")
    parser.add_argument("bundle_images", metavar="bundleImage", nargs="*",
                        help="Bundle images to inline. If none are given, every bundle is inlined")
    parser.add_argument("--delete-non-head-objects", dest="delete_non_head_objects", action="store_true",
                        help="Delete objects for bundles that are not channel heads.")
    parser.add_argument("--config", dest="config", type=str, help="Path to a JSON config file")
    parser.add_argument("--max-workers", dest="max_workers", type=int, help="Catalog files processed in parallel")
    parser.add_argument("--retry-steps", dest="retry_steps", type=int, help="Maximum attempts per image pull")
    parser.add_argument("--skopeo", dest="skopeo", type=str, help="Path to the skopeo binary")
    parser.add_argument("--insecure", dest="insecure", action="store_true",
                        help="Skip TLS verification when pulling images")
    parser.add_argument("--log-level", dest="log_level", type=str,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], help="Logging level")
    parser.add_argument("--show-config", dest="show_config", action="store_true",
                        help="Display the effective configuration and exit")
    return parser.parse_args(argv)


def load_config(args):
    config = Config(args.config)
    config.override(
        max_workers=args.max_workers,
        retry_steps=args.retry_steps,
        skopeo=args.skopeo,
        tls_verify=False if args.insecure else None,
        log_level=args.log_level,
    )
    return config


def run(args, config, registry):
    materializer = Materializer(
        registry,
        backoff=config.backoff(),
        permanent_error_pattern=config.get('permanent_error_pattern'),
    )
    inliner = Inliner(
        args.configs_dir,
        bundle_images=args.bundle_images,
        delete_non_head_objects=args.delete_non_head_objects,
        materializer=materializer,
        max_workers=config.get('max_workers'),
    )

    backup = create_backup(args.configs_dir)
    try:
        result = inliner.run()
    except Exception:
        restore_backup(args.configs_dir, backup)
        raise
    shutil.rmtree(backup)
    return result


def main(argv=None):
    args = parse_args(argv)

    try:
        config = load_config(args)
    except ConfigError as e:
        setup_logging()
        logging.critical(f"Error loading configuration: {e}")
        sys.exit(1)

    setup_logging(config.get('log_level'))

    if args.show_config:
        config.show_config()
        return

    if not args.configs_dir:
        logging.critical("A catalog directory is required.")
        sys.exit(1)

    if not os.path.isdir(args.configs_dir):
        logging.critical(f"Catalog directory {args.configs_dir} does not exist.")
        sys.exit(1)

    log_header("Inlining bundle objects in {}", args.configs_dir)

    registry = SkopeoRegistry(skopeo=config.get('skopeo'), tls_verify=config.get('tls_verify'))
    try:
        result = run(args, config, registry)
    except (InlineError, OSError) as e:
        logging.critical(f"Error inlining bundles: {e}")
        sys.exit(1)
    finally:
        try:
            registry.destroy()
        except OSError as e:
            logging.warning(f"Could not remove image cache {registry.cache_dir}: {e}")

    log_header("Done: {} inlined, {} pruned, {} file(s) written",
               result.inlined, result.pruned, result.files_written)


if __name__ == "__main__":
    main()
