#!/usr/bin/env python3
# Copyright (c) 2026 Red Hat, Inc.
# Copyright Contributors to the Open Cluster Management project

"""
Exceptions raised while loading, validating and rewriting a declarative catalog.
"""


class InlineError(Exception):
    """Base class for every error raised by declcfg-inline-bundles."""


class ConfigError(InlineError):
    """The tool configuration file is unreadable or invalid."""


class LoadError(InlineError):
    """A catalog file could not be read or parsed."""


class ValidationError(InlineError):
    """A package, channel or bundle violates the catalog model."""


class GraphError(ValidationError):
    """A channel's replaces/skips graph does not have exactly one head."""


class RegistryError(InlineError):
    """The registry client failed to run a command against an image."""


class PullError(InlineError):
    """An image could not be pulled (after retries) or its labels read."""


class UnpackError(InlineError):
    """A pulled image could not be unpacked into the scratch directory."""


class ReadError(InlineError):
    """A manifest file inside an unpacked image could not be read."""


class SerializationError(InlineError):
    """A catalog file could not be written back to disk."""


class AggregateError(InlineError):
    """One or more catalog files failed to process."""

    def __init__(self, errors):
        self.errors = list(errors)
        lines = [f"{len(self.errors)} catalog file(s) failed:"]
        lines.extend(f"  {path}: {err}" for path, err in self.errors)
        super().__init__("\n".join(lines))
