#!/usr/bin/env python3
# Copyright (c) 2026 Red Hat, Inc.
# Copyright Contributors to the Open Cluster Management project

"""
Logging helpers shared by the command line tools.
"""

import logging

import coloredlogs

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def setup_logging(level="INFO"):
    """Install colored console logging at ``level`` on the root logger."""
    coloredlogs.install(level=level.upper(), fmt=LOG_FORMAT)


def log_header(message, *args):
    """
    Logs a header message with visual separators and formats the message using multiple arguments.

    Args:
        message (str): The message to be displayed as the header
        *args: Additional arguments to be passed into the message string
    """
    formatted_message = message.format(*args)
    separator = "=" * len(formatted_message)

    logging.info("")
    logging.info(separator)
    logging.info(formatted_message)
    logging.info(separator)
