# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
"""Logging functions.

To use logging in the build farm service, use the module level ``log``::

    from build_farm_service import log
    log.info("Evaluating jobset %s", jobset)

The logging backend and level are configured by ``init_logging(conf)``.
"""

import logging

levels = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

level_flags = {
    "debug": logging.DEBUG,
    "verbose": logging.INFO,
    "quiet": logging.ERROR,
}

log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def str_to_log_level(level):
    """
    Returns internal representation of logging level defined
    by the string `level`.

    Available levels are: debug, info, warning, error
    """
    if level not in levels:
        return logging.NOTSET

    return levels[level]


def supported_log_backends():
    return ("console", "file")


def init_logging(conf):
    """
    Initializes logging according to configuration file.
    """
    log_backend = conf.log_backend

    if not log_backend or log_backend == "console":
        logging.basicConfig(level=conf.log_level, format=log_format)
    else:
        logging.basicConfig(filename=conf.log_file, level=conf.log_level, format=log_format)

    logging.getLogger("build_farm_service").setLevel(conf.log_level)
