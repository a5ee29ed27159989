# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
""" Utility functions for the build farm service. """
import functools
import hashlib
import os
import re
import subprocess as sp
import time

from build_farm_service import log
from build_farm_service.errors import ConfigurationError, EvaluatorInvocationError


def retry(timeout=120, interval=30, wait_on=Exception):
    """ A decorator that allows to retry a section of code...
    ...until success or timeout.
    """
    def wrapper(function):
        @functools.wraps(function)
        def inner(*args, **kwargs):
            start = time.time()
            while True:
                try:
                    return function(*args, **kwargs)
                except wait_on as e:
                    if (time.time() - start) >= timeout:
                        raise  # This re-raises the last exception.
                    log.warning("Exception %r raised from %r.  Retry in %rs",
                                e, function, interval)
                    time.sleep(interval)
        return inner
    return wrapper


def run_command(cmd, timeout=None, error_cls=RuntimeError, chdir=None, env=None):
    """ Run an external command and return its decoded stdout.

    :param timeout: wall-clock limit in seconds, None or 0 for no limit
    :param error_cls: exception raised when the command cannot be run, exits
        non-zero, is killed by a signal or exceeds the timeout
    """
    log.debug("Running %r", cmd)
    try:
        proc = sp.Popen(cmd, stdout=sp.PIPE, stderr=sp.PIPE, cwd=chdir, env=env)
    except OSError as e:
        raise error_cls("Failed to run %r: %s" % (cmd, e))
    try:
        stdout, stderr = proc.communicate(timeout=timeout or None)
    except sp.TimeoutExpired:
        proc.kill()
        stdout, stderr = proc.communicate()
        raise _command_error(
            error_cls, "%r timed out after %ss" % (cmd, timeout), stderr)
    except BaseException:
        # Interrupted, e.g. by the run time limit: the command must not outlive us.
        proc.kill()
        proc.communicate()
        raise
    stdout = stdout.decode("utf-8", "replace")
    stderr = stderr.decode("utf-8", "replace")
    if stderr:
        log.debug("%r stderr: %s", cmd[0], stderr)
    if proc.returncode < 0:
        raise _command_error(
            error_cls, "%r was killed by signal %d" % (cmd, -proc.returncode), stderr)
    if proc.returncode != 0:
        raise _command_error(
            error_cls, "%r failed with exit code %d" % (cmd, proc.returncode), stderr)
    return stdout


def _command_error(error_cls, message, stderr):
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", "replace")
    if issubclass(error_cls, EvaluatorInvocationError):
        return error_cls(message, stderr=stderr)
    if stderr:
        message = "%s:\n%s" % (message, stderr.strip())
    return error_cls(message)


def sha256_hex(s):
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def make_correlation_id():
    """ Identify one evaluator run in its lifecycle notifications. """
    return "%s.%s" % (time.monotonic(), os.getpid())


_job_name_re = re.compile(
    r'^(?:(?P<project>[\w\-]+):)?(?P<jobset>[\w\-\.]+):(?P<job>[\w\-\.]+)'
    r'\s*(?:\[(?P<attrs>[^\]]*)\])?$')
_job_attr_re = re.compile(r'^(?P<name>[\w\-]+)="(?P<value>[^"]*)"$')


def parse_job_name(spec):
    """ Parse a ``[project:]jobset:job[ [attr="val", ...]]`` job specifier.

    :return: a tuple of project (or None), jobset, job and a dict of
        attribute filters
    :raises ConfigurationError: if the specifier is malformed
    """
    match = _job_name_re.match(spec.strip())
    if not match:
        raise ConfigurationError("Invalid job specifier %r" % spec)
    attrs = {}
    for item in re.split(r"[\s,]+", (match.group("attrs") or "").strip()):
        if not item:
            continue
        attr = _job_attr_re.match(item)
        if not attr:
            raise ConfigurationError(
                "Invalid attribute filter %r in job specifier %r" % (item, spec))
        attrs[attr.group("name")] = attr.group("value")
    return match.group("project"), match.group("jobset"), match.group("job"), attrs
