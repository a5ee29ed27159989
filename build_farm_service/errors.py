# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
""" Defines custom exceptions raised during evaluation and event dispatch """


class ConfigurationError(ValueError):
    """The jobset or one of its inputs is declared in an unusable way."""
    pass


class InputResolutionError(RuntimeError):
    """An input refers to a build, evaluation or path that is not available."""
    pass


class EvaluatorInvocationError(RuntimeError):
    """The external evaluator failed or returned something unusable."""

    def __init__(self, message, stderr=None):
        super(EvaluatorInvocationError, self).__init__(message)
        self.stderr = stderr

    def __str__(self):
        message = super(EvaluatorInvocationError, self).__str__()
        if self.stderr:
            return "%s:\n%s" % (message, self.stderr)
        return message


class StoreError(RuntimeError):
    pass


class RunTimeout(RuntimeError):
    pass


class IgnoreMessage(Exception):
    """Raise if a notification received from the bus should be ignored"""
