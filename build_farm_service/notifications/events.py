# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT

"""
Channel names of the notifications exchanged over the shared event bus.

The build execution subsystem emits the build and step channels; the
evaluator emits the evaluation channels and ``builds_added``. Every payload
is a tab-joined list of text fields.
"""

BUILD_STARTED = "build_started"
BUILD_FINISHED = "build_finished"
STEP_FINISHED = "step_finished"

EVAL_STARTED = "eval_started"
EVAL_ADDED = "eval_added"
EVAL_CACHED = "eval_cached"
EVAL_FAILED = "eval_failed"

BUILDS_ADDED = "builds_added"

# Channels the notification listener subscribes to
LISTENED_CHANNELS = (
    BUILD_STARTED,
    BUILD_FINISHED,
    STEP_FINISHED,
    EVAL_STARTED,
    EVAL_ADDED,
    EVAL_CACHED,
    EVAL_FAILED,
)
