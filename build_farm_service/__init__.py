# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
"""The evaluation and scheduling core of a continuous build farm.

The service is responsible for a number of tasks:

- Resolving the declared inputs of a jobset into concrete values,
  including references to earlier builds and evaluations.
- Invoking the external expression evaluator to enumerate the jobs of a
  jobset.
- Deduplicating evaluated jobs against the builds already recorded and
  scheduling new builds in one atomic evaluation record.
- Emitting notifications about evaluation and build lifecycle changes, and
  running the registered plugins when they are received.
"""

from importlib.metadata import version as dist_version, PackageNotFoundError
from logging import getLogger

try:
    version = dist_version("build-farm-service")
except PackageNotFoundError:
    version = "unknown"

log = getLogger(__name__)
