# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
"""Evaluation of one jobset.

A run goes through the states ``resolving-inputs``, then ``skip`` when
nothing changed since the previous evaluation, or ``evaluate`` and
``scheduling``, and finally ``committed``. Any exception moves the run to
``failed``: the database transaction is rolled back, the error is recorded
on the jobset and ``eval_failed`` is published.
"""

import contextlib
import signal
import time
from datetime import datetime

from build_farm_service import log, messaging
from build_farm_service.declarative import DECLARATIVE_JOBSET, handle_declarative_jobsets
from build_farm_service.errors import ConfigurationError, RunTimeout
from build_farm_service.eval_jobs import content_hash, evaluate_jobs, inputs_to_args, lock_flake
from build_farm_service.models import (
    JOBSET_STATES,
    EvaluationError,
    Jobset,
    JobsetEval,
    Project,
    make_session,
)
from build_farm_service.notifications import events
from build_farm_service.plugins import load_plugins
from build_farm_service.resolver import InputResolver
from build_farm_service.scheduling import schedule_jobs
from build_farm_service.store import ContentStore
from build_farm_service.utils import make_correlation_id

RESOLVING_INPUTS = "resolving-inputs"
SKIP = "skip"
EVALUATE = "evaluate"
SCHEDULING = "scheduling"
COMMITTED = "committed"
FAILED = "failed"


@contextlib.contextmanager
def run_time_limit(seconds):
    """ Raise RunTimeout in the block once ``seconds`` passed. 0 disables it. """
    if not seconds:
        yield
        return

    def on_alarm(signum, frame):
        raise RunTimeout("Evaluation exceeded the time limit of %ss" % seconds)

    previous = signal.signal(signal.SIGALRM, on_alarm)
    signal.alarm(int(seconds))
    try:
        yield
    finally:
        signal.alarm(0)
        signal.signal(signal.SIGALRM, previous)


def aggregate_job_errors(jobs):
    """ Concatenate the errors of the failed jobs, in job name order. """
    message = ""
    for name in sorted(jobs):
        job = jobs[name]
        if not job.error:
            continue
        where = 'in job "%s"' % name if name else "at top-level"
        message += "%s:\n%s\n\n" % (where, job.error)
    return message


def set_jobset_error(session, jobset, message, when, evaluation_error=None):
    """ Store the error text of a run on the jobset and its error record.

    :return: True if the text changed to a non-empty one, in which case the
        plugins are to be told about it
    """
    previous = jobset.errormsg or ""
    jobset.errormsg = message
    jobset.errortime = when
    jobset.fetcherrormsg = None
    if evaluation_error is not None:
        evaluation_error.errormsg = message
        evaluation_error.errortime = when
    return bool(message) and message != previous


class Evaluator(object):
    """ Evaluate jobsets and schedule their builds.

    :param conf: the service configuration
    :param plugins: plugins used for input resolution and error
        notifications, loaded from the configuration if not given
    :param store: the ContentStore inputs are checked against
    """

    def __init__(self, conf, plugins=None, store=None):
        self.conf = conf
        self.plugins = load_plugins(conf) if plugins is None else list(plugins)
        self.store = store or ContentStore(conf)
        self.state = None

    def _publish(self, channel, fields, session=None):
        if self.conf.dry_run:
            return
        messaging.publish(channel, fields, self.conf, session)

    def run(self, project_name, jobset_name):
        """ Evaluate one jobset.

        :return: True if the run succeeded, False if it failed
        """
        correlation_id = make_correlation_id()
        log.info("Evaluating %s:%s (%s)", project_name, jobset_name, correlation_id)
        self._publish(events.EVAL_STARTED, [correlation_id, project_name, jobset_name])

        error_notification = None
        try:
            with run_time_limit(self.conf.max_run_time):
                with make_session(self.conf) as session:
                    error_notification = self.check_jobset(
                        session, project_name, jobset_name, correlation_id)
        except Exception as e:
            failed_state = self.state
            self.state = FAILED
            log.exception("Evaluation of %s:%s failed in state %s",
                          project_name, jobset_name, failed_state)
            if not self.conf.dry_run:
                error_notification = self.record_failure(
                    project_name, jobset_name, str(e), failed_state == RESOLVING_INPUTS)
                self._publish(events.EVAL_FAILED, [correlation_id])
            if error_notification:
                self.notify_jobset_error(project_name, jobset_name, error_notification)
            return False

        if error_notification and not self.conf.dry_run:
            self.notify_jobset_error(project_name, jobset_name, error_notification)
        return True

    def check_jobset(self, session, project_name, jobset_name, correlation_id):
        """ Run the state machine inside the session of the run.

        :return: the new error text of the jobset if the plugins are to be
            told about it, else None
        """
        self.state = RESOLVING_INPUTS
        jobset = Jobset.get_by_name(session, project_name, jobset_name)
        if jobset is None:
            raise ConfigurationError("Jobset %s:%s does not exist" % (project_name, jobset_name))
        project = session.get(Project, project_name)
        now = datetime.utcnow

        resolver = InputResolver(self.conf, session, self.store, self.plugins)

        if project.is_declarative and jobset.name == DECLARATIVE_JOBSET:
            handle_declarative_jobsets(session, project, resolver)
            jobset.lastcheckedtime = now()
            jobset.fetcherrormsg = None
            self._finish(session)
            return None

        checkout_start = time.monotonic()
        inputs = resolver.resolve_inputs(jobset)
        flake = lock_flake(self.conf, jobset.flake) if jobset.is_flake else None
        checkout_time = time.monotonic() - checkout_start

        eval_hash = content_hash(jobset.nixexprinput, jobset.nixexprpath, inputs_to_args(inputs))
        prev_eval = JobsetEval.get_previous(session, jobset, has_new_builds=False)
        if (prev_eval is not None and prev_eval.hash == eval_hash
                and prev_eval.flake == flake
                and not self.conf.dry_run and not jobset.forceeval):
            self.state = SKIP
            log.info("Jobset %s is unchanged, skipping", jobset.full_name)
            jobset.lastcheckedtime = now()
            jobset.fetcherrormsg = None
            self._publish(events.EVAL_CACHED, [correlation_id], session)
            self._finish(session)
            return None

        self.state = EVALUATE
        eval_start = time.monotonic()
        jobs = evaluate_jobs(self.conf, jobset, inputs, flake)
        eval_time = time.monotonic() - eval_start

        self.state = SCHEDULING
        error_time = now()
        error_message = aggregate_job_errors(jobs)
        if error_message:
            log.warning("Evaluation of %s has errors:\n%s", jobset.full_name, error_message)
        evaluation_error = EvaluationError()
        session.add(evaluation_error)
        notify = set_jobset_error(session, jobset, error_message, error_time, evaluation_error)

        result = schedule_jobs(
            self.conf, session, jobset, jobs, inputs, eval_hash, evaluation_error,
            correlation_id, checkout_time=checkout_time, eval_time=eval_time, flake=flake)
        log.info("Evaluation %d of %s: %d builds, %d new",
                 result.jobset_eval.id, jobset.full_name, len(result.build_map),
                 len(result.new_builds))

        if jobset.enabled == JOBSET_STATES["one-shot"]:
            jobset.enabled = JOBSET_STATES["disabled"]
        jobset.forceeval = False
        jobset.triggertime = None
        jobset.lastcheckedtime = now()
        self._finish(session)
        return error_message if notify else None

    def _finish(self, session):
        if self.conf.dry_run:
            log.info("Dry run, rolling back")
            session.rollback()
        self.state = COMMITTED

    def record_failure(self, project_name, jobset_name, message, fetch_failed):
        """ Store the error of a failed run on the jobset. """
        with make_session(self.conf) as session:
            jobset = Jobset.get_by_name(session, project_name, jobset_name)
            if jobset is None:
                return None
            now = datetime.utcnow()
            notify = set_jobset_error(session, jobset, message, now)
            if fetch_failed:
                jobset.fetcherrormsg = message
            jobset.lastcheckedtime = now
        return message if notify else None

    def notify_jobset_error(self, project_name, jobset_name, message):
        with make_session(self.conf) as session:
            jobset = Jobset.get_by_name(session, project_name, jobset_name)
            responsible = [i.name for i in jobset.inputs if i.emailresponsible]
            for plugin in self.plugins:
                try:
                    plugin.jobset_error(jobset, message, responsible)
                except Exception:
                    log.exception("Plugin %r failed to handle the error of %s",
                                  plugin, jobset.full_name)
