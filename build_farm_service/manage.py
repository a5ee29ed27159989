# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
""" Command line interface of the build farm service. """

import os
import sys

import click
from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig

from build_farm_service import log, version
from build_farm_service.config import init_config
from build_farm_service.evaluator import Evaluator
from build_farm_service.logger import init_logging, level_flags
from build_farm_service.models import create_tables, database_url
from build_farm_service.notifications.consumer import NotificationConsumer


@click.group()
@click.option("--debug", "level", flag_value="debug", help="Log debug messages.")
@click.option("--verbose", "level", flag_value="verbose", help="Log informational messages.")
@click.option("--quiet", "level", flag_value="quiet", help="Log errors only.")
@click.version_option(version)
@click.pass_context
def cli(ctx, level):
    """ Evaluate jobsets and dispatch build farm notifications. """
    conf = init_config()
    if level:
        conf.log_level = level_flags[level]
    init_logging(conf)
    ctx.obj = conf


@cli.command()
@click.argument("project")
@click.argument("jobset")
@click.pass_obj
def evaluate(conf, project, jobset):
    """ Evaluate a jobset and schedule its new builds.

    Set BFS_EVALUATOR_DRY_RUN=1 to evaluate without changing anything.
    """
    if conf.dry_run:
        log.info("Dry run, nothing will be stored or published")
    if not Evaluator(conf).run(project, jobset):
        sys.exit(1)


@cli.command()
@click.option("--queued-only", is_flag=True, default=False,
              help="Process the pending notifications of finished builds and exit.")
@click.pass_obj
def listen(conf, queued_only):
    """ Run the plugins on build farm notifications. """
    NotificationConsumer(conf).run(backlog_only=queued_only)


@cli.command()
@click.pass_obj
def createdb(conf):
    """ Creates the database tables of the current model """
    create_tables(conf)
    alembic_command.stamp(_alembic_config(conf), "head")


@cli.command()
@click.pass_obj
def upgradedb(conf):
    """ Upgrades the database schema to the latest revision """
    alembic_command.upgrade(_alembic_config(conf), "head")


def _alembic_config(conf):
    alembic_conf = AlembicConfig()
    alembic_conf.set_main_option(
        "script_location", os.path.join(os.path.dirname(__file__), "migrations"))
    url = database_url(conf).render_as_string(hide_password=False)
    alembic_conf.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return alembic_conf


GROUP_FLAGS = ("--debug", "--verbose", "--quiet", "--version")


def _subcommand_args(command, args):
    """ Put the subcommand after the leading group options of ``args``. """
    split = 0
    while split < len(args) and args[split] in GROUP_FLAGS:
        split += 1
    return args[:split] + [command] + args[split:]


def evaluator_main():
    cli(args=_subcommand_args("evaluate", sys.argv[1:]), prog_name="build_farm_evaluator")


def notify_main():
    cli(args=_subcommand_args("listen", sys.argv[1:]), prog_name="build_farm_notify")


if __name__ == "__main__":
    cli()
