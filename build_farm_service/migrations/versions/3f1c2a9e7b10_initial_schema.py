"""Initial schema

Revision ID: 3f1c2a9e7b10
Revises: None
Create Date: 2026-10-17 09:12:44.218311

"""

# revision identifiers, used by Alembic.
revision = '3f1c2a9e7b10'
down_revision = None

from alembic import op
import sqlalchemy as sa


def upgrade():
    op.create_table(
        'projects',
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('displayname', sa.String(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('hidden', sa.Boolean(), nullable=False),
        sa.Column('owner', sa.String(), nullable=True),
        sa.Column('declfile', sa.String(), nullable=True),
        sa.Column('decltype', sa.String(), nullable=True),
        sa.Column('declvalue', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('name'),
    )
    op.create_table(
        'jobsets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.Integer(), nullable=False),
        sa.Column('nixexprinput', sa.String(), nullable=True),
        sa.Column('nixexprpath', sa.String(), nullable=True),
        sa.Column('flake', sa.String(), nullable=True),
        sa.Column('enabled', sa.Integer(), nullable=False),
        sa.Column('hidden', sa.Boolean(), nullable=False),
        sa.Column('forceeval', sa.Boolean(), nullable=False),
        sa.Column('errormsg', sa.Text(), nullable=True),
        sa.Column('errortime', sa.DateTime(), nullable=True),
        sa.Column('fetcherrormsg', sa.Text(), nullable=True),
        sa.Column('lastcheckedtime', sa.DateTime(), nullable=True),
        sa.Column('triggertime', sa.DateTime(), nullable=True),
        sa.Column('checkinterval', sa.Integer(), nullable=False),
        sa.Column('schedulingshares', sa.Integer(), nullable=False),
        sa.Column('enableemail', sa.Boolean(), nullable=False),
        sa.Column('emailoverride', sa.String(), nullable=False),
        sa.Column('keepnr', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['project'], ['projects.name']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project', 'name'),
    )
    op.create_table(
        'jobsetinputs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('jobset_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('emailresponsible', sa.Boolean(), nullable=False),
        sa.Column('required', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['jobset_id'], ['jobsets.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('jobset_id', 'name'),
    )
    op.create_table(
        'jobsetinputalts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('input_id', sa.Integer(), nullable=False),
        sa.Column('altnr', sa.Integer(), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('revision', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['input_id'], ['jobsetinputs.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'builds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('finished', sa.Boolean(), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('project', sa.String(), nullable=False),
        sa.Column('jobset_id', sa.Integer(), nullable=False),
        sa.Column('job', sa.String(), nullable=False),
        sa.Column('nixname', sa.String(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('drvpath', sa.String(), nullable=False),
        sa.Column('system', sa.String(), nullable=False),
        sa.Column('license', sa.Text(), nullable=True),
        sa.Column('homepage', sa.Text(), nullable=True),
        sa.Column('maintainers', sa.Text(), nullable=True),
        sa.Column('maxsilent', sa.Integer(), nullable=True),
        sa.Column('timeout', sa.Integer(), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('globalpriority', sa.Integer(), nullable=False),
        sa.Column('ischannel', sa.Boolean(), nullable=False),
        sa.Column('iscurrent', sa.Boolean(), nullable=False),
        sa.Column('starttime', sa.DateTime(), nullable=True),
        sa.Column('stoptime', sa.DateTime(), nullable=True),
        sa.Column('buildstatus', sa.Integer(), nullable=True),
        sa.Column('releasename', sa.String(), nullable=True),
        sa.Column('keep', sa.Boolean(), nullable=False),
        sa.Column('notificationpendingsince', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['project'], ['projects.name']),
        sa.ForeignKeyConstraint(['jobset_id'], ['jobsets.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_builds_jobset_iscurrent', 'builds', ['jobset_id', 'iscurrent'])
    op.create_index('ix_builds_job_finished', 'builds', ['project', 'job', 'finished'])
    op.create_table(
        'buildoutputs',
        sa.Column('build_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('path', sa.String(), nullable=False),
        sa.ForeignKeyConstraint(['build_id'], ['builds.id']),
        sa.PrimaryKeyConstraint('build_id', 'name'),
    )
    op.create_index('ix_buildoutputs_path', 'buildoutputs', ['path'])
    op.create_table(
        'buildsteps',
        sa.Column('build_id', sa.Integer(), nullable=False),
        sa.Column('stepnr', sa.Integer(), nullable=False),
        sa.Column('type', sa.Integer(), nullable=False),
        sa.Column('drvpath', sa.String(), nullable=True),
        sa.Column('status', sa.Integer(), nullable=True),
        sa.Column('errormsg', sa.Text(), nullable=True),
        sa.Column('starttime', sa.DateTime(), nullable=True),
        sa.Column('stoptime', sa.DateTime(), nullable=True),
        sa.Column('machine', sa.String(), nullable=False),
        sa.Column('system', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['build_id'], ['builds.id']),
        sa.PrimaryKeyConstraint('build_id', 'stepnr'),
    )
    op.create_table(
        'evaluationerrors',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('errormsg', sa.Text(), nullable=True),
        sa.Column('errortime', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'jobsetevals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('jobset_id', sa.Integer(), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('checkouttime', sa.Integer(), nullable=False),
        sa.Column('evaltime', sa.Integer(), nullable=False),
        sa.Column('hasnewbuilds', sa.Boolean(), nullable=False),
        sa.Column('hash', sa.String(), nullable=False),
        sa.Column('nrbuilds', sa.Integer(), nullable=True),
        sa.Column('nrsucceeded', sa.Integer(), nullable=True),
        sa.Column('flake', sa.String(), nullable=True),
        sa.Column('nixexprinput', sa.String(), nullable=True),
        sa.Column('nixexprpath', sa.String(), nullable=True),
        sa.Column('evaluationerror_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['jobset_id'], ['jobsets.id']),
        sa.ForeignKeyConstraint(['evaluationerror_id'], ['evaluationerrors.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_jobsetevals_jobset', 'jobsetevals', ['jobset_id', 'hasnewbuilds'])
    op.create_table(
        'jobsetevalinputs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('eval_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('altnr', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('uri', sa.String(), nullable=True),
        sa.Column('revision', sa.String(), nullable=True),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('dependency_id', sa.Integer(), nullable=True),
        sa.Column('path', sa.String(), nullable=True),
        sa.Column('sha256hash', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['eval_id'], ['jobsetevals.id']),
        sa.ForeignKeyConstraint(['dependency_id'], ['builds.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'jobsetevalmembers',
        sa.Column('eval_id', sa.Integer(), nullable=False),
        sa.Column('build_id', sa.Integer(), nullable=False),
        sa.Column('isnew', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['eval_id'], ['jobsetevals.id']),
        sa.ForeignKeyConstraint(['build_id'], ['builds.id']),
        sa.PrimaryKeyConstraint('eval_id', 'build_id'),
    )
    op.create_index('ix_jobsetevalmembers_build', 'jobsetevalmembers', ['build_id'])
    op.create_table(
        'aggregateconstituents',
        sa.Column('aggregate_id', sa.Integer(), nullable=False),
        sa.Column('constituent_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['aggregate_id'], ['builds.id']),
        sa.ForeignKeyConstraint(['constituent_id'], ['builds.id']),
        sa.PrimaryKeyConstraint('aggregate_id', 'constituent_id'),
    )


def downgrade():
    op.drop_table('aggregateconstituents')
    op.drop_index('ix_jobsetevalmembers_build', 'jobsetevalmembers')
    op.drop_table('jobsetevalmembers')
    op.drop_table('jobsetevalinputs')
    op.drop_index('ix_jobsetevals_jobset', 'jobsetevals')
    op.drop_table('jobsetevals')
    op.drop_table('evaluationerrors')
    op.drop_table('buildsteps')
    op.drop_index('ix_buildoutputs_path', 'buildoutputs')
    op.drop_table('buildoutputs')
    op.drop_index('ix_builds_job_finished', 'builds')
    op.drop_index('ix_builds_jobset_iscurrent', 'builds')
    op.drop_table('builds')
    op.drop_table('jobsetinputalts')
    op.drop_table('jobsetinputs')
    op.drop_table('jobsets')
    op.drop_table('projects')
