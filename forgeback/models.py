from datetime import datetime
from forgeback import db


class BackupRun(db.Model):
    """One orchestrator pass over all source kinds"""
    __tablename__ = 'backup_runs'

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(20), nullable=False)  # success, failed
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)
    logs = db.Column(db.Text)  # Detailed execution logs

    # Relationship
    outcomes = db.relationship('SourceOutcome', back_populates='run', cascade='all, delete-orphan',
                               order_by='SourceOutcome.id')

    def __repr__(self):
        return f'<BackupRun id={self.id} status={self.status}>'


class SourceOutcome(db.Model):
    """Outcome of one source kind within a run"""
    __tablename__ = 'source_outcomes'

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(db.Integer, db.ForeignKey('backup_runs.id'), nullable=False)
    kind = db.Column(db.String(20), nullable=False)  # svn, git, hg, bzr, app
    outcome = db.Column(db.String(20), nullable=False)  # disabled, success, failed
    repositories = db.Column(db.Integer, default=0, nullable=False)
    error_message = db.Column(db.Text)  # One '<repository> [<stage>]: <message>' per line

    # Relationship
    run = db.relationship('BackupRun', back_populates='outcomes')

    def __repr__(self):
        return f'<SourceOutcome {self.kind}={self.outcome}>'
