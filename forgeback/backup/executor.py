"""
Backup orchestrator - drives every source kind through its strategy.

Workflow per run:
1. Resolve settings and open the remote channel
2. For each source kind in fixed order:
   a. Skip (outcome: disabled) if the kind is disabled
   b. Enumerate remote repositories and replicate each one
   c. Run kind-specific single-target steps
   d. Apply the kind's group policy to its subtree
   e. Record outcome: success, or failed if anything above failed
3. Persist the run and its per-kind outcomes in a single commit

A failure is confined to its repository (siblings still run) and its kind
(other kinds are never affected).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence

from forgeback import db
from forgeback.config import SOURCE_KINDS, BackupSettings
from forgeback.models import BackupRun, SourceOutcome
from . import app_state  # noqa: F401  registers the 'app' strategy
from .compression import get_compressor
from .errors import BackupError, RestoreFailed, RotationFailed
from .local import LocalRunner
from .remote import RemoteChannel
from .sources import RepositoryEnumerator
from .storage import StorageLayout
from .strategies import BackupContext, ReplicationStrategy, StrategyRegistry

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    DISABLED = 'disabled'
    SUCCESS = 'success'
    FAILED = 'failed'


@dataclass
class KindReport:
    """Outcome of one source kind."""

    kind: str
    outcome: Outcome
    repositories: int = 0
    failures: List[str] = field(default_factory=list)

    def line(self) -> str:
        return f"{self.kind}: {self.outcome.value}"


class BackupOrchestrator:
    """
    Runs all source kinds in order and reports one outcome per kind.
    """

    def __init__(
        self,
        settings: BackupSettings,
        strategies: Dict[str, ReplicationStrategy],
        layout: StorageLayout,
        kinds: Sequence[str] = SOURCE_KINDS
    ):
        """
        Initialize orchestrator.

        Args:
            settings: Resolved backup settings
            strategies: Strategy per enabled source kind
            layout: Local storage layout
            kinds: Source kinds in processing order
        """
        self.settings = settings
        self.strategies = strategies
        self.layout = layout
        self.kinds = tuple(kinds)
        self.logs = []

    def run(self) -> List[KindReport]:
        """
        Execute one pass over all source kinds.

        Returns:
            One KindReport per kind, in processing order
        """
        self._log("Starting backup run")
        reports = [self.run_kind(kind) for kind in self.kinds]

        for report in reports:
            self._log(report.line())

        return reports

    def run_kind(self, kind: str) -> KindReport:
        """
        Back up every repository of a source kind.

        Args:
            kind: Source kind

        Returns:
            KindReport for the kind
        """
        if self.settings.is_disabled(kind):
            self._log(f"{kind}: disabled, skipping")
            return KindReport(kind=kind, outcome=Outcome.DISABLED)

        report = KindReport(kind=kind, outcome=Outcome.SUCCESS)
        strategy = self.strategies.get(kind)

        if strategy is None:
            report.outcome = Outcome.FAILED
            report.failures.append(f"- [setup]: no strategy configured for {kind}")
            self._log(f"{kind}: no strategy configured", logging.ERROR)
            return report

        kind_dir = self.layout.kind_dir(kind)

        try:
            self.layout.ensure(kind_dir)
            names = strategy.enumerate()
            self._log(f"{kind}: {len(names)} repositories")

            for name in names:
                if self._replicate(strategy, name, report):
                    report.repositories += 1

            for step_name, step in strategy.extra_steps():
                self._run_step(kind, step_name, step, report)

            self.layout.apply_group_policy(kind_dir, self.settings.source_groups.get(kind))

        except BackupError as e:
            report.failures.append(e.describe())
            self._log(f"{kind}: {e.describe()}", logging.ERROR)
        except Exception as e:
            logger.exception("Unexpected error while backing up %s", kind)
            report.failures.append(f"- [unexpected]: {e}")
            self._log(f"{kind}: unexpected error: {e}", logging.ERROR)

        if report.failures:
            report.outcome = Outcome.FAILED

        return report

    def _replicate(self, strategy: ReplicationStrategy, name: str, report: KindReport) -> bool:
        self._log(f"{strategy.kind}/{name}: starting")

        try:
            strategy.replicate(strategy.repository(name))
        except BackupError as e:
            if e.repository is None:
                e.repository = name
            report.failures.append(e.describe())

            if isinstance(e, (RestoreFailed, RotationFailed)):
                # The dump artifact or the verified copy needs an operator
                self._log(f"{strategy.kind}/{e.describe()}", logging.CRITICAL)
            else:
                self._log(f"{strategy.kind}/{e.describe()}", logging.ERROR)
            return False

        self._log(f"{strategy.kind}/{name}: done")
        return True

    def _run_step(self, kind: str, step_name: str, step, report: KindReport):
        self._log(f"{kind}/{step_name}: starting")

        try:
            step()
        except BackupError as e:
            if e.repository is None:
                e.repository = step_name
            report.failures.append(e.describe())
            self._log(f"{kind}/{e.describe()}", logging.ERROR)
            return

        self._log(f"{kind}/{step_name}: done")

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def build_orchestrator(
    settings: BackupSettings,
    channel: RemoteChannel,
    runner: Optional[LocalRunner] = None
) -> BackupOrchestrator:
    """
    Wire strategies for every enabled source kind.

    Args:
        settings: Resolved backup settings
        channel: Remote command channel
        runner: Local command runner (default: LocalRunner())

    Returns:
        BackupOrchestrator
    """
    layout = StorageLayout(settings.storage_root)
    context = BackupContext(
        channel=channel,
        runner=runner or LocalRunner(),
        layout=layout,
        compressor=get_compressor(settings.compression, progress=settings.progress),
        enumerator=RepositoryEnumerator(channel, settings.source_roots)
    )

    strategies = {
        kind: StrategyRegistry.create(kind, settings, context)
        for kind in SOURCE_KINDS
        if not settings.is_disabled(kind)
    }
    return BackupOrchestrator(settings, strategies, layout)


def execute_backup_run(config: Mapping, runner: Optional[LocalRunner] = None) -> BackupRun:
    """
    Execute one backup run and record it.

    The run and its outcomes are written in one commit once every kind has
    finished, so a run is never visible half done.

    Args:
        config: Application config mapping
        runner: Local command runner (default: LocalRunner())

    Returns:
        Persisted BackupRun

    Raises:
        ValueError: If the configuration is invalid
    """
    started_at = datetime.utcnow()
    settings = BackupSettings.from_config(config)

    channel = RemoteChannel(
        host=settings.remote_host,
        port=settings.remote_port,
        username=settings.remote_user,
        key_file=settings.remote_key_file,
        password=settings.remote_password,
        timeout=settings.remote_timeout,
        command_timeout=settings.remote_command_timeout
    )

    try:
        orchestrator = build_orchestrator(settings, channel, runner)
        reports = orchestrator.run()
    finally:
        # Always close the remote connection
        channel.close()

    failed = any(report.outcome == Outcome.FAILED for report in reports)
    run = BackupRun(
        status='failed' if failed else 'success',
        started_at=started_at,
        completed_at=datetime.utcnow(),
        logs='\n'.join(orchestrator.logs)
    )
    for report in reports:
        run.outcomes.append(SourceOutcome(
            kind=report.kind,
            outcome=report.outcome.value,
            repositories=report.repositories,
            error_message='\n'.join(report.failures) or None
        ))

    db.session.add(run)
    db.session.commit()
    return run
