"""
Replication strategies per source kind.

Strategies are registered by kind in StrategyRegistry:
- MirrorStrategy: git, hg, bzr (clone once, then pull)
- DumpOnlyStrategy: svn (dump-verify pipeline)
- ApplicationStateStrategy: app (see app_state.py)
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Type

from forgeback.config import BackupSettings
from .compression import Compressor
from .errors import MirrorFailed
from .local import LocalRunner
from .pipeline import DumpVerifyPipeline
from .remote import RemoteChannel
from .sources import RepositoryEnumerator
from .storage import Repository, StorageLayout
from .svn import SvnTooling

logger = logging.getLogger(__name__)


@dataclass
class BackupContext:
    """Collaborators shared by the strategies of one run."""

    channel: RemoteChannel
    runner: LocalRunner
    layout: StorageLayout
    compressor: Compressor
    enumerator: RepositoryEnumerator


class ReplicationStrategy(ABC):
    """
    How one source kind is replicated.

    The orchestrator calls enumerate(), then replicate() for every repository,
    then runs extra_steps() for kind-specific single targets.
    """

    def __init__(self, kind: str, settings: BackupSettings, context: BackupContext):
        """
        Initialize strategy.

        Args:
            kind: Source kind handled by this instance
            settings: Resolved backup settings
            context: Shared collaborators
        """
        self.kind = kind
        self.settings = settings
        self.context = context

    @property
    def extension(self) -> str:
        """Extension of the kind's dump artifacts."""
        return ''

    def enumerate(self) -> List[str]:
        """List repository names present on the remote host."""
        return self.context.enumerator.list(self.kind)

    def repository(self, name: str) -> Repository:
        """Build the Repository value for a name returned by enumerate()."""
        return self.context.layout.repository(
            self.kind,
            name,
            self.context.enumerator.root_for(self.kind),
            extension=self.extension
        )

    @abstractmethod
    def replicate(self, repository: Repository):
        """
        Replicate one repository.

        Raises:
            BackupError: If the repository could not be backed up
        """

    def extra_steps(self) -> List[Tuple[str, Callable[[], None]]]:
        """Kind-specific single-target steps as (name, callable) pairs."""
        return []


class StrategyRegistry:
    """
    Registry of strategy classes by source kind.

    Usage:
        @StrategyRegistry.register('git', 'hg')
        class MyStrategy(ReplicationStrategy):
            ...
    """

    _strategies: Dict[str, Type[ReplicationStrategy]] = {}

    @classmethod
    def register(cls, *kinds: str):
        """Decorator registering a strategy class for one or more kinds."""
        def decorator(strategy_class):
            for kind in kinds:
                if kind in cls._strategies:
                    logger.warning("Strategy for '%s' overwritten by %s", kind, strategy_class.__name__)
                cls._strategies[kind] = strategy_class
            return strategy_class
        return decorator

    @classmethod
    def get(cls, kind: str) -> Optional[Type[ReplicationStrategy]]:
        return cls._strategies.get(kind)

    @classmethod
    def kinds(cls) -> List[str]:
        return sorted(cls._strategies)

    @classmethod
    def create(cls, kind: str, settings: BackupSettings, context: BackupContext) -> ReplicationStrategy:
        """
        Instantiate the strategy registered for a kind.

        Raises:
            ValueError: If no strategy is registered for the kind
        """
        strategy_class = cls._strategies.get(kind)
        if strategy_class is None:
            raise ValueError(f"No strategy registered for '{kind}'. Available: {cls.kinds()}")
        return strategy_class(kind, settings, context)


@dataclass(frozen=True)
class MirrorTool:
    """
    Command templates of a version-control tool with native incremental replication.

    Template tokens: {url}, {dest}, {ssh}; the '{quiet}' token is replaced by
    '--quiet' in quiet mode and dropped otherwise.
    """

    name: str
    url_template: str
    clone: Tuple[str, ...]
    update: Tuple[str, ...]
    ssh_env: Optional[str] = None
    hierarchical: bool = False

    def url(self, authority: str, path: str) -> str:
        return self.url_template.format(authority=authority, path=path)

    def render(self, template: Tuple[str, ...], quiet: bool = False, **values) -> List[str]:
        argv = []
        for token in template:
            if token == '{quiet}':
                if quiet:
                    argv.append('--quiet')
                continue
            argv.append(token.format(**values))
        return argv


MIRROR_TOOLS = {
    'git': MirrorTool(
        name='git',
        url_template='ssh://{authority}{path}',
        clone=('git', 'clone', '--mirror', '{quiet}', '{url}', '{dest}'),
        update=('git', '--git-dir={dest}', 'fetch', '--prune', '{quiet}', 'origin'),
        ssh_env='GIT_SSH_COMMAND'
    ),
    'hg': MirrorTool(
        name='hg',
        # hg wants a double slash for absolute paths
        url_template='ssh://{authority}/{path}',
        clone=('hg', 'clone', '--noupdate', '{quiet}', '--ssh', '{ssh}', '{url}', '{dest}'),
        update=('hg', '--repository', '{dest}', 'pull', '{quiet}', '--ssh', '{ssh}', '{url}')
    ),
    'bzr': MirrorTool(
        name='bzr',
        url_template='bzr+ssh://{authority}{path}',
        clone=('bzr', 'branch', '--no-tree', '{quiet}', '{url}', '{dest}'),
        update=('bzr', 'pull', '--overwrite', '{quiet}', '--directory', '{dest}', '{url}'),
        hierarchical=True
    ),
}


@StrategyRegistry.register(*MIRROR_TOOLS)
class MirrorStrategy(ReplicationStrategy):
    """
    Clone-if-absent, else update, for sources with native incremental replication.
    """

    BRANCH_MARKER = '/.bzr/branch'

    def __init__(self, kind: str, settings: BackupSettings, context: BackupContext):
        super().__init__(kind, settings, context)
        self.tool = MIRROR_TOOLS[kind]

    def _env(self):
        if self.tool.ssh_env:
            return {self.tool.ssh_env: self.settings.ssh_command()}
        return None

    def replicate(self, repository: Repository):
        """
        Mirror one repository (and its sub-branches for hierarchical tools).

        Raises:
            MirrorFailed: If a clone or update fails
        """
        self.context.layout.ensure(repository.local_dir)

        if self.tool.hierarchical:
            self._replicate_tree(repository)
        else:
            self._mirror(repository.name, repository.remote_path, repository.local_path)

    def _mirror(self, label: str, remote_path: str, dest: Path):
        url = self.tool.url(self.settings.ssh_authority, remote_path)

        if dest.exists():
            action, template = 'pull', self.tool.update
        else:
            action, template = 'clone', self.tool.clone
            self.context.layout.ensure(dest.parent)

        argv = self.tool.render(
            template,
            quiet=self.settings.quiet,
            url=url,
            dest=str(dest),
            ssh=self.settings.ssh_command()
        )
        result = self.context.runner.run(argv, env=self._env())

        if not result.ok:
            detail = result.stderr.decode('utf-8', errors='replace').strip()
            raise MirrorFailed(f"{self.tool.name} {action} of {url} failed: {detail}",
                               repository=label, stage=action)

        logger.info("%s %s: %s ok", self.kind, label, action)

    def branches(self, repository: Repository) -> List[str]:
        """
        Find branches below a remote repository directory.

        Returns:
            Sorted branch paths relative to the repository ('.' for the root)

        Raises:
            MirrorFailed: If the remote search fails
        """
        result = self.context.channel.run(
            ['find', repository.remote_path, '-type', 'd', '-path', f'*{self.BRANCH_MARKER}']
        )
        if not result.ok:
            raise MirrorFailed(f"Cannot list branches of {repository.remote_path}",
                               repository=repository.name, stage='enumerate')

        branches = []
        for line in result.lines():
            if not line.endswith(self.BRANCH_MARKER):
                continue
            branch_dir = line[:-len(self.BRANCH_MARKER)]
            branches.append(os.path.relpath(branch_dir, repository.remote_path))

        return sorted(branches)

    def _replicate_tree(self, repository: Repository):
        branches = self.branches(repository)

        if '.' not in branches and not repository.local_path.exists():
            # Root is a shared repository: recreate it so branches share storage
            result = self.context.runner.run(['bzr', 'init-repo', '--no-trees', str(repository.local_path)])
            if not result.ok:
                raise MirrorFailed(f"Cannot create shared repository {repository.local_path}",
                                   repository=repository.name, stage='clone')

        for branch in branches:
            if branch == '.':
                self._mirror(repository.name, repository.remote_path, repository.local_path)
            else:
                self._mirror(
                    f"{repository.name}/{branch}",
                    f"{repository.remote_path}/{branch}",
                    repository.local_path / branch
                )


# Native tooling of dump-only kinds
DUMP_TOOLING = {
    'svn': SvnTooling,
}


@StrategyRegistry.register(*DUMP_TOOLING)
class DumpOnlyStrategy(ReplicationStrategy):
    """
    Dump, restore-verify and rotate via DumpVerifyPipeline.
    """

    def __init__(self, kind: str, settings: BackupSettings, context: BackupContext):
        super().__init__(kind, settings, context)
        tooling = DUMP_TOOLING[kind](settings, context.channel, context.runner)
        self.pipeline = DumpVerifyPipeline(
            tooling,
            context.compressor,
            context.layout,
            scratch_dir=settings.remote_scratch_dir
        )

    @property
    def extension(self) -> str:
        return self.context.compressor.extension

    def replicate(self, repository: Repository):
        return self.pipeline.run(repository)
