"""Git worktree lifecycle and reconciliation."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path, PurePath

from ..git import CommandLog, GitCommandError, GitRunner
from ..locks import MutexRegistry, workspace_lock_key
from .diffs import GitDiffCapture
from .models import (
    BaseBranchNotFoundError,
    BranchInfo,
    ConflictReport,
    ConflictsDetectedError,
    DetachedHeadError,
    NothingToRebaseError,
    NothingToSquashError,
    ReconcileError,
    WorkspaceInUseError,
    WorkspaceInfo,
    WorkspaceStatus,
    WorktreeEntry,
)

logger = logging.getLogger(__name__)

_MISSING_WORKTREE_MARKERS = (
    "is not a working tree",
    "does not exist",
    "No such file or directory",
)


class WorkspaceManager:
    """Create, remove, list and reconcile workspaces bound 1:1 to a branch."""

    def __init__(
        self,
        git: GitRunner,
        locks: MutexRegistry,
        *,
        default_folder: str = "worktrees",
    ) -> None:
        self._git = git
        self._locks = locks
        self._default_folder = default_folder
        self.diffs = GitDiffCapture(git)

    def workspace_root(self, project_path: Path | str, folder: str | None = None) -> Path:
        folder_name = folder or self._default_folder
        if PurePath(folder_name).is_absolute():
            return Path(folder_name)
        return Path(project_path) / folder_name

    def workspace_path(self, project_path: Path | str, name: str, folder: str | None = None) -> Path:
        return self.workspace_root(project_path, folder) / name

    async def _is_repository_root(self, project_path: Path) -> bool:
        result = await self._git.run("rev-parse", "--show-toplevel", cwd=project_path, check=False)
        if not result.ok:
            return False
        return Path(result.stdout.strip()).resolve() == project_path.resolve()

    async def _branch_exists(self, cwd: Path | str, branch: str) -> bool:
        return await self._git.succeeds("show-ref", "--verify", "--quiet", f"refs/heads/{branch}", cwd=cwd)

    async def _current_branch(self, cwd: Path | str) -> str | None:
        result = await self._git.run("branch", "--show-current", cwd=cwd, check=False)
        name = result.stdout.strip()
        return name if result.ok and name else None

    async def ensure_repository(self, project_path: Path | str) -> None:
        """Initialize the project as a git repository with at least one commit."""

        root = Path(project_path)
        root.mkdir(parents=True, exist_ok=True)
        if not await self._is_repository_root(root):
            logger.info("Initializing git repository", extra={"project_path": str(root)})
            await self._git.run("init", cwd=root)
        if not await self._git.succeeds("rev-parse", "--verify", "--quiet", "HEAD", cwd=root):
            logger.info("Creating initial commit", extra={"project_path": str(root)})
            await self._git.run("commit", "--allow-empty", "-m", "Initial commit", cwd=root)

    async def create(
        self,
        project_path: Path | str,
        name: str,
        *,
        branch: str | None = None,
        base_branch: str | None = None,
        folder: str | None = None,
    ) -> WorkspaceInfo:
        """Materialize a workspace and capture the commit it diverges from."""

        root = Path(project_path)
        path = self.workspace_path(root, name, folder)
        branch_name = branch or name

        async with self._locks.acquire(workspace_lock_key(str(path))):
            await self.ensure_repository(root)
            path.parent.mkdir(parents=True, exist_ok=True)

            if path.exists():
                if not await self._is_repository_root(path):
                    logger.warning("Removing stale workspace directory", extra={"path": str(path)})
                    shutil.rmtree(path)
                elif await self._git.output("status", "--porcelain", cwd=path):
                    raise WorkspaceInUseError(str(path))

            # A previous attempt may have left a clean registered worktree behind.
            await self._git.run("worktree", "remove", "--force", str(path), cwd=root, check=False)
            await self._git.run("worktree", "prune", cwd=root, check=False)

            if await self._branch_exists(root, branch_name):
                await self._git.run("worktree", "add", str(path), branch_name, cwd=root)
                base_commit = await self._git.output("rev-parse", f"refs/heads/{branch_name}", cwd=root)
            else:
                if base_branch and not await self._branch_exists(root, base_branch):
                    raise BaseBranchNotFoundError(base_branch)
                base_ref = base_branch or "HEAD"
                base_commit = await self._git.output("rev-parse", "--verify", f"{base_ref}^{{commit}}", cwd=root)
                await self._git.run("worktree", "add", "-b", branch_name, str(path), base_commit, cwd=root)

            resolved_base = base_branch or await self._current_branch(root) or "HEAD"

        logger.info(
            "Created workspace",
            extra={"path": str(path), "branch": branch_name, "base_commit": base_commit, "base_branch": resolved_base},
        )
        return WorkspaceInfo(path=str(path), branch=branch_name, base_commit=base_commit, base_branch=resolved_base)

    async def remove(
        self,
        project_path: Path | str,
        name: str,
        *,
        folder: str | None = None,
        delete_branch: bool = False,
    ) -> None:
        """Remove a workspace. Removing an absent workspace succeeds."""

        root = Path(project_path)
        path = self.workspace_path(root, name, folder)
        async with self._locks.acquire(workspace_lock_key(str(path))):
            result = await self._git.run("worktree", "remove", "--force", str(path), cwd=root, check=False)
            if not result.ok:
                message = result.stderr or result.stdout
                if not any(marker in message for marker in _MISSING_WORKTREE_MARKERS):
                    raise GitCommandError(
                        result.args,
                        cwd=root,
                        returncode=result.returncode,
                        stdout=result.stdout,
                        stderr=result.stderr,
                    )
                logger.info("Workspace already absent", extra={"path": str(path)})
                await self._git.run("worktree", "prune", cwd=root, check=False)
            if delete_branch:
                await self._git.run("branch", "-D", name, cwd=root, check=False)

    async def list_workspaces(self, project_path: Path | str) -> list[WorktreeEntry]:
        output = await self._git.output("worktree", "list", "--porcelain", cwd=project_path)
        entries: list[WorktreeEntry] = []
        current: dict[str, str] = {}
        for line in output.splitlines() + [""]:
            if line.startswith("worktree "):
                current = {"path": line[len("worktree "):]}
            elif line.startswith("branch "):
                current["branch"] = line[len("branch "):].removeprefix("refs/heads/")
            elif not line.strip():
                if current.get("path") and current.get("branch"):
                    entries.append(WorktreeEntry(path=current["path"], branch=current["branch"]))
                current = {}
        return entries

    async def list_branches(self, project_path: Path | str) -> list[BranchInfo]:
        """Local branches, workspace-bound ones first, then alphabetical."""

        output = await self._git.output(
            "for-each-ref", "--format=%(refname:short)", "refs/heads", cwd=project_path
        )
        current = await self._current_branch(project_path)
        workspace_branches = {entry.branch for entry in await self.list_workspaces(project_path)}
        # The project root's own checkout is not a workspace.
        if current:
            workspace_branches.discard(current)
        branches = [
            BranchInfo(name=name, is_current=name == current, has_workspace=name in workspace_branches)
            for name in (line.strip() for line in output.splitlines())
            if name
        ]
        branches.sort(key=lambda info: (not info.has_workspace, info.name))
        return branches

    async def get_main_branch(self, project_path: Path | str) -> str:
        """Return the branch checked out in the project root."""

        branch = await self._current_branch(project_path)
        if branch is None:
            raise DetachedHeadError(
                f"Cannot determine main branch: repository at {project_path} is in detached HEAD state"
            )
        return branch

    async def has_changes_to_rebase(self, workspace_path: Path | str, base_branch: str) -> bool:
        """True when the base branch has commits the workspace does not."""

        result = await self._git.run("rev-list", "--count", f"HEAD..{base_branch}", cwd=workspace_path, check=False)
        if not result.ok:
            return False
        return int(result.stdout.strip() or 0) > 0

    async def _changed_files(self, cwd: Path | str, merge_base: str, ref: str) -> set[str]:
        output = await self._git.output("diff", "--name-only", merge_base, ref, cwd=cwd)
        return {line for line in output.splitlines() if line}

    async def _commits(self, cwd: Path | str, merge_base: str, ref: str) -> list[str]:
        output = await self._git.output("log", "--format=%h %s", f"{merge_base}..{ref}", cwd=cwd)
        return [line for line in output.splitlines() if line]

    async def _simulate_merge(self, cwd: Path | str, merge_base: str, base_branch: str) -> bool | None:
        """Run a tree-only merge. Returns True on conflicts, None if unsupported."""

        result = await self._git.run("merge-tree", "--write-tree", "HEAD", base_branch, cwd=cwd, check=False)
        if result.returncode in (0, 1):
            return result.returncode == 1 or "CONFLICT" in result.stdout

        legacy = await self._git.run("merge-tree", merge_base, "HEAD", base_branch, cwd=cwd, check=False)
        if legacy.ok:
            return "<<<<<<<" in legacy.stdout
        logger.warning(
            "merge-tree unavailable, falling back to file intersection",
            extra={"cwd": str(cwd), "output": (legacy.stderr or result.stderr)[:200]},
        )
        return None

    async def detect_conflicts(self, workspace_path: Path | str, base_branch: str) -> ConflictReport:
        """Predict whether rebasing onto ``base_branch`` would conflict.

        Never touches the working tree, the index or any branch pointer.
        """

        merge_base = await self._git.output("merge-base", "HEAD", base_branch, cwd=workspace_path)
        conflicted = await self._simulate_merge(workspace_path, merge_base, base_branch)
        if conflicted is False:
            return ConflictReport(has_conflicts=False, can_auto_merge=True)

        ours = await self._changed_files(workspace_path, merge_base, "HEAD")
        theirs = await self._changed_files(workspace_path, merge_base, base_branch)
        overlap = sorted(ours & theirs)
        ours_commits = await self._commits(workspace_path, merge_base, "HEAD")
        theirs_commits = await self._commits(workspace_path, merge_base, base_branch)

        if conflicted is None:
            return ConflictReport(
                has_conflicts=bool(overlap),
                can_auto_merge=not overlap,
                conflicting_files=overlap,
                ours_commits=ours_commits if overlap else [],
                theirs_commits=theirs_commits if overlap else [],
                method="file-intersection",
            )
        return ConflictReport(
            has_conflicts=True,
            can_auto_merge=False,
            conflicting_files=overlap,
            ours_commits=ours_commits,
            theirs_commits=theirs_commits,
        )

    async def rebase_main_into_workspace(
        self,
        workspace_path: Path | str,
        main_branch: str,
        *,
        check_conflicts: bool = True,
    ) -> None:
        """Rebase the workspace branch onto the local main branch."""

        path = Path(workspace_path)
        async with self._locks.acquire(workspace_lock_key(str(path))):
            if check_conflicts:
                report = await self.detect_conflicts(path, main_branch)
                if report.has_conflicts:
                    raise ConflictsDetectedError(report)
            log = CommandLog()
            try:
                await self._git.run("rebase", main_branch, cwd=path, log=log)
            except GitCommandError as exc:
                raise ReconcileError(
                    f"Failed to rebase {main_branch} into workspace",
                    commands=log.commands,
                    output=exc.output or log.last_output,
                    working_directory=str(path),
                ) from exc

    async def abort_rebase(self, workspace_path: Path | str) -> None:
        result = await self._git.run("rebase", "--abort", cwd=workspace_path, check=False)
        if not result.ok and "No rebase in progress" not in result.stderr:
            raise ReconcileError(
                "Failed to abort rebase",
                commands=[f"git rebase --abort (in {workspace_path})"],
                output=result.output,
                working_directory=str(workspace_path),
            )

    async def squash_and_rebase_to_main(
        self,
        project_path: Path | str,
        workspace_path: Path | str,
        main_branch: str,
        commit_message: str,
    ) -> None:
        """Squash the workspace commits into one and move main onto it."""

        root = Path(project_path)
        path = Path(workspace_path)
        async with self._locks.acquire(workspace_lock_key(str(path))):
            log = CommandLog()
            try:
                branch = await self._git.output("branch", "--show-current", cwd=path, log=log)
                merge_base = await self._git.output("merge-base", main_branch, "HEAD", cwd=path, log=log)
                commits = await self._git.output("log", "--oneline", f"{merge_base}..HEAD", cwd=path, log=log)
                if not commits:
                    raise NothingToSquashError(
                        f"No commits to squash. The branch is already up to date with {main_branch}.",
                        commands=log.commands,
                        output=log.last_output,
                        working_directory=str(path),
                        project_path=str(root),
                    )
                await self._git.run("reset", "--soft", merge_base, cwd=path, log=log)
                await self._git.run("commit", "-m", commit_message, cwd=path, log=log)
                await self._git.run("checkout", main_branch, cwd=root, log=log)
                await self._git.run("rebase", branch, cwd=root, log=log)
            except GitCommandError as exc:
                raise ReconcileError(
                    f"Failed to squash and rebase workspace to {main_branch}",
                    commands=log.commands,
                    output=exc.output or log.last_output,
                    working_directory=str(path),
                    project_path=str(root),
                ) from exc
        logger.info("Squashed workspace into main", extra={"workspace": str(path), "main_branch": main_branch})

    async def rebase_to_main(
        self,
        project_path: Path | str,
        workspace_path: Path | str,
        main_branch: str,
    ) -> None:
        """Move main onto the workspace branch, preserving every commit."""

        root = Path(project_path)
        path = Path(workspace_path)
        async with self._locks.acquire(workspace_lock_key(str(path))):
            log = CommandLog()
            try:
                branch = await self._git.output("branch", "--show-current", cwd=path, log=log)
                commits = await self._git.output("log", "--oneline", f"{main_branch}..HEAD", cwd=path, log=log)
                if not commits:
                    raise NothingToRebaseError(
                        f"No commits to rebase. The branch is already up to date with {main_branch}.",
                        commands=log.commands,
                        output=log.last_output,
                        working_directory=str(path),
                        project_path=str(root),
                    )
                await self._git.run("checkout", main_branch, cwd=root, log=log)
                await self._git.run("rebase", branch, cwd=root, log=log)
            except GitCommandError as exc:
                raise ReconcileError(
                    f"Failed to rebase workspace to {main_branch}",
                    commands=log.commands,
                    output=exc.output or log.last_output,
                    working_directory=str(path),
                    project_path=str(root),
                ) from exc
        logger.info("Rebased workspace into main", extra={"workspace": str(path), "main_branch": main_branch})

    @staticmethod
    def generate_rebase_commands(main_branch: str) -> list[str]:
        return [f"git rebase {main_branch}"]

    @staticmethod
    def generate_squash_commands(main_branch: str, branch: str) -> list[str]:
        return [
            f"git merge-base {main_branch} HEAD",
            "git reset --soft <base-commit>",
            'git commit -m "Squashed commit message"',
            f"git checkout {main_branch}",
            f"git rebase {branch}",
        ]

    async def status(self, workspace_path: Path | str, base_branch: str, base_commit: str | None) -> WorkspaceStatus:
        counts = await self._git.output(
            "rev-list", "--left-right", "--count", f"{base_branch}...HEAD", cwd=workspace_path
        )
        behind_raw, _, ahead_raw = counts.partition("\t")
        porcelain = await self._git.run("status", "--porcelain", cwd=workspace_path)
        lines = [line for line in porcelain.stdout.splitlines() if line]
        stats = await self.diffs.stats_since(workspace_path, base_commit or base_branch)
        return WorkspaceStatus(
            ahead=int(ahead_raw.strip() or 0),
            behind=int(behind_raw.strip() or 0),
            has_uncommitted_changes=any(not line.startswith("??") for line in lines),
            has_untracked_files=any(line.startswith("??") for line in lines),
            stats=stats,
        )


__all__ = ["WorkspaceManager"]
