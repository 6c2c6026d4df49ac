"""Grove MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from grove_mcp.config import GroveSettings
from grove_mcp.sessions import MemorySessionStore, session_status
from grove_mcp.storage import ChromaSessionStore, ChromaStore, ChromaUnavailableError


def load_store(settings: GroveSettings) -> MemorySessionStore:
    try:
        return ChromaSessionStore(ChromaStore(settings.chroma_persist_path))
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)


def cmd_sessions(args: argparse.Namespace) -> None:
    store = load_store(GroveSettings())
    sessions = store.list_sessions(project_id=args.project_id, include_archived=args.include_archived)
    if args.json:
        payload = []
        for session in sessions:
            record = session.to_record()
            record["status"] = session_status(session).value
            payload.append(record)
        print(json.dumps(payload, indent=2))
    else:
        for session in sessions:
            print(f"{session.id} [{session_status(session).value}] {session.name} -> {session.worktree_path}")


def cmd_folders(args: argparse.Namespace) -> None:
    store = load_store(GroveSettings())
    folders = store.list_folders(args.project_id)
    print(json.dumps([folder.to_record() for folder in folders], indent=2))


def cmd_diffs(args: argparse.Namespace) -> None:
    store = load_store(GroveSettings())
    diffs = store.list_execution_diffs(args.session_id)
    payload = []
    for diff in diffs:
        record = diff.to_record()
        if args.stats_only:
            record.pop("git_diff")
        payload.append(record)
    print(json.dumps(payload, indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    store = load_store(GroveSettings())
    sessions = store.list_sessions(include_archived=True)
    folders = store.list_folders()

    status_counts: dict[str, int] = {}
    archived = 0
    diff_count = 0
    additions = 0
    deletions = 0
    for session in sessions:
        if session.archived:
            archived += 1
            continue
        status = session_status(session).value
        status_counts[status] = status_counts.get(status, 0) + 1
        for diff in store.list_execution_diffs(session.id):
            diff_count += 1
            additions += diff.additions
            deletions += diff.deletions

    metrics = {
        "sessions_total": len(sessions),
        "sessions_archived": archived,
        "status_counts": status_counts,
        "folders_total": len(folders),
        "execution_diffs_total": diff_count,
        "additions_total": additions,
        "deletions_total": deletions,
    }
    print(json.dumps(metrics, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Grove MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_sessions = sub.add_parser("sessions", help="List replayed sessions")
    p_sessions.add_argument("--project-id")
    p_sessions.add_argument("--include-archived", action="store_true")
    p_sessions.add_argument("--json", action="store_true", help="Output JSON")
    p_sessions.set_defaults(func=cmd_sessions)

    p_folders = sub.add_parser("folders", help="List batch folders")
    p_folders.add_argument("--project-id")
    p_folders.set_defaults(func=cmd_folders)

    p_diffs = sub.add_parser("diffs", help="List execution diffs for a session")
    p_diffs.add_argument("--session-id", required=True)
    p_diffs.add_argument("--stats-only", action="store_true", help="Omit the diff text")
    p_diffs.set_defaults(func=cmd_diffs)

    p_metrics = sub.add_parser("metrics", help="Show session/folder/diff counts")
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
