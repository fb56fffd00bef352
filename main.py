#!/usr/bin/env python3
"""
Repotree - branch-aware doc/block repository mirrored to git

Main entry point for the Repotree command line. Every command opens the
tree store, runs one service operation and prints its JSON envelope.
"""

import logging
import sys
import json
import argparse
from pathlib import Path
from typing import List

from repotree.config import config
from repotree.database import DatabaseManager
from repotree.models import MAIN_BRANCH, Actor, OperationResult
from repotree.remote import GitHubProvider
from repotree.services import Repotree
from repotree.versioning import VersionManager


def setup_logging():
    """Configure logging for the application."""
    level = getattr(logging, config.get("logging.level", "INFO").upper())
    format_str = config.get("logging.format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = config.log_filename

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_file)
        ]
    )


def render_tree(repotree: Repotree, rid: int, branch: str) -> List[str]:
    """
    Render a branch as indented text lines.

    Args:
        repotree: Services to read from
        rid: Repository id
        branch: Branch to render

    Returns:
        One line per doc and block, children indented under their parent
    """
    db = repotree.db
    docs = db.list_docs(rid, branch)
    blocks = db.list_blocks(rid, branch)
    children = {}
    for doc in docs:
        children.setdefault(doc.parent_did, []).append(doc)
    owned = {}
    for block in blocks:
        owned.setdefault(block.did, []).append(block)

    lines = []
    stack = [(doc, 0) for doc in reversed(children.get(None, []))]
    while stack:
        doc, depth = stack.pop()
        indent = "  " * depth
        lines.append(f"{indent}[doc {doc.did}] {doc.title}")
        for block in owned.get(doc.did, []):
            lines.append(f"{indent}  - [block {block.bid}] {block.title}")
        for child in reversed(children.get(doc.did, [])):
            stack.append((child, depth + 1))
    return lines


def load_json(path: str) -> dict:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def run_command(args, repotree: Repotree) -> OperationResult:
    """Dispatch one parsed command to the matching service."""
    actor = Actor(id=args.user_id, name=args.user_name)

    if args.command == "init-repo":
        repository = repotree.db.create_repository(
            args.title, domain_id=args.domain, description=args.description or ""
        )
        return OperationResult.ok(f"Created repository {repository.rid}",
                                  repository=repository.model_dump(by_alias=True, mode="json"))

    if args.command == "import":
        return repotree.import_directory(args.rid, Path(args.directory), branch=args.branch or MAIN_BRANCH)

    repository = repotree.db.get_repository(args.rid)
    if repository is None:
        return OperationResult.fail(f"Repository not found: {args.rid}")
    branch = getattr(args, "branch", None) or repository.current_branch

    if args.command == "tree":
        lines = render_tree(repotree, args.rid, branch)
        return OperationResult.ok("\n".join(lines), branch=branch)
    if args.command == "create-branch":
        return repotree.branches.create_branch(args.rid, args.name, actor=actor)
    if args.command == "switch-branch":
        return repotree.branches.switch_branch(args.rid, args.name)
    if args.command == "commit":
        return repotree.sync.commit(args.rid, branch, message=args.message, actor=actor)
    if args.command == "push":
        return repotree.sync.push(args.rid, branch, remote_url=args.remote)
    if args.command == "pull":
        return repotree.sync.pull(args.rid, branch, remote_url=args.remote)
    if args.command == "status":
        return repotree.sync.status(args.rid, branch, remote_url=args.remote)
    if args.command == "attach-remote":
        return repotree.sync.attach_remote(args.rid, args.url)
    if args.command == "provision-remote":
        with GitHubProvider() as provider:
            return repotree.sync.provision_remote(args.rid, provider, name=args.name)
    if args.command == "apply":
        return repotree.engine.apply(args.rid, branch, load_json(args.batch_file), actor=actor)
    if args.command == "tool":
        request = load_json(args.request_file)
        request.setdefault("actor", actor.model_dump(by_alias=True))
        return repotree.tools.run(args.rid, request)

    return OperationResult.fail(f"Unknown command: {args.command}")


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Repotree - branch-aware doc/block repository mirrored to git",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-repo --title "Handbook"          # Create repository 1
  python main.py import 1 ./handbook                   # Seed main from a directory
  python main.py create-branch 1 draft                 # Fork 'draft' from main
  python main.py apply 1 batch.json --branch draft     # Apply a structure batch
  python main.py status 1 --remote org/handbook        # Compare with the remote
        """
    )

    parser.add_argument("--db", default=config.database_filename, help="DuckDB database file")
    parser.add_argument("--git-root", default=config.git_root, help="Directory of git working copies")
    parser.add_argument("--user-id", type=int, default=0, help="User id recorded in commit messages")
    parser.add_argument("--user-name", default="unknown", help="User name recorded in commit messages")
    parser.add_argument("--version", action="version", version="Repotree 0.1.0")

    commands = parser.add_subparsers(dest="command", required=True)

    init_repo = commands.add_parser("init-repo", help="Create a repository")
    init_repo.add_argument("--title", required=True)
    init_repo.add_argument("--description")
    init_repo.add_argument("--domain", default="system")

    seed = commands.add_parser("import", help="Replace a branch with the contents of a directory")
    seed.add_argument("rid", type=int)
    seed.add_argument("directory")
    seed.add_argument("--branch")

    tree = commands.add_parser("tree", help="Print the doc/block tree of a branch")
    tree.add_argument("rid", type=int)
    tree.add_argument("--branch")

    for name, help_text in (("create-branch", "Fork a branch from main"),
                            ("switch-branch", "Change the current branch")):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("rid", type=int)
        command.add_argument("name")

    commit = commands.add_parser("commit", help="Commit a branch to git")
    commit.add_argument("rid", type=int)
    commit.add_argument("--branch")
    commit.add_argument("--message", "-m")

    for name, help_text in (("push", "Push a branch to the remote"),
                            ("pull", "Replace a branch with the remote version"),
                            ("status", "Show local and remote status of a branch")):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("rid", type=int)
        command.add_argument("--branch")
        command.add_argument("--remote", help="Remote URL (defaults to the stored remote)")

    attach = commands.add_parser("attach-remote", help="Connect a repository to a remote")
    attach.add_argument("rid", type=int)
    attach.add_argument("url")

    provision = commands.add_parser("provision-remote", help="Create the hosted remote and attach it")
    provision.add_argument("rid", type=int)
    provision.add_argument("--name")

    apply = commands.add_parser("apply", help="Apply a batch JSON file to a branch")
    apply.add_argument("rid", type=int)
    apply.add_argument("batch_file")
    apply.add_argument("--branch")

    tool = commands.add_parser("tool", help="Run a tool request JSON file")
    tool.add_argument("rid", type=int)
    tool.add_argument("request_file")

    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_arguments(argv)
    setup_logging()

    try:
        with DatabaseManager(args.db) as db:
            db.initialize_database()
            repotree = Repotree(db, VersionManager(git_root=args.git_root))
            result = run_command(args, repotree)
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logging.error(f"Command {args.command} failed: {e}")
        result = OperationResult.fail(str(e))

    print(json.dumps(result.model_dump(by_alias=True, mode="json"), indent=2))
    if not result.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
