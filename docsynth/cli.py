"""CLI entrypoints for docsynth commands."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Sequence, Tuple

from .config import ConfigError, DocSynthConfig, load_config
from .errors import DocSynthError
from .export import write_document
from .logging import configure_logging
from .models import Notification, RepositoryId, TriState
from .workspace import Workspace


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_config_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=argparse.SUPPRESS if suppress_default else None,
        help="Path to .docsynth.yml or the directory containing it.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docsynth",
        description="Generate technical documentation from selected files of GitHub repositories.",
    )
    _add_verbose_option(parser)
    _add_config_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    tree_parser = subparsers.add_parser(
        "tree",
        help="List one directory level of a repository.",
    )
    _add_verbose_option(tree_parser, suppress_default=True)
    _add_config_option(tree_parser, suppress_default=True)
    tree_parser.add_argument("repository", help="Repository in owner/name format.")
    tree_parser.add_argument(
        "--path",
        default=None,
        help="Directory to list (defaults to the repository root).",
    )

    generate_parser = subparsers.add_parser(
        "generate",
        help="Summarize the selected files and synthesize one document.",
    )
    _add_verbose_option(generate_parser, suppress_default=True)
    _add_config_option(generate_parser, suppress_default=True)
    generate_parser.add_argument(
        "repositories",
        nargs="+",
        help="One or more repositories in owner/name format.",
    )
    generate_parser.add_argument(
        "--file",
        action="append",
        default=[],
        metavar="[REPO:]PATH",
        help="Select a single file. May be repeated.",
    )
    generate_parser.add_argument(
        "--folder",
        action="append",
        default=[],
        metavar="[REPO:]PATH",
        help="Select every file below a directory. May be repeated.",
    )
    generate_parser.add_argument(
        "--all",
        action="store_true",
        help="Select every file in every repository.",
    )
    generate_parser.add_argument(
        "--goal",
        default=None,
        help="Goal prompt guiding the final document.",
    )
    generate_parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the document to this file or directory instead of stdout.",
    )

    settings_parser = subparsers.add_parser(
        "settings",
        help="Store API credentials in the local cache.",
    )
    _add_verbose_option(settings_parser, suppress_default=True)
    _add_config_option(settings_parser, suppress_default=True)
    settings_parser.add_argument("--github-token", default=None, help="GitHub API token.")
    settings_parser.add_argument("--gemini-key", default=None, help="Gemini API key.")

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP service.",
    )
    _add_verbose_option(serve_parser, suppress_default=True)
    _add_config_option(serve_parser, suppress_default=True)
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for docsynth commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose))

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        parser.exit(1, f"{exc}\n")
    configure_logging(
        verbose=bool(args.verbose),
        level=config.logging.level,
        log_file=config.logging.file,
    )

    if args.command == "tree":
        try:
            lines = asyncio.run(_run_tree(config, args.repository, args.path))
        except DocSynthError as exc:
            parser.exit(1, f"docsynth tree failed: {exc}\n")
        print("\n".join(lines))
    elif args.command == "generate":
        try:
            asyncio.run(_run_generate(config, args))
        except DocSynthError as exc:
            parser.exit(1, f"docsynth generate failed: {exc}\nRun with --verbose for more details.\n")
        except ValueError as exc:
            parser.exit(2, f"{exc}\n")
    elif args.command == "settings":
        if args.github_token is None and args.gemini_key is None:
            parser.exit(2, "Nothing to store. Pass --github-token and/or --gemini-key.\n")
        asyncio.run(_run_settings(config, args.github_token, args.gemini_key))
        print("Settings saved.")
    elif args.command == "serve":  # pragma: no cover - integration path
        from .service.app import run_service

        run_service(host=args.host, port=args.port, config=config)
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")


async def _run_tree(config: DocSynthConfig, repository: str, path: str | None) -> List[str]:
    repo = RepositoryId.parse(repository)
    path = (path or "").strip("/") or None
    async with Workspace(config) as workspace:
        await workspace.add_repository(repo)
        nodes = workspace.tree.roots(repo)
        if path:
            node = await workspace.locate(repo, path)
            if not node.is_dir:
                return [node.path]
            await workspace.expand(repo, node.path)
            node = workspace.tree.find_node(repo, node.path) or node
            nodes = node.children or ()
        cached = workspace.tree.cache_status(repo, path)
        header = f"{repo}:{path or '/'}"
        if cached is not None:
            header += " (cached)" if cached else " (fetched)"
        lines = [header]
        for node in nodes:
            lines.append(f"  {node.name}/" if node.is_dir else f"  {node.name}")
        return lines


async def _run_generate(config: DocSynthConfig, args: argparse.Namespace) -> None:
    async with Workspace(config, on_notify=_print_notification) as workspace:
        repositories: List[RepositoryId] = []
        for value in args.repositories:
            repo = await workspace.add_repository(value)
            if repo is not None:
                repositories.append(repo)

        if args.all:
            for repo in repositories:
                failed = await workspace.selection.select_all(repo, True)
                for path in failed:
                    print(f"warning: could not load {repo}:{path}", file=sys.stderr)
        for target in args.file:
            repo, path = _split_target(target, repositories)
            workspace.selection.select_file(repo, path, True)
        for target in args.folder:
            repo, path = _split_target(target, repositories)
            node = await workspace.locate(repo, path)
            await workspace.selection.select_folder(repo, node, True)
            if workspace.selection.folder_state(repo, node) is not TriState.SELECTED:
                print(f"warning: {repo}:{path} is only partially selected", file=sys.stderr)

        try:
            document = await workspace.generate(args.goal)
        finally:
            for line in workspace.pipeline.transcript:
                print(line, file=sys.stderr)

    if args.output is not None:
        target = write_document(document, args.output)
        print(f"Documentation written to {target}")
    else:
        print(document.text)


async def _run_settings(
    config: DocSynthConfig, github_token: str | None, gemini_key: str | None
) -> None:
    async with Workspace(config) as workspace:
        workspace.set_api_keys(github=github_token, gemini=gemini_key)


def _split_target(
    target: str, repositories: Sequence[RepositoryId]
) -> Tuple[RepositoryId, str]:
    if ":" in target:
        repo_text, path = target.split(":", 1)
        repo = RepositoryId.parse(repo_text)
        if repo not in repositories:
            raise ValueError(f"{repo} is not one of the requested repositories")
    elif len(repositories) == 1:
        repo, path = repositories[0], target
    else:
        raise ValueError(f"'{target}' is ambiguous; use REPO:PATH with several repositories")
    path = path.strip("/")
    if not path:
        raise ValueError(f"'{target}' does not name a path")
    return repo, path


def _print_notification(notification: Notification) -> None:
    if notification.level == "error":
        print(f"error: {notification.title} {notification.description}".rstrip(), file=sys.stderr)


if __name__ == "__main__":
    main(sys.argv[1:])
