#!/usr/bin/env python3
"""
codeassist command line entry point.

Streams a review, debug, audit, comparison or documentation request to the
configured model and prints the response as it arrives. Sessions can be
saved as versions and continued later with follow-up questions.

Usage:
    # Review a file
    python scripts/codeassist_cli.py review app.py --language Python --profile security

    # Debug with an error log
    python scripts/codeassist_cli.py debug app.py --error-file traceback.txt

    # Compare two implementations, or walk through a feature merge
    python scripts/codeassist_cli.py compare a.py b.py
    python scripts/codeassist_cli.py merge a.py b.py

    # Save the result and ask follow-ups
    python scripts/codeassist_cli.py review app.py --save "first pass" --chat

    # Versions
    python scripts/codeassist_cli.py versions
    python scripts/codeassist_cli.py export session.json
    python scripts/codeassist_cli.py import session.json

    # Feature flags
    python scripts/codeassist_cli.py flags --set code_audit_mode=true

LLM Provider Selection (automatic):
    - If ANTHROPIC_API_KEY is set -> Uses Anthropic API
    - If OPENAI_API_KEY is set -> Uses OpenAI API
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from codeassist import (
    AssistantConfig,
    AssistantError,
    ConversationSession,
    Decision,
    EventKind,
    FeatureFlags,
    FileBackend,
    Language,
    Mode,
    MultiProviderClient,
    Outcome,
    RequestDispatcher,
    ReviewProfile,
    SessionEvent,
    VersionStore,
)


def build_dispatcher(config: AssistantConfig) -> RequestDispatcher:
    """Create a dispatcher bound to a multi-provider client."""
    client = MultiProviderClient(
        default_model=config.models.core_analysis,
        max_tokens=config.models.max_tokens,
        temperature=config.models.temperature,
    )
    return RequestDispatcher(client)


def print_stream(event: SessionEvent) -> None:
    """Observer printing streamed fragments as they arrive."""
    if event.kind is EventKind.OUTPUT_UPDATED and isinstance(event.payload, str):
        print(event.payload, end="", flush=True)
    elif event.kind is EventKind.ERROR:
        print(f"\n[error] {event.payload}", file=sys.stderr)


async def chat_loop(session: ConversationSession) -> None:
    """Read follow-up questions from stdin until EOF or 'exit'."""
    if session.chat is None:
        session.start_follow_up()
    print("\n\nFollow-up chat. Type 'exit' to leave.")
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, input, "> ")
        if line.strip().lower() in {"exit", "quit"}:
            break
        if not line.strip():
            continue
        reply = await session.send_chat(line)
        print(reply.content)
    if session.chat is not None:
        revisions = len(session.chat.revisions)
        if revisions:
            print(f"{revisions} revision(s) captured in this chat.")
        session.exit_chat()


async def run_merge(session: ConversationSession) -> Outcome:
    """Fetch the feature matrix, ask for a decision per feature, then finalize."""
    outcome = await session.request_feature_matrix()
    if outcome is not Outcome.COMPLETED:
        return outcome

    loop = asyncio.get_running_loop()
    for feature in session.feature_matrix or []:
        print(f"\n{feature.name} [{feature.source.value}]\n  {feature.description}")
        while True:
            answer = (await loop.run_in_executor(None, input, "  include / remove? [i/r] ")).strip().lower()
            if answer in {"i", "include"}:
                session.decide(feature.name, Decision.INCLUDE)
                break
            if answer in {"r", "remove"}:
                session.decide(feature.name, Decision.REMOVE)
                break
    print()
    return await session.finalize_decisions()


def parse_flag(assignment: str) -> tuple[str, bool]:
    name, _, value = assignment.partition("=")
    return name.strip(), value.strip().lower() in {"1", "true", "yes", "on"}


async def run(args: argparse.Namespace) -> int:
    config = AssistantConfig.load()
    backend = FileBackend(config.storage.path)
    flags = FeatureFlags.load(backend)
    store = VersionStore(backend, config=config, flags=flags)

    if args.command == "flags":
        for assignment in args.set or []:
            name, value = parse_flag(assignment)
            try:
                flags.set(name, value)
            except KeyError as e:
                print(f"Error: {e.args[0]}", file=sys.stderr)
                return 1
        if args.set:
            flags.save(backend)
        for name, value in vars(flags).items():
            print(f"{name}: {value}")
        return 0

    if args.command == "versions":
        for version in store.list():
            print(f"{version.id}  {version.kind:<16} {version.name}")
        return 0

    dispatcher = build_dispatcher(config)

    if args.command == "export":
        if args.version:
            session = store.restore(args.version, dispatcher)
        else:
            session = ConversationSession(dispatcher, config=config, flags=flags)
        Path(args.path).write_bytes(store.export_session(session))
        print(f"Exported {len(store.list())} versions to {args.path}")
        return 0

    if args.command == "import":
        session = store.import_session(Path(args.path).read_bytes(), dispatcher)
        print(f"Imported {len(store.list())} versions; live session in {session.mode.value} mode")
        return 0

    if args.command == "resume":
        session = store.restore(args.version, dispatcher)
        session.subscribe(print_stream)
        if session.output:
            print(session.output)
        await chat_loop(session)
        return 0

    session = ConversationSession(dispatcher, config=config, flags=flags)
    session.subscribe(print_stream)

    language = Language(args.language)
    if args.command in {"compare", "merge"}:
        session.switch_mode(Mode.COMPARISON)
        session.update_inputs(
            language=language,
            code=Path(args.file_a).read_text(),
            code_b=Path(args.file_b).read_text(),
            comparison_goal=args.goal or "",
        )
        outcome = await (session.compare() if args.command == "compare" else run_merge(session))
    else:
        mode = {"review": Mode.REVIEW, "debug": Mode.DEBUG, "audit": Mode.AUDIT, "docs": Mode.REVIEW}[args.command]
        session.switch_mode(mode)
        session.update_inputs(
            language=language,
            code=Path(args.file).read_text(),
            error_context=Path(args.error_file).read_text() if getattr(args, "error_file", None) else None,
            review_profile=ReviewProfile(getattr(args, "profile", "none")),
        )
        outcome = await (session.generate_docs() if args.command == "docs" else session.review())

    print()
    if outcome is not Outcome.COMPLETED:
        print(f"Request {outcome.value}: {session.error or ''}", file=sys.stderr)
        return 1

    for named in session.generated_files:
        print(f"[generated file] {named.name}")

    if args.save:
        version = store.save(session, args.save)
        print(f"Saved version {version.id}")

    if args.chat:
        await chat_loop(session)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Stream code reviews and merges from the configured model",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable info logging")
    sub = parser.add_subparsers(dest="command", required=True)

    languages = [lang.value for lang in Language]

    for name in ("review", "debug", "audit", "docs"):
        p = sub.add_parser(name, help=f"{name} a file")
        p.add_argument("file")
        p.add_argument("--language", "-l", default="Python", choices=languages)
        p.add_argument("--save", help="Save the result as a version with this name")
        p.add_argument("--chat", action="store_true", help="Ask follow-up questions afterwards")
        if name in ("review", "docs"):
            p.add_argument("--profile", default="none", choices=[profile.value for profile in ReviewProfile])
        if name == "debug":
            p.add_argument("--error-file", help="File holding the error output")

    for name in ("compare", "merge"):
        p = sub.add_parser(name, help=f"{name} two implementations")
        p.add_argument("file_a")
        p.add_argument("file_b")
        p.add_argument("--language", "-l", default="Python", choices=languages)
        p.add_argument("--goal", help="What the comparison should optimize for")
        p.add_argument("--save", help="Save the result as a version with this name")
        p.add_argument("--chat", action="store_true", help="Ask follow-up questions afterwards")

    p = sub.add_parser("resume", help="Restore a saved version and continue chatting")
    p.add_argument("version")

    sub.add_parser("versions", help="List saved versions")

    p = sub.add_parser("export", help="Export versions (and optionally a restored version) to a file")
    p.add_argument("path")
    p.add_argument("--version", help="Version to export as the live session")

    p = sub.add_parser("import", help="Replace saved versions from an export file")
    p.add_argument("path")

    p = sub.add_parser("flags", help="Show or change feature flags")
    p.add_argument("--set", action="append", metavar="NAME=BOOL")

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    try:
        sys.exit(asyncio.run(run(args)))
    except AssistantError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
