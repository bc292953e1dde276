"""CLI entry point for foldstory."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from foldstory.config import Config, load_config
from foldstory.engine import MemoryEngine
from foldstory.errors import FoldstoryError
from foldstory.mapping import IdentifierResolver, determine_input_type
from foldstory.models import InputType, ProgressInfo, ProgressStage, SearchResponse, SearchResult
from foldstory.story import build_story, to_snapshot_sequence
from foldstory.sync import SyncEngine


def _print_progress(progress: ProgressInfo | None) -> None:
    if progress is None:
        return
    if progress.stage == ProgressStage.QUEUED and progress.queue_position is not None:
        status = f"Queue position: {progress.queue_position}"
    else:
        status = progress.stage.value.capitalize()
    line = f"  [{progress.attempt}/{progress.max_attempts}] {status}"
    if progress.message:
        line += f" - {progress.message}"
    print(line, file=sys.stderr)


def _load_results(path: Path) -> list[SearchResult]:
    raw = json.loads(path.read_text())
    if isinstance(raw, list):
        return [SearchResult.model_validate(r) for r in raw]
    return SearchResponse.model_validate(raw).results or []


async def _search(args: argparse.Namespace, config: Config) -> int:
    engine = MemoryEngine()
    sync = SyncEngine(config, engine=engine, preload=False)
    sync.start()
    try:
        with sync.watch("progress", _print_progress, emit_current=False):
            await sync.search(
                args.identifier,
                limit=args.limit,
                superposition=not args.no_superposition,
            )
        await sync.queue.join()
    finally:
        sync.close()

    state = sync.state
    if state.validation_error:
        print(f"Error: {state.validation_error}")
        return 1

    if args.json:
        print(json.dumps([r.model_dump() for r in state.results], indent=2))
        return 0

    print(f"{len(state.results)} results for {args.identifier}:")
    for i, r in enumerate(state.results, 1):
        print(
            f"  {i:>2}. {r.object_id:<12} TM-score {r.tm_score:.4f}  "
            f"RMSD {r.rmsd:.2f}  aligned {r.aligned_percentage * 100:.1f}%"
        )
    print(f"\nActive scene: {state.active_scene_key} (viewer: {engine.current_key})")
    return 0


def _story(args: argparse.Namespace, config: Config) -> int:
    results = _load_results(Path(args.results))
    story = build_story(args.query, results, config.story, strict=args.strict or None)
    payload = json.dumps(to_snapshot_sequence(story).to_dict(), indent=2)
    if args.output:
        Path(args.output).write_text(payload)
        print(f"Wrote {len(story.scenes)} scenes to {args.output}")
    else:
        print(payload)
    return 0


async def _resolve(args: argparse.Namespace, config: Config) -> int:
    input_type = determine_input_type(args.identifier)
    print(f"{args.identifier}: {input_type.value}")
    if input_type == InputType.INVALID:
        return 1
    uniprot_id = await IdentifierResolver(config.mapping).resolve_uniprot_id(args.identifier)
    print(f"UniProt: {uniprot_id}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Structural search stories")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    sub = parser.add_subparsers(dest="command")

    # search command
    search_parser = sub.add_parser("search", help="Search for similar structures")
    search_parser.add_argument("identifier", help="PDB ID or UniProt accession")
    search_parser.add_argument("--limit", type=int, default=None, help="Maximum number of results")
    search_parser.add_argument(
        "--no-superposition", action="store_true",
        help="Do not request superposition transforms",
    )
    search_parser.add_argument("--json", action="store_true", help="Print results as JSON")

    # story command
    story_parser = sub.add_parser("story", help="Build a snapshot sequence from saved results")
    story_parser.add_argument("results", help="JSON file with a result list or search response")
    story_parser.add_argument("--query", required=True, help="Query UniProt accession")
    story_parser.add_argument("--output", default=None, help="Write JSON here instead of stdout")
    story_parser.add_argument(
        "--strict", action="store_true",
        help="Fail on duplicate object ids instead of dropping them",
    )

    # resolve command
    resolve_parser = sub.add_parser("resolve", help="Classify an identifier and map it to UniProt")
    resolve_parser.add_argument("identifier", help="PDB ID or UniProt accession")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config)

    try:
        if args.command == "search":
            return asyncio.run(_search(args, config))
        elif args.command == "story":
            return _story(args, config)
        elif args.command == "resolve":
            return asyncio.run(_resolve(args, config))
        else:
            parser.print_help()
            return 0
    except (FoldstoryError, ValueError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
