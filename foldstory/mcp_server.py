#!/usr/bin/env python3
"""Foldstory MCP Server: structural search and story building."""

import json
import logging
import sys
from typing import Optional

from mcp.server.fastmcp import FastMCP

from foldstory.config import Config, load_config
from foldstory.engine import MemoryEngine
from foldstory.errors import FoldstoryError
from foldstory.mapping import IdentifierResolver, determine_input_type
from foldstory.models import SearchResult
from foldstory.story import build_story as _build_story
from foldstory.story import to_snapshot_sequence
from foldstory.sync import SyncEngine

mcp = FastMCP("foldstory")
logger = logging.getLogger(__name__)

# Redirect all logging to stderr so stdout stays clean for MCP stdio transport
logging.basicConfig(
    stream=sys.stderr,
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

_config: Config | None = None


def _get_config() -> Config:
    global _config
    if _config is None:
        _config = load_config()
    return _config


@mcp.tool()
async def search_structures(identifier: str, limit: Optional[int] = None) -> str:
    """Search for structures similar to a PDB ID or UniProt accession. Returns ranked results and scene keys."""
    config = _get_config()
    sync = SyncEngine(config, engine=MemoryEngine(), preload=False)
    sync.start()
    try:
        await sync.search(identifier, limit=limit)
        await sync.queue.join()
    finally:
        sync.close()

    state = sync.state
    if state.validation_error:
        return json.dumps({"error": state.validation_error})
    return json.dumps({
        "query": identifier,
        "results": [r.model_dump() for r in state.results],
        "scenes": [s.key for s in state.story.scenes] if state.story else [],
        "active_scene_key": state.active_scene_key,
    })


@mcp.tool()
async def resolve_identifier(identifier: str) -> str:
    """Classify an identifier as pdb/uniprot/invalid and map it to a UniProt accession."""
    input_type = determine_input_type(identifier)
    try:
        uniprot_id = await IdentifierResolver(_get_config().mapping).resolve_uniprot_id(identifier)
    except (FoldstoryError, ValueError) as e:
        return json.dumps({"input_type": input_type.value, "error": str(e)})
    return json.dumps({"input_type": input_type.value, "uniprot_id": uniprot_id})


@mcp.tool()
def build_story(query: str, results_json: str) -> str:
    """Build a snapshot sequence from a JSON list of search results."""
    try:
        results = [SearchResult.model_validate(r) for r in json.loads(results_json)]
        story = _build_story(query, results, _get_config().story)
        return json.dumps(to_snapshot_sequence(story).to_dict())
    except (FoldstoryError, ValueError, TypeError) as e:
        return json.dumps({"error": str(e)})


@mcp.tool()
async def get_structure_metadata(uniprot_id: str) -> str:
    """Fetch AlphaFold prediction metadata for a UniProt accession."""
    try:
        metadata = await IdentifierResolver(_get_config().mapping).get_metadata(uniprot_id)
        return json.dumps(metadata.model_dump(), default=str)
    except (FoldstoryError, ValueError) as e:
        return json.dumps({"error": str(e)})


if __name__ == "__main__":
    mcp.run()
