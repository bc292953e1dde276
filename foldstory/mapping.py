"""Identifier resolution: PDB / UniProt detection, PDB→UniProt mapping, AlphaFold metadata."""

import logging
import re
from typing import Any

import httpx
from pydantic import BaseModel, Field

from foldstory.config import MappingConfig
from foldstory.errors import NoMappingFound, ValidationError
from foldstory.models import InputType

logger = logging.getLogger(__name__)

PDB_ID_RE = re.compile(r"^[1-9][A-Z0-9]{3}$", re.IGNORECASE)
UNIPROT_ID_RE = re.compile(
    r"^([OPQ][0-9][A-Z0-9]{3}[0-9]|[A-NR-Z][0-9]([A-Z][A-Z0-9]{2}[0-9]){1,2})$",
    re.IGNORECASE,
)

INVALID_INPUT_MESSAGE = "Invalid input: Please enter a valid PDB ID or UniProt ID"


class PdbUniprotMapping(BaseModel):
    original_pdb_id: str
    uniprot_ids: list[str] = Field(default_factory=list)


class StructureMetadata(BaseModel):
    accession: str
    entry_id: str | None = None
    sequence_checksum: str | None = None
    sequence_length: int | None = None
    segment_start: int | None = None
    segment_end: int | None = None
    structures: list[dict[str, Any]] = Field(default_factory=list)


def determine_input_type(value: str) -> InputType:
    """Classify a raw identifier by shape alone."""
    value = value.strip()
    if PDB_ID_RE.match(value):
        return InputType.PDB
    if UNIPROT_ID_RE.match(value):
        return InputType.UNIPROT
    return InputType.INVALID


class IdentifierResolver:
    """Turns user input into the UniProt accession the search service expects."""

    def __init__(
        self,
        config: MappingConfig | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or MappingConfig()
        self._http = http

    async def _get_json(self, url: str) -> tuple[int, Any]:
        headers = {"Accept": "application/json"}
        if self._http is not None:
            response = await self._http.get(url, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.config.request_timeout_s) as client:
                response = await client.get(url, headers=headers)
        if not response.is_success:
            return response.status_code, None
        return response.status_code, response.json()

    async def get_pdb_to_uniprot_mapping(self, pdb_id: str) -> PdbUniprotMapping:
        key = pdb_id.strip().lower()
        url = f"{self.config.pdbe_api_url.rstrip('/')}/{key}"
        logger.debug("Fetching UniProt mapping for %s from %s", pdb_id, url)

        try:
            status, data = await self._get_json(url)
        except (httpx.HTTPError, ValueError) as e:
            raise NoMappingFound(f"Failed to map PDB ID {pdb_id} to UniProt ID: {e}") from e

        if data is None:
            raise NoMappingFound(
                f"Failed to map PDB ID {pdb_id} to UniProt ID: HTTP {status}"
            )

        entry = data.get(key) if isinstance(data, dict) else None
        uniprot = entry.get("UniProt") if isinstance(entry, dict) else None
        if not uniprot:
            raise NoMappingFound(f"No UniProt mapping found for PDB ID {pdb_id}")

        ids = list(uniprot.keys())
        logger.info("Found UniProt IDs for %s: %s", pdb_id, ids)
        return PdbUniprotMapping(original_pdb_id=pdb_id, uniprot_ids=ids)

    async def resolve_uniprot_id(self, value: str) -> str:
        """Validate input and return a UniProt accession for it.

        Raises:
            ValidationError: the input is neither a PDB nor a UniProt id.
            NoMappingFound: a PDB id with no UniProt linkage.
        """
        value = value.strip()
        input_type = determine_input_type(value)
        if input_type == InputType.INVALID:
            raise ValidationError(INVALID_INPUT_MESSAGE)
        if input_type == InputType.UNIPROT:
            return value.upper()

        mapping = await self.get_pdb_to_uniprot_mapping(value)
        return mapping.uniprot_ids[0]

    async def get_metadata(self, uniprot_id: str) -> StructureMetadata:
        url = f"{self.config.alphafold_api_url.rstrip('/')}/prediction/{uniprot_id}"
        logger.debug("Fetching metadata for %s from %s", uniprot_id, url)

        try:
            _, structures = await self._get_json(url)
        except (httpx.HTTPError, ValueError) as e:
            raise NoMappingFound(f"Failed to fetch metadata for UniProt ID {uniprot_id}: {e}") from e

        if not isinstance(structures, list) or not structures:
            raise NoMappingFound(f"No metadata found for UniProt ID {uniprot_id}")

        first = structures[0]
        sequence = first.get("uniprotSequence")
        return StructureMetadata(
            accession=first.get("uniprotAccession", uniprot_id),
            entry_id=first.get("uniprotId"),
            sequence_checksum=first.get("sequenceChecksum"),
            sequence_length=len(sequence) if sequence else None,
            segment_start=first.get("uniprotStart"),
            segment_end=first.get("uniprotEnd"),
            structures=structures,
        )
