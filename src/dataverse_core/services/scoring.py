"""Important-fields heuristic.

Picks a representative subset of a table's attributes from a sample of
recently modified records. When no sample can be taken the same flag-based
bonuses are applied to the metadata alone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from dataverse_core.io.http import parse_json
from dataverse_core.schema import AttributeMetadata

if TYPE_CHECKING:
    from dataverse_core.io.http import WebApiClient

logger = logging.getLogger("dataverse_core.scoring")

MAX_IMPORTANT_FIELDS = 15
SAMPLE_SIZE = 50
COMMON_FIELD_MARKERS: tuple[str, ...] = ("name", "title", "subject", "email", "phone", "status", "state")

PRIMARY_ID_BONUS = 1000.0
PRIMARY_NAME_BONUS = 900.0
REQUIRED_BONUS = 100.0
FILL_RATE_WEIGHT = 50.0
FILL_RATE_THRESHOLD = 0.5
COMMON_FIELD_BONUS = 30.0


class ScoreSource(StrEnum):
    SAMPLED = "sampled"
    METADATA = "metadata"


@dataclass(frozen=True, slots=True)
class ScoreResult:
    """Selected logical names, best first, and where the scores came from."""
    fields: list[str] = field(default_factory=list)
    source: ScoreSource = ScoreSource.METADATA
    scores: dict[str, float] = field(default_factory=dict)

    @property
    def degraded(self) -> bool:
        return self.source is ScoreSource.METADATA


def _is_filled(value: Any) -> bool:
    return value is not None and value != ""


class ImportantFieldsScorer:
    """Scores attributes and keeps the top ``limit``.

    Score = +1000 primary id, +900 primary name, +100 required,
    + fill rate x 50 when more than half the sample is populated,
    +30 when the name contains a common-field marker. Ties keep attribute order.
    """

    __slots__ = ("limit", "sample_size")

    def __init__(self, limit: int = MAX_IMPORTANT_FIELDS, sample_size: int = SAMPLE_SIZE) -> None:
        self.limit = limit
        self.sample_size = sample_size

    async def score(
        self, client: WebApiClient, entity_set_name: str, attributes: list[AttributeMetadata]
    ) -> ScoreResult:
        """Score from a data sample, degrading to metadata only. Never raises for sampling failures."""
        try:
            records = await self.sample(client, entity_set_name, attributes)
        except Exception as e:
            logger.warning(f"Sampling {entity_set_name} failed, scoring from metadata only: {e}")
            return self.from_metadata(attributes)
        if not records:
            logger.debug(f"No records in {entity_set_name}, scoring from metadata only")
            return self.from_metadata(attributes)
        return self.from_sample(attributes, records)

    async def sample(
        self, client: WebApiClient, entity_set_name: str, attributes: list[AttributeMetadata]
    ) -> list[dict[str, Any]]:
        path = f"{entity_set_name}?$top={self.sample_size}"
        if any(a.logical_name == "modifiedon" for a in attributes):
            path += "&$orderby=modifiedon desc"
        data = parse_json(await client.send("GET", path, operation="sample_records"))
        return list(data.get("value") or [])

    def _base_score(self, attr: AttributeMetadata) -> float:
        score = 0.0
        if attr.is_primary_id:
            score += PRIMARY_ID_BONUS
        if attr.is_primary_name:
            score += PRIMARY_NAME_BONUS
        if attr.is_required:
            score += REQUIRED_BONUS
        if any(marker in attr.logical_name for marker in COMMON_FIELD_MARKERS):
            score += COMMON_FIELD_BONUS
        return score

    def from_sample(self, attributes: list[AttributeMetadata], records: list[dict[str, Any]]) -> ScoreResult:
        scores: dict[str, float] = {}
        total = len(records)
        for attr in attributes:
            if not attr.is_scorable:
                continue
            score = self._base_score(attr)
            # Lookups come back under their shadow property
            keys = {attr.logical_name, attr.wire_name}
            filled = sum(1 for r in records if any(_is_filled(r.get(k)) for k in keys))
            if total and (rate := filled / total) > FILL_RATE_THRESHOLD:
                score += rate * FILL_RATE_WEIGHT
            if score > 0:
                scores[attr.logical_name] = score
        ranked = sorted(scores, key=lambda name: scores[name], reverse=True)
        return ScoreResult(fields=ranked[: self.limit], source=ScoreSource.SAMPLED, scores=scores)

    def from_metadata(self, attributes: list[AttributeMetadata]) -> ScoreResult:
        scores: dict[str, float] = {}
        for attr in attributes:
            if attr.is_scorable and (score := self._base_score(attr)) > 0:
                scores[attr.logical_name] = score
        return ScoreResult(fields=list(scores)[: self.limit], source=ScoreSource.METADATA, scores=scores)
