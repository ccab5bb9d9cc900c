"""Tests for the important-fields heuristic."""

from __future__ import annotations

import pytest

from conftest import ACCOUNT_ATTRIBUTES, FakeDataverse, attr, json_response
from dataverse_core.io.http import WebApiClient
from dataverse_core.schema import AttributeMetadata
from dataverse_core.services.scoring import (
    COMMON_FIELD_BONUS,
    PRIMARY_ID_BONUS,
    PRIMARY_NAME_BONUS,
    REQUIRED_BONUS,
    ImportantFieldsScorer,
    ScoreSource,
)


def parse(*raw: dict) -> list[AttributeMetadata]:
    return [AttributeMetadata.from_remote(r) for r in raw]


@pytest.fixture
def scorer() -> ImportantFieldsScorer:
    return ImportantFieldsScorer()


def test_flag_bonuses(scorer: ImportantFieldsScorer) -> None:
    attributes = parse(
        attr("accountid", "UniqueidentifierType", primary_id=True),
        attr("name", primary_name=True, required=True),
        attr("creditlimit", "MoneyType", required=True),
        attr("fax"),
    )
    result = scorer.from_metadata(attributes)

    assert result.scores == {
        "accountid": PRIMARY_ID_BONUS,
        "name": PRIMARY_NAME_BONUS + REQUIRED_BONUS + COMMON_FIELD_BONUS,
        "creditlimit": REQUIRED_BONUS,
    }
    assert result.source is ScoreSource.METADATA
    assert result.degraded


def test_fill_rate_counts_only_above_half(scorer: ImportantFieldsScorer) -> None:
    attributes = parse(attr("mostly"), attr("half"), attr("rarely"))
    records = [
        {"mostly": "a", "half": "b", "rarely": None},
        {"mostly": "a", "half": "b", "rarely": ""},
        {"mostly": "a", "half": None, "rarely": "c"},
        {"mostly": None, "half": None, "rarely": None},
    ]
    result = scorer.from_sample(attributes, records)

    assert result.scores == {"mostly": 0.75 * 50}
    assert result.fields == ["mostly"]
    assert not result.degraded


def test_lookup_fill_read_from_shadow_property(scorer: ImportantFieldsScorer) -> None:
    attributes = parse(attr("parentaccountid", "LookupType", targets=["account"]))
    result = scorer.from_sample(attributes, [{"_parentaccountid_value": "g"}])
    assert result.fields == ["parentaccountid"]


def test_excludes_annotations_derived_and_unreadable(scorer: ImportantFieldsScorer) -> None:
    attributes = parse(
        attr("owneridname"),
        attr("owneridtype"),
        attr("name_base", attribute_of="name"),
        attr("statusreason", read=False),
        attr("_hidden"),
        attr("name", primary_name=True),
    )
    records = [{a.logical_name: "x" for a in attributes}]

    assert scorer.from_sample(attributes, records).fields == ["name"]


def test_ties_keep_attribute_order() -> None:
    attributes = parse(*(attr(f"col{i}") for i in range(5)))
    records = [{f"col{i}": i for i in range(5)}]

    result = ImportantFieldsScorer(limit=3).from_sample(attributes, records)
    assert result.fields == ["col0", "col1", "col2"]


def test_limit_applies_to_metadata_scores() -> None:
    attributes = parse(*(attr(f"field{i}", required=True) for i in range(20)))
    assert len(ImportantFieldsScorer(limit=15).from_metadata(attributes).fields) == 15


@pytest.mark.asyncio
async def test_score_samples_recent_records(fake: FakeDataverse, client: WebApiClient, scorer: ImportantFieldsScorer) -> None:
    fake.add("GET", "accounts?", {"value": [{"accountid": "1", "industrycode": 3}]})

    result = await scorer.score(client, "accounts", parse(*ACCOUNT_ATTRIBUTES))

    assert result.source is ScoreSource.SAMPLED
    assert "industrycode" in result.fields
    request = fake.calls("GET", "accounts")[0]
    assert request.url.params["$top"] == "50"
    assert request.url.params["$orderby"] == "modifiedon desc"


@pytest.mark.asyncio
async def test_score_without_modifiedon_skips_ordering(fake: FakeDataverse, client: WebApiClient, scorer: ImportantFieldsScorer) -> None:
    fake.add("GET", "widgets?", {"value": [{"label": "x"}]})

    await scorer.score(client, "widgets", parse(attr("label", primary_name=True)))
    assert "$orderby" not in fake.calls("GET", "widgets")[0].url.params


@pytest.mark.parametrize("reply", [json_response(403), json_response(500), {"value": []}])
@pytest.mark.asyncio
async def test_score_degrades_to_metadata(
    fake: FakeDataverse, client: WebApiClient, scorer: ImportantFieldsScorer, reply: object
) -> None:
    fake.add("GET", "accounts?", reply)  # type: ignore[arg-type]

    result = await scorer.score(client, "accounts", parse(*ACCOUNT_ATTRIBUTES))

    assert result.degraded
    assert result.fields[:2] == ["accountid", "name"]
