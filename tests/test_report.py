import json

import pytest

from safebite.report import REPORT_SCHEMA, AgentReportError, report_from_agent_output


def agent_output(**fields):
    base = {"product_name": "Oysters", "safety_score": 45, "safety_flag": "Caution", "explanation_short": "x"}
    return json.dumps({**base, **fields})


def test_schema_requires_source_uri_and_alternative_name():
    props = REPORT_SCHEMA["properties"]
    assert props["sources"]["items"]["required"] == ["uri"]
    assert props["alternatives"]["items"]["required"] == ["name"]


def test_source_without_uri_is_dropped():
    content = agent_output(sources=[{"title": "FDA advisory"}, {"title": "CDC", "uri": "https://cdc.test/a"}])
    report = report_from_agent_output(content, "s1", [], [])
    assert [s.uri for s in report.sources] == ["https://cdc.test/a"]


def test_alternative_without_name_is_dropped():
    content = agent_output(alternatives=[{"why": "cheaper"}, {"name": "Cooked mussels", "why": None}])
    report = report_from_agent_output(content, "s1", [], [])
    assert [a.name for a in report.alternatives] == ["Cooked mussels"]
    assert report.alternatives[0].why == ""


def test_null_fields_take_defaults():
    content = agent_output(allergen_risk=None, sustainability_score=None, next_steps=["Cook well", None])
    report = report_from_agent_output(content, "s1", [{"title": "News", "uri": "https://news.test/1"}], [])
    assert report.allergen_risk == ""
    assert report.sustainability_score == 55
    assert report.next_steps == ["Cook well"]
    assert report.sources[0].uri == "https://news.test/1"


def test_missing_required_score_is_still_fatal():
    content = json.dumps({"product_name": "Oysters", "safety_score": None})
    with pytest.raises(AgentReportError):
        report_from_agent_output(content, "s1", [], [])
