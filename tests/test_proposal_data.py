"""Proposal data assembly from collaborative document fragments."""

from types import SimpleNamespace

from app.services.proposal_data import (
    assemble_proposal_data,
    get_proposal_fragment_names,
    resolve_collaboration_doc_id,
)


TEMPLATE = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "x-format": "short-text"},
        "summary": {"type": "string", "x-format": "long-text"},
        "category": {"type": "string", "x-format": "dropdown"},
        "budget": {"type": "number", "x-format": "money"},
        "funding": {
            "type": "object",
            "x-format": "money",
            "properties": {"amount": {"type": "number"}, "currency": {"type": "string"}},
        },
        "tags": {"type": "array"},
    },
    "x-field-order": ["summary", "title"],
}


def test_money_on_numeric_field_keeps_amount():
    data = assemble_proposal_data(
        {"type": "object", "properties": {
            "title": {"type": "string", "x-format": "short-text"},
            "budget": {"type": "number", "x-format": "money"},
        }},
        {"title": "Hello", "budget": '{"amount":500,"currency":"USD"}'},
    )

    assert data == {"title": "Hello", "budget": 500}


def test_money_on_object_field_keeps_structure():
    data = assemble_proposal_data(TEMPLATE, {"funding": '{"amount": 20, "currency": "EUR"}'})

    assert data == {"funding": {"amount": 20, "currency": "EUR"}}


def test_unparseable_money_falls_back_to_text():
    data = assemble_proposal_data(TEMPLATE, {"budget": "about five hundred"})

    assert data == {"budget": "about five hundred"}


def test_text_formats_pass_through_even_if_json_like():
    data = assemble_proposal_data(TEMPLATE, {"title": "42", "category": "parks"})

    assert data == {"title": "42", "category": "parks"}


def test_empty_and_missing_fragments_are_omitted():
    data = assemble_proposal_data(TEMPLATE, {"title": "", "summary": None})

    assert data == {}


def test_unspecified_format_parses_json_or_keeps_text():
    assert assemble_proposal_data(TEMPLATE, {"tags": '["a", "b"]'}) == {"tags": ["a", "b"]}
    assert assemble_proposal_data(TEMPLATE, {"tags": "a, b"}) == {"tags": "a, b"}


def test_fragments_outside_template_are_ignored():
    assert assemble_proposal_data(TEMPLATE, {"unknown": "x"}) == {}


def test_fragment_names_follow_field_order():
    names = get_proposal_fragment_names(TEMPLATE)

    assert names[:2] == ["summary", "title"]
    assert set(names) == set(TEMPLATE["properties"])


def test_fragment_names_without_template():
    assert get_proposal_fragment_names(None) == []


def test_collaboration_doc_id_resolution():
    assert resolve_collaboration_doc_id(SimpleNamespace(collaboration_doc_id="doc-1", proposal_data={})) == "doc-1"
    assert resolve_collaboration_doc_id(
        SimpleNamespace(collaboration_doc_id=None, proposal_data={"collaborationDocId": "doc-2"})
    ) == "doc-2"
    assert resolve_collaboration_doc_id(SimpleNamespace(collaboration_doc_id=None, proposal_data={})) is None
