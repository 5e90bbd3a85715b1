"""
Proposal Data Assembly

Rebuilds a flat, validable proposal object from per-field text fragments
held in the collaborative document store.

Per-field handling, keyed by the property's ``x-format`` tag:
    short-text / long-text / dropdown   text passed through unchanged
    money                               JSON ``{amount, currency}``; a legacy
                                        numeric field keeps only ``amount``
    anything else                       JSON parse, raw text on failure

Absent or empty fragments are omitted so the validator reports them as
missing. Assembly never raises on malformed fragment text; bad content shows
up later as a schema validation error.
"""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

TEXT_FORMATS = frozenset({"short-text", "long-text", "dropdown"})
MONEY_FORMAT = "money"
NUMERIC_TYPES = frozenset({"number", "integer"})

_UNPARSED = object()


def _try_json(text: str) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return _UNPARSED


def _declared_types(prop: dict) -> set[str]:
    declared = prop.get("type")
    if isinstance(declared, list):
        return set(declared)
    return {declared} if declared else set()


def get_proposal_fragment_names(proposal_template: dict | None) -> list[str]:
    """Fragment names to fetch: the template's property keys.

    ``x-field-order`` (if present) decides the order; keys it does not list
    follow in declaration order.
    """
    properties = (proposal_template or {}).get("properties") or {}
    order = [k for k in (proposal_template or {}).get("x-field-order") or [] if k in properties]
    return order + [k for k in properties if k not in order]


def _assemble_field(prop: dict, text: str) -> Any:
    fmt = prop.get("x-format")

    if fmt in TEXT_FORMATS:
        return text

    parsed = _try_json(text)
    if parsed is _UNPARSED:
        return text

    if fmt == MONEY_FORMAT and _declared_types(prop) & NUMERIC_TYPES:
        if isinstance(parsed, dict):
            amount = parsed.get("amount")
            return amount if amount is not None else text
        return parsed

    return parsed


def assemble_proposal_data(proposal_template: dict | None, fragment_texts: dict | None) -> dict:
    """Produce a best-effort flat data object from ``fieldKey -> text`` fragments."""
    properties = (proposal_template or {}).get("properties") or {}
    fragments = fragment_texts or {}
    data: dict[str, Any] = {}

    for key in get_proposal_fragment_names(proposal_template):
        text = fragments.get(key)
        if text is None or text == "":
            continue
        if not isinstance(text, str):
            # Store already returned structured content.
            data[key] = text
            continue
        data[key] = _assemble_field(properties.get(key) or {}, text)

    logger.debug("Assembled proposal data fields=%s", sorted(data))
    return data


def resolve_collaboration_doc_id(proposal) -> str | None:
    """Collaboration document pointer: the column, else the legacy data key."""
    if getattr(proposal, "collaboration_doc_id", None):
        return proposal.collaboration_doc_id
    data = getattr(proposal, "proposal_data", None) or {}
    doc_id = data.get("collaborationDocId") if isinstance(data, dict) else None
    return doc_id or None
