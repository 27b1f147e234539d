"""
Prompt templates for extraction, hinted re-extraction and rule parsing.
"""

import json
from typing import Any, Dict, List


EXTRACTION_SYSTEM_PROMPT = """You extract structured trade listings from industrial surplus and parts chat messages.

Known categories: {categories}
Known manufacturers (aliases in parentheses): {manufacturers}
Known units: {units}
Known conditions: {conditions}

Verified trade jargon (ACRONYM,EXPANSION):
{jargon}

Rules:
- intent is "sell" when the sender offers items (WTS, FS, available, selling), "want" when they look for items (WTB, need, looking for, RFQ), otherwise "unknown".
- Produce one entry in items for every distinct part or product mentioned.
- Use the known category, manufacturer, unit and condition names exactly when they apply; otherwise give your best short name.
- price is the numeric unit price only; currency is an ISO 4217 code ("$" means USD).
- unknown_terms lists acronyms or trade jargon you could not confidently interpret.
- confidence is a number between 0 and 1 describing how sure you are of the whole extraction.

Return ONLY valid JSON in this format:
{{
  "intent": "sell" | "want" | "unknown",
  "items": [
    {{
      "description": "...",
      "category": "...",
      "manufacturer": "...",
      "part_number": "...",
      "quantity": 0,
      "unit": "...",
      "price": 0,
      "currency": "USD",
      "condition": "..."
    }}
  ],
  "unknown_terms": ["..."],
  "confidence": 0.0
}}
"""

HINT_USER_PROMPT = """Original message:
{text}

Previous extraction:
{snapshot}

Reviewer correction:
{hint}

Re-extract the message applying the reviewer's correction. Keep previous values that the correction does not contradict."""

RULE_PARSER_SYSTEM_PROMPT = """You convert a buyer's or seller's natural-language alert request into matching criteria for trade listings.

Known categories: {categories}

Return ONLY valid JSON in this format:
{{
  "intent": "sell" | "want" | null,
  "keywords": ["..."],
  "category_names": ["..."],
  "price_min": null,
  "price_max": null
}}

intent is the intent of the LISTINGS to match: a user who wants to buy wants alerts on "sell" listings.
Use null or an empty list for any criterion the request does not mention."""


def format_categories(categories: List[Dict[str, Any]]) -> str:
    return ", ".join(c["name"] for c in categories) or "(none)"


def format_manufacturers(manufacturers: List[Dict[str, Any]]) -> str:
    parts = []
    for m in manufacturers:
        aliases = [a for a in m.get("aliases") or [] if a]
        parts.append(f"{m['name']} ({', '.join(aliases)})" if aliases else m["name"])
    return ", ".join(parts) or "(none)"


def format_units(units: List[Dict[str, Any]]) -> str:
    return ", ".join(f"{u['name']} ({u['abbreviation']})" for u in units) or "(none)"


def format_conditions(conditions: List[Dict[str, Any]]) -> str:
    parts = []
    for c in conditions:
        parts.append(f"{c['name']} ({c['abbreviation']})" if c.get("abbreviation") else c["name"])
    return ", ".join(parts) or "(none)"


def format_jargon(entries: List[Dict[str, Any]]) -> str:
    return "\n".join(f"{j['acronym']},{j['expansion']}" for j in entries) or "(none)"


def build_extraction_system_prompt(vocabulary: Dict[str, List[Dict[str, Any]]]) -> str:
    return EXTRACTION_SYSTEM_PROMPT.format(
        categories=format_categories(vocabulary.get("categories", [])),
        manufacturers=format_manufacturers(vocabulary.get("manufacturers", [])),
        units=format_units(vocabulary.get("units", [])),
        conditions=format_conditions(vocabulary.get("conditions", [])),
        jargon=format_jargon(vocabulary.get("jargon", [])),
    )


def build_hint_user_prompt(text: str, snapshot: Dict[str, Any], hint: str) -> str:
    return HINT_USER_PROMPT.format(
        text=text,
        snapshot=json.dumps(snapshot, indent=2, default=str),
        hint=hint.strip(),
    )


def build_rule_parser_prompt(categories: List[Dict[str, Any]]) -> str:
    return RULE_PARSER_SYSTEM_PROMPT.format(categories=format_categories(categories))
