"""
Helper utilities for AI responses: JSON extraction and repair, metadata
normalization, currency cleanup, and conversion to a catalog update.
"""

import json
import re

from errors import MalformedResponse
from models import ANALYSIS_FIELDS, FIELD_LIMITS

DEFAULT_COST = "€20-35 (Est)"
VAGUE_COST = "€20-35 (Analyst Est)"


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json / ``` fence and the trailing ```."""
    text = re.sub(r"^```[a-z]*\s*", "", text.strip(), flags=re.IGNORECASE)
    return re.sub(r"\s*```$", "", text)

def repair_broken_json(text: str) -> str:
    """
    Close a truncated JSON document: finish an open string, then close any
    unbalanced brackets and braces (arrays first).
    """
    repaired = text

    quotes = 0
    escape = False
    for c in repaired:
        if escape:
            escape = False
            continue
        if c == "\\":
            escape = True
            continue
        if c == '"':
            quotes += 1
    if quotes % 2:
        repaired += '"'

    depth_brace = depth_bracket = 0
    in_string = escape = False
    for c in repaired:
        if escape:
            escape = False
            continue
        if c == "\\":
            escape = True
            continue
        if c == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if c == "{":
            depth_brace += 1
        elif c == "}":
            depth_brace -= 1
        elif c == "[":
            depth_bracket += 1
        elif c == "]":
            depth_bracket -= 1

    repaired += "]" * max(depth_bracket, 0)
    repaired += "}" * max(depth_brace, 0)
    return repaired

def parse_ai_response(text: str) -> dict:
    """
    Extract the metadata object from a model reply and normalize it.
    Raises MalformedResponse if no usable JSON object can be recovered.
    """
    if not text or not text.strip():
        raise MalformedResponse("Empty AI response")

    content = strip_code_fences(text)
    first = content.find("{")
    last = content.rfind("}")

    if first == -1:
        raise MalformedResponse(f'AI returned text, not JSON: "{content[:50]}..."')

    if last == -1 or last < first:
        print("JSON truncated. Attempting auto-repair...")
        try:
            return normalize_parsed_data(json.loads(repair_broken_json(content[first:])))
        except ValueError as e:
            raise MalformedResponse(f"JSON truncated & irreparable: {e}") from e

    candidate = content[first:last + 1]
    try:
        return normalize_parsed_data(json.loads(candidate))
    except ValueError as e1:
        # Raw newlines inside string values are the usual culprit
        try:
            sanitized = candidate.replace("\n", "\\n").replace("\r", "")
            return normalize_parsed_data(json.loads(sanitized))
        except ValueError:
            raise MalformedResponse(f"JSON syntax error: {e1}") from e1

def _joined(value, sep: str) -> str:
    if isinstance(value, list):
        return sep.join(str(v) for v in value)
    return str(value) if value else ""

def normalize_parsed_data(parsed) -> dict:
    """Fill defaults and flatten lists so every field is a plain string."""
    if not isinstance(parsed, dict):
        raise MalformedResponse(f"Expected a JSON object, got {type(parsed).__name__}")
    year = parsed.get("year")
    return {
        "artist": parsed.get("artist") or "Unknown",
        "title": parsed.get("title") or "Unknown",
        "genre": parsed.get("genre") or "Unknown",
        "year": str(year) if year else "",
        "group_members": _joined(parsed.get("group_members"), ", "),
        "tracks": _joined(parsed.get("tracks"), "\n"),
        "condition": parsed.get("condition") or "Good",
        "average_cost": sanitize_currency(parsed.get("average_cost")),
        # "Unknown" keeps the record from showing up as incomplete again
        "label": parsed.get("label") or "Unknown",
        "catalog_number": parsed.get("catalog_number") or "Unknown",
        "edition": parsed.get("edition") or "Unknown",
        "notes": parsed.get("notes") or parsed.get("note") or "Analyzed by AI",
    }

def sanitize_currency(cost) -> str:
    """
    Coerce a price estimate into a Euro string.
    Examples: None -> "€20-35 (Est)", "$40-60" -> "€40-60", "25-30" -> "€25-30".
    """
    if not cost:
        return DEFAULT_COST
    s = str(cost).strip()

    if re.search(r"varies|unknown|tbd|check", s, re.IGNORECASE):
        return VAGUE_COST

    dollars = r"USD|U\.S\.D|Dollars?|\$"
    if re.search(dollars, s, re.IGNORECASE):
        s = re.sub(dollars, "", s, flags=re.IGNORECASE).strip()
        s = re.sub(r"\.+$", "", s).strip()
        if not s:
            return DEFAULT_COST
        return "€" + s

    if "€" not in s and "EUR" not in s and re.search(r"\d", s):
        return "€" + s

    if "EUR" in s:
        s = s.replace("EUR", "€", 1).strip()

    if len(s) < 2:
        return DEFAULT_COST
    return s

def analysis_to_update(analysis: dict) -> dict:
    """
    Catalog update for every analysis field, truncated to the stored limits.
    """
    update = {}
    for name in ANALYSIS_FIELDS:
        value = analysis.get(name)
        if name in FIELD_LIMITS:
            value = str(value or "")[:FIELD_LIMITS[name]]
        update[name] = value
    return update
