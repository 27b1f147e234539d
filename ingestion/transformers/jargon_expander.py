"""
Pre-expand verified trade jargon before extraction
"""

import re
from typing import Any, Dict, List


class JargonExpander:
    """
    Replace each verified acronym with ``Expansion (ACRONYM)``.

    Matching is case-insensitive on word boundaries and done in a single
    pass, so an expansion is never expanded again.
    """

    def expand(self, text: str, entries: List[Dict[str, Any]]) -> str:
        if not text:
            return text

        expansions = {}
        for entry in entries:
            acronym = (entry.get("acronym") or "").strip()
            expansion = (entry.get("expansion") or "").strip()
            if not acronym or not expansion or acronym.lower() == expansion.lower():
                continue
            expansions.setdefault(acronym.lower(), expansion)

        if not expansions:
            return text

        # Longest first so "SSV" wins over "SS"
        alternatives = sorted(expansions, key=len, reverse=True)
        pattern = re.compile(
            r"\b(" + "|".join(re.escape(a) for a in alternatives) + r")\b",
            re.IGNORECASE
        )

        def replace(match: re.Match) -> str:
            matched = match.group(0)
            return f"{expansions[matched.lower()]} ({matched})"

        return pattern.sub(replace, text)
