"""
Unit tests for jargon pre-expansion
"""

from ingestion.transformers.jargon_expander import JargonExpander

ENTRIES = [
    {"acronym": "SS", "expansion": "stainless steel"},
    {"acronym": "WTS", "expansion": "want to sell"},
    {"acronym": "SSV", "expansion": "surface safety valve"},
]


class TestJargonExpander:

    def setup_method(self):
        self.expander = JargonExpander()

    def test_expands_known_acronyms(self):
        text = self.expander.expand("WTS 500ft 316 SS pipe $12/ft", ENTRIES)
        assert text == "want to sell (WTS) 500ft 316 stainless steel (SS) pipe $12/ft"

    def test_case_insensitive_keeps_original_spelling(self):
        assert self.expander.expand("wts ss pipe", ENTRIES) == "want to sell (wts) stainless steel (ss) pipe"

    def test_word_boundaries_respected(self):
        assert self.expander.expand("CLASSIC BOSS", ENTRIES) == "CLASSIC BOSS"

    def test_longest_acronym_wins(self):
        assert self.expander.expand("2x SSV", ENTRIES) == "2x surface safety valve (SSV)"

    def test_expansion_not_reexpanded(self):
        entries = [{"acronym": "SS", "expansion": "SS stainless"}]
        assert self.expander.expand("SS", entries) == "SS stainless (SS)"

    def test_no_entries_returns_text(self):
        assert self.expander.expand("WTS pipe", []) == "WTS pipe"

    def test_identity_entries_ignored(self):
        entries = [{"acronym": "OEM", "expansion": "OEM"}]
        assert self.expander.expand("OEM valve", entries) == "OEM valve"

    def test_empty_text(self):
        assert self.expander.expand("", ENTRIES) == ""
