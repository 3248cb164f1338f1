"""Tests for search result scoring and state matching."""

import pytest

from radarcache.scraping.selectors import (
    SelectorConfig,
    get_locator,
    is_known_state,
    matches_state,
    score_suburb_match,
    select_best_result,
)


class TestStates:
    """Tests for Australian state matching."""

    @pytest.mark.parametrize("state", ["QLD", "qld", "Queensland", " NSW ", "act"])
    def test_known_states(self, state):
        """Abbreviations and full names in any case are known."""
        assert is_known_state(state)

    @pytest.mark.parametrize("state", ["", "XYZ", "California"])
    def test_unknown_states(self, state):
        """Anything else is rejected."""
        assert not is_known_state(state)

    def test_abbreviation_in_text(self):
        """An abbreviation matches as a whole word."""
        assert matches_state("Pomona, QLD 4568", "QLD")

    def test_full_name_for_abbreviation(self):
        """The full state name matches an abbreviated query."""
        assert matches_state("Pomona, Queensland", "qld")

    def test_abbreviation_for_full_name(self):
        """An abbreviation in the text matches a full-name query."""
        assert matches_state("Adelaide SA 5000", "South Australia")

    def test_no_partial_word(self):
        """"SA" does not match inside "USA"."""
        assert not matches_state("Pomona, California, USA", "SA")

    def test_empty_state(self):
        assert not matches_state("anything", "")


class TestScoreSuburbMatch:
    """Tests for suburb name scoring."""

    @pytest.mark.parametrize("name,expected", [
        ("Pomona", 100),
        ("pomona", 100),
        ("Pomona Valley", 80),
        ("Pomona(QLD)", 80),
        ("Lake Cooroibah (Pomona)", 60),
        ("Westpomona", 40),
        ("Cooroy", 0),
    ])
    def test_named_results(self, name, expected):
        assert score_suburb_match(name, "", "Pomona") == expected

    def test_unnamed_result_uses_full_text(self):
        """Results without a name score low when the text mentions the suburb."""
        assert score_suburb_match("", "Pomona QLD 4568", "Pomona") == 20
        assert score_suburb_match("", "Cooroy QLD 4563", "Pomona") == 0


class TestSelectBestResult:
    """Tests for choosing a search result."""

    def test_state_disambiguates(self):
        """The same suburb name in another state is not chosen."""
        results = [
            ("Pomona", "Pomona, NSW 2000", "Pomona Pomona, NSW 2000"),
            ("Pomona", "Pomona, QLD 4568", "Pomona Pomona, QLD 4568"),
        ]
        assert select_best_result(results, "Pomona", "QLD") == 1

    def test_highest_score_wins(self):
        """An exact name beats a prefix match in the same state."""
        results = [
            ("Pomona Valley", "QLD 4568", "Pomona Valley QLD 4568"),
            ("Pomona", "QLD 4568", "Pomona QLD 4568"),
        ]
        assert select_best_result(results, "Pomona", "QLD") == 1

    def test_state_from_full_text(self):
        """The state may appear only in the full result text."""
        results = [("Pomona", "", "Pomona Queensland 4568")]
        assert select_best_result(results, "Pomona", "QLD") == 0

    def test_no_match(self):
        """None when nothing matches suburb and state."""
        results = [("Pomona", "Pomona, NSW 2000", "Pomona, NSW 2000")]
        assert select_best_result(results, "Pomona", "QLD") is None
        assert select_best_result([], "Pomona", "QLD") is None


class TestSelectorConfig:
    """Tests for selector lookups."""

    def test_get_locator_uses_primary_selector(self):
        """The first selector builds the locator."""

        class FakeLocator:
            def __init__(self, selector):
                self.selector = selector
                self.first = self

        class FakePage:
            def locator(self, selector):
                return FakeLocator(selector)

        config = SelectorConfig(name="Thing", selectors=("#a", "#b"))
        assert get_locator(FakePage(), config).selector == "#a"

    def test_get_locator_without_selectors(self):
        """A config without selectors is a programming error."""
        with pytest.raises(ValueError):
            get_locator(object(), SelectorConfig(name="Empty", selectors=()))
