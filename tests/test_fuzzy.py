"""
Tests for the fuzzy matcher.

Expected scores are written out from the documented constants so a change
to the scoring rule shows up here.
"""

import pytest


class TestAlign:
    """Tests for subsequence alignment."""

    def test_contiguous_prefix(self):
        """Test a prefix query aligns at the start."""
        from notegraph.fuzzy import align

        assert align("project-plan", "pro") == [0, 1, 2]

    def test_case_insensitive(self):
        """Test alignment ignores case."""
        from notegraph.fuzzy import align

        assert align("ReadMe", "rm") == [0, 4]

    def test_backward_pass_tightens(self):
        """Test the window ending at the first full match is shrunk from the right."""
        from notegraph.fuzzy import align

        assert align("axxab", "ab") == [3, 4]

    def test_not_a_subsequence(self):
        """Test out-of-order or missing characters do not match."""
        from notegraph.fuzzy import align

        assert align("xyz", "pro") is None
        assert align("orp", "pro") is None
        assert align("pr", "pro") is None

    def test_empty_query(self):
        """Test an empty query matches with no positions."""
        from notegraph.fuzzy import align

        assert align("anything", "") == []


class TestScore:
    """Tests for the documented scoring rule."""

    def test_contiguous_prefix_score(self):
        """Test three matches, a start bonus and two consecutive bonuses."""
        from notegraph.fuzzy import BONUS_BOUNDARY, BONUS_CONSECUTIVE, SCORE_MATCH, score

        expected = 3 * SCORE_MATCH + BONUS_BOUNDARY + 2 * BONUS_CONSECUTIVE

        assert score("project-plan", "pro") == expected
        assert score("prototype", "pro") == expected

    def test_gap_penalty(self):
        """Test a one-character gap costs the gap start penalty."""
        from notegraph.fuzzy import BONUS_BOUNDARY, BONUS_CONSECUTIVE, PENALTY_GAP_START, SCORE_MATCH, score

        expected = 3 * SCORE_MATCH + BONUS_BOUNDARY - PENALTY_GAP_START + BONUS_CONSECUTIVE

        assert score("aXbc", "abc") == expected

    def test_gap_extension(self):
        """Test longer gaps cost one extension per extra character."""
        from notegraph.fuzzy import BONUS_BOUNDARY, PENALTY_GAP_EXTENSION, PENALTY_GAP_START, SCORE_MATCH, score

        expected = 2 * SCORE_MATCH + BONUS_BOUNDARY - (PENALTY_GAP_START + 3 * PENALTY_GAP_EXTENSION)

        assert score("axxxxb", "ab") == expected

    def test_segment_start_bonus(self):
        """Test matches right after a separator earn the boundary bonus."""
        from notegraph.fuzzy import score

        assert score("notes/plan", "p") > score("notes/xplan", "p")

    def test_leading_penalty_capped(self):
        """Test unmatched leading characters cost at most the cap."""
        from notegraph.fuzzy import MAX_LEADING_PENALTY, PENALTY_LEADING, score

        assert score("xpro", "pro") - score("xxxxxxpro", "pro") == (MAX_LEADING_PENALTY - 1) * PENALTY_LEADING

    def test_contiguity_beats_scatter(self):
        """Test a contiguous run outscores the same letters spread out."""
        from notegraph.fuzzy import score

        assert score("abcdef", "abc") > score("axbxcx", "abc")

    def test_no_match_is_none(self):
        """Test a non-matching candidate has no score."""
        from notegraph.fuzzy import match, score

        assert score("xyz", "pro") is None
        assert match("xyz", "pro") is None


class TestRank:
    """Tests for ranking."""

    def test_ties_are_lexicographic(self):
        """Test equal scores order by candidate and non-matches are dropped."""
        from notegraph.fuzzy import rank

        results = rank(["prototype", "xyz", "project-plan"], "pro")

        assert [m.candidate for m in results] == ["project-plan", "prototype"]

    def test_descending_score(self):
        """Test a better match ranks first regardless of name."""
        from notegraph.fuzzy import rank

        results = rank(["zzz-abc", "axbxc"], "abc")

        assert [m.candidate for m in results] == ["zzz-abc", "axbxc"]

    def test_limit(self):
        """Test the limit keeps the best results."""
        from notegraph.fuzzy import rank

        assert len(rank(["a1", "a2", "a3"], "a", limit=2)) == 2

    def test_rank_notes_prefers_better_of_title_and_path(self):
        """Test each note reports whichever of title and path scored higher."""
        from notegraph.fuzzy import rank_notes

        results = rank_notes([("notes/alpha", "Alpha"), ("projects/x", "Roadmap")], "alp")

        assert [(m.note_id, m.candidate) for m in results] == [("notes/alpha", "Alpha")]

    def test_rank_notes_path_only_match(self):
        """Test a note matching only by path is still returned."""
        from notegraph.fuzzy import rank_notes

        results = rank_notes([("projects/x", "Roadmap")], "proj")

        assert [(m.note_id, m.candidate) for m in results] == [("projects/x", "projects/x")]

    @pytest.mark.parametrize("query", ["p", "pl", "plan", "PLAN"])
    def test_every_result_is_a_match(self, query):
        """Test returned positions spell out the query."""
        from notegraph.fuzzy import rank

        for m in rank(["project-plan", "plane", "apple", "xyz"], query):
            assert "".join(m.candidate[p] for p in m.positions).lower() == query.lower()
