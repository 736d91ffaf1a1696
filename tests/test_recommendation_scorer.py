"""Tests for recommendation scoring, reasons and series diversity."""

import math

import pytest

from concierge.algorithms import (
    NEUTRAL_REASON,
    RecommendationScore,
    ScoredCandidate,
    build_reason,
    diversity_pick,
    score_title,
    series_root,
)
from concierge.schemas import AvailabilityResult, ExternalRatings, TitleResult, UserPreferences

from conftest import make_title


def _offer(title_id, service="Netflix", region="US"):
    return AvailabilityResult(title_id=title_id, service=service, region=region)


class TestScoreTitle:
    def test_availability_on_subscribed_service_in_region(self):
        title = make_title("1", "Arrival", vote=8.0)
        here = score_title(title, [_offer("1")], ["Netflix"], "US", None, cold_start=False)
        elsewhere = score_title(title, [_offer("1", region="GB")], ["Netflix"], "US", None, cold_start=False)
        unsubscribed = score_title(title, [_offer("1", service="Hulu")], ["Netflix"], "US", None, cold_start=False)

        assert here.availability == 2.5
        assert elsewhere.availability == 0
        assert unsubscribed.availability == 0
        assert here.total > elsewhere.total

    def test_avoided_genre_dominates_a_positive_match(self):
        prefs = UserPreferences(genres=["Comedy"], avoid_genres=["Horror"])
        plain = make_title("1", "A", genres=["Comedy"], vote=7.0)
        mixed = make_title("2", "B", genres=["Comedy", "Horror"], vote=7.0)

        plain_score = score_title(plain, [], [], "US", prefs, cold_start=False)
        mixed_score = score_title(mixed, [], [], "US", prefs, cold_start=False)

        assert mixed_score.avoidance == -1.0
        assert mixed_score.total < plain_score.total

    def test_requested_genres_and_moods_count_as_matches(self):
        title = make_title("1", "Galaxy Quest", genres=["Comedy"], moods=["comedy"])
        score = score_title(title, [], [], "US", None, cold_start=False,
                            requested_genres=["Comedy"], requested_moods=["comedy"])
        assert score.preference == 1.0

    def test_cold_start_amplifies_quality(self):
        title = make_title("1", "Heat", vote=8.0, popularity=500)
        ratings = ExternalRatings(imdb=80, rotten_tomatoes=80, metacritic=80)
        warm = score_title(title, [], ["Netflix"], "US", None, cold_start=False, ratings=ratings)
        cold = score_title(title, [], [], "US", None, cold_start=True, ratings=ratings)

        assert cold.rating == pytest.approx(warm.rating * 1.5)
        assert cold.critics == pytest.approx(warm.critics * 2)
        assert cold.quality_blend > 0
        assert warm.quality_blend == 0

    def test_total_is_finite_and_non_negative(self):
        prefs = UserPreferences(avoid_genres=["Horror", "Thriller"])
        title = TitleResult(id="1", name="Bad", genres=["Horror", "Thriller"], vote_average=float("nan"))
        score = score_title(title, [], [], "US", prefs, cold_start=False)
        assert math.isfinite(score.total)
        assert score.total == 0.0

    def test_recency_and_imagery(self):
        recent = score_title(make_title("1", "New", year=2020), [], [], "US", None, cold_start=False)
        old = score_title(make_title("2", "Old", year=1990, poster=False), [], [], "US", None, cold_start=False)
        assert recent.recency == pytest.approx(0.1)
        assert old.recency == 0
        assert recent.imagery == 0.2
        assert old.imagery == 0


class TestBuildReason:
    def test_cold_start_reason_is_quality_blend(self):
        title = make_title("1", "The Godfather", vote=9.2)
        breakdown = score_title(title, [], [], "US", None, cold_start=True)
        reason = build_reason(title, breakdown, "US", cold_start=True, current_year=2025)
        assert reason.startswith("Quality blend pick")

    def test_availability_reason_names_service(self):
        title = make_title("1", "Superbad", vote=7.6)
        offers = [_offer("1")]
        breakdown = score_title(title, offers, ["Netflix"], "US", None, cold_start=False)
        reason = build_reason(title, breakdown, "US", cold_start=False, availability=offers,
                              subscriptions=["Netflix"], current_year=2025)
        assert reason.startswith("Streaming on Netflix in US")

    def test_preference_reason(self):
        title = make_title("1", "Spaceballs", genres=["Comedy", "Science Fiction"], moods=["comedy"], vote=2.0)
        prefs = UserPreferences(genres=["Comedy", "Science Fiction"], moods=["comedy"])
        breakdown = score_title(title, [], ["Netflix"], "US", prefs, cold_start=False)
        reason = build_reason(title, breakdown, "US", cold_start=False,
                              matched=["genre:Comedy", "mood:comedy"], current_year=2025)
        assert reason.startswith("Matches your taste for Comedy")

    def test_no_positive_factor_does_not_claim_availability(self):
        title = make_title("1", "Obscure Short")
        breakdown = RecommendationScore(*([0.0] * len(RecommendationScore._fields)))
        reason = build_reason(title, breakdown, "US", cold_start=False, availability=[_offer("1", service="Hulu")],
                              subscriptions=["Netflix"], current_year=2025)
        assert reason == NEUTRAL_REASON
        assert "services" not in reason


class TestSeriesRoot:
    @pytest.mark.parametrize("name,root", [
        ("Dune", "dune"),
        ("Dune: Part Two", "dune"),
        ("Toy Story 3", "toy story"),
        ("The Godfather Part II", "godfather"),
        ("The Godfather", "godfather"),
        ("Harry Potter and the Chamber of Secrets", "harry potter and the chamber of secrets"),
        ("Rocky IV", "rocky"),
        ("Stranger Things Season 4", "stranger things"),
    ])
    def test_roots(self, name, root):
        assert series_root(name) == root


class TestDiversityPick:
    def _candidate(self, title_id, name, score):
        return ScoredCandidate(title=TitleResult(id=title_id, name=name), score=score, reason="")

    def test_one_per_family_keeps_highest(self):
        picked = diversity_pick([
            self._candidate("1", "Dune", 3.0),
            self._candidate("2", "Dune: Part Two", 4.0),
            self._candidate("3", "Heat", 2.0),
        ])
        assert [c.title.id for c in picked] == ["2", "3"]

    def test_limit(self):
        candidates = [self._candidate(str(i), f"Film {chr(65 + i)}", 10 - i) for i in range(10)]
        picked = diversity_pick(candidates, limit=6)
        assert len(picked) == 6
        assert [c.score for c in picked] == sorted((c.score for c in picked), reverse=True)

    def test_ties_keep_input_order(self):
        picked = diversity_pick([
            self._candidate("a", "Alpha", 1.0),
            self._candidate("b", "Beta", 1.0),
        ])
        assert [c.title.id for c in picked] == ["a", "b"]

    def test_empty(self):
        assert diversity_pick([]) == []
