import pytest

from src.ingestion.relevance import (
    EXCLUDED_SCORE,
    classify_news,
    classify_social,
    is_relevant_news,
    is_relevant_post,
)


@pytest.mark.parametrize(
    "text",
    [
        "RT @someone I just saw ICE agents at Walmart right now",
        "Has anyone seen ICE near the Target on 5th?",
        "I saw ICE agents outside my job last week",
        "Please donate to the GoFundMe for the family, ICE agents at the school right now",
        "Know your rights: what to do if ICE agents come to your door",
    ],
)
def test_exclusion_patterns_short_circuit(text: str) -> None:
    result = classify_social(text)

    assert result.is_relevant is False
    assert result.score == EXCLUDED_SCORE
    assert result.confidence == "high"
    assert result.sighting_indicators == []
    assert result.reason == "Matches exclusion pattern (news/repost/historical)"


def test_policy_commentary_is_not_relevant() -> None:
    assert classify_social("Trump administration ICE policies are destroying families").is_relevant is False


def test_first_hand_report_with_details_is_relevant() -> None:
    result = classify_social(
        "I just saw ICE agents at the corner of 5th and Main, they arrived 5 minutes ago, avoid the area"
    )

    assert result.is_relevant is True
    assert result.confidence in {"high", "medium"}
    assert result.commentary_indicators == []
    assert result.sighting_indicators[0] == "I just saw ICE"
    assert result.reason == "First-hand sighting report with location/time details"


def test_dallas_checkpoint_is_high_confidence() -> None:
    result = classify_social("I just saw ICE checkpoint at Main St and 5th Ave in Dallas, TX, happening right now")

    assert result.is_relevant is True
    assert result.confidence == "high"
    assert result.score >= 10


def test_single_first_hand_match_without_commentary_is_relevant() -> None:
    result = classify_social("I just saw ICE agents")

    assert result.is_relevant is True
    assert result.score == 5
    assert result.confidence == "low"


def test_supporting_indicators_without_first_hand_language() -> None:
    result = classify_social("ICE van parked outside")

    assert result.is_relevant is False
    assert result.score == 2
    assert result.confidence == "low"
    assert result.reason.startswith("Missing first-hand language")


def test_three_supporting_indicators_count_as_strong_signal() -> None:
    result = classify_social("Unmarked van and 3 agents knocking on doors this morning")

    assert result.is_relevant is True
    assert len(result.sighting_indicators) >= 3
    assert result.commentary_indicators == []


def test_text_without_any_signal() -> None:
    result = classify_social("Lovely weather in the park")

    assert result.is_relevant is False
    assert result.score == 0
    assert result.reason == "No sighting indicators found - must include first-hand language"


def test_spanish_warning_is_relevant() -> None:
    assert is_relevant_post("Cuidado! la migra está en la tienda ahorita")


def test_trusted_news_source_needs_only_agency() -> None:
    result = classify_news("ICE presence reported in downtown area", "", "Associated Press")

    assert result.is_relevant is True
    assert result.source_tier == "trusted"
    assert result.has_agency is True
    assert result.has_action is False
    assert result.reason == "Trusted source (Associated Press) reporting on ICE/CBP"


def test_unknown_news_source_needs_action_keyword() -> None:
    result = classify_news("ICE presence in the community", "", "Random Blog")

    assert result.is_relevant is False
    assert result.source_tier == "unknown"
    assert result.reason == "Missing action keyword (raid, arrest, detention, etc.)"

    assert is_relevant_news("ICE agents arrest 12 in Houston raid", "", "Random Blog")


def test_blocked_news_source_is_never_relevant() -> None:
    result = classify_news("ICE raid arrests dozens", "Border Patrol operation", "Infowars")

    assert result.is_relevant is False
    assert result.source_tier == "blocked"
    assert result.reason == "Blocked source: Infowars"


def test_opinion_pieces_are_excluded_even_from_trusted_sources() -> None:
    result = classify_news("Opinion: ICE raids must end", "", "Reuters")

    assert result.is_relevant is False
    assert result.reason == "Opinion/editorial piece excluded"


def test_news_without_agency_mention() -> None:
    result = classify_news("Police arrest suspect after downtown raid", "", "NPR")

    assert result.is_relevant is False
    assert result.reason == "Missing ICE/CBP agency mention"
