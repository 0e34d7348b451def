from deck_automation.services.sheet_matcher import (
    find_similar_sheet,
    levenshtein_distance,
    normalize_name,
    similarity,
)


def test_normalize_name_drops_separators_and_generic_words():
    assert normalize_name("Macroeconomics_PPT_Tracker") == "macroeconomics"
    assert normalize_name("  Data-Science  PPTs  Links ") == "data science"
    assert normalize_name("Trackers of Apple") == "trackers of apple"


def test_levenshtein_distance():
    assert levenshtein_distance("kitten", "sitting") == 3
    assert levenshtein_distance("", "abc") == 3
    assert levenshtein_distance("same", "same") == 0


def test_similarity_bounds():
    assert similarity("Macroeconomics_PPT_Tracker", "Macroeconomics") >= 0.75
    assert similarity("", "") == 1.0
    assert 0.0 <= similarity("abc", "xyz") < 0.75


def test_find_similar_sheet_picks_best_candidate():
    candidates = [
        {"id": "a", "name": "Microbiology_PPT_Tracker"},
        {"id": "b", "name": "Macroeconomic PPT Links"},
        {"id": "c", "name": "Macroeconomics_PPT_Tracker"},
    ]

    match = find_similar_sheet("Macroeconomics", candidates)

    assert match is not None
    assert (match.id, match.similarity) == ("c", 1.0)


def test_find_similar_sheet_tie_keeps_first_candidate():
    candidates = [
        {"id": "first", "name": "Macroeconomics PPT"},
        {"id": "second", "name": "Macroeconomics Links"},
    ]

    assert find_similar_sheet("Macroeconomics", candidates).id == "first"


def test_find_similar_sheet_below_threshold():
    assert find_similar_sheet("Macroeconomics", [{"id": "x", "name": "Organic Chemistry"}]) is None
    assert find_similar_sheet("Macroeconomics", []) is None


def test_similarity_is_symmetric_and_drops_with_distance():
    assert similarity("Macroeconomics", "Macroeconomic") == similarity("Macroeconomic", "Macroeconomics")
    scores = [similarity("abcdefgh", other) for other in ("abcdefgh", "abcdefgx", "abcdefxx", "abcdexxx")]
    assert scores == sorted(scores, reverse=True)
    assert scores[0] == 1.0
