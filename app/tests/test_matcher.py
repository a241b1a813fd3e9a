"""
Unit tests for identifier matching (services/matcher.py).

Tests cover:
- Score bands (exact, containment, word overlap, nothing in common)
- Ranking ties and the acceptance floor
- Attachment file name parsing
- Receipt -> service record title matching
"""

import pytest

from services.matcher import (
    ACCEPTANCE_FLOOR,
    best_match,
    match_file_to_record,
    normalize,
    parse_import_file_name,
    rank_candidates,
    score,
    split_extension,
)


class TestScore:

    def test_identical_after_normalization(self):
        assert score("Honda CBR-650F", "honda cbr 650f") == 100

    def test_containment_scores_85(self):
        assert score("Honda CBR 650F", "2021 Honda CBR650F") == 85
        assert score("Honda CBR 650F", "2021 Honda CBR650F") >= ACCEPTANCE_FLOOR

    def test_word_overlap(self):
        # one shared word of max(3, 2) words: round(1/3 * 70) + 15
        assert score("Red Ducati Monster", "Blue Monster") == 38

    def test_word_overlap_rounds_halves_up(self):
        # 3/4 * 70 = 52.5
        assert score("Red Honda Grom Bike", "Blue Honda Grom Bike") == 68

    def test_nothing_in_common(self):
        assert score("Random Stuff", "2019 Yamaha R1") == 0

    @pytest.mark.parametrize("a,b", [("", "Honda"), ("Honda", ""), ("---", "Honda")])
    def test_empty_labels_score_zero(self, a, b):
        assert score(a, b) == 0

    def test_normalize_keeps_only_letters_and_digits(self):
        assert normalize("2019 Honda-CBR_650F!") == "2019hondacbr650f"


class TestRanking:

    def test_best_candidate_wins(self):
        ranked = rank_candidates("Bumblebee", ["Wrench", "Bumblebee", "Bee"])
        assert ranked.index == 1
        assert ranked.confidence == 100
        assert ranked.ambiguous is False

    def test_tie_keeps_first_and_flags_ambiguous(self):
        ranked = rank_candidates("Honda", ["Honda CBR", "Honda Grom"])
        assert ranked.index == 0
        assert ranked.confidence == 85
        assert ranked.ambiguous is True

    def test_no_candidate_scores(self):
        assert rank_candidates("Random Stuff", ["Bumblebee", "Wrench"]) is None

    def test_floor_filters_weak_matches(self):
        assert best_match("Red Ducati Monster", ["Blue Monster"]) is None
        assert best_match("Red Ducati Monster", ["Blue Monster"], floor=30).confidence == 38


class TestFileNames:

    def test_split_extension_lowercases(self):
        assert split_extension("Garage.JPG") == ("Garage", "jpg")
        assert split_extension(".hidden") == (".hidden", "")
        assert split_extension("README") == ("README", "")

    def test_vehicle_prefix_and_dedupe_suffix(self):
        parsed = parse_import_file_name("2019-Honda-CBR650F-Registration-2.pdf")
        assert parsed.title == "Registration"
        assert parsed.suffix == 2
        assert (parsed.year, parsed.make, parsed.model) == ("2019", "Honda", "CBR650F")
        assert parsed.extension == "pdf"

    def test_trailing_year_is_not_a_suffix(self):
        parsed = parse_import_file_name("Insurance-2024.pdf")
        assert parsed.suffix is None
        assert parsed.title == "Insurance 2024"

    def test_separators_become_spaces(self):
        assert parse_import_file_name("oil_change-receipt.jpg").title == "oil change receipt"


class TestReceiptMatching:

    def test_matches_service_record_title(self):
        found = match_file_to_record("Oil-Change.pdf", ["Brake Pads", "Oil Change"])
        assert found.index == 1
        assert found.title == "Oil Change"
        assert found.confidence == 100

    def test_no_match_below_floor(self):
        assert match_file_to_record("scan-0001.pdf", ["Brake Pads", "Oil Change"]) is None

    def test_ambiguous_titles_flagged(self):
        found = match_file_to_record("Tires.pdf", ["Front Tires", "Rear Tires"])
        assert found.index == 0
        assert found.ambiguous is True
