import random

import pytest

from ..services.errors import ValidationError
from ..services.prefix_index import PrefixIndex


class TestLongestMatch:
    """Lookup returns the longest stored prefix of the input"""

    def test_longer_prefix_wins(self):
        idx = PrefixIndex(["1", "44", "441", "4420"])
        assert idx.longest_match("441234567") == "441"
        assert idx.longest_match("442012345") == "4420"
        assert idx.longest_match("449") == "44"
        assert idx.longest_match("12125550000") == "1"

    def test_no_match(self):
        idx = PrefixIndex(["44", "49"])
        assert idx.longest_match("33123") is None
        assert idx.longest_match("4") is None
        assert idx.longest_match("") is None

    def test_catch_all_matches_everything(self):
        idx = PrefixIndex(["", "44"])
        assert idx.longest_match("44") == "44"
        assert idx.longest_match("999") == ""
        assert idx.longest_match("") == ""

    def test_input_shorter_than_prefix(self):
        idx = PrefixIndex(["4420"])
        assert idx.longest_match("442") is None

    def test_matches_brute_force(self):
        rng = random.Random(7)
        prefixes = {"".join(rng.choice("0123") for _ in range(rng.randint(1, 5))) for _ in range(200)}
        idx = PrefixIndex(prefixes)
        for _ in range(500):
            number = "".join(rng.choice("0123") for _ in range(rng.randint(0, 8)))
            candidates = [p for p in prefixes if number.startswith(p)]
            expected = max(candidates, key=len) if candidates else None
            assert idx.longest_match(number) == expected


class TestBuild:
    def test_duplicates_rejected_with_every_row(self):
        with pytest.raises(ValidationError) as exc:
            PrefixIndex(["1", "44", "1", "44", "7"])
        rows = [v.row for v in exc.value.violations]
        assert rows == [3, 4]

    def test_non_digits_rejected(self):
        with pytest.raises(ValidationError) as exc:
            PrefixIndex(["1a", "44", "+1"])
        assert [v.row for v in exc.value.violations] == [1, 3]

    def test_empty_prefix_can_be_disallowed(self):
        with pytest.raises(ValidationError):
            PrefixIndex([""], allow_empty=False)

    def test_container_protocol(self):
        idx = PrefixIndex(["44", "1", "441", "2"])
        assert len(idx) == 4
        assert "441" in idx
        assert "4" not in idx
        assert list(idx) == ["1", "2", "44", "441"]
