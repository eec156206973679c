import pytest

from chatcommerce.services.phone import count_digits, normalize_phone


class TestNormalizePhone:
    @pytest.mark.parametrize(
        "raw",
        ["51987654321", "+51987654321", "whatsapp:+51987654321", "+51 987 654 321", " 51-987-654-321 "],
    )
    def test_equivalent_forms_collapse(self, raw):
        assert normalize_phone(raw) == "51987654321"

    def test_none_is_empty(self):
        assert normalize_phone(None) == ""

    def test_numbers_are_accepted(self):
        assert normalize_phone(51987654321) == "51987654321"


class TestCountDigits:
    def test_ignores_separators(self):
        assert count_digits("987 654-321") == 9

    def test_empty(self):
        assert count_digits("") == 0
        assert count_digits(None) == 0
