import pytest

from voice_actions.services.languages import get_language_name, normalize_language_code


@pytest.mark.parametrize(
    "raw,expected",
    [("fr-FR", "fr"), ("FR", "fr"), ("es_MX", "es"), ("french", "fr"), ("German", "de"), (None, "en"), ("xx", "en")],
)
def test_normalize_language_code(raw, expected):
    assert normalize_language_code(raw) == expected


def test_language_names_come_from_one_table():
    assert get_language_name("ja") == "Japanese"
    assert get_language_name("pt-BR") == "Portuguese"
    assert get_language_name("klingon") == "English"
