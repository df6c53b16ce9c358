# tests/test_text_recognition.py

from PIL import Image

from conftest import FakeRecognizer
from core.text_recognition import RecognizedText, extract_key_info, normalize_text


def test_normalize_text():
    assert normalize_text("  Line one\nline\ttwo   three \n") == "Line one line two three"


def test_significance_needs_more_than_min_words():
    recognizer = FakeRecognizer()
    ten_words = RecognizedText(" ".join(["word"] * 10))
    eleven_words = RecognizedText(" ".join(["word"] * 11))

    assert not recognizer.is_significant(ten_words)
    assert recognizer.is_significant(eleven_words)


def test_searchable_text():
    recognizer = FakeRecognizer(text="Boarding\npass  GATE 12")
    image = Image.new('RGB', (10, 10))

    assert recognizer.extract_searchable_text(image) == "Boarding pass GATE 12"
    assert not recognizer.has_significant_text(image)


def test_key_info():
    text = RecognizedText(
        "Store receipt 12/03/2024\nMilk $3.49 Bread 2.99\n"
        "Call (555) 123-4567 or mail help@shop.example.com"
    )
    info = extract_key_info(text)

    assert info['date'] == "12/03/2024"
    assert info['amounts'] == "$3.49, 2.99"
    assert info['phone'] == "(555) 123-4567"
    assert info['email'] == "help@shop.example.com"


def test_key_info_empty():
    assert extract_key_info(RecognizedText("hello")) == {}
