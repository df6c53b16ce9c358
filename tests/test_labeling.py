# tests/test_labeling.py

from PIL import Image

from conftest import FakeLabeler
from core.labeling import PhotoCategory, categorize_photo, suggest_albums
from core.models import Label


def test_labels_are_filtered_and_sorted():
    labeler = FakeLabeler(predictions=[("tree", 0.71), ("beach", 0.9),
                                       ("car", 0.69), ("sky", 0.7)])
    labels = labeler.label(Image.new('RGB', (10, 10)))

    assert [l.text for l in labels] == ["beach", "tree", "sky"]


def test_custom_threshold():
    labeler = FakeLabeler(predictions=[("dog", 0.5)], confidence_threshold=0.4)
    with labeler:
        assert [l.text for l in labeler.label(Image.new('RGB', (10, 10)))] == ["dog"]


def test_categorize_by_top_label():
    labels = [Label("plant", 0.75), Label("Golden Retriever dog", 0.92)]
    assert categorize_photo(labels) is PhotoCategory.PETS
    assert categorize_photo([Label("receipt", 0.8)]) is PhotoCategory.DOCUMENTS
    assert categorize_photo([Label("bicycle", 0.8)]) is PhotoCategory.OTHER
    assert categorize_photo([]) is PhotoCategory.UNCATEGORIZED


def test_album_suggestions():
    labels = [Label("beach", 0.9), Label("dog", 0.8), Label("hot dog food", 0.75),
              Label("sand", 0.7)]
    assert suggest_albums(labels) == ["Travel", "Pets", "Food"]
    assert suggest_albums([]) == []
