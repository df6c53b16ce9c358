# tests/test_media_store.py

from pathlib import Path

from core.media_store import DirectoryMediaStore
from utils.file_utils import format_file_size, get_media_files, is_video_file


def test_scan_registers_media_once(database, image_dir):
    (image_dir / "notes.txt").write_text("not media")
    (image_dir / "broken.jpg").write_bytes(b"not a jpeg")

    store = DirectoryMediaStore(database, str(image_dir))
    added = store.scan()

    assert len(added) == 5
    assert [i.id for i in store.list_all_items()] == sorted(i.id for i in added)
    assert all(Path(i.path).is_absolute() for i in added)

    broken = database.get_item_by_path(str((image_dir / "broken.jpg").resolve()))
    assert broken.width is None

    ramp = database.get_item_by_path(str((image_dir / "a_ramp.png").resolve()))
    assert (ramp.width, ramp.height) == (90, 80)
    assert store.get_item(ramp.id) == ramp

    assert store.scan() == []
    assert store.find_new_files() == []


def test_scan_non_recursive(database, image_dir):
    nested = image_dir / "nested"
    nested.mkdir()
    (nested / "e.png").write_bytes((image_dir / "a_ramp.png").read_bytes())

    assert len(DirectoryMediaStore(database, str(image_dir), recursive=False).scan()) == 4
    assert len(DirectoryMediaStore(database, str(image_dir)).scan()) == 1


def test_video_detection(tmp_path):
    (tmp_path / "clip.MP4").write_bytes(b"")
    (tmp_path / "photo.jpg").write_bytes(b"")

    assert is_video_file("clip.MP4")
    assert not is_video_file("photo.jpg")
    assert len(get_media_files(str(tmp_path))) == 2
    assert get_media_files(str(tmp_path), include_videos=False) == [str(tmp_path / "photo.jpg")]


def test_format_file_size():
    assert format_file_size(512) == "512.00 B"
    assert format_file_size(1536) == "1.50 KB"
