# tests/test_database.py

import threading

import numpy as np
import pytest

from core.database import GalleryDatabase
from core.models import (AnnotationKind, BoundingBox, FaceRecord, Label,
                         ProcessingStage)


def face(media_id, value=0.5, box=(1, 2, 30, 40)):
    return FaceRecord(media_id=media_id, bounding_box=BoundingBox(*box),
                      embedding=np.full(128, value, dtype=np.float32),
                      confidence=0.9)


def test_items_get_stable_ascending_ids(database):
    first = database.add_item("/a.jpg", 10, 20)
    second = database.add_item("/b.mp4", None, None, is_video=True)

    assert second > first
    assert database.add_item("/a.jpg") == first
    assert [i.id for i in database.list_all_items()] == [first, second]

    video = database.get_item(second)
    assert video.is_video and video.width is None
    assert database.get_item_by_path("/a.jpg").height == 20
    assert database.get_item(999) is None


def test_file_database_persists(tmp_path):
    path = tmp_path / "nested" / "gallery.db"
    db = GalleryDatabase(str(path))
    item_id = db.add_item("/a.jpg")
    db.save_hash(item_id, "00000000000000ff")
    db.close()

    reopened = GalleryDatabase(str(path))
    assert reopened.get_item(item_id).perceptual_hash == "00000000000000ff"
    assert reopened.get_stage_result(item_id, ProcessingStage.DUPLICATES)
    reopened.close()


def test_hash_stage(database):
    item_id = database.add_item("/a.jpg")
    assert not database.get_stage_result(item_id, ProcessingStage.DUPLICATES)

    database.save_hash(item_id, "ffffffffffffffff")
    assert database.get_stage_result(item_id, ProcessingStage.DUPLICATES)
    assert [i.id for i in database.items_with_hash()] == [item_id]


def test_save_hash_for_unknown_item(database):
    with pytest.raises(KeyError):
        database.save_hash(42, "ffffffffffffffff")


def test_faces_are_replaced(database):
    item_id = database.add_item("/a.jpg")
    database.save_faces(item_id, [face(item_id), face(item_id, 0.25)])
    database.save_faces(item_id, [face(item_id, 0.75, box=(5, 6, 7, 8))])

    faces = database.get_faces(item_id)
    assert len(faces) == 1
    assert faces[0].bounding_box == BoundingBox(5, 6, 7, 8)
    assert faces[0].embedding.dtype == np.float32
    np.testing.assert_array_equal(faces[0].embedding, np.full(128, 0.75))
    assert faces[0].confidence == pytest.approx(0.9)


def test_face_stage_completed_without_faces(database):
    item_id = database.add_item("/a.jpg")
    assert not database.get_stage_result(item_id, ProcessingStage.FACES)

    database.save_faces(item_id, [])
    assert database.get_stage_result(item_id, ProcessingStage.FACES)
    assert database.get_faces(item_id) == []


def test_face_embedding_is_a_copy():
    buffer = np.zeros(128, dtype=np.float32)
    record = FaceRecord(media_id=1, bounding_box=BoundingBox(0, 0, 1, 1), embedding=buffer)
    buffer[:] = 1.0
    assert record.embedding.sum() == 0.0


def test_person_assignment(database):
    item_id = database.add_item("/a.jpg")
    database.save_faces(item_id, [face(item_id), face(item_id)])
    first, second = database.get_faces(item_id)

    database.assign_face_to_person(first.id, 7)
    unassigned = database.get_unassigned_faces()

    assert [f.id for f in unassigned] == [second.id]
    assert database.get_faces(item_id)[0].person_id == 7


def test_labels_append_and_replace(database):
    item_id = database.add_item("/a.jpg")
    database.save_labels(item_id, [Label("dog", 0.9)])
    database.save_labels(item_id, [Label("sky", 0.8)])
    assert [l.text for l in database.get_labels(item_id)] == ["dog", "sky"]

    database.save_labels(item_id, [Label("cat", 0.75)], replace=True)
    assert [l.text for l in database.get_labels(item_id)] == ["cat"]


def test_text_is_kept_apart_from_labels(database):
    item_id = database.add_item("/a.jpg")
    database.save_labels(item_id, [Label("document", 0.8)])
    database.save_text(item_id, [Label("invoice total due", 1.0, kind=AnnotationKind.TEXT)])

    texts = database.get_labels(item_id, AnnotationKind.TEXT)
    labels = database.get_labels(item_id, AnnotationKind.LABEL)

    assert [t.text for t in texts] == ["invoice total due"]
    assert texts[0].kind is AnnotationKind.TEXT
    assert [l.text for l in labels] == ["document"]
    assert database.get_distinct_labels() == ["document"]

    database.save_text(item_id, [], replace=True)
    assert database.get_labels(item_id, AnnotationKind.TEXT) == []
    assert database.get_labels(item_id, AnnotationKind.LABEL) != []


def test_label_stages_are_independent(database):
    item_id = database.add_item("/a.jpg")
    database.save_labels(item_id, [])

    assert database.get_stage_result(item_id, ProcessingStage.LABELS)
    assert not database.get_stage_result(item_id, ProcessingStage.TEXT)


def test_media_with_label(database):
    a = database.add_item("/a.jpg")
    b = database.add_item("/b.jpg")
    database.save_labels(a, [Label("dog", 0.75)])
    database.save_labels(b, [Label("dog", 0.95), Label("grass", 0.8)])

    assert database.get_media_with_label("dog") == [b, a]
    assert database.get_media_with_label("cat") == []


def test_label_confidence_is_validated():
    with pytest.raises(ValueError):
        Label("dog", 1.5)


class HookedConnection:
    """Wraps a sqlite connection and calls a hook inside executemany"""

    def __init__(self, conn, hook):
        self._conn = conn
        self._hook = hook

    def __getattr__(self, name):
        return getattr(self._conn, name)

    def __enter__(self):
        return self._conn.__enter__()

    def __exit__(self, *exc):
        return self._conn.__exit__(*exc)

    def executemany(self, *args):
        result = self._conn.executemany(*args)
        self._hook()
        return result


def test_reads_wait_for_save_in_progress(database):
    item_id = database.add_item("/a.jpg")
    database.save_faces(item_id, [face(item_id), face(item_id)])

    seen = []
    readers = []

    def read_faces():
        seen.append(len(database.get_faces(item_id)))

    def start_reader():
        reader = threading.Thread(target=read_faces)
        reader.start()
        # Reader must block until the save commits
        reader.join(0.2)
        readers.append(reader)

    database.conn = HookedConnection(database.conn, start_reader)
    database.save_faces(item_id, [face(item_id, 0.1), face(item_id, 0.2)])
    for reader in readers:
        reader.join(5)

    assert seen == [2]
    assert [f.embedding[0] for f in database.get_faces(item_id)] == \
        pytest.approx([0.1, 0.2])
