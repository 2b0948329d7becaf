"""Tests for the append-only embedding store."""
import threading

import numpy as np
import pytest

from facegroups.core.exceptions import InvalidEmbeddingError
from facegroups.services.embedding_store import EmbeddingStore


def test_admit_appends_without_checking_duplicates():
    store = EmbeddingStore()
    store.admit(np.array([1.0, 0.0]), b"a")
    store.admit(np.array([1.0, 0.0]), b"a-again")

    assert len(store) == 2
    assert [face.face_image for face in store.all()] == [b"a", b"a-again"]


def test_admit_if_new_rejects_near_duplicates():
    store = EmbeddingStore(dimension=2)

    assert store.admit_if_new(np.array([1.0, 0.0]), b"a", threshold=0.8) is not None
    assert store.admit_if_new(np.array([0.99, 0.1]), b"a2", threshold=0.8) is None
    assert store.admit_if_new(np.array([-1.0, 0.0]), b"b", threshold=0.8) is not None
    assert store.admit_if_new(np.array([-0.98, -0.05]), b"b2", threshold=0.8) is None

    assert [face.face_image for face in store.all()] == [b"a", b"b"]


def test_snapshot_is_not_affected_by_later_admissions():
    store = EmbeddingStore()
    store.admit(np.array([1.0, 0.0]), b"a")
    snapshot = store.all()

    store.admit(np.array([0.0, 1.0]), b"b")

    assert len(snapshot) == 1
    assert len(store.all()) == 2


def test_retained_embeddings_are_immutable_copies():
    source = np.array([1.0, 2.0, 3.0])
    store = EmbeddingStore()
    face = store.admit(source, b"a", image_key="photo.jpg")

    source[0] = 100.0
    assert face.embedding[0] == 1.0
    assert face.image_key == "photo.jpg"
    with pytest.raises(ValueError):
        face.embedding[0] = 5.0


def test_dimension_is_enforced():
    store = EmbeddingStore(dimension=3)
    with pytest.raises(InvalidEmbeddingError):
        store.admit(np.array([1.0, 0.0]), b"a")
    with pytest.raises(InvalidEmbeddingError):
        store.admit_if_new(np.ones(4), b"a")
    assert len(store) == 0


def test_non_finite_embeddings_are_rejected():
    store = EmbeddingStore()
    with pytest.raises(InvalidEmbeddingError):
        store.admit(np.array([np.nan, 1.0]), b"a")


def test_concurrent_admissions_of_the_same_face_keep_one():
    store = EmbeddingStore(dimension=3)
    embedding = np.array([0.3, 0.4, 0.5])
    barrier = threading.Barrier(8)
    results = []

    def admit():
        barrier.wait()
        results.append(store.admit_if_new(embedding, b"face", threshold=0.9))

    threads = [threading.Thread(target=admit) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(store) == 1
    assert sum(result is not None for result in results) == 1
