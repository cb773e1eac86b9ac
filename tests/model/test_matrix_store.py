# tests/model/test_matrix_store.py
import threading

import numpy as np
import pytest

from topic_engine.model.phi_matrix import PhiMatrix, Token
from topic_engine.model.store import MatrixStore
from topic_engine.model.topic_model import RawMatrix, TopicModel, VersionedModel
from topic_engine.utils.errors import InvalidOperation


def test_published_matrix_is_frozen_and_renamed(make_phi):
    store = MatrixStore()
    phi = make_phi("tmp", {"a": [1, 0]})

    store.set_phi_matrix("M", phi)

    published = store.get_phi_matrix("M")
    assert published.name == "M"
    assert published.is_frozen


def test_republishing_frozen_matrix_under_new_name_copies(make_phi):
    store = MatrixStore()
    store.set_phi_matrix("M", make_phi("M", {"a": [1, 0]}))

    store.set_phi_matrix("M2", store.get_phi_matrix("M"))

    assert store.get_phi_matrix("M").name == "M"
    assert store.get_phi_matrix("M2").name == "M2"


def test_resolve_prefers_versioned_model(make_phi):
    store = MatrixStore()
    store.set_phi_matrix("M", make_phi("M", {"a": [1, 0]}))
    assert isinstance(store.resolve("M"), RawMatrix)

    n_wt = make_phi("M", {"a": [3, 1]})
    p_wt = make_phi("M", {"a": [1, 1]})
    store.set_topic_model(TopicModel("M", 1, n_wt, p_wt))

    source = store.resolve("M")
    assert isinstance(source, VersionedModel)
    assert source.n_wt.values.tolist() == [[3.0, 1.0]]
    assert source.p_wt.values.tolist() == [[1.0, 1.0]]


def test_require_unknown_model():
    with pytest.raises(InvalidOperation, match="Model X does not exist"):
        MatrixStore().require("X")


def test_snapshot_held_by_reader_survives_replacement(make_phi):
    store = MatrixStore()
    store.set_phi_matrix("M", make_phi("M", {"a": [1, 0]}))
    snapshot = store.get_phi_matrix("M")

    store.accumulate("M", [(Token("a"), np.array([1, 1], dtype=np.float32))])
    store.flush("M")

    assert snapshot.values.tolist() == [[1.0, 0.0]]
    assert store.get_phi_matrix("M").values.tolist() == [[2.0, 1.0]]


def test_accumulate_appends_unknown_tokens(make_phi):
    store = MatrixStore()
    store.set_phi_matrix("M", make_phi("M", {"a": [1, 0]}))

    store.accumulate("M", [(Token("z"), np.array([0, 5], dtype=np.float32))])
    store.flush("M")

    phi = store.get_phi_matrix("M")
    assert phi.token_size == 2
    assert phi.row(phi.token_index(Token("z"))).tolist() == [0.0, 5.0]


def test_accumulate_missing_target():
    with pytest.raises(InvalidOperation):
        MatrixStore().accumulate("nope", [])


def test_concurrent_accumulate_loses_nothing():
    store = MatrixStore()
    store.set_phi_matrix("N", PhiMatrix("N", ["t0", "t1"]))
    one = np.array([1, 1], dtype=np.float32)

    def worker():
        for _ in range(50):
            store.accumulate("N", [(Token("a"), one)])

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    store.flush("N")

    assert store.get_phi_matrix("N").values.tolist() == [[200.0, 200.0]]


def test_dispose(make_phi):
    store = MatrixStore()
    store.set_phi_matrix("M", make_phi("M", {"a": [1, 0]}))

    assert store.dispose("M") is True
    assert store.dispose("M") is False
    assert store.resolve("M") is None
    assert store.names() == []


def test_accumulated_increments_stay_private_until_flush(make_phi):
    store = MatrixStore()
    store.set_phi_matrix("M", make_phi("M", {"a": [1, 0]}))
    published = store.get_phi_matrix("M")

    store.accumulate("M", [(Token("a"), np.array([1, 1], dtype=np.float32))])
    store.accumulate("M", [(Token("b"), np.array([0, 3], dtype=np.float32))])

    assert store.get_phi_matrix("M") is published
    assert store.flush("M") is True
    assert store.flush("M") is False

    phi = store.get_phi_matrix("M")
    assert phi.is_frozen
    assert phi.values.tolist() == [[2.0, 1.0], [0.0, 3.0]]


def test_republish_discards_staged_increments(make_phi):
    store = MatrixStore()
    store.set_phi_matrix("M", make_phi("M", {"a": [1, 0]}))
    store.accumulate("M", [(Token("a"), np.array([5, 5], dtype=np.float32))])

    store.set_phi_matrix("M", make_phi("M", {"a": [0, 0]}))

    assert store.flush("M") is False
    assert store.get_phi_matrix("M").values.tolist() == [[0.0, 0.0]]
