# tests/master/test_model_algebra.py
import numpy as np
import pytest

from topic_engine.config.model_config import RegularizerConfig
from topic_engine.master.args import (
    ExportModelArgs,
    GetTopicModelArgs,
    ImportModelArgs,
    MergeModelArgs,
    NormalizeModelArgs,
    RegularizeModelArgs,
    RegularizerSettings,
)
from topic_engine.model.phi_matrix import Token
from topic_engine.utils.errors import InvalidOperation


@pytest.fixture
def master_m(master, make_phi):
    master.instance.store.set_phi_matrix("M", make_phi("M", {"a": [1, 0], "b": [0, 2]}))
    return master


def _values(master, name):
    return master.instance.store.resolve(name).n_wt.to_frame()


def test_normalize_merge_export_import_scenario(master_m, tmp_path):
    master_m.normalize_model(NormalizeModelArgs(pwt_target_name="P", nwt_source_name="M"))
    p = master_m.instance.store.get_phi_matrix("P")
    assert np.allclose(p.values.sum(axis=0), [1.0, 1.0])

    master_m.merge_model(MergeModelArgs(nwt_target_name="M2", nwt_source_name=["M"], source_weight=[2.0]))
    assert master_m.instance.store.get_phi_matrix("M2").values.tolist() == [[2.0, 0.0], [0.0, 4.0]]

    path = str(tmp_path / "f")
    master_m.export_model(ExportModelArgs(model_name="M2", file_name=path))
    master_m.import_model(ImportModelArgs(model_name="M3", file_name=path))

    assert _values(master_m, "M3").equals(_values(master_m, "M2"))


def test_merge_skips_missing_sources(master_m, make_phi):
    master_m.instance.store.set_phi_matrix("K", make_phi("K", {"b": [1, 1], "c": [5, 0]}))

    master_m.merge_model(
        MergeModelArgs(nwt_target_name="T", nwt_source_name=["nope", "M", "K"], source_weight=[9.0, 1.0, 0.5])
    )

    frame = _values(master_m, "T")
    assert frame.loc[("@default_class", "b")].tolist() == [0.5, 2.5]
    assert frame.loc[("@default_class", "c")].tolist() == [2.5, 0.0]


def test_merge_topic_override(master_m):
    master_m.merge_model(
        MergeModelArgs(
            nwt_target_name="T", nwt_source_name=["M"], source_weight=[1.0], topic_name=["@topic_1"]
        )
    )
    t = master_m.instance.store.get_phi_matrix("T")
    assert t.topic_name == ("@topic_1",)
    assert t.values.tolist() == [[0.0], [2.0]]


def test_merge_argument_validation(master_m):
    with pytest.raises(InvalidOperation):
        master_m.merge_model(MergeModelArgs(nwt_target_name="T"))
    with pytest.raises(InvalidOperation):
        master_m.merge_model(MergeModelArgs(nwt_target_name="T", nwt_source_name=["M"], source_weight=[]))
    with pytest.raises(InvalidOperation, match="x, y"):
        master_m.merge_model(MergeModelArgs(nwt_target_name="T", nwt_source_name=["x", "y"], source_weight=[1, 1]))


def test_regularize_then_normalize(master_m):
    master_m.create_or_reconfigure_regularizer(RegularizerConfig(name="smooth", type="smooth_sparse_phi"))

    master_m.regularize_model(
        RegularizeModelArgs(
            pwt_source_name="M",
            nwt_source_name="M",
            rwt_target_name="R",
            regularizer_settings=[RegularizerSettings("smooth", 1.0)],
        )
    )
    master_m.normalize_model(NormalizeModelArgs(pwt_target_name="P", nwt_source_name="M", rwt_source_name="R"))

    assert master_m.instance.store.get_phi_matrix("R").values.tolist() == [[1.0, 1.0], [1.0, 1.0]]
    p = master_m.instance.store.get_phi_matrix("P")
    assert np.allclose(p.values, [[2 / 3, 0.25], [1 / 3, 0.75]])
    assert master_m.request_regularizer_state("smooth")["calls"] == 1


def test_regularize_unknown_regularizer(master_m):
    with pytest.raises(InvalidOperation):
        master_m.regularize_model(
            RegularizeModelArgs(
                pwt_source_name="M",
                nwt_source_name="M",
                rwt_target_name="R",
                regularizer_settings=[RegularizerSettings("missing")],
            )
        )
    assert master_m.instance.store.get_phi_matrix("R") is None


def test_normalize_missing_source(master):
    with pytest.raises(InvalidOperation):
        master.normalize_model(NormalizeModelArgs(pwt_target_name="P", nwt_source_name="nope"))


def test_request_topic_model(master_m):
    chunk = master_m.request_topic_model(
        GetTopicModelArgs(model_name="M", token=[Token("b")], use_sparse_format=True)
    )
    assert chunk.token == ["b"]
    assert chunk.topic_index[0].tolist() == [1]
    assert chunk.token_weights[0].tolist() == [2.0]
