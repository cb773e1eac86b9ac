# tests/pipeline/test_batch_dispatch.py
import numpy as np
import pytest

from topic_engine.master.args import GetThetaMatrixArgs, ProcessBatchesArgs
from topic_engine.master.master_component import MasterComponent
from topic_engine.model.phi_matrix import Token
from topic_engine.pipeline.parallel.types import ThetaMatrixType
from topic_engine.utils.errors import InternalError, InvalidOperation


@pytest.fixture
def master_with_model(master, make_phi):
    master.instance.store.set_phi_matrix("M", make_phi("M", {"a": [0.5, 0.5], "b": [0.5, 0.5]}))
    return master


def test_process_batches_waits_for_every_batch(master_with_model, engine):
    engine.slow["b3"] = 0.2

    result = master_with_model.process_batches(
        ProcessBatchesArgs(pwt_source_name="M", batch_filename=["b1", "b2", "b3"], nwt_target_name="N")
    )

    assert sorted(engine.seen) == ["b1", "b2", "b3"]
    n_wt = master_with_model.instance.store.get_phi_matrix("N")
    # b3 is the slowest batch and its tokens are already merged
    assert np.allclose(n_wt.row(n_wt.token_index(Token("b"))), [2.5, 2.5])
    assert n_wt.token_size == 3
    assert result.score_data["perplexity"] == {"raw": 11.0, "batches": 3}


def test_nwt_target_starts_from_zero(master_with_model):
    args = ProcessBatchesArgs(pwt_source_name="M", batch_filename=["b1"], nwt_target_name="N")

    master_with_model.process_batches(args)
    master_with_model.process_batches(args)

    n_wt = master_with_model.instance.store.get_phi_matrix("N")
    assert np.allclose(n_wt.row(n_wt.token_index(Token("a"))), [1.0, 1.0])


def test_missing_model_fails_before_dispatch(master, engine):
    with pytest.raises(InvalidOperation, match="Model X does not exist"):
        master.process_batches(ProcessBatchesArgs(pwt_source_name="X", batch_filename=["b1"]))
    assert engine.seen == []


def test_source_equal_to_target_rejected(master_with_model, engine):
    with pytest.raises(InvalidOperation):
        master_with_model.process_batches(
            ProcessBatchesArgs(pwt_source_name="M", batch_filename=["b1"], nwt_target_name="M")
        )
    assert engine.seen == []


def test_invalid_model_overrides_fail_before_dispatch(master_with_model, engine):
    with pytest.raises(InvalidOperation):
        master_with_model.process_batches(
            ProcessBatchesArgs(
                pwt_source_name="M",
                batch_filename=["b1"],
                nwt_target_name="N",
                regularizer_name=["r1"],
                regularizer_tau=[1.0, 2.0],
            )
        )
    assert engine.seen == []
    assert master_with_model.instance.store.get_phi_matrix("N") is None


def test_failing_batch_does_not_block_round(master_with_model):
    result = master_with_model.process_batches(
        ProcessBatchesArgs(pwt_source_name="M", batch_filename=["bad", "b1"], nwt_target_name="N")
    )
    assert result.score_data["perplexity"]["batches"] == 1


def test_scores_accumulate_until_reset(master_with_model):
    args = ProcessBatchesArgs(pwt_source_name="M", batch_filename=["b1"])

    master_with_model.process_batches(args)
    second = master_with_model.process_batches(args)
    args.reset_scores = True
    third = master_with_model.process_batches(args)

    assert second.score_data["perplexity"]["raw"] == 6.0
    assert third.score_data["perplexity"]["raw"] == 3.0


@pytest.mark.parametrize("theta_type", [ThetaMatrixType.DENSE, ThetaMatrixType.SPARSE])
def test_theta_returned_inline(master_with_model, theta_type):
    result = master_with_model.process_batches(
        ProcessBatchesArgs(pwt_source_name="M", batch_filename=["b2", "b1"], theta_matrix_type=theta_type)
    )

    theta = result.theta_matrix
    assert theta.item_size == 3
    assert theta.is_sparse == (theta_type == ThetaMatrixType.SPARSE)
    assert np.allclose(theta.to_frame().values, 0.5)
    # inline theta never lands in the persistent cache
    assert master_with_model.request_theta_matrix(GetThetaMatrixArgs(model_name="M")) is None


def test_theta_cache_type_uses_persistent_cache(master_config, engine, make_phi):
    config = master_config.model_copy(update={"cache_theta": True})
    with MasterComponent(config, engine) as master:
        master.instance.store.set_phi_matrix("M", make_phi("M", {"a": [0.5, 0.5]}))

        result = master.process_batches(ProcessBatchesArgs(pwt_source_name="M", batch_filename=["b1", "b2"]))
        theta = master.request_theta_matrix(GetThetaMatrixArgs(model_name="M"))

    assert result.theta_matrix is None
    assert theta.item_size == 3


def test_zero_processors_is_an_error(master_config, engine, make_phi):
    config = master_config.model_copy(update={"processors_count": 0})
    with MasterComponent(config, engine) as master:
        master.instance.store.set_phi_matrix("M", make_phi("M", {"a": [0.5, 0.5]}))
        with pytest.raises(InternalError):
            master.process_batches(ProcessBatchesArgs(pwt_source_name="M", batch_filename=["b1"]))


def test_missing_model_reported_before_target_clash(master, engine):
    with pytest.raises(InvalidOperation, match="Model X does not exist"):
        master.process_batches(
            ProcessBatchesArgs(pwt_source_name="X", batch_filename=["b1"], nwt_target_name="X")
        )
    assert engine.seen == []


def test_nwt_target_published_once_per_round(master_with_model, monkeypatch):
    store = master_with_model.instance.store
    published = []
    original = store._publish_phi

    def recording(name, matrix):
        published.append(name)
        original(name, matrix)

    monkeypatch.setattr(store, "_publish_phi", recording)
    master_with_model.process_batches(
        ProcessBatchesArgs(pwt_source_name="M", batch_filename=["b1", "b2", "b3"], nwt_target_name="N")
    )

    # zeroed target, then one snapshot holding every batch
    assert published == ["N", "N"]
    assert store.get_phi_matrix("N").is_frozen
