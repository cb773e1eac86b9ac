# tests/persistence/test_model_codec.py
import io
import json

import numpy as np
import pyarrow as pa
import pytest

from topic_engine.engines.phi_operations import PhiMatrixOperations
from topic_engine.master.args import ExportModelArgs, ImportModelArgs
from topic_engine.master.master_component import MasterComponent
from topic_engine.model.chunk import TopicModelChunk
from topic_engine.model.phi_matrix import PhiMatrix, Token
from topic_engine.persistence import FORMAT_VERSION, ModelCodec
from topic_engine.utils.errors import CorruptedMessageError, DiskReadError, DiskWriteError, InvalidOperation


@pytest.fixture
def wide_phi():
    rng = np.random.default_rng(0)
    values = rng.random((25, 3), dtype=np.float32)
    values[values < 0.3] = 0.0
    tokens = [Token(f"w{i}", "@label" if i % 5 == 0 else "@default_class") for i in range(25)]
    return PhiMatrix.from_array("W", ["x", "y", "z"], tokens, values)


def test_tokens_per_chunk():
    assert ModelCodec.tokens_per_chunk(25, 3, 100 * 1024 * 1024) == 25
    assert ModelCodec.tokens_per_chunk(25, 3, 12) == 4
    assert ModelCodec.tokens_per_chunk(25, 3, 1) == 1


@pytest.mark.parametrize("chunk_bytes", [1, 12, 1 << 20])
def test_write_then_read(wide_phi, chunk_bytes):
    stream = io.BytesIO()

    chunks = ModelCodec.write(wide_phi, stream, chunk_bytes=chunk_bytes)
    stream.seek(0)
    restored = ModelCodec.read(stream, "R")

    expected_chunks = -(-25 // ModelCodec.tokens_per_chunk(25, 3, chunk_bytes))
    assert chunks == expected_chunks
    assert stream.getvalue()[0] == FORMAT_VERSION
    assert restored.tokens() == wide_phi.tokens()
    assert restored.topic_name == wide_phi.topic_name
    assert np.allclose(restored.values, wide_phi.values)


def test_chunk_message_is_sparse(wide_phi):
    dense = PhiMatrixOperations.retrieve_external_topic_model(wide_phi)

    chunk = ModelCodec.decode_chunk(ModelCodec.encode_chunk(dense))

    assert chunk.is_sparse
    assert chunk.token_size == 25
    assert np.allclose(chunk.dense_rows(), wide_phi.values)


def test_empty_matrix_cannot_be_written():
    with pytest.raises(InvalidOperation):
        ModelCodec.write(PhiMatrix("E", ["x"]), io.BytesIO(), chunk_bytes=1)


def _body(phi):
    stream = io.BytesIO()
    ModelCodec.write(phi, stream, chunk_bytes=12)
    return stream.getvalue()


def test_wrong_version(wide_phi):
    data = bytearray(_body(wide_phi))
    data[0] = 1
    with pytest.raises(CorruptedMessageError):
        ModelCodec.read(io.BytesIO(bytes(data)), "R")


def test_truncated(wide_phi):
    data = _body(wide_phi)
    with pytest.raises(CorruptedMessageError):
        ModelCodec.read(io.BytesIO(data[:-10]), "R")


def test_empty_and_header_only():
    with pytest.raises(CorruptedMessageError):
        ModelCodec.read(io.BytesIO(b""), "R")
    with pytest.raises(CorruptedMessageError):
        ModelCodec.read(io.BytesIO(b"\x00"), "R")


@pytest.mark.parametrize("tail", [b"0", b"-5xx", b"abc"])
def test_bad_length_token(tail):
    with pytest.raises(CorruptedMessageError):
        ModelCodec.read(io.BytesIO(b"\x00" + tail), "R")


def test_garbage_payload():
    with pytest.raises(CorruptedMessageError):
        ModelCodec.read(io.BytesIO(b"\x004abcd"), "R")


def test_whitespace_before_length_and_trailing(wide_phi):
    body = _body(wide_phi)
    # version byte, then whitespace before the first length, then trailing whitespace
    restored = ModelCodec.read(io.BytesIO(body[:1] + b" \n" + body[1:] + b"\n"), "R")
    assert restored.token_size == 25


# ============================================================
# through the command surface
# ============================================================
def test_export_refuses_existing_file(master, wide_phi, tmp_path):
    master.instance.store.set_phi_matrix("W", wide_phi)
    path = tmp_path / "model.bin"
    path.write_bytes(b"keep me")

    with pytest.raises(DiskWriteError):
        master.export_model(ExportModelArgs(model_name="W", file_name=str(path)))
    assert path.read_bytes() == b"keep me"


def test_export_empty_model_creates_nothing(master, tmp_path):
    master.instance.store.set_phi_matrix("E", PhiMatrix("E", ["x"]))
    path = tmp_path / "empty.bin"

    with pytest.raises(InvalidOperation):
        master.export_model(ExportModelArgs(model_name="E", file_name=str(path)))
    assert not path.exists()


def test_import_missing_file(master, tmp_path):
    with pytest.raises(DiskReadError):
        master.import_model(ImportModelArgs(model_name="R", file_name=str(tmp_path / "nope.bin")))


def test_multi_chunk_export_import(master_config, wide_phi, tmp_path):
    config = master_config.model_copy(update={"export_chunk_bytes": 6})
    path = str(tmp_path / "model.bin")

    with MasterComponent(config) as master:
        master.instance.store.set_phi_matrix("W", wide_phi)
        master.export_model(ExportModelArgs(model_name="W", file_name=path))
        master.import_model(ImportModelArgs(model_name="R", file_name=path))

        restored = master.instance.store.get_phi_matrix("R")

    assert restored.is_frozen
    assert restored.to_frame().equals(wide_phi.to_frame())


# ============================================================
# hostile input
# ============================================================
def _frame(payload: bytes) -> bytes:
    return b"\x00" + str(len(payload)).encode("ascii") + payload


def _ipc(columns: dict, topic_name=("x", "y")) -> bytes:
    batch = pa.RecordBatch.from_pydict(columns).replace_schema_metadata(
        {b"name": b"C", b"topic_name": json.dumps(list(topic_name)).encode("utf-8")}
    )
    sink = pa.BufferOutputStream()
    with pa.ipc.new_stream(sink, batch.schema) as writer:
        writer.write_batch(batch)
    return sink.getvalue().to_pybytes()


def test_read_leaves_caller_stream_open(wide_phi):
    stream = io.BytesIO(_body(wide_phi))

    ModelCodec.read(stream, "R")

    assert not stream.closed
    assert stream.getvalue()[:1] == b"\x00"


def test_oversized_length_token():
    with pytest.raises(CorruptedMessageError):
        ModelCodec.read(io.BytesIO(b"\x00" + b"9" * 30), "R")


def test_length_beyond_end_of_file(tmp_path):
    path = tmp_path / "huge.bin"
    path.write_bytes(b"\x00999999999999999")
    with open(path, "rb") as f, pytest.raises(CorruptedMessageError):
        ModelCodec.read(f, "R")

    path.write_bytes(b"\x002000000000abc")
    with open(path, "rb") as f, pytest.raises(CorruptedMessageError, match="truncated"):
        ModelCodec.read(f, "R")


def test_negative_topic_index():
    chunk = TopicModelChunk(
        name="C",
        topic_name=["x", "y"],
        token=["a"],
        class_id=["@default_class"],
        token_weights=[np.array([1.0], dtype=np.float32)],
        topic_index=[np.array([-1], dtype=np.int32)],
    )
    with pytest.raises(CorruptedMessageError):
        ModelCodec.read(io.BytesIO(_frame(ModelCodec.encode_chunk(chunk))), "R")


def test_null_token():
    payload = _ipc(
        {
            "token": pa.array([None], type=pa.string()),
            "class_id": pa.array(["@default_class"]),
            "topic_index": pa.array([[0]], type=pa.list_(pa.int32())),
            "token_weights": pa.array([[1.0]], type=pa.list_(pa.float32())),
        }
    )
    with pytest.raises(CorruptedMessageError):
        ModelCodec.decode_chunk(payload)


def test_flat_topic_index_column():
    payload = _ipc(
        {
            "token": pa.array(["a"]),
            "class_id": pa.array(["@default_class"]),
            "topic_index": pa.array([0], type=pa.int32()),
            "token_weights": pa.array([[1.0]], type=pa.list_(pa.float32())),
        }
    )
    with pytest.raises(CorruptedMessageError):
        ModelCodec.decode_chunk(payload)


def test_null_weight_inside_row():
    payload = _ipc(
        {
            "token": pa.array(["a"]),
            "class_id": pa.array(["@default_class"]),
            "topic_index": pa.array([[0]], type=pa.list_(pa.int32())),
            "token_weights": pa.array([[None]], type=pa.list_(pa.float32())),
        }
    )
    with pytest.raises(CorruptedMessageError, match="Null entries"):
        ModelCodec.decode_chunk(payload)
