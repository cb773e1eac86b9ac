# topic_engine/persistence/model_codec.py
from __future__ import annotations

import io
import json
from typing import BinaryIO, Optional

import numpy as np
import pyarrow as pa

from topic_engine import logs
from topic_engine.engines.phi_operations import PhiMatrixOperations
from topic_engine.model.chunk import TopicModelChunk
from topic_engine.model.phi_matrix import PhiMatrix
from topic_engine.utils.errors import CorruptedMessageError, InvalidOperation

FORMAT_VERSION = 0
MAX_CHUNK_BYTES = 2**31 - 1
_READ_PIECE_BYTES = 1 << 20
_WHITESPACE = b" \t\n\r\x0b\x0c"

_CHUNK_SCHEMA = pa.schema(
    [
        ("token", pa.string()),
        ("class_id", pa.string()),
        ("topic_index", pa.list_(pa.int32())),
        ("token_weights", pa.list_(pa.float32())),
    ]
)


class ModelCodec:
    """
    On-disk model format (version 0):

        <1 byte: version = 0>
        repeated:
            <decimal ASCII length><length bytes: one Arrow IPC stream>
        <EOF>

    Each chunk is a self-contained TopicModelChunk (sparse rows,
    topic names in the schema metadata). An Arrow IPC stream starts with
    0xFFFFFFFF, so the payload never continues the decimal length token.
    """

    # --------------------------------------------------
    # chunk message
    # --------------------------------------------------
    @staticmethod
    def _list_array(rows: list[np.ndarray], value_type: pa.DataType, np_type) -> pa.Array:
        lengths = np.array([len(r) for r in rows], dtype=np.int32)
        offsets = np.zeros(len(rows) + 1, dtype=np.int32)
        np.cumsum(lengths, out=offsets[1:])
        flat = (
            np.concatenate([np.asarray(r, dtype=np_type) for r in rows])
            if rows else np.zeros(0, dtype=np_type)
        )
        return pa.ListArray.from_arrays(pa.array(offsets), pa.array(flat, type=value_type))

    @classmethod
    def encode_chunk(cls, chunk: TopicModelChunk) -> bytes:
        if chunk.is_sparse:
            topic_index = chunk.topic_index
            weights = chunk.token_weights
        else:
            topic_index = [np.arange(chunk.topic_size, dtype=np.int32)] * chunk.token_size
            weights = chunk.token_weights

        batch = pa.RecordBatch.from_arrays(
            [
                pa.array(chunk.token, type=pa.string()),
                pa.array(chunk.class_id, type=pa.string()),
                cls._list_array(topic_index, pa.int32(), np.int32),
                cls._list_array(weights, pa.float32(), np.float32),
            ],
            schema=_CHUNK_SCHEMA.with_metadata(
                {
                    b"name": chunk.name.encode("utf-8"),
                    b"topic_name": json.dumps(list(chunk.topic_name)).encode("utf-8"),
                }
            ),
        )

        sink = pa.BufferOutputStream()
        with pa.ipc.new_stream(sink, batch.schema) as writer:
            writer.write_batch(batch)
        return sink.getvalue().to_pybytes()

    @staticmethod
    def decode_chunk(data: bytes) -> TopicModelChunk:
        try:
            reader = pa.ipc.open_stream(pa.py_buffer(data))
            batch = reader.read_next_batch()
            metadata = reader.schema.metadata or {}
            topic_name = list(json.loads(metadata[b"topic_name"].decode("utf-8")))
            name = metadata.get(b"name", b"").decode("utf-8")

            token = batch.column("token").to_pylist()
            class_id = batch.column("class_id").to_pylist()
            topic_index = batch.column("topic_index")
            weights = batch.column("token_weights")
            idx_offsets = topic_index.offsets.to_numpy()
            idx_values = topic_index.values.to_numpy(zero_copy_only=False)
            w_offsets = weights.offsets.to_numpy()
            w_values = weights.values.to_numpy(zero_copy_only=False)
        except (
            pa.ArrowException,
            StopIteration,
            KeyError,
            ValueError,
            TypeError,
            AttributeError,
            UnicodeDecodeError,
        ) as e:
            raise CorruptedMessageError(f"Unable to parse model chunk: {e}") from e

        if (
            None in token
            or None in class_id
            or topic_index.null_count
            or weights.null_count
            or topic_index.values.null_count
            or weights.values.null_count
        ):
            raise CorruptedMessageError("Null entries in model chunk")
        if not all(isinstance(t, str) for t in topic_name):
            raise CorruptedMessageError("Topic names in model chunk must be strings")

        chunk = TopicModelChunk(
            name=name,
            topic_name=topic_name,
            token=token,
            class_id=class_id,
            topic_index=[],
        )
        for i in range(batch.num_rows):
            index = idx_values[idx_offsets[i]: idx_offsets[i + 1]].astype(np.int32)
            row = w_values[w_offsets[i]: w_offsets[i + 1]].astype(np.float32)
            if len(index) != len(row):
                raise CorruptedMessageError(f"Malformed row {i} in model chunk")
            if len(index) and (index.min() < 0 or index.max() >= len(topic_name)):
                raise CorruptedMessageError(f"Topic index out of range in row {i} of model chunk")
            chunk.topic_index.append(index)
            chunk.token_weights.append(row)
        return chunk

    # --------------------------------------------------
    # framing
    # --------------------------------------------------
    @staticmethod
    def tokens_per_chunk(token_size: int, topic_size: int, chunk_bytes: int) -> int:
        return max(1, min(token_size, chunk_bytes // max(topic_size, 1)))

    @classmethod
    def write(cls, phi: PhiMatrix, stream: BinaryIO, *, chunk_bytes: int) -> int:
        """
        Write the whole file body for `phi`; returns the number of chunks.
        """
        if phi.token_size == 0:
            raise InvalidOperation(f"Model {phi.name} has no tokens, export failed")

        per_chunk = cls.tokens_per_chunk(phi.token_size, phi.topic_size, chunk_bytes)
        tokens = phi.tokens()

        stream.write(bytes([FORMAT_VERSION]))
        chunks = 0
        for start in range(0, phi.token_size, per_chunk):
            chunk = PhiMatrixOperations.retrieve_external_topic_model(
                phi,
                tokens=tokens[start: start + per_chunk],
                use_sparse_format=True,
            )
            payload = cls.encode_chunk(chunk)
            stream.write(str(len(payload)).encode("ascii"))
            stream.write(payload)
            chunks += 1

        logs.debug(f"[ModelCodec] wrote {phi.name}: {chunks} chunk(s) x {per_chunk} tokens")
        return chunks

    @staticmethod
    def _read_length(stream: io.BufferedReader, source: str) -> Optional[int]:
        """
        Parse a decimal length token like `istream >> int`:
        leading whitespace skipped, None at end of input.
        """
        while True:
            head = stream.peek(1)[:1]
            if not head:
                return None
            if head not in _WHITESPACE:
                break
            stream.read(1)

        text = b""
        if head in b"+-":
            text += stream.read(1)
        while True:
            head = stream.peek(1)[:1]
            if not head or not head.isdigit():
                break
            text += stream.read(1)

        try:
            return int(text)
        except ValueError:
            raise CorruptedMessageError(f"Unable to read from {source}") from None

    @staticmethod
    def _read_payload(stream: io.BufferedReader, length: int, source: str) -> bytes:
        """
        Exactly `length` bytes, read in bounded pieces so a bogus length
        fails as truncated instead of allocating it up front.
        """
        pieces = []
        remaining = length
        while remaining > 0:
            piece = stream.read(min(remaining, _READ_PIECE_BYTES))
            if not piece:
                raise CorruptedMessageError(
                    f"Unable to read from {source}: truncated chunk "
                    f"({length - remaining} of {length} bytes)"
                )
            pieces.append(piece)
            remaining -= len(piece)
        return b"".join(pieces)

    @classmethod
    def read(cls, stream: BinaryIO, model_name: str, source: str = "<stream>") -> PhiMatrix:
        """
        Parse a complete file body into an unpublished PhiMatrix.
        The caller's stream is left open.
        """
        if hasattr(stream, "peek"):
            return cls._read_body(stream, model_name, source)

        buffered = io.BufferedReader(stream)
        try:
            return cls._read_body(buffered, model_name, source)
        finally:
            buffered.detach()

    @classmethod
    def _read_body(cls, stream: io.BufferedReader, model_name: str, source: str) -> PhiMatrix:
        version = stream.read(1)
        if not version:
            raise CorruptedMessageError(f"Unable to read from {source}: empty file")
        if version[0] != FORMAT_VERSION:
            raise CorruptedMessageError(f"Unsupported format version: {version[0]}")

        target: Optional[PhiMatrix] = None
        chunks = 0
        while True:
            length = cls._read_length(stream, source)
            if length is None:
                break
            if length <= 0 or length > MAX_CHUNK_BYTES:
                raise CorruptedMessageError(f"Unable to read from {source}: invalid chunk length {length}")

            chunk = cls.decode_chunk(cls._read_payload(stream, length, source))
            chunk.name = model_name
            if target is None:
                target = PhiMatrix(model_name, chunk.topic_name)
            PhiMatrixOperations.apply_topic_model_operation(chunk, 1.0, target)
            chunks += 1

        if target is None:
            raise CorruptedMessageError(f"Unable to read from {source}")

        logs.debug(f"[ModelCodec] read {model_name}: {chunks} chunk(s)")
        return target
