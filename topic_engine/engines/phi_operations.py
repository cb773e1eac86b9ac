# topic_engine/engines/phi_operations.py
from __future__ import annotations

from typing import Mapping, Optional, Sequence

import numpy as np

from topic_engine import logs
from topic_engine.model.chunk import TopicModelChunk
from topic_engine.model.phi_matrix import PhiMatrix, Token
from topic_engine.utils.errors import InvalidOperation
from .regularizers.base import PhiRegularizer, aligned_rows


class PhiMatrixOperations:
    """
    Pure matrix algebra over PhiMatrix snapshots.

    - no I/O, no store access
    - inputs are never modified; targets are mutable, unpublished matrices
    """

    # --------------------------------------------------
    # external form
    # --------------------------------------------------
    @staticmethod
    def retrieve_external_topic_model(
        phi: PhiMatrix,
        *,
        tokens: Optional[Sequence[Token]] = None,
        use_sparse_format: bool = False,
        name: Optional[str] = None,
    ) -> TopicModelChunk:
        """
        Slice `phi` into a TopicModelChunk (all tokens by default).
        Requested tokens missing from `phi` are skipped.
        """
        chunk = TopicModelChunk(
            name=name or phi.name,
            topic_name=list(phi.topic_name),
            topic_index=[] if use_sparse_format else None,
        )

        token_ids = (
            range(phi.token_size)
            if tokens is None
            else [i for i in (phi.token_index(t) for t in tokens) if i >= 0]
        )

        values = phi.values
        for token_id in token_ids:
            token = phi.token(token_id)
            row = values[token_id]
            chunk.token.append(token.keyword)
            chunk.class_id.append(token.class_id)
            if use_sparse_format:
                nz = np.flatnonzero(row).astype(np.int32)
                chunk.topic_index.append(nz)
                chunk.token_weights.append(row[nz].astype(np.float32))
            else:
                chunk.token_weights.append(np.array(row, dtype=np.float32))

        return chunk

    @staticmethod
    def apply_topic_model_operation(
        chunk: TopicModelChunk,
        weight: float,
        target: PhiMatrix,
    ) -> None:
        """
        target += weight * chunk, topics matched by name.

        Tokens absent from target are appended; chunk topics absent from
        target are ignored.
        """
        topic_map = np.array([target.topic_index(t) for t in chunk.topic_name], dtype=np.int64)
        known = topic_map >= 0
        if not known.all():
            logs.debug(
                f"[PhiMatrixOperations] {int((~known).sum())} topic(s) of {chunk.name} "
                f"not present in {target.name}, ignored"
            )

        for i, token in enumerate(chunk.tokens()):
            token_id = target.add_token(token)
            row = chunk.dense_row(i)
            if weight == 0.0:
                continue
            increment = np.zeros(target.topic_size, dtype=np.float32)
            increment[topic_map[known]] = row[known] * weight
            target.increase(token_id, increment)

    # --------------------------------------------------
    # normalization
    # --------------------------------------------------
    @staticmethod
    def find_pwt(
        n_wt: PhiMatrix,
        target: PhiMatrix,
        r_wt: Optional[PhiMatrix] = None,
    ) -> None:
        """
        p_wt = max(n_wt + r_wt, 0) / sum_w max(n_wt + r_wt, 0), per topic.
        A column with zero sum stays zero.
        """
        values = np.array(n_wt.values, dtype=np.float64)
        if r_wt is not None:
            if r_wt.topic_size != n_wt.topic_size:
                raise InvalidOperation(
                    f"Unable to normalize {n_wt.name}: {r_wt.name} has "
                    f"{r_wt.topic_size} topics, expected {n_wt.topic_size}"
                )
            values += aligned_rows(r_wt, n_wt)

        np.maximum(values, 0.0, out=values)
        totals = values.sum(axis=0)
        safe = np.where(totals > 0.0, totals, 1.0)
        p = np.where(totals > 0.0, values / safe, 0.0)

        target.set_values(p.astype(np.float32))

    # --------------------------------------------------
    # regularization
    # --------------------------------------------------
    @staticmethod
    def invoke_phi_regularizers(
        regularizers: Mapping[str, PhiRegularizer],
        settings: Sequence[tuple[str, float]],
        p_wt: PhiMatrix,
        n_wt: PhiMatrix,
        r_wt: PhiMatrix,
    ) -> None:
        """
        r_wt += sum_i tau_i * regularizer_i(p_wt, n_wt), in settings order.
        r_wt must already carry the token layout of n_wt.
        """
        if p_wt.topic_size != n_wt.topic_size:
            raise InvalidOperation(
                f"{p_wt.name} has {p_wt.topic_size} topics, "
                f"{n_wt.name} has {n_wt.topic_size}"
            )

        total = np.array(r_wt.values, dtype=np.float32)
        for name, tau in settings:
            regularizer = regularizers.get(name)
            if regularizer is None:
                raise InvalidOperation(f"Regularizer {name} does not exist")

            contribution = regularizer(p_wt, n_wt)
            total += np.float32(tau) * contribution
            logs.debug(f"[PhiMatrixOperations] applied {name} tau={tau}")

        r_wt.set_values(total)
