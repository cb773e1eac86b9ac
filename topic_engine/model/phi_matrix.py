# topic_engine/model/phi_matrix.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from topic_engine.utils.errors import InternalError, InvalidOperation

DEFAULT_CLASS = "@default_class"


@dataclass(frozen=True, slots=True)
class Token:
    keyword: str
    class_id: str = DEFAULT_CLASS


class PhiMatrix:
    """
    PhiMatrix = dense token x topic matrix (float32)

    Lifecycle:
      - built mutable (add_token / increase / reshape)
      - freeze() on publication; afterwards every mutator raises
        and the numpy buffer is read-only
      - producing a new value always goes through copy()

    Invariants:
      - len(topic_name) == topic_size
      - len(tokens) == token_size, tokens unique
    """

    def __init__(self, name: str, topic_name: Sequence[str]):
        self.name = name
        self._topic_name: tuple[str, ...] = tuple(topic_name)
        self._topic_index = {t: i for i, t in enumerate(self._topic_name)}
        self._tokens: list[Token] = []
        self._index: dict[Token, int] = {}
        self._values = np.zeros((0, len(self._topic_name)), dtype=np.float32)
        self._frozen = False

    # --------------------------------------------------
    # shape
    # --------------------------------------------------
    @property
    def topic_name(self) -> tuple[str, ...]:
        return self._topic_name

    @property
    def topic_size(self) -> int:
        return len(self._topic_name)

    @property
    def token_size(self) -> int:
        return len(self._tokens)

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def topic_index(self, topic_name: str) -> int:
        return self._topic_index.get(topic_name, -1)

    def token(self, token_id: int) -> Token:
        return self._tokens[token_id]

    def tokens(self) -> list[Token]:
        return list(self._tokens)

    def token_index(self, token: Token) -> int:
        return self._index.get(token, -1)

    def has_token(self, token: Token) -> bool:
        return token in self._index

    # --------------------------------------------------
    # read access
    # --------------------------------------------------
    @property
    def values(self) -> np.ndarray:
        """Read-only (token_size, topic_size) view."""
        view = self._values[: self.token_size]
        view.flags.writeable = False
        return view

    def row(self, token_id: int) -> np.ndarray:
        return self.values[token_id]

    def get(self, token_id: int, topic_id: int) -> float:
        return float(self._values[token_id, topic_id])

    # --------------------------------------------------
    # mutation (only before freeze)
    # --------------------------------------------------
    def _check_mutable(self) -> None:
        if self._frozen:
            raise InternalError(f"PhiMatrix {self.name} is published and read-only")

    def _grow(self, needed: int) -> None:
        capacity = self._values.shape[0]
        if needed <= capacity:
            return
        new_capacity = max(needed, 2 * capacity, 16)
        grown = np.zeros((new_capacity, self.topic_size), dtype=np.float32)
        grown[: self.token_size] = self._values[: self.token_size]
        self._values = grown

    def add_token(self, token: Token, values: np.ndarray | None = None) -> int:
        """
        Append token (no-op if present); return its index.
        """
        self._check_mutable()
        existing = self._index.get(token)
        if existing is not None:
            return existing

        token_id = self.token_size
        self._grow(token_id + 1)
        self._tokens.append(token)
        self._index[token] = token_id
        if values is not None:
            self._values[token_id] = values
        return token_id

    def increase(self, token_id: int, increment: np.ndarray) -> None:
        self._check_mutable()
        self._values[token_id] += increment

    def set_row(self, token_id: int, values: np.ndarray) -> None:
        self._check_mutable()
        self._values[token_id] = values

    def set_values(self, values: np.ndarray) -> None:
        self._check_mutable()
        values = np.asarray(values, dtype=np.float32)
        if values.shape != (self.token_size, self.topic_size):
            raise InvalidOperation(
                f"PhiMatrix {self.name}: expected shape "
                f"{(self.token_size, self.topic_size)}, got {values.shape}"
            )
        self._values = values.copy()

    def reshape(self, other: "PhiMatrix") -> None:
        """
        Take the token layout of `other`; all values are zero afterwards.
        """
        self._check_mutable()
        if other.topic_size != self.topic_size:
            raise InvalidOperation(
                f"Unable to reshape {self.name} ({self.topic_size} topics) "
                f"from {other.name} ({other.topic_size} topics)"
            )
        self._tokens = []
        self._index = {}
        self._values = np.zeros((other.token_size, self.topic_size), dtype=np.float32)
        for token in other._tokens:
            self._index[token] = len(self._tokens)
            self._tokens.append(token)

    def freeze(self) -> "PhiMatrix":
        if not self._frozen:
            if self._values.shape[0] != self.token_size or self._values.base is not None:
                self._values = self._values[: self.token_size].copy()
            self._values.flags.writeable = False
            self._frozen = True
        return self

    def copy(self, name: str | None = None) -> "PhiMatrix":
        """Mutable deep copy."""
        clone = PhiMatrix(name or self.name, self._topic_name)
        clone._tokens = list(self._tokens)
        clone._index = dict(self._index)
        clone._values = np.array(self._values[: self.token_size], dtype=np.float32)
        return clone

    # --------------------------------------------------
    # construction / views
    # --------------------------------------------------
    @classmethod
    def from_array(
        cls,
        name: str,
        topic_name: Sequence[str],
        tokens: Iterable[Token],
        values: np.ndarray,
    ) -> "PhiMatrix":
        phi = cls(name, topic_name)
        for token in tokens:
            phi.add_token(token)
        phi.set_values(values)
        return phi

    def to_frame(self) -> pd.DataFrame:
        index = pd.MultiIndex.from_tuples(
            [(t.class_id, t.keyword) for t in self._tokens],
            names=["class_id", "token"],
        )
        return pd.DataFrame(self.values.copy(), index=index, columns=list(self._topic_name))

    def __repr__(self) -> str:
        return (
            f"PhiMatrix(name={self.name!r}, tokens={self.token_size}, "
            f"topics={self.topic_size}, frozen={self._frozen})"
        )
