"""
BM25-style sparse encoder for lexical matching.

Terms are case-folded alphanumeric runs, hashed with blake2b to stable
32-bit ids (Python's hash() is salted per process and cannot be used).
Weights use BM25 term-frequency saturation times an IDF factor.

IDF is static by default (1.0 for every term), so encoding depends only
on the input text. A corpus-derived table is available through
SparseEncoder.from_corpus, which returns a new encoder; an existing
encoder's table is frozen, so concurrent searches always see the same
weights.
"""

from __future__ import annotations

import hashlib
import math
import re
from collections import Counter
from types import MappingProxyType
from typing import Iterable, Mapping

from qdrant_client import models

SparseVector = dict[int, float]

_TOKEN_RE = re.compile(r"[^\W_]+")


def tokenize(text: str) -> list[str]:
    """Case-fold and split on anything that is not a letter or digit."""
    return _TOKEN_RE.findall(text.casefold())


def term_id(term: str) -> int:
    return int.from_bytes(hashlib.blake2b(term.encode("utf-8"), digest_size=4).digest(), "big")


class SparseEncoder:
    """
    Deterministic text → {term_id: weight} encoder.

    Args:
        k1: Term-frequency saturation.
        b: Length normalization strength.
        avg_doc_length: Assumed average document length in tokens.
        idf: Optional fixed term → idf table; unknown terms use default_idf.
        default_idf: IDF used for terms absent from ``idf``.
    """

    def __init__(
        self,
        k1: float = 1.2,
        b: float = 0.75,
        avg_doc_length: float = 256.0,
        idf: Mapping[str, float] | None = None,
        default_idf: float = 1.0,
    ) -> None:
        if avg_doc_length <= 0:
            raise ValueError("avg_doc_length must be positive")
        self.k1 = k1
        self.b = b
        self.avg_doc_length = avg_doc_length
        self.default_idf = default_idf
        self._idf: Mapping[str, float] = MappingProxyType(dict(idf or {}))

    @classmethod
    def from_corpus(cls, texts: Iterable[str], k1: float = 1.2, b: float = 0.75) -> "SparseEncoder":
        """
        Re-index: build a new encoder whose IDF and average length come from ``texts``.

        Uses the BM25 idf ``ln(1 + (N - df + 0.5) / (df + 0.5))``; terms
        never seen get the idf of a term with df = 0.
        """
        doc_freq: Counter[str] = Counter()
        total_len = 0
        n_docs = 0
        for text in texts:
            tokens = tokenize(text)
            total_len += len(tokens)
            n_docs += 1
            doc_freq.update(set(tokens))
        if n_docs == 0:
            return cls(k1=k1, b=b)

        def _idf(df: int) -> float:
            return math.log(1.0 + (n_docs - df + 0.5) / (df + 0.5))

        return cls(
            k1=k1,
            b=b,
            avg_doc_length=max(total_len / n_docs, 1.0),
            idf={term: _idf(df) for term, df in doc_freq.items()},
            default_idf=_idf(0),
        )

    @property
    def idf(self) -> Mapping[str, float]:
        return self._idf

    def encode(self, text: str) -> SparseVector:
        tokens = tokenize(text)
        if not tokens:
            return {}
        doc_len = len(tokens)
        norm = self.k1 * (1.0 - self.b + self.b * doc_len / self.avg_doc_length)
        vector: SparseVector = {}
        for term, tf in Counter(tokens).items():
            weight = self._idf.get(term, self.default_idf) * tf * (self.k1 + 1.0) / (tf + norm)
            if weight <= 0:
                continue
            tid = term_id(term)
            # distinct terms can share a hashed id; their weights add up
            vector[tid] = vector.get(tid, 0.0) + weight
        return vector


def to_qdrant(vector: Mapping[int, float]) -> models.SparseVector:
    indices = sorted(vector)
    return models.SparseVector(indices=indices, values=[float(vector[i]) for i in indices])
