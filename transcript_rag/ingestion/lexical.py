"""Lexical index entries and ranking (the in-process counterpart of Postgres FTS)."""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Sequence

from rank_bm25 import BM25Okapi

from transcript_rag.ingestion.models import LexicalEntry

_TOKEN_RE = re.compile(r"[a-z0-9$%][a-z0-9$%'.-]*[a-z0-9%]|[a-z0-9]")

STOP_WORDS = frozenset(
    """
    a about above after again against all am an and any are as at be because been before
    being below between both but by can could did do does doing down during each few for
    from further had has have having he her here hers herself him himself his how i if in
    into is it its itself just me more most my myself no nor not now of off on once only or
    other our ours ourselves out over own same she should so some such than that the their
    theirs them themselves then there these they this those through to too under until up
    very was we were what when where which while who whom why will with would you your
    yours yourself yourselves um uh yeah okay ok like
    """.split()
)

# BM25 parameters
K1 = 1.2
B = 0.75


def _stem(token: str) -> str:
    """Light suffix stripping so 'pricing', 'priced' and 'prices' share a term."""
    if token.endswith("ies") and len(token) > 4:
        return token[:-3] + "y"
    for suffix in ("ing", "ed", "s"):
        if suffix == "s" and token.endswith("ss"):
            break
        if token.endswith(suffix) and len(token) - len(suffix) >= 3:
            token = token[: -len(suffix)]
            break
    if token.endswith("e") and len(token) > 3:
        token = token[:-1]
    return token


def tokenize(text: str) -> list[str]:
    """Lowercase, tokenise, drop stop words and stem."""
    return [_stem(t) for t in _TOKEN_RE.findall(text.lower()) if t not in STOP_WORDS]


def build_lexical_entry(text: str) -> LexicalEntry:
    """Build the lexical index entry (term frequencies) for a chunk."""
    return LexicalEntry(terms=dict(Counter(tokenize(text))))


class _PositiveIdfBM25(BM25Okapi):
    """BM25Okapi with Lucene's idf, which never goes negative.

    Okapi's idf is zero or negative for a term found in half the corpus or
    more, which erases the lexical signal on two- or three-chunk scopes.
    """

    def _calc_idf(self, nd: dict[str, int]) -> None:
        for word, freq in nd.items():
            self.idf[word] = math.log(1.0 + (self.corpus_size - freq + 0.5) / (freq + 0.5))
        self.average_idf = sum(self.idf.values()) / len(self.idf) if self.idf else 0.0


def _expand(entry: LexicalEntry) -> list[str]:
    return [term for term, count in sorted(entry.terms.items()) for _ in range(count)]


def bm25_ranks(query: str, entries: Sequence[LexicalEntry | None]) -> list[float]:
    """Rank each entry against *query* with BM25 over the given collection.

    Entries that are ``None`` (not indexed) rank 0.  Scores are unbounded;
    callers normalise them.
    """
    terms = sorted(set(tokenize(query or "")))
    positions = [i for i, e in enumerate(entries) if e is not None]
    ranks = [0.0] * len(entries)
    if not terms or not positions:
        return ranks

    indexed = [entries[i] for i in positions]
    if not any(e.length for e in indexed):
        return ranks

    bm25 = _PositiveIdfBM25([_expand(e) for e in indexed], k1=K1, b=B)
    for position, score in zip(positions, bm25.get_scores(terms), strict=True):
        ranks[position] = float(score)
    return ranks
