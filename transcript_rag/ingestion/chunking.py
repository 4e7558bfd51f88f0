"""Speaker-aware chunking of raw transcript text with overlap."""

from __future__ import annotations

import re

from transcript_rag.ingestion.models import TextChunk
from transcript_rag.pipeline_config import ChunkingConfig, LengthUnit

# A speaker turn starts on a line beginning with a label such as "REP:" or "Speaker 1:".
_SPEAKER_RE = re.compile(r"^[ \t]*[A-Za-z][\w .'-]{0,40}?:[ \t]", re.MULTILINE)
# A sentence ends at terminal punctuation followed by whitespace, at a line break, or at the end.
_SENTENCE_RE = re.compile(r"\S[^\n]*?(?:[.!?]+(?=\s|$)|(?=\n)|$)")
_WORD_RE = re.compile(r"\S+")

Span = tuple[int, int]


def _speaker_turns(text: str) -> list[Span]:
    """Split *text* into speaker-turn spans; text without labels is one turn."""
    starts = sorted({0, *(m.start() for m in _SPEAKER_RE.finditer(text)), len(text)})
    return [(a, b) for a, b in zip(starts, starts[1:]) if text[a:b].strip()]


def _sentences(text: str, turn: Span) -> list[Span]:
    """Sentence spans inside one turn, in absolute offsets, trailing whitespace trimmed."""
    offset, end = turn
    spans: list[Span] = []
    for m in _SENTENCE_RE.finditer(text, offset, end):
        stop = m.end()
        while stop > m.start() and text[stop - 1].isspace():
            stop -= 1
        spans.append((m.start(), stop))
    return spans


def _measure(text: str, span: Span, unit: LengthUnit) -> int:
    if unit is LengthUnit.SENTENCES:
        return 1
    if unit is LengthUnit.CHARACTERS:
        return span[1] - span[0]
    return len(text[span[0] : span[1]].split())


def _force_split(text: str, span: Span, config: ChunkingConfig) -> list[Span]:
    """Break a unit longer than ``max_length`` on word boundaries.

    A single word longer than the limit stays whole.
    """
    words = [(m.start(), m.end()) for m in _WORD_RE.finditer(text, span[0], span[1])]
    pieces: list[Span] = []
    current: Span | None = None
    count = 0
    for word in words:
        if current is None:
            current, count = word, 1
            continue
        candidate = (current[0], word[1])
        if config.unit is LengthUnit.CHARACTERS:
            fits = candidate[1] - candidate[0] <= config.max_length
        else:
            fits = count + 1 <= config.max_length
        if fits:
            current, count = candidate, count + 1
        else:
            pieces.append(current)
            current, count = word, 1
    if current is not None:
        pieces.append(current)
    return pieces


def split_units(text: str, config: ChunkingConfig) -> list[Span]:
    """Split text into boundary-aligned units: speaker turns, then sentences.

    Every unit fits ``max_length`` unless it is a single over-long word.
    """
    units: list[Span] = []
    for turn in _speaker_turns(text):
        for sentence in _sentences(text, turn):
            if _measure(text, sentence, config.unit) > config.max_length:
                units.extend(_force_split(text, sentence, config))
            else:
                units.append(sentence)
    return units


def chunk_transcript(text: str, config: ChunkingConfig | None = None) -> list[TextChunk]:
    """Deterministically split a transcript into ordered, overlapping chunks.

    Consecutive units are packed greedily until the next one would exceed
    ``config.max_length``.  The following chunk restarts from the longest tail
    of the previous chunk that fits in ``config.overlap``, always advancing by
    at least one unit, so every unit belongs to at least one chunk and units
    on a boundary belong to two.  Whitespace between units that no overlap
    covers is kept at the end of the preceding chunk, leading whitespace goes
    to the first chunk and trailing whitespace to the last, so the chunks
    cover every character.  Lengths are measured on the units alone.

    Args:
        text: Raw transcript text.
        config: Chunk length, overlap and unit of measure.

    Returns:
        Chunks with ``chunk_index`` 0..N-1; empty for blank text.
    """
    config = config or ChunkingConfig()
    if not text or not text.strip():
        return []

    units = split_units(text, config)
    if not units:
        return []

    # Prefix sums of unit measures; character spans use real offsets instead.
    prefix = [0]
    for unit in units:
        prefix.append(prefix[-1] + _measure(text, unit, config.unit))

    def span_length(first: int, last: int) -> int:
        if config.unit is LengthUnit.CHARACTERS:
            return units[last][1] - units[first][0]
        return prefix[last + 1] - prefix[first]

    windows: list[tuple[int, int]] = []
    start = 0
    while start < len(units):
        end = start
        while end + 1 < len(units) and span_length(start, end + 1) <= config.max_length:
            end += 1
        windows.append((start, end))
        if end == len(units) - 1:
            break

        nxt = end + 1
        while nxt - 1 > start and span_length(nxt - 1, end) <= config.overlap:
            nxt -= 1
        start = nxt

    chunks: list[TextChunk] = []
    for i, (first, last) in enumerate(windows):
        begin_char = 0 if i == 0 else units[first][0]
        if i == len(windows) - 1:
            end_char = len(text)
        else:
            end_char = max(units[last][1], units[windows[i + 1][0]][0])
        chunks.append(
            TextChunk(
                chunk_index=i,
                content=text[begin_char:end_char],
                start_char=begin_char,
                end_char=end_char,
            )
        )
    return chunks
