from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from .config import ChunkingConfig
from .models import ChunkMetadata, DocumentChunk, ResumeSectionType
from .text import (
    Tokenizer,
    count_tokens,
    extract_keywords,
    has_quantifiable_metrics,
    is_bullet_point,
    load_tokenizer,
)

_log = logging.getLogger(__name__)

# Contact block at the top of a resume: name, title, email, phone, links.
HEADER_LINE_LIMIT = 5

_HEADING_PREFIX = r"^[\s#*•\-]*"
_HEADING_SUFFIX = r"[\s:\-–]*$"

# Order matters: the first matching pattern decides the section type.
SECTION_PATTERNS: Tuple[Tuple[ResumeSectionType, "re.Pattern[str]"], ...] = tuple(
    (
        section_type,
        re.compile(_HEADING_PREFIX + f"(?:{phrases})" + _HEADING_SUFFIX, re.IGNORECASE),
    )
    for section_type, phrases in (
        (
            ResumeSectionType.SUMMARY,
            r"(?:professional\s+|career\s+|executive\s+)?(?:summary|profile|objective)|about(?:\s+me)?",
        ),
        (
            ResumeSectionType.EXPERIENCE,
            r"(?:work\s+|professional\s+|relevant\s+)?experience|employment(?:\s+history)?"
            r"|work\s+history|career\s+history",
        ),
        (
            ResumeSectionType.EDUCATION,
            r"education(?:\s+(?:and|&)\s+training)?|academic\s+background|academics?|qualifications",
        ),
        (
            ResumeSectionType.SKILLS,
            r"(?:technical\s+|core\s+|key\s+)?(?:skills|competencies)|expertise"
            r"|skills\s+(?:and|&)\s+(?:tools|technologies)",
        ),
        (
            ResumeSectionType.PROJECTS,
            r"(?:personal\s+|selected\s+|key\s+|academic\s+)?projects|portfolio",
        ),
        (
            ResumeSectionType.CERTIFICATIONS,
            r"certifications?|certificates|licen[cs]es(?:\s+(?:and|&)\s+certifications)?",
        ),
        (
            ResumeSectionType.AWARDS,
            r"awards?(?:\s+(?:and|&)\s+(?:honors|honours))?|honors|honours|achievements|recognition",
        ),
    )
)

_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
_SENTENCE_OR_LINE_BREAK = re.compile(r"(?<=[.!?])\s+|\s*\n\s*")
_WORD = re.compile(r"\S+")


@dataclass(frozen=True)
class _Section:
    """A detected resume section as a span of the original text."""

    section_type: ResumeSectionType
    title: str
    start: int
    end: int


@dataclass(frozen=True)
class _Unit:
    """A sentence, line or word run that chunks are packed from."""

    start: int
    end: int
    tokens: int


def _iter_lines(text: str) -> Iterator[Tuple[int, int, str]]:
    """Yield (start, end, line) for every line; offsets exclude the newline."""
    pos = 0
    for line in text.split("\n"):
        yield pos, pos + len(line), line
        pos += len(line) + 1


def _strip_span(text: str, start: int, end: int) -> Tuple[int, int]:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


def match_section_heading(line: str) -> Optional[ResumeSectionType]:
    """Return the section type a heading line introduces, if any."""
    stripped = line.strip()
    if not stripped:
        return None
    for section_type, pattern in SECTION_PATTERNS:
        if pattern.match(stripped):
            return section_type
    return None


class ResumeChunker:
    """Split resume text into section-aware chunks with offsets into the source.

    Sections are found from heading lines. Small sections become one chunk;
    larger ones are packed from sentences into windows of at most
    `max_chunk_size` tokens, each window repeating the tail of the previous
    one up to `overlap` tokens.
    """

    def __init__(self, config: Optional[ChunkingConfig] = None, tokenizer: Optional[Tokenizer] = None):
        self.config = config or ChunkingConfig()
        self._tokenizer = tokenizer
        self._owns_tokenizer = tokenizer is None

    @property
    def tokenizer(self) -> Tokenizer:
        if self._tokenizer is None:
            self._tokenizer = load_tokenizer()
        return self._tokenizer

    def count_tokens(self, text: str) -> int:
        return count_tokens(self.tokenizer, text)

    def chunk(self, text: str) -> List[DocumentChunk]:
        """Chunk resume text. Returns an empty list for blank input."""
        chunks: list[DocumentChunk] = []
        if not text or not text.strip():
            return chunks

        for section in self._detect_sections(text):
            for start, end in self._split_section(text, section):
                chunks.append(self._make_chunk(len(chunks), text, section, start, end))

        _log.debug("Chunked %d characters into %d chunks", len(text), len(chunks))
        return chunks

    def dispose(self) -> None:
        """Drop the loaded tokenizer; it is reloaded on the next `chunk` call."""
        if self._owns_tokenizer:
            self._tokenizer = None

    def _detect_sections(self, text: str) -> List[_Section]:
        lines = list(_iter_lines(text))
        sections: list[_Section] = []

        # Header: leading non-empty lines until the limit or the first heading.
        idx = 0
        header_spans: list[Tuple[int, int]] = []
        while idx < len(lines) and len(header_spans) < HEADER_LINE_LIMIT:
            start, end, line = lines[idx]
            if line.strip():
                if match_section_heading(line) is not None:
                    break
                header_spans.append((start, end))
            idx += 1

        if header_spans:
            sections.append(
                _Section(ResumeSectionType.HEADER, "Header", header_spans[0][0], header_spans[-1][1])
            )

        current_type: Optional[ResumeSectionType] = None
        current_title = ""
        content_start: Optional[int] = None
        content_end = 0

        for start, end, line in lines[idx:]:
            if not line.strip():
                continue

            section_type = match_section_heading(line)
            if section_type is not None:
                # Flush previous section if it collected any content
                if current_type is not None and content_start is not None:
                    sections.append(_Section(current_type, current_title, content_start, content_end))
                current_type = section_type
                current_title = line.strip()
                content_start = None
                continue

            if current_type is None:
                current_type = ResumeSectionType.OTHER
                current_title = "Other"
            if content_start is None:
                content_start = start
            content_end = end

        if current_type is not None and content_start is not None:
            sections.append(_Section(current_type, current_title, content_start, content_end))

        return sections

    def _split_section(self, text: str, section: _Section) -> List[Tuple[int, int]]:
        """Return (start, end) spans of the chunks cut from one section."""
        start, end = _strip_span(text, section.start, section.end)
        if start >= end:
            return []

        if self.count_tokens(text[start:end]) <= self.config.max_chunk_size:
            return [(start, end)]

        units = self._split_units(text, start, end)
        return [(window[0].start, window[-1].end) for window in self._pack(text, units)]

    def _split_units(self, text: str, start: int, end: int) -> List[_Unit]:
        pattern = _SENTENCE_OR_LINE_BREAK if self.config.respect_boundaries else _SENTENCE_BREAK

        spans: list[Tuple[int, int]] = []
        pos = start
        for match in pattern.finditer(text, start, end):
            spans.append((pos, match.start()))
            pos = match.end()
        spans.append((pos, end))

        units: list[_Unit] = []
        for span_start, span_end in spans:
            span_start, span_end = _strip_span(text, span_start, span_end)
            if span_start >= span_end:
                continue
            tokens = self.count_tokens(text[span_start:span_end])
            if tokens > self.config.max_chunk_size:
                units.extend(self._split_words(text, span_start, span_end))
            else:
                units.append(_Unit(span_start, span_end, tokens))
        return units

    def _split_words(self, text: str, start: int, end: int) -> List[_Unit]:
        """Break a run with no usable sentence boundary at word boundaries."""
        pieces: list[_Unit] = []
        piece_start: Optional[int] = None
        piece_end = start
        piece_tokens = 0

        for match in _WORD.finditer(text, start, end):
            if piece_start is not None:
                candidate_tokens = self.count_tokens(text[piece_start : match.end()])
                if candidate_tokens > self.config.max_chunk_size:
                    pieces.append(_Unit(piece_start, piece_end, piece_tokens))
                    piece_start = None
                else:
                    piece_end = match.end()
                    piece_tokens = candidate_tokens
                    continue
            piece_start = match.start()
            piece_end = match.end()
            piece_tokens = self.count_tokens(match.group())

        if piece_start is not None:
            pieces.append(_Unit(piece_start, piece_end, piece_tokens))
        return pieces

    def _span_tokens(self, text: str, first: _Unit, last: _Unit) -> int:
        """Tokens of the source slice from `first` to `last`, separators included."""
        return self.count_tokens(text[first.start : last.end])

    def _pack(self, text: str, units: List[_Unit]) -> List[List[_Unit]]:
        """Greedy sliding window over units.

        Window size is measured on the source slice it will become, so line
        breaks and spaces between units count against the budget.
        """
        windows: list[list[_Unit]] = []
        current: list[_Unit] = []

        for unit in units:
            if current and self._span_tokens(text, current[0], unit) > self.config.max_chunk_size:
                windows.append(current)
                current = self._overlap_tail(text, current, unit)
            current.append(unit)

        if current:
            windows.append(current)
        return windows

    def _overlap_tail(self, text: str, previous: List[_Unit], incoming: _Unit) -> List[_Unit]:
        """Trailing units of the previous window to repeat at the start of the next."""
        if self.config.overlap <= 0:
            return []

        tail: list[_Unit] = []
        for unit in reversed(previous[1:]):
            if self._span_tokens(text, unit, previous[-1]) > self.config.overlap:
                break
            if self._span_tokens(text, unit, incoming) > self.config.max_chunk_size:
                break
            tail.insert(0, unit)
        return tail

    def _render(self, raw: str) -> str:
        if self.config.preserve_formatting:
            return raw
        lines = (" ".join(line.split()) for line in raw.splitlines())
        return "\n".join(line for line in lines if line)

    def _make_chunk(
        self,
        index: int,
        text: str,
        section: _Section,
        start: int,
        end: int,
    ) -> DocumentChunk:
        content = self._render(text[start:end])
        metadata = ChunkMetadata(
            section_type=section.section_type,
            section_title=section.title,
            start_index=start,
            end_index=end,
            bullet_point=is_bullet_point(content),
            has_quantifiable_metrics=has_quantifiable_metrics(content),
            keywords=extract_keywords(content),
        )
        return DocumentChunk(id=f"chunk_{index}", content=content, metadata=metadata)


__all__ = [
    "ResumeChunker",
    "SECTION_PATTERNS",
    "HEADER_LINE_LIMIT",
    "match_section_heading",
]
