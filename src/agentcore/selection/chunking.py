"""Text preparation for embedding: index text, content hashing and chunking."""

from __future__ import annotations

import hashlib
import re
from typing import Optional

MAX_CHUNK_SIZE = 500

_SENTENCE_BREAK = re.compile(r"[.!?]+\s+")
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def compute_text_hash(text: str) -> str:
    """SHA-256 hex digest used to validate cached embeddings against current content."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def document_index_text(name: str, description: str, text: str) -> str:
    """Text a rule or reference is indexed by: "name: description" header, blank line, body."""
    header = f"{name}: {description}" if description else name
    return f"{header}\n\n{text}" if text else header


def tool_index_text(name: str, description: Optional[str]) -> str:
    return f"{name}: {description}" if description else name


def _sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_BREAK.split(text) if s.strip()]


def chunk_query_text(text: str, max_chunk_size: int = MAX_CHUNK_SIZE) -> list[str]:
    """One chunk per sentence, each truncated to max_chunk_size."""
    return [s[:max_chunk_size] for s in _sentences(text)]


def chunk_context_text(text: str, max_chunk_size: int = MAX_CHUNK_SIZE) -> list[str]:
    """Split by paragraphs; pack the sentences of oversized paragraphs into chunks.

    A single sentence longer than max_chunk_size becomes its own chunk.
    Never returns an empty list.
    """
    chunks: list[str] = []
    for paragraph in _PARAGRAPH_BREAK.split(text):
        if not paragraph.strip():
            continue
        if len(paragraph) <= max_chunk_size:
            chunks.append(paragraph.strip())
            continue

        current = ""
        for sentence in _sentences(paragraph):
            if len(current) + len(sentence) + 1 <= max_chunk_size:
                current = f"{current} {sentence}" if current else sentence
            else:
                if current:
                    chunks.append(current)
                current = sentence
        if current:
            chunks.append(current)

    return chunks or [text]
