"""Token counting for the selection aggregate."""

from __future__ import annotations

from functools import cache
from typing import Protocol

import tiktoken

from ctxtower.errors import TokenizerError

DEFAULT_ENCODING = "cl100k_base"
DEFAULT_MAX_CHARS = 8_000_000


class Tokenizer(Protocol):
    """Anything that can count tokens in a string."""

    def count(self, text: str) -> int: ...


class TiktokenTokenizer:
    """Tokenizer backed by a tiktoken encoding.

    Parameters
    ----------
    encoding_name
        Token encoding name (e.g., 'cl100k_base').
    max_chars
        Inputs longer than this are rejected with TokenizerError instead
        of being encoded.
    """

    def __init__(self, encoding_name: str = DEFAULT_ENCODING, *, max_chars: int = DEFAULT_MAX_CHARS) -> None:
        self.encoding_name = encoding_name
        self.max_chars = max_chars

    def count(self, text: str) -> int:
        if len(text) > self.max_chars:
            raise TokenizerError(f"Input is too large to tokenize ({len(text)} chars > {self.max_chars})")
        return count_tokens(text, encoding_name=self.encoding_name)


def count_tokens(text: str, *, encoding_name: str) -> int:
    """Count tokens in text using the specified encoding."""
    # Special-token text in source files is counted as plain text.
    return len(_encoding(encoding_name).encode(text, disallowed_special=()))


@cache
def _encoding(name: str) -> tiktoken.Encoding:
    return tiktoken.get_encoding(name)
