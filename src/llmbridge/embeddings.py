"""Embedding request and response types."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from llmbridge.errors import EmptyInputError, MalformedDataError


@dataclass(frozen=True)
class Embedding:
    index: int
    embedding: list[float]
    object: str = "embedding"


@dataclass(frozen=True)
class EmbeddingUsage:
    prompt_tokens: int = 0
    total_tokens: int = 0


@dataclass
class EmbeddingResponse:
    embeddings: list[Embedding] = field(default_factory=list)
    model: str = ""
    usage: EmbeddingUsage | None = None
    object: str = "list"

    @property
    def vectors(self) -> list[list[float]]:
        return [e.embedding for e in sorted(self.embeddings, key=lambda e: e.index)]


def normalize_embedding_input(value: str | Sequence[str]) -> list[str]:
    """Return the texts to embed, rejecting empty input."""
    if isinstance(value, str):
        texts = [value]
    elif isinstance(value, Sequence):
        texts = list(value)
    else:
        raise MalformedDataError(
            f"Embedding input must be a string or a sequence of strings, "
            f"got {type(value).__name__}",
            field="input",
        )
    for i, text in enumerate(texts):
        if not isinstance(text, str):
            raise MalformedDataError(
                f"Embedding input items must be strings, got {type(text).__name__}",
                field=f"input[{i}]",
            )
    if not texts or all(not t.strip() for t in texts):
        raise EmptyInputError(
            "Embedding input is empty",
            field="input",
            hint="Pass at least one non-blank string.",
        )
    return texts
