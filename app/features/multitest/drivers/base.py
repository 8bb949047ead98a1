from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from typing import List, Tuple

from ..schemas import Batch, Language

logger = logging.getLogger(__name__)

BOUNDARY_PREFIX = "@@MULTITEST"


def new_boundary() -> str:
    """Per-batch marker token; unlikely to occur in learner output."""
    return f"{BOUNDARY_PREFIX}-{uuid.uuid4().hex}@@"


def split_input_lines(text: str) -> List[str]:
    """Lines of one case's input, CRLF folded and one trailing newline dropped."""
    if not text:
        return []
    text = text.replace("\r\n", "\n")
    if text.endswith("\n"):
        text = text[:-1]
    return text.split("\n")


class DriverSynthesizer(ABC):
    """Wraps a learner solution so one judge job runs a whole batch."""

    language: Language

    def synthesize(self, source: str, batch: Batch) -> Batch:
        boundary = new_boundary()
        code, shape = self.build_source(source, boundary)
        stdin = self.build_stdin(batch)
        logger.debug(
            "Synthesized %s driver for batch %d (%d cases, shape=%s, %d bytes stdin)",
            self.language.value, batch.batch_id, batch.size, shape, len(stdin),
        )
        return batch.model_copy(update={
            "source_code": code,
            "stdin": stdin,
            "output_boundary": boundary,
            "language": self.language,
        })

    @abstractmethod
    def build_source(self, source: str, boundary: str) -> Tuple[str, str]:
        """Return ``(driver_source, shape_name)``."""

    @abstractmethod
    def build_stdin(self, batch: Batch) -> str:
        ...
