from __future__ import annotations

from typing import Dict

from ..errors import ConfigurationError
from ..schemas import Batch, Language
from .base import DriverSynthesizer, new_boundary
from .cpp_driver import CppDriverSynthesizer
from .python_driver import PythonDriverSynthesizer

_SYNTHESIZERS: Dict[Language, DriverSynthesizer] = {
    Language.PYTHON: PythonDriverSynthesizer(),
    Language.CPP: CppDriverSynthesizer(),
}


def get_synthesizer(language: Language | str) -> DriverSynthesizer:
    try:
        return _SYNTHESIZERS[Language(str(getattr(language, "value", language)).strip().lower())]
    except (KeyError, ValueError) as exc:
        supported = ", ".join(lang.value for lang in _SYNTHESIZERS)
        raise ConfigurationError(f"unsupported language {language!r} (supported: {supported})") from exc


def synthesize(source: str, batch: Batch) -> Batch:
    return get_synthesizer(batch.language).synthesize(source, batch)


__all__ = [
    "CppDriverSynthesizer",
    "DriverSynthesizer",
    "PythonDriverSynthesizer",
    "get_synthesizer",
    "new_boundary",
    "synthesize",
]
