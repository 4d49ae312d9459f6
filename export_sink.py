"""File sinks for synthesis artifacts: RIS, BibTeX and JSON."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from citations import generate_bibtex
from errors import InvalidInputError
from models import SynthesisResult

LOGGER = logging.getLogger(__name__)


def _prepare_path(path: str | Path, kind: str) -> Path:
    if not str(path).strip():
        raise InvalidInputError(f"{kind} output path is required", stage="export")
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    return target


def write_ris_file(path: str | Path, ris: str) -> Path:
    """Write an RIS blob to path, creating parent directories."""
    target = _prepare_path(path, "RIS")
    target.write_text(ris, encoding="utf-8")
    LOGGER.info("Wrote RIS (%s chars) to %s", len(ris), target)
    return target


def write_bibtex_file(path: str | Path, bibtex: str) -> Path:
    target = _prepare_path(path, "BibTeX")
    target.write_text(bibtex, encoding="utf-8")
    LOGGER.info("Wrote BibTeX (%s chars) to %s", len(bibtex), target)
    return target


def synthesis_json(result: SynthesisResult) -> dict[str, Any]:
    """JSON projection of a synthesis result plus its BibTeX blob."""
    data = result.to_dict()
    bibtex = generate_bibtex(result.references)
    if bibtex:
        data["bibtex"] = bibtex
    return data


def write_json_file(path: str | Path, payload: dict[str, Any]) -> Path:
    """Write payload as indented UTF-8 JSON."""
    target = _prepare_path(path, "JSON")
    with target.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False)
        fh.write("\n")
    LOGGER.info("Wrote JSON to %s", target)
    return target
