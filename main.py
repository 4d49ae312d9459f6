"""CLI entrypoint: literature synthesis, adaptive yes/no answering and PubMed lookups."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import replace

import requests
from dotenv import load_dotenv

from anthropic_client import AnthropicCompletionService
from citations import generate_bibtex
from config import QAConfig, SynthesisConfig
from errors import InvalidInputError, PipelineError
from export_sink import synthesis_json, write_bibtex_file, write_json_file, write_ris_file
from llm_client import OpenAICompletionService
from models import ProgressUpdate
from pubmed_client import PubMedClient
from qa_engine import AdaptiveAnswerEngine
from report import render_links_text, render_mesh_text, render_qa_text, render_synthesis_markdown
from services import TextCompletionService
from synth_engine import SynthesisEngine

BACKENDS = ("openai", "anthropic")
LINK_COMMANDS = ("cited-by", "references", "related")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Search PubMed and answer or synthesize with an LLM")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--backend",
        choices=BACKENDS,
        default=os.getenv("LLM_BACKEND", "openai"),
        help="Completion backend (default: LLM_BACKEND or openai)",
    )
    parser.add_argument("--model", default=None, help="Override the backend model name")

    sub = parser.add_subparsers(dest="command", required=True)

    synth = sub.add_parser("synth", help="Synthesize literature into a cited answer")
    synth.add_argument("question", nargs="?", default="", help="Research question")
    synth.add_argument("--pmid", default=None, help="Deep dive into a single PMID instead of searching")
    synth.add_argument("--papers", type=int, default=None, help="Papers to use in the synthesis (default 5)")
    synth.add_argument("--search", type=int, default=None, help="Papers to search and score (default 30)")
    synth.add_argument("--relevance", type=int, default=None, help="Minimum relevance score 1-10 (default 7)")
    synth.add_argument("--words", type=int, default=None, help="Target synthesis length in words (default 250)")
    synth.add_argument("--ris", default=None, help="Write RIS citations to this path")
    synth.add_argument("--bibtex", default=None, help="Write BibTeX citations to this path")
    synth.add_argument("--json", action="store_true", help="Print the result as JSON")
    synth.add_argument("--json-out", default=None, help="Write the JSON result to this path")

    qa = sub.add_parser("qa", help="Answer a biomedical yes/no question")
    qa.add_argument("question", help="Yes/no question")
    qa.add_argument("--confidence", type=int, default=None, help="Confidence threshold 1-10 (default 7)")
    qa.add_argument("--max-results", type=int, default=None, help="Papers to retrieve as evidence (default 3)")
    qa.add_argument("--retrieve", action="store_true", help="Always retrieve evidence")
    qa.add_argument("--parametric", action="store_true", help="Never retrieve evidence")
    qa.add_argument("--explain", action="store_true", help="Show strategy, confidence and sources")
    qa.add_argument("--json", action="store_true", help="Print the result as JSON")

    for name, help_text in zip(
        LINK_COMMANDS,
        ("Find papers that cite this article", "Find papers cited by this article", "Find similar articles"),
    ):
        link = sub.add_parser(name, help=help_text)
        link.add_argument("pmid", help="PubMed ID")
        link.add_argument("--json", action="store_true", help="Print the result as JSON")

    mesh = sub.add_parser("mesh", help="Look up a MeSH term")
    mesh.add_argument("term", nargs="+", help="MeSH term")
    mesh.add_argument("--json", action="store_true", help="Print the record as JSON")

    return parser.parse_args(argv)


def build_llm(backend: str, model: str | None = None) -> TextCompletionService:
    """Construct the completion backend named on the command line."""
    if backend == "anthropic":
        return AnthropicCompletionService(model=model)
    return OpenAICompletionService(model=model)


def synthesis_config_from_args(args: argparse.Namespace) -> SynthesisConfig:
    cfg = SynthesisConfig.from_env()
    overrides = {
        "papers_to_use": args.papers,
        "papers_to_search": args.search,
        "relevance_threshold": args.relevance,
        "target_words": args.words,
    }
    cfg = replace(cfg, **{k: v for k, v in overrides.items() if v is not None})
    if cfg.papers_to_use > cfg.papers_to_search:
        logging.info("Raising --search from %s to %s to match --papers", cfg.papers_to_search, cfg.papers_to_use)
        cfg = replace(cfg, papers_to_search=cfg.papers_to_use)
    return cfg


def qa_config_from_args(args: argparse.Namespace) -> QAConfig:
    cfg = QAConfig.from_env()
    if args.confidence is not None:
        cfg = replace(cfg, confidence_threshold=args.confidence)
    if args.max_results is not None:
        cfg = replace(cfg, max_results=args.max_results)
    if args.retrieve:
        cfg = replace(cfg, force_retrieval=True)
    if args.parametric:
        cfg = replace(cfg, force_parametric=True)
    return cfg


def print_progress(update: ProgressUpdate) -> None:
    """Progress goes to stderr so stdout stays clean for the result."""
    if update.total:
        print(f"[{update.phase.value}] {update.message} ({update.current}/{update.total})", file=sys.stderr)
    else:
        print(f"[{update.phase.value}] {update.message}", file=sys.stderr)


def run_synth(args: argparse.Namespace, llm: TextCompletionService, literature: PubMedClient) -> None:
    """Run a synthesis (or single-paper deep dive) and emit its artifacts."""
    cfg = synthesis_config_from_args(args)
    engine = SynthesisEngine(llm, literature, cfg).with_progress(None if args.json else print_progress)

    if args.pmid:
        result = engine.synthesize_pmid(args.pmid)
    else:
        if not args.question.strip():
            raise InvalidInputError("a question or --pmid is required", stage="validate")
        result = engine.synthesize(args.question)

    logging.info(
        "Synthesis complete: searched=%s scored=%s used=%s tokens=%s",
        result.papers_searched,
        result.papers_scored,
        result.papers_used,
        result.tokens.total,
    )

    if args.ris:
        write_ris_file(args.ris, result.ris)
    if args.bibtex:
        write_bibtex_file(args.bibtex, generate_bibtex(result.references))

    payload = synthesis_json(result)
    if args.json_out:
        write_json_file(args.json_out, payload)

    if args.json:
        print(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        print(render_synthesis_markdown(result), end="")


def run_qa(args: argparse.Namespace, llm: TextCompletionService, literature: PubMedClient) -> None:
    """Answer one yes/no question and print the answer."""
    engine = AdaptiveAnswerEngine(llm, literature, qa_config_from_args(args))
    result = engine.answer(args.question)
    logging.info("QA complete: answer=%s strategy=%s", result.answer, result.strategy.value)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(render_qa_text(result, explain=args.explain), end="")


def run_links(args: argparse.Namespace, literature: PubMedClient) -> None:
    """Print the citation-graph neighbours of one PMID."""
    pmid = args.pmid.strip()
    if not pmid.isdigit():
        raise InvalidInputError(f"PMID {pmid!r} is invalid: only digits are allowed", stage="validate")

    lookups = {
        "cited-by": literature.cited_by,
        "references": literature.references,
        "related": literature.related,
    }
    result = lookups[args.command](pmid)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(render_links_text(result, args.command), end="")


def run_mesh(args: argparse.Namespace, literature: PubMedClient) -> None:
    record = literature.mesh_lookup(" ".join(args.term))
    if args.json:
        print(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(render_mesh_text(record), end="")


def main(argv: list[str] | None = None) -> int:
    """Initialize config and execute the requested command."""
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    try:
        literature = PubMedClient()
        if args.command in LINK_COMMANDS:
            run_links(args, literature)
        elif args.command == "mesh":
            run_mesh(args, literature)
        elif args.command == "qa":
            run_qa(args, build_llm(args.backend, args.model), literature)
        else:
            run_synth(args, build_llm(args.backend, args.model), literature)
    except InvalidInputError as exc:
        logging.error("Invalid input: %s", exc)
        return 2
    except PipelineError as exc:
        logging.error("%s failed: %s", args.command, exc)
        return 1
    except requests.RequestException as exc:
        logging.error("PubMed request failed: %s", exc)
        return 1
    except RuntimeError as exc:
        # Backend construction and direct lookup errors, e.g. a missing API key.
        logging.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
