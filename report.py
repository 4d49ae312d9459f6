"""Human-readable rendering of synthesis, QA, citation-link and MeSH results."""

from __future__ import annotations

from models import LinkResult, MeshRecord, QAResult, Strategy, SynthesisResult

_STRATEGY_LABELS = {
    Strategy.PARAMETRIC: "parametric (model knowledge)",
    Strategy.RETRIEVAL: "retrieval (PubMed evidence)",
}

_LINK_TITLES = {
    "cited-by": "Cited By",
    "references": "References",
    "related": "Related Articles",
}


def render_synthesis_markdown(result: SynthesisResult) -> str:
    """Render a synthesis as Markdown: question, stats, body, references, tokens."""
    lines = [
        f"# {result.question}",
        "",
        f"*Searched {result.papers_searched} papers, scored {result.papers_scored}, used {result.papers_used}*",
        "",
        "## Synthesis",
        "",
        result.synthesis,
        "",
    ]

    if result.references:
        lines.extend(["## References", ""])
        for index, ref in enumerate(result.references, start=1):
            lines.append(
                f"{index}. {ref.citation_apa} (relevance: {ref.relevance_score}/10) [PMID: {ref.pmid}]"
            )
        lines.append("")

    tokens = result.tokens
    lines.append(f"---\n*Tokens: {tokens.input} in / {tokens.output} out / {tokens.total} total*")
    return "\n".join(lines) + "\n"


def render_qa_text(result: QAResult, explain: bool = False) -> str:
    """Render a QA answer; explain adds the strategy, confidence and sources."""
    answer = result.answer.upper() if result.answer else "UNKNOWN"
    if not explain:
        return answer + "\n"

    lines = [
        f"Question: {result.question}",
        f"Answer: {answer}",
        f"Strategy: {_STRATEGY_LABELS.get(result.strategy, result.strategy.value)}",
    ]
    if result.confidence:
        lines.append(f"Confidence: {result.confidence}/10")
    if result.novel_detected:
        lines.append("Novelty: recent-knowledge cues detected")
    if result.source_ids:
        lines.append("Sources: " + ", ".join(f"PMID {pmid}" for pmid in result.source_ids))
    if result.minified_context:
        lines.extend(["", "Evidence:", result.minified_context])
    return "\n".join(lines) + "\n"


def render_links_text(result: LinkResult, link_type: str) -> str:
    """Numbered PMID list for cited-by / references / related lookups."""
    if not result.links:
        return f"No {link_type} results for PMID {result.source_id}.\n"

    title = _LINK_TITLES.get(link_type, link_type)
    lines = [f"{title} for PMID {result.source_id} ({len(result.links)} results):", ""]
    for index, link in enumerate(result.links, start=1):
        if link.score > 0:
            lines.append(f"  {index}. PMID: {link.paper_id} (score: {link.score})")
        else:
            lines.append(f"  {index}. PMID: {link.paper_id}")
    return "\n".join(lines) + "\n"


def render_mesh_text(record: MeshRecord) -> str:
    lines = [f"MeSH Term: {record.name}", f"UI: {record.ui}"]
    if record.tree_numbers:
        lines.extend(["", "Tree Numbers:"])
        lines.extend(f"  {number}" for number in record.tree_numbers)
    if record.scope_note:
        lines.extend(["", "Scope Note:", f"  {record.scope_note}"])
    if record.entry_terms:
        lines.extend(["", "Entry Terms (synonyms):"])
        lines.extend(f"  - {term}" for term in record.entry_terms)
    if record.annotation:
        lines.extend(["", f"Annotation: {record.annotation}"])
    return "\n".join(lines) + "\n"
