"""PubMed (NCBI E-utilities) literature source."""

from __future__ import annotations

import logging
import os
import re
import threading
import time
import xml.etree.ElementTree as ET
from typing import Any, Sequence

import requests

from models import Author, LinkItem, LinkResult, MeshRecord, Paper, SearchResult
from services import raise_if_cancelled

EUTILS_BASE_URL = os.getenv("NCBI_BASE_URL", "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/")
REQUEST_TIMEOUT_SECONDS = 30
MAX_RETRIES = 3
DEFAULT_TOOL = "pubmed-cli"
DEFAULT_EMAIL = "pubmed-cli@users.noreply.github.com"

LINK_CITED_BY = "pubmed_pubmed_citedin"
LINK_REFERENCES = "pubmed_pubmed_refs"
LINK_RELATED = "pubmed_pubmed"

LOGGER = logging.getLogger(__name__)

_YEAR = re.compile(r"\d{4}")


class PubMedClient:
    """LiteratureSource backed by ESearch (JSON) and EFetch (XML).

    NCBI asks every client to identify itself with tool and email; an API
    key raises the rate limit from 3 to 10 requests per second.
    """

    def __init__(
        self,
        api_key: str | None = None,
        email: str | None = None,
        tool: str | None = None,
        base_url: str | None = None,
        timeout: int = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("NCBI_API_KEY", "")
        self.email = email or os.getenv("NCBI_EMAIL") or DEFAULT_EMAIL
        self.tool = tool or os.getenv("NCBI_TOOL") or DEFAULT_TOOL
        self.base_url = (base_url or EUTILS_BASE_URL).rstrip("/") + "/"
        self.timeout = timeout

    def _params(self, db: str = "pubmed", **params: Any) -> dict[str, Any]:
        params.update(db=db, tool=self.tool, email=self.email)
        if self.api_key:
            params["api_key"] = self.api_key
        return params

    def _get(
        self,
        endpoint: str,
        params: dict[str, Any],
        cancel: threading.Event | None = None,
    ) -> requests.Response:
        """GET an E-utilities endpoint with exponential backoff on 429 and transport errors.

        The backoff wait ends early when cancel is set, raising CancellationError.
        """
        url = self.base_url + endpoint
        stage = endpoint.removesuffix(".fcgi")
        delay_seconds = 1.0

        for attempt in range(1, MAX_RETRIES + 1):
            raise_if_cancelled(cancel, stage)
            try:
                response = requests.get(url, params=params, timeout=self.timeout)
            except (requests.ConnectionError, requests.Timeout) as exc:
                if attempt >= MAX_RETRIES:
                    raise
                LOGGER.warning("PubMed %s attempt %s failed, retrying: %s", endpoint, attempt, exc)
            else:
                if response.status_code != 429 or attempt >= MAX_RETRIES:
                    response.raise_for_status()
                    return response
                LOGGER.warning("PubMed %s rate limited (attempt %s), backing off", endpoint, attempt)
            if cancel is None:
                time.sleep(delay_seconds)
            elif cancel.wait(delay_seconds):
                raise_if_cancelled(cancel, stage)
            delay_seconds *= 2

        raise RuntimeError(f"PubMed {endpoint} failed after {MAX_RETRIES} attempts")

    def search(
        self,
        query: str,
        limit: int,
        min_year: int | None = None,
        max_year: int | None = None,
        sort: str | None = None,
        cancel: threading.Event | None = None,
    ) -> SearchResult:
        """Run an ESearch query and return PMIDs in relevance order."""
        query = query.strip()
        if not query:
            raise RuntimeError("PubMed search query must not be empty")

        params = self._params(term=query, retmode="json", retmax=limit)
        if sort:
            params["sort"] = sort
        if min_year is not None or max_year is not None:
            params["datetype"] = "pdat"
            params["mindate"] = str(min_year) if min_year is not None else "1800"
            params["maxdate"] = str(max_year) if max_year is not None else "3000"

        response = self._get("esearch.fcgi", params, cancel)
        result = _parse_search_payload(response.json())
        LOGGER.info(
            "PubMed search: query=%r limit=%s returned=%s total_count=%s",
            query,
            limit,
            len(result.ids),
            result.total_count,
        )
        return result

    def fetch(self, ids: Sequence[str], cancel: threading.Event | None = None) -> list[Paper]:
        """Fetch full records for PMIDs via EFetch."""
        ids = [pmid.strip() for pmid in ids if pmid and pmid.strip()]
        if not ids:
            return []

        params = self._params(id=",".join(ids), retmode="xml", rettype="abstract")
        response = self._get("efetch.fcgi", params, cancel)
        papers = _parse_articles_xml(response.content)
        LOGGER.info("PubMed fetch: requested=%s parsed=%s", len(ids), len(papers))
        return papers

    def cited_by(self, pmid: str, cancel: threading.Event | None = None) -> LinkResult:
        """Papers that cite pmid."""
        return self._link(pmid, LINK_CITED_BY, cancel=cancel)

    def references(self, pmid: str, cancel: threading.Event | None = None) -> LinkResult:
        """Papers cited by pmid."""
        return self._link(pmid, LINK_REFERENCES, cancel=cancel)

    def related(self, pmid: str, cancel: threading.Event | None = None) -> LinkResult:
        """Similar articles, each with its neighbor score."""
        return self._link(pmid, LINK_RELATED, with_scores=True, cancel=cancel)

    def _link(
        self,
        pmid: str,
        link_name: str,
        with_scores: bool = False,
        cancel: threading.Event | None = None,
    ) -> LinkResult:
        pmid = pmid.strip()
        if not pmid:
            raise RuntimeError("PMID must not be empty")

        params = self._params(dbfrom="pubmed", id=pmid, linkname=link_name, retmode="json")
        if with_scores:
            params["cmd"] = "neighbor_score"

        response = self._get("elink.fcgi", params, cancel)
        result = _parse_link_payload(response.json(), pmid, link_name)
        LOGGER.info("PubMed link: pmid=%s linkname=%s links=%s", pmid, link_name, len(result.links))
        return result

    def mesh_lookup(self, term: str, cancel: threading.Event | None = None) -> MeshRecord:
        """Find term in the MeSH database and return its full descriptor record."""
        term = term.strip()
        if not term:
            raise RuntimeError("MeSH term must not be empty")

        search = self._get("esearch.fcgi", self._params(db="mesh", term=term, retmode="json"), cancel)
        ids = _parse_search_payload(search.json()).ids
        if not ids:
            raise RuntimeError(f"MeSH term {term!r} not found")

        params = self._params(db="mesh", id=ids[0], rettype="full", retmode="text")
        response = self._get("efetch.fcgi", params, cancel)
        record = _parse_mesh_record(response.text)
        LOGGER.info("MeSH lookup: term=%r ui=%s name=%r", term, record.ui, record.name)
        return record


def _parse_search_payload(payload: Any) -> SearchResult:
    """Parse an ESearch JSON payload into a SearchResult."""
    if not isinstance(payload, dict) or not isinstance(payload.get("esearchresult"), dict):
        raise RuntimeError("Unexpected ESearch payload shape: missing esearchresult")

    block = payload["esearchresult"]
    if block.get("ERROR"):
        raise RuntimeError(f"ESearch error: {block['ERROR']}")

    ids = tuple(str(pmid) for pmid in block.get("idlist") or [] if str(pmid).strip())
    try:
        total_count = int(block.get("count", len(ids)))
    except (TypeError, ValueError):
        total_count = len(ids)
    return SearchResult(ids=ids, total_count=total_count)


def _parse_link_payload(payload: Any, source_id: str, link_name: str) -> LinkResult:
    """Parse an ELink JSON payload, keeping only links of link_name."""
    if not isinstance(payload, dict) or not isinstance(payload.get("linksets", []), list):
        raise RuntimeError("Unexpected ELink payload shape: missing linksets")
    if payload.get("ERROR"):
        raise RuntimeError(f"ELink error: {payload['ERROR']}")

    links: list[LinkItem] = []
    linksets = payload.get("linksets") or []
    if linksets and isinstance(linksets[0], dict):
        for linkset_db in linksets[0].get("linksetdbs") or []:
            if linkset_db.get("linkname") != link_name:
                continue
            for link in linkset_db.get("links") or []:
                item = _link_item(link)
                if item.paper_id:
                    links.append(item)
    return LinkResult(source_id=source_id, links=tuple(links))


def _link_item(link: Any) -> LinkItem:
    # Cited-by and refs return bare ids; neighbor_score returns {"id": ..., "score": ...}.
    if not isinstance(link, dict):
        return LinkItem(paper_id=str(link).strip())
    try:
        score = int(link.get("score") or 0)
    except (TypeError, ValueError):
        score = 0
    return LinkItem(paper_id=str(link.get("id", "")).strip(), score=score)


def _parse_mesh_record(text: str) -> MeshRecord:
    """Parse the MeSH "full" text format (KEY = value lines) into a MeshRecord."""
    fields: dict[str, str] = {}
    tree_numbers: list[str] = []
    entry_terms: list[str] = []

    for line in text.splitlines():
        key, sep, value = line.strip().partition(" = ")
        if not sep:
            continue
        key, value = key.strip(), value.strip()
        if key == "MN":
            tree_numbers.append(value)
        elif key == "ENTRY":
            # "Term|T047|NON|EQV|..." keeps only the term.
            entry_terms.append(value.split("|", 1)[0].strip())
        elif key in {"MH", "UI", "MS", "AN"}:
            fields[key] = value

    return MeshRecord(
        ui=fields.get("UI", ""),
        name=fields.get("MH", ""),
        scope_note=fields.get("MS", ""),
        tree_numbers=tuple(tree_numbers),
        entry_terms=tuple(entry_terms),
        annotation=fields.get("AN", ""),
    )


def _parse_articles_xml(content: bytes | str) -> list[Paper]:
    """Parse a PubmedArticleSet document into Paper records."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise RuntimeError(f"Could not parse EFetch XML: {exc}") from exc

    papers: list[Paper] = []
    for node in root.iter("PubmedArticle"):
        paper = _convert_article(node)
        if paper is not None:
            papers.append(paper)
    return papers


def _convert_article(node: ET.Element) -> Paper | None:
    citation = node.find("MedlineCitation")
    if citation is None:
        return None
    pmid = _text(citation.find("PMID"))
    if not pmid:
        return None

    article = citation.find("Article")
    if article is None:
        return Paper(paper_id=pmid)

    journal = article.find("Journal")
    issue = journal.find("JournalIssue") if journal is not None else None

    return Paper(
        paper_id=pmid,
        title=_text(article.find("ArticleTitle")),
        abstract=_abstract(article.find("Abstract")),
        authors=_authors(article.find("AuthorList")),
        journal=_text(journal.find("Title")) if journal is not None else "",
        year=_year(issue.find("PubDate")) if issue is not None else "",
        volume=_text(issue.find("Volume")) if issue is not None else "",
        issue=_text(issue.find("Issue")) if issue is not None else "",
        pages=_text(article.find("Pagination/MedlinePgn")),
        doi=_doi(node, article),
    )


def _abstract(node: ET.Element | None) -> str:
    # Structured abstracts carry one AbstractText per section.
    if node is None:
        return ""
    sections = []
    for part in node.findall("AbstractText"):
        text = _text(part)
        if not text:
            continue
        label = (part.get("Label") or "").strip()
        sections.append(f"{label}: {text}" if label else text)
    return "\n\n".join(sections)


def _authors(node: ET.Element | None) -> tuple[Author, ...]:
    if node is None:
        return ()
    authors = []
    for author in node.findall("Author"):
        if author.get("ValidYN", "Y") == "N":
            continue
        entry = Author(
            last_name=_text(author.find("LastName")),
            fore_name=_text(author.find("ForeName")) or _text(author.find("Initials")),
            collective_name=_text(author.find("CollectiveName")),
        )
        if entry.last_name or entry.collective_name:
            authors.append(entry)
    return tuple(authors)


def _year(pub_date: ET.Element | None) -> str:
    if pub_date is None:
        return ""
    year = _text(pub_date.find("Year"))
    if year:
        return year
    match = _YEAR.search(_text(pub_date.find("MedlineDate")))
    return match.group(0) if match else ""


def _doi(node: ET.Element, article: ET.Element) -> str:
    for article_id in node.findall("PubmedData/ArticleIdList/ArticleId"):
        if article_id.get("IdType") == "doi" and _text(article_id):
            return _text(article_id)
    for location in article.findall("ELocationID"):
        if location.get("EIdType") == "doi" and _text(location):
            return _text(location)
    return ""


def _text(node: ET.Element | None) -> str:
    # itertext keeps inline markup such as <i> and <sup> in titles.
    if node is None:
        return ""
    return " ".join("".join(node.itertext()).split())
