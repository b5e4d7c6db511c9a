#!/usr/bin/env -S uv run --script
# /// script
# dependencies = ["lxml"]
# ///
"""
Smart Element Finder

Locates an element from an original HTML page inside a changed version of the
same page, even when the element's id was renamed or removed, and reports the
element's XPath in the changed page.

Resolution order:
  1. The element with the same id in the target page, if there is one.
  2. Otherwise every link whose attributes or text overlap with the original
     element; a single candidate wins outright, several are ranked by
     similarity and the earliest highest-scoring one wins.

Usage:
    uv run scripts/find_element.py <original.html> <target.html> [element-id]
    uv run scripts/find_element.py test
"""

from __future__ import annotations

import argparse
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from html import escape
from pathlib import Path
from typing import Callable

from lxml import etree, html
from lxml.html import HtmlElement

DEFAULT_TARGET_ID = "make-everything-ok-button"

# The fallback search only looks at hyperlinks; pass tag=None (or --same-tag)
# to search the original element's own tag instead.
DEFAULT_SEARCH_TAG = "a"

DEFAULT_OUTPUT_DIR = Path("Output")

# ANSI color codes for TTY output
IS_TTY = sys.stdout.isatty()
RED = "\033[91m" if IS_TTY else ""
GREEN = "\033[92m" if IS_TTY else ""
RESET = "\033[0m" if IS_TTY else ""
BOLD = "\033[1m" if IS_TTY else ""


def log(msg: str = "") -> None:
    """Print a message and flush stdout immediately."""
    print(msg, flush=True)


# =============================================================================
# Data Classes
# =============================================================================


class Strategy(Enum):
    """How a resolution arrived at its element."""

    IDENTITY = "identity"
    SINGLE_CANDIDATE = "single_candidate"
    SIMILARITY = "similarity"


class Failure(Enum):
    """Why a resolution produced no element."""

    ORIGINAL_ELEMENT_NOT_FOUND = "original_element_not_found"
    NO_MATCH_FOUND = "no_match_found"


@dataclass
class Node:
    """Snapshot of one parsed element."""

    tag: str
    attributes: dict[str, str]  # name -> value, names unique
    inner_text: str  # Rendered text of all descendants, markup stripped
    inner_markup: str  # Serialized children, without the element's own tags
    xpath: str  # Absolute positional path within the owning document

    @classmethod
    def from_element(cls, elem: HtmlElement) -> Node:
        return cls(
            tag=elem.tag,
            attributes={str(k): str(v) for k, v in elem.attrib.items()},
            inner_text=str(elem.text_content()),
            inner_markup=_inner_markup(elem),
            xpath=elem.getroottree().getpath(elem),
        )


def _inner_markup(elem: HtmlElement) -> str:
    """Serialize the contents of an element (text and children with their tails)."""
    parts = [escape(elem.text, quote=False)] if elem.text else []
    parts.extend(html.tostring(child, encoding="unicode") for child in elem)
    return "".join(parts)


@dataclass(frozen=True)
class CandidateQuery:
    """XPath selecting the elements that plausibly correspond to an original node."""

    tag: str
    expression: str


@dataclass
class ScoredCandidate:
    node: Node
    score: int
    position: int  # Index in document order


@dataclass
class Resolution:
    """Outcome of resolving one element id from the original into the target."""

    target_id: str
    original: Node | None = None  # The element that candidates were scored against
    xpath: str | None = None
    strategy: Strategy | None = None
    failure: Failure | None = None
    query: CandidateQuery | None = None
    candidates: list[ScoredCandidate] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.xpath is not None


@dataclass
class ParseError:
    """A document that could not be read or parsed."""

    source: str
    message: str

    def __str__(self) -> str:
        return f"An error occurred when loading the document `{self.source}`: {self.message}"


# =============================================================================
# Document Model
# =============================================================================


@dataclass
class Document:
    """A fully parsed HTML document."""

    root: HtmlElement
    source: str = "<string>"

    def find_by_id(self, element_id: str) -> Node | None:
        """Return the first element carrying the given id, if any."""
        elem = self.root.get_element_by_id(element_id, None)
        if elem is None:
            return None
        return Node.from_element(elem)

    def query(self, query: CandidateQuery) -> list[Node]:
        """Run a candidate query, returning matches in document order."""
        return [
            Node.from_element(elem)
            for elem in self.root.xpath(query.expression)
            if isinstance(elem, HtmlElement)
        ]


def parse_document(content: str | bytes, source: str = "<string>") -> Document | ParseError:
    """Parse HTML content into a Document."""
    try:
        root = html.document_fromstring(content)
    except (etree.LxmlError, ValueError) as e:
        return ParseError(source=source, message=str(e) or type(e).__name__)
    return Document(root=root, source=source)


def load_document(path: Path) -> Document | ParseError:
    """Read and parse an HTML file."""
    try:
        content = path.read_bytes()
    except OSError as e:
        return ParseError(source=str(path), message=e.strerror or str(e))
    return parse_document(content, source=str(path))


# =============================================================================
# Candidate Query
# =============================================================================

# Names that can appear unquoted in an XPath step (no namespace prefix)
_XML_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_.\-]*")


def xpath_literal(value: str) -> str:
    """Quote a string as an XPath 1.0 literal.

    XPath 1.0 has no escape sequences, so a value containing both quote
    characters is split on single quotes and rebuilt with concat().
    """
    if "'" not in value:
        return f"'{value}'"
    if '"' not in value:
        return f'"{value}"'
    pieces = value.split("'")
    return "concat(" + ", \"'\", ".join(f"'{piece}'" for piece in pieces) + ")"


def _attribute_predicate(name: str, value: str) -> str:
    if _XML_NAME.fullmatch(name):
        return f"@{name} = {xpath_literal(value)}"
    return f"@*[name() = {xpath_literal(name)}] = {xpath_literal(value)}"


def build_candidate_query(original: Node, tag: str | None = DEFAULT_SEARCH_TAG) -> CandidateQuery:
    """Build a query for elements sharing any attribute value or the rendered text.

    Matches elements of ``tag`` (the original's own tag when ``tag`` is None)
    where any attribute of the original appears with the exact same value, or
    whose rendered text equals the original's rendered text.
    """
    # lxml reports HTML tag names in lowercase
    search_tag = (tag if tag is not None else original.tag).lower()
    if not _XML_NAME.fullmatch(search_tag):
        raise ValueError(f"Invalid tag name for candidate search: {search_tag!r}")

    predicates = [_attribute_predicate(name, value) for name, value in original.attributes.items()]
    predicates.append(f"string(.) = {xpath_literal(original.inner_text)}")

    return CandidateQuery(tag=search_tag, expression=f"//{search_tag}[{' or '.join(predicates)}]")


# =============================================================================
# Similarity Scoring
# =============================================================================


def text_equals(a: Node, b: Node) -> bool:
    """Rendered text equality (the criterion the candidate query uses)."""
    return a.inner_text == b.inner_text


def markup_equals(a: Node, b: Node) -> bool:
    """Raw inner markup equality (the criterion the scorer uses)."""
    return a.inner_markup == b.inner_markup


def matched_attributes(original: Node, candidate: Node) -> list[str]:
    """Names of the original's attributes the candidate carries with the same value."""
    return [
        name
        for name, value in original.attributes.items()
        if name in candidate.attributes and candidate.attributes[name] == value
    ]


def similarity_score(original: Node, candidate: Node) -> int:
    """One point per exactly matching attribute, plus one for identical inner markup."""
    score = len(matched_attributes(original, candidate))
    if markup_equals(original, candidate):
        score += 1
    return score


# =============================================================================
# Resolution
# =============================================================================


def select_best(scored: list[ScoredCandidate]) -> ScoredCandidate:
    """Return the highest-scoring candidate; the earliest one wins ties.

    Candidates must be in document order. Only a strictly greater score
    replaces the current best.
    """
    if not scored:
        raise ValueError("select_best() requires at least one candidate")
    best = scored[0]
    for candidate in scored[1:]:
        if candidate.score > best.score:
            best = candidate
    return best


def resolve(
    original_doc: Document,
    target_doc: Document,
    target_id: str = DEFAULT_TARGET_ID,
    *,
    tag: str | None = DEFAULT_SEARCH_TAG,
    scorer: Callable[[Node, Node], int] = similarity_score,
) -> Resolution:
    """Find the element in ``target_doc`` corresponding to ``#target_id`` in ``original_doc``."""
    resolution = Resolution(target_id=target_id)

    original = original_doc.find_by_id(target_id)
    if original is None:
        resolution.failure = Failure.ORIGINAL_ELEMENT_NOT_FOUND
        return resolution
    resolution.original = original

    # Same id in the target always wins, whatever the other elements look like
    same_id = target_doc.find_by_id(target_id)
    if same_id is not None:
        resolution.xpath = same_id.xpath
        resolution.strategy = Strategy.IDENTITY
        return resolution

    query = build_candidate_query(original, tag)
    resolution.query = query
    nodes = target_doc.query(query)

    if not nodes:
        resolution.failure = Failure.NO_MATCH_FOUND
        return resolution

    if len(nodes) == 1:
        resolution.xpath = nodes[0].xpath
        resolution.strategy = Strategy.SINGLE_CANDIDATE
        return resolution

    resolution.candidates = [
        ScoredCandidate(node=node, score=scorer(original, node), position=i)
        for i, node in enumerate(nodes)
    ]
    best = select_best(resolution.candidates)
    resolution.xpath = best.node.xpath
    resolution.strategy = Strategy.SIMILARITY
    return resolution


# =============================================================================
# Output
# =============================================================================


def describe_failure(resolution: Resolution) -> str:
    if resolution.failure is Failure.ORIGINAL_ELEMENT_NOT_FOUND:
        return f"Element with ID `{resolution.target_id}` was not found in the original document"
    return "Search element was not found in the target document"


def write_result(xpath: str, target_path: Path, output_dir: Path = DEFAULT_OUTPUT_DIR) -> Path:
    """Write the XPath to ``<output_dir>/<target file stem>.txt``."""
    output_dir.mkdir(parents=True, exist_ok=True)
    out_file = output_dir / f"{target_path.stem}.txt"
    out_file.write_text(xpath, encoding="utf-8")
    return out_file


def print_resolution_details(resolution: Resolution) -> None:
    """Print the candidate query and the score of every candidate."""
    log(f"  Strategy: {resolution.strategy.value if resolution.strategy else 'none'}")
    if resolution.query is None:
        return

    log(f"  Candidate query: {resolution.query.expression}")
    if not resolution.candidates:
        return

    original = resolution.original
    for scored in resolution.candidates:
        marker = f"{GREEN}*{RESET}" if scored.node.xpath == resolution.xpath else " "
        details = []
        if original is not None:
            attrs = matched_attributes(original, scored.node)
            details.append(f"attrs={','.join(attrs) or '-'}")
            details.append(f"text={'yes' if text_equals(original, scored.node) else 'no'}")
            details.append(f"markup={'yes' if markup_equals(original, scored.node) else 'no'}")
        log(f"  {marker} [{scored.position}] score={scored.score} {' '.join(details)} {scored.node.xpath}")


# =============================================================================
# Tests
# =============================================================================


def run_tests() -> int:
    """Run the built-in resolution checks."""
    passed = 0
    failed = 0

    def test(
        name: str,
        original_html: str,
        target_html: str,
        expected: str | Failure,
        target_id: str = "btn",
        tag: str | None = DEFAULT_SEARCH_TAG,
    ) -> None:
        nonlocal passed, failed

        original_doc = parse_document(original_html)
        target_doc = parse_document(target_html)
        if isinstance(original_doc, ParseError) or isinstance(target_doc, ParseError):
            log(f"  {RED}FAIL{RESET}: {name}")
            log("    Could not parse documents")
            failed += 1
            return

        resolution = resolve(original_doc, target_doc, target_id, tag=tag)
        got: str | Failure | None = resolution.xpath if resolution.ok else resolution.failure

        if got == expected:
            log(f"  {GREEN}PASS{RESET}: {name}")
            passed += 1
        else:
            log(f"  {RED}FAIL{RESET}: {name}")
            log(f"    Expected: {expected}")
            log(f"    Got: {got}")
            failed += 1

    log("Running resolution tests...\n")

    original = '<div><a id="btn" class="primary" href="/ok">Click</a></div>'

    test(
        "identity match",
        original,
        '<div><a class="primary" href="/ok">Click</a><a id="btn">Other</a></div>',
        expected="/html/body/div/a[2]",
    )

    test(
        "missing in original",
        "<div><a id='other'>Click</a></div>",
        original,
        expected=Failure.ORIGINAL_ELEMENT_NOT_FOUND,
    )

    test(
        "no candidates",
        original,
        '<div><a class="secondary" href="/no">Leave</a></div>',
        expected=Failure.NO_MATCH_FOUND,
    )

    test(
        "single candidate by text",
        original,
        '<div><a class="secondary">Click</a><a>Leave</a></div>',
        expected="/html/body/div/a[1]",
    )

    test(
        "highest score wins",
        original,
        '<div><a class="primary" href="/no">Click</a><a class="primary" href="/ok">Click</a></div>',
        expected="/html/body/div/a[2]",
    )

    test(
        "tie goes to first in document order",
        original,
        '<div><a class="primary">Go</a><a href="/ok">Go</a></div>',
        expected="/html/body/div/a[1]",
    )

    test(
        "quotes in attribute values",
        '<div><a id="btn" title="it\'s &quot;ok&quot;">Click me</a></div>',
        '<div><a title="it\'s &quot;ok&quot;">Press</a></div>',
        expected="/html/body/div/a",
    )

    test(
        "fixed tag ignores other elements",
        '<div><button id="btn" class="primary">Click</button></div>',
        '<div><button class="primary">Click</button></div>',
        expected=Failure.NO_MATCH_FOUND,
    )

    test(
        "same-tag search",
        '<div><button id="btn" class="primary">Click</button></div>',
        '<div><button class="primary">Click</button></div>',
        expected="/html/body/div/button",
        tag=None,
    )

    log(f"\n{passed} passed, {failed} failed")
    return 1 if failed else 0


# =============================================================================
# Main
# =============================================================================


def run_find(args: argparse.Namespace) -> int:
    """Resolve one element and report the result."""
    for label, path in (("Original file", args.original), ("Target file", args.target)):
        if not path.is_file():
            print(f"Error: {label} is not found at '{path}'", file=sys.stderr)
            return 1

    original_doc = load_document(args.original)
    if isinstance(original_doc, ParseError):
        print(f"Error: {original_doc}", file=sys.stderr)
        return 1

    target_doc = load_document(args.target)
    if isinstance(target_doc, ParseError):
        print(f"Error: {target_doc}", file=sys.stderr)
        return 1

    log(f"Searching for element with ID `{args.element_id}`")

    try:
        resolution = resolve(original_doc, target_doc, args.element_id, tag=args.tag)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.verbose:
        print_resolution_details(resolution)

    if not resolution.ok:
        log(f"{RED}{describe_failure(resolution)}{RESET}")
        return 1

    try:
        out_file = write_result(resolution.xpath, args.target, args.output_dir)
    except OSError as e:
        print(f"Error: could not write result to '{args.output_dir}': {e}", file=sys.stderr)
        return 1

    log(f"{BOLD}{resolution.xpath}{RESET}")
    if args.verbose:
        log(f"  Written to {out_file}")
    return 0


def main_cli(argv: list[str] | None = None) -> int:
    """Main CLI entry point with subcommand support."""
    argv = list(sys.argv[1:] if argv is None else argv)
    # If first arg is not a known command or flag, assume it's a file and prepend "find"
    if argv and argv[0] not in ("find", "test", "-h", "--help"):
        argv.insert(0, "find")

    parser = argparse.ArgumentParser(
        description="Find an element from an original HTML page in a changed page",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    find_parser = subparsers.add_parser("find", help="Resolve an element's XPath in the target page")
    find_parser.add_argument("original", type=Path, help="Original HTML file containing the element")
    find_parser.add_argument("target", type=Path, help="Changed HTML file to search")
    find_parser.add_argument(
        "element_id",
        nargs="?",
        default=DEFAULT_TARGET_ID,
        help=f"Id of the element in the original file (default: {DEFAULT_TARGET_ID})",
    )
    find_parser.add_argument(
        "-o",
        "--output-dir",
        type=Path,
        default=DEFAULT_OUTPUT_DIR,
        help=f"Directory the XPath file is written to (default: {DEFAULT_OUTPUT_DIR})",
    )
    tag_group = find_parser.add_mutually_exclusive_group()
    tag_group.add_argument(
        "--tag",
        type=str.lower,
        default=DEFAULT_SEARCH_TAG,
        help=f"Tag searched when the id is gone from the target (default: {DEFAULT_SEARCH_TAG})",
    )
    tag_group.add_argument(
        "--same-tag",
        dest="tag",
        action="store_const",
        const=None,
        help="Search the original element's own tag instead",
    )
    find_parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show the candidate query and scores"
    )

    subparsers.add_parser("test", help="Run the built-in resolution checks")

    args = parser.parse_args(argv)

    if args.command == "test":
        return run_tests()
    elif args.command == "find":
        return run_find(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main_cli())
