"""Parse generated markdown back into structured test case records.

The layout is the one requested by ``casegen.core.prompts.OUTPUT_FORMAT``::

    ### Test Case 1: Login with valid credentials
    - **Priority**: High
    - **Preconditions**: User exists
    - **Steps**:
      1. Open the login page
      2. Submit valid credentials
    - **Expected Result**: Dashboard is shown

The accepted delimiters and labels live in ``MarkdownGrammar`` so that a
prompt change only needs a grammar change. Parsing never raises: text
without a delimiter yields no records and a missing label yields an
empty field.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Tuple

import structlog

from casegen.models.schemas import TestCaseRecord

logger = structlog.get_logger()


@dataclass(frozen=True)
class MarkdownGrammar:
    # Regexes that start a new test case block, matched at line start
    delimiters: Tuple[str, ...]
    # Record field -> accepted label spellings, longest first
    labels: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    def delimiter_pattern(self) -> Pattern[str]:
        return re.compile("|".join(f"(?:{d})" for d in self.delimiters), re.IGNORECASE | re.MULTILINE)

    def label_pattern(self) -> Pattern[str]:
        spellings = sorted(
            (re.escape(s) for names in self.labels.values() for s in names),
            key=len,
            reverse=True,
        )
        return re.compile(
            r"^[ \t]*(?:[-*+•][ \t]+)?"
            r"(?P<heading>#{1,6}[ \t]*)?"
            r"(?P<open>\*\*|__)?"
            rf"(?P<label>{'|'.join(spellings)})"
            r"(?P<close>(?:\*\*|__)?[ \t]*:(?:\*\*|__)?|\*\*|__)?"
            r"[ \t]*",
            re.IGNORECASE | re.MULTILINE,
        )

    def field_for(self, label: str) -> Optional[str]:
        wanted = label.strip().lower()
        for name, spellings in self.labels.items():
            if wanted in (s.lower() for s in spellings):
                return name
        return None


DEFAULT_GRAMMAR = MarkdownGrammar(
    delimiters=(
        # ### Test Case 3: Title   /   ## **Test Case 3** - Title
        r"^[ \t]*#{1,6}[ \t]*(?:\*\*)?Test[ \t]+Case[ \t]*#?\d+(?:\*\*)?[ \t]*[:.\-–]?",
        # Test Case 3: Title   /   **Test Case 3:** Title
        r"^[ \t]*(?:\*\*)?Test[ \t]+Case[ \t]*#?\d+[ \t]*(?:\*\*)?[ \t]*[:.\-–](?:\*\*)?",
    ),
    labels={
        "priority": ("Priority",),
        "preconditions": ("Preconditions", "Pre-conditions", "Precondition"),
        "steps": ("Test Steps", "Steps"),
        "expected_result": ("Expected Results", "Expected Result", "Expected Outcome"),
    },
)

# Anything that ends a labelled section besides the next label
_SECTION_BREAK = re.compile(r"^[ \t]*(?:#{1,6}[ \t]+\S|(?:-[ \t]*){3,}$|(?:\*[ \t]*){3,}$|(?:_[ \t]*){3,}$)", re.MULTILINE)


def clean_markdown(text: str) -> str:
    """Strip markdown markup, leaving one plain line per item."""
    if not text:
        return ""
    text = re.sub(r"^[ \t]*#{1,6}[ \t]*", "", text, flags=re.MULTILINE)
    # Numbered steps become bullet items, then every bullet marker goes
    text = re.sub(r"^[ \t]*\d+[.)][ \t]+", "• ", text, flags=re.MULTILINE)
    text = re.sub(r"\*\*(.*?)\*\*", r"\1", text, flags=re.DOTALL)
    text = re.sub(r"__(.*?)__", r"\1", text, flags=re.DOTALL)
    text = re.sub(r"\*(.*?)\*", r"\1", text)
    # _emphasis_ only at word edges, so snake_case names survive
    text = re.sub(r"(?<!\w)_(\S(?:[^\n]*?\S)?)_(?!\w)", r"\1", text)
    text = re.sub(r"^[ \t]*[-*+•][ \t]+", "", text, flags=re.MULTILINE)
    # Unpaired asterisks left over from broken emphasis
    text = re.sub(r"[ \t]*\*+[ \t]*", " ", text)
    text = re.sub(r"[`>]", "", text)
    text = "\n".join(line.strip() for line in text.splitlines())
    text = re.sub(r"\n{2,}", "\n", text)
    return text.strip()


def _is_label(match: re.Match) -> bool:
    # A bare word only counts as a label when written as one:
    # heading, bold, or followed by a colon
    return bool(match.group("heading") or match.group("open") or match.group("close"))


def extract_sections(block: str, grammar: MarkdownGrammar = DEFAULT_GRAMMAR) -> Dict[str, str]:
    """Map each record field to the raw text under its label (first occurrence wins)."""
    matches = [m for m in grammar.label_pattern().finditer(block) if _is_label(m)]
    sections: Dict[str, str] = {}
    for i, match in enumerate(matches):
        name = grammar.field_for(match.group("label"))
        if name is None or name in sections:
            continue
        end = matches[i + 1].start() if i + 1 < len(matches) else len(block)
        body = block[match.end():end]
        brk = _SECTION_BREAK.search(body)
        if brk:
            body = body[:brk.start()]
        sections[name] = body.strip()
    return sections


def split_blocks(markdown: str, grammar: MarkdownGrammar = DEFAULT_GRAMMAR) -> List[str]:
    """Split on test case delimiters, dropping any preamble."""
    starts = list(grammar.delimiter_pattern().finditer(markdown))
    blocks = []
    for i, match in enumerate(starts):
        end = starts[i + 1].start() if i + 1 < len(starts) else len(markdown)
        blocks.append(markdown[match.end():end])
    return blocks


def parse_test_cases(markdown: Optional[str], grammar: MarkdownGrammar = DEFAULT_GRAMMAR) -> List[TestCaseRecord]:
    if not isinstance(markdown, str) or not markdown.strip():
        return []
    text = markdown.replace("\r\n", "\n").replace("\r", "\n")

    records: List[TestCaseRecord] = []
    for index, block in enumerate(split_blocks(text, grammar)):
        title_line, _, _ = block.lstrip(" \t").partition("\n")
        title = clean_markdown(title_line.strip().lstrip(":.-– \t"))
        sections = extract_sections(block, grammar)
        records.append(TestCaseRecord(
            id=f"Test Case {index + 1}",
            title=title,
            priority=clean_markdown(sections.get("priority", "")),
            preconditions=clean_markdown(sections.get("preconditions", "")),
            steps=clean_markdown(sections.get("steps", "")),
            expected_result=clean_markdown(sections.get("expected_result", "")),
        ))
    logger.info("Parsed test cases from markdown", count=len(records))
    return records
