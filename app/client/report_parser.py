"""Derive a structured report from the markdown the report model streams."""
from __future__ import annotations

import re

from app.models.events import Report, ReportFinding, ReportSection, Source, now_ms

_TITLE_RE = re.compile(r"^#\s+(.+?)\s*$")
_SECTION_RE = re.compile(r"^##\s+(.+?)\s*#*\s*$")
_REFERENCE_RE = re.compile(r"^\s*\d+\.\s+\[(.*?)\]\((.*?)\)")
_BULLET_RE = re.compile(r"^\s*[-*]\s+(.+?)\s*$")
_NUMBERING_RE = re.compile(r"^[\d一二三四五六七八九十]+[.、）)]\s*")

INTRODUCTION = "引言"
CONCLUSION = "结论"
REFERENCES = "参考资料"


def _heading_key(heading: str) -> str:
    return _NUMBERING_RE.sub("", heading).strip()


def _split_sections(lines: list[str]) -> list[tuple[str, list[str]]]:
    sections: list[tuple[str, list[str]]] = []
    for line in lines:
        match = _SECTION_RE.match(line)
        if match:
            sections.append((match.group(1), []))
        elif sections:
            sections[-1][1].append(line)
    return sections


def report_from_markdown(topic: str, markdown: str, *, generated_at: int | None = None) -> Report:
    """Parse ``# title`` / ``## section`` markdown into a Report.

    Missing parts stay empty; the raw markdown is kept as ``content``.
    Section ids are positional so re-parsing the same text is stable.
    """
    lines = (markdown or "").splitlines()

    title = f"{topic}研究报告"
    for line in lines:
        match = _TITLE_RE.match(line)
        if match:
            title = match.group(1)
            break

    introduction = ""
    conclusion = ""
    references: list[Source] = []
    sections: list[ReportSection] = []

    for heading, body_lines in _split_sections(lines):
        key = _heading_key(heading)
        body = "\n".join(body_lines).strip()

        if key == INTRODUCTION:
            introduction = body
        elif key == CONCLUSION:
            conclusion = body
        elif key == REFERENCES:
            for line in body_lines:
                match = _REFERENCE_RE.match(line)
                if match:
                    references.append(Source(title=match.group(1), url=match.group(2)))
        else:
            section_id = f"section-{len(sections) + 1}"
            findings = []
            for line in body_lines:
                match = _BULLET_RE.match(line)
                if match:
                    findings.append(
                        ReportFinding(
                            id=f"{section_id}-finding-{len(findings) + 1}",
                            summary=match.group(1),
                        )
                    )
            sections.append(
                ReportSection(id=section_id, title=heading, content=body, findings=findings)
            )

    return Report(
        title=title,
        introduction=introduction,
        sections=sections,
        conclusion=conclusion,
        references=references,
        content=markdown or "",
        is_plain_text=True,
        generated_at=generated_at if generated_at is not None else now_ms(),
    )
