#!/usr/bin/env python3
"""
KUBEMEND LOADER - Multi-Document Intake
---------------------------------------
Splits raw manifest text on YAML document separators and parses every
document on its own, so one broken document never hides the others.
Parsing uses the ruamel.yaml round-trip loader; the parsed tree is kept
on each Document as its `origin` so the exporter can preserve comments.

Author: KubeMend Team
Date: 2026-10-17
"""

import logging
import re
from typing import Any, List, Optional, Tuple

from ruamel.yaml import YAML, YAMLError

from kubemend.core.document import Document
from kubemend.core.exceptions import ParseError

logger = logging.getLogger("kubemend.loader")

# Group 1: inline content after the separator, e.g. "--- {a: 1}"
SEPARATOR_PATTERN = re.compile(r'^---(?:[ \t]+(.*))?[ \t]*$')
END_MARKER_PATTERN = re.compile(r'^\.\.\.[ \t]*$')


def _make_parser() -> YAML:
    yaml = YAML(typ='rt')
    yaml.preserve_quotes = True
    yaml.allow_duplicate_keys = False
    return yaml


def split_documents(text: str) -> List[Tuple[int, str]]:
    """
    Splits text into (first_line_number, chunk) pairs.
    Only separators at column 0 count, so block scalars stay intact.
    """
    text = text.lstrip('\ufeff').replace('\r\n', '\n').replace('\r', '\n')
    chunks: List[Tuple[int, str]] = []
    current: List[str] = []
    start = 1

    for line_no, line in enumerate(text.split('\n'), 1):
        separator = SEPARATOR_PATTERN.match(line)
        if separator or END_MARKER_PATTERN.match(line):
            chunks.append((start, '\n'.join(current)))
            current = []
            start = line_no
            inline = separator.group(1) if separator else None
            if inline:
                current.append(inline)
            else:
                start = line_no + 1
            continue
        current.append(line)

    chunks.append((start, '\n'.join(current)))
    return chunks


def _is_blank(chunk: str) -> bool:
    for line in chunk.split('\n'):
        stripped = line.strip()
        if stripped and not stripped.startswith('#') and not stripped.startswith('%'):
            return False
    return True


def _error_line(error: Exception, first_line: int) -> Optional[int]:
    mark = getattr(error, 'problem_mark', None) or getattr(error, 'context_mark', None)
    if mark is None or getattr(mark, 'line', None) is None:
        return None
    return first_line + mark.line


def load(text: str, source: str = "<memory>") -> Tuple[List[Document], List[ParseError]]:
    """
    Parses raw text into Documents.

    Returns (documents, errors). A failure is scoped to its own document;
    blank or comment-only documents are skipped without an error.
    """
    documents: List[Document] = []
    errors: List[ParseError] = []
    parser = _make_parser()
    index = 0

    for first_line, chunk in split_documents(text):
        if _is_blank(chunk):
            continue

        try:
            data: Any = parser.load(chunk)
            if data is None:
                continue
            documents.append(Document(data, source=source, index=index, origin=data))
        except YAMLError as e:
            problem = getattr(e, 'problem', None) or str(e).strip().splitlines()[0]
            errors.append(ParseError(source, index, problem, _error_line(e, first_line)))
        except (TypeError, ValueError) as e:
            errors.append(ParseError(source, index, str(e), first_line))

        index += 1

    if errors:
        logger.info(f"{source}: {len(documents)} document(s) loaded, {len(errors)} failed to parse")
    return documents, errors
