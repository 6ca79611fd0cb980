"""Files named in an operator request, inlined into the request turn."""

import logging
import re
from typing import List
from .errors import ToolError
from ..llm.base import TextBlock
from ..tools.base import ExecutionContext
from ..tools.filesystem import read_text

logger = logging.getLogger(__name__)

REFERENCE_PATTERNS = [
    re.compile(r"`([^`\s]+\.[A-Za-z]+)`"),
    # A file name may end a sentence or clause
    re.compile(r"(?:^|\s)(\S+\.[A-Za-z]{1,4})(?=[\s,;:!?)\]'\"]|\.(?:\s|$)|$)"),
    re.compile(r"\b(?:file|read|edit|open)\s+(\S+)", re.IGNORECASE),
]
MAX_REFERENCED_FILES = 5
MAX_REFERENCE_BYTES = 100_000

_TRIM = "\"'`()[]{}<>,;:!?"


def extract_file_references(text: str) -> List[str]:
    """Candidate file paths mentioned in ``text``, first mention first."""
    found: List[str] = []
    for pattern in REFERENCE_PATTERNS:
        for match in pattern.finditer(text):
            candidate = match.group(1).strip(_TRIM).rstrip(".")
            if candidate and candidate not in found:
                found.append(candidate)
    return found


async def load_file_references(text: str, context: ExecutionContext,
                               limit: int = MAX_REFERENCED_FILES) -> List[TextBlock]:
    """Read the referenced files that exist, skipping large or unreadable ones."""
    blocks: List[TextBlock] = []
    for reference in extract_file_references(text):
        if len(blocks) >= limit:
            break
        path = context.resolve(reference)
        try:
            if not path.is_file() or path.stat().st_size > MAX_REFERENCE_BYTES:
                continue
            content = await read_text(path, reference)
        except (ToolError, OSError) as e:
            logger.debug("Skipping referenced file %s: %s", reference, e)
            continue
        blocks.append(TextBlock(text=f"\n\nFile: {context.display_path(path)}\n```\n{content}\n```"))
    return blocks
