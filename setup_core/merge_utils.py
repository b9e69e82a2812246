import re
from typing import List, Optional, Tuple, Union

from setup_core.errors import MalformedDocument

KEY_RE = re.compile(r'^(?P<indent> *)(?P<key>[A-Za-z0-9_.-]+):(?:\s|$)')
SCHEDULE_RE = re.compile(r'WATCHTOWER_SCHEDULE=0 0 (\d+)')

COPYING = 'copying'
SKIPPING = 'skipping'

Document = Union[str, List[str]]


def _as_lines(document: Document) -> List[str]:
    if isinstance(document, str):
        return document.splitlines()
    return [line.rstrip('\n') for line in document]


def _classify(line: str, lineno: int) -> Optional[Tuple[int, str]]:
    """Return (indent, key) for a key line, None for anything else.

    Raises MalformedDocument when tabs appear in the indentation.
    """
    stripped = line.lstrip(' \t')
    if not stripped:
        return None
    if '\t' in line[:len(line) - len(stripped)]:
        raise MalformedDocument(f"Tab in indentation on line {lineno}: {line!r}")
    m = KEY_RE.match(line)
    if not m:
        return None
    return len(m.group('indent')), m.group('key')


def _is_blank(line: str) -> bool:
    return not line.strip()


def _block_depth(block_lines: List[str], service_name: str) -> int:
    for lineno, line in enumerate(block_lines, 1):
        if _is_blank(line):
            continue
        parsed = _classify(line, lineno)
        if parsed is None or parsed[1] != service_name:
            raise ValueError(f"Block must start with '{service_name}:', got {line!r}")
        return parsed[0]
    raise ValueError("Block text is empty")


def _in_parent(parsed: Tuple[int, str], top: Optional[str], parent_key: Optional[str]) -> bool:
    """Nested keys only count when their top-level parent is `parent_key`."""
    return parsed[0] == 0 or parent_key is None or top == parent_key


def remove_blocks(lines: List[str], service_name: str, depth: int = 0, parent_key: Optional[str] = 'services') -> List[str]:
    """Drop every block keyed `service_name` at `depth`.

    Nested blocks are only dropped under the top-level `parent_key:`.
    One blank separator directly above a removed block goes with it, as do the
    blank lines inside (and trailing) the block.
    """
    out: List[str] = []
    state = COPYING
    top = None
    for lineno, line in enumerate(lines, 1):
        parsed = _classify(line, lineno)
        if parsed is not None and parsed[0] == 0:
            top = parsed[1]
        if state == COPYING:
            if parsed == (depth, service_name) and _in_parent(parsed, top, parent_key):
                state = SKIPPING
                if out and _is_blank(out[-1]):
                    out.pop()
                continue
            out.append(line)
        else:
            if parsed is not None and parsed[0] <= depth:
                if parsed == (depth, service_name):
                    continue
                state = COPYING
                out.append(line)
            # nested, blank, comment and list lines belong to the block
    return out


def find_anchor(lines: List[str], anchor_key: Optional[str]) -> Optional[int]:
    """Index of the last top-level `anchor_key:` line, or None."""
    if not anchor_key:
        return None
    found = None
    for lineno, line in enumerate(lines, 1):
        if _classify(line, lineno) == (0, anchor_key):
            found = lineno - 1
    return found


def merge(document: Document, service_name: str, block_text: str, anchor_key: Optional[str] = 'volumes',
          parent_key: Optional[str] = 'services') -> Document:
    """Return `document` with exactly one `service_name` block.

    Any existing block is removed, then `block_text` is inserted right before
    the last top-level `anchor_key:` line, or appended at the end when there
    is no such line. An indented block only replaces blocks under the
    top-level `parent_key:`. Lines outside the replaced block are left untouched.
    """
    if not service_name:
        raise ValueError("service_name must not be empty")
    lines = _as_lines(document)
    block_lines = block_text.strip('\n').splitlines()
    depth = _block_depth(block_lines, service_name)
    for lineno, line in enumerate(block_lines, 1):
        _classify(line, lineno)

    filtered = remove_blocks(lines, service_name, depth, parent_key)
    anchor = find_anchor(filtered, anchor_key)
    if anchor is not None:
        merged = filtered[:anchor] + [''] + block_lines + [''] + filtered[anchor:]
    else:
        while filtered and _is_blank(filtered[-1]):
            filtered.pop()
        merged = filtered + [''] + block_lines

    if isinstance(document, str):
        return '\n'.join(merged) + '\n'
    return merged


def find_blocks(document: Document, service_name: str, depth: Optional[int] = None,
                parent_key: Optional[str] = 'services') -> List[Tuple[int, int]]:
    """Return [start, end) line ranges of `service_name` blocks.

    With depth=None any indentation matches. Indented blocks must sit under
    the top-level `parent_key:` unless parent_key is None.
    """
    lines = _as_lines(document)
    ranges: List[Tuple[int, int]] = []
    start = None
    block_depth = 0
    top = None
    for idx, line in enumerate(lines):
        parsed = _classify(line, idx + 1)
        if parsed is not None and parsed[0] == 0:
            top = parsed[1]
        if start is not None and parsed is not None and parsed[0] <= block_depth:
            end = idx
            while end > start and _is_blank(lines[end - 1]):
                end -= 1
            ranges.append((start, end))
            start = None
        if start is None and parsed is not None and parsed[1] == service_name:
            if (depth is None or parsed[0] == depth) and _in_parent(parsed, top, parent_key):
                start = idx
                block_depth = parsed[0]
    if start is not None:
        end = len(lines)
        while end > start and _is_blank(lines[end - 1]):
            end -= 1
        ranges.append((start, end))
    return ranges


def has_block(document: Document, service_name: str, depth: Optional[int] = None,
              parent_key: Optional[str] = 'services') -> bool:
    return bool(find_blocks(document, service_name, depth, parent_key))


def extract_schedule_hour(document: Document, service_name: str = 'watchtower') -> Optional[int]:
    """Hour from `WATCHTOWER_SCHEDULE=0 0 <H> ...` inside the block, if any."""
    lines = _as_lines(document)
    for start, end in find_blocks(lines, service_name):
        for line in lines[start:end]:
            m = SCHEDULE_RE.search(line)
            if m:
                return int(m.group(1))
    return None
