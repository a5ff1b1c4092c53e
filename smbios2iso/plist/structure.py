# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/plist/structure.py
"""
Position-aware scanner for XML property lists.

It records where every element starts and ends in the original text so a
caller can splice one scalar value without touching a single other byte.
Only what OpenCore config.plist files use is understood: elements, XML
comments, the prolog and the DOCTYPE.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Tuple
from xml.sax.saxutils import escape, unescape

from ..core.exceptions import MalformedDocument

_TAG_RE = re.compile(r"<(/?)([A-Za-z][\w.:-]*)(?:\s[^<>]*?)?(/?)>")
_SKIP_RE = re.compile(r"<!--.*?-->|<!\[CDATA\[.*?\]\]>|<\?.*?\?>|<!DOCTYPE[^>]*>", re.S)

SCALAR_TAGS = ("string", "data", "integer", "real", "date", "true", "false")


@dataclass
class Node:
    tag: str
    start: int
    end: int = -1
    inner_start: int = -1
    inner_end: int = -1
    self_closing: bool = False
    children: List["Node"] = field(default_factory=list)

    def inner(self, text: str) -> str:
        if self.self_closing:
            return ""
        return text[self.inner_start:self.inner_end]


def _skipped_spans(text: str) -> List[Tuple[int, int]]:
    return [(m.start(), m.end()) for m in _SKIP_RE.finditer(text)]


def _in_spans(pos: int, spans: Sequence[Tuple[int, int]]) -> bool:
    for a, b in spans:
        if a <= pos < b:
            return True
        if a > pos:
            break
    return False


def parse(text: str) -> Node:
    """
    Build the element tree and return the <plist> node.

    Raises MalformedDocument on unbalanced or mismatched tags, or when the
    document is not a plist.
    """
    skipped = _skipped_spans(text)
    root = Node(tag="#document", start=0, inner_start=0)
    stack: List[Node] = [root]

    for m in _TAG_RE.finditer(text):
        if _in_spans(m.start(), skipped):
            continue
        closing, tag, selfclose = m.group(1), m.group(2), m.group(3)
        if closing:
            top = stack[-1]
            if len(stack) == 1 or top.tag != tag:
                raise MalformedDocument(
                    msg=f"Unbalanced </{tag}> at offset {m.start()} (open: <{top.tag}>)",
                    context={"offset": m.start()},
                )
            top.inner_end = m.start()
            top.end = m.end()
            stack.pop()
            continue

        node = Node(tag=tag, start=m.start())
        stack[-1].children.append(node)
        if selfclose:
            node.self_closing = True
            node.end = m.end()
        else:
            node.inner_start = m.end()
            stack.append(node)

    if len(stack) != 1:
        raise MalformedDocument(msg=f"Unclosed <{stack[-1].tag}> at offset {stack[-1].start}")

    plists = [n for n in root.children if n.tag == "plist"]
    if len(plists) != 1 or len(root.children) != 1:
        raise MalformedDocument(msg="Document must contain exactly one top-level <plist> element")
    return plists[0]


def key_text(text: str, key: Node) -> str:
    return unescape(key.inner(text))


def dict_items(text: str, node: Node) -> Iterator[Tuple[str, Node, Node]]:
    """(key, key node, value node) for the direct children of a <dict>."""
    if node.tag != "dict":
        raise MalformedDocument(msg=f"Expected <dict>, found <{node.tag}>")
    kids = node.children
    if len(kids) % 2:
        raise MalformedDocument(msg=f"<dict> at offset {node.start} has a key without a value")
    for i in range(0, len(kids), 2):
        k, v = kids[i], kids[i + 1]
        if k.tag != "key":
            raise MalformedDocument(msg=f"Expected <key> at offset {k.start}, found <{k.tag}>")
        yield key_text(text, k), k, v


def top_dict(plist: Node) -> Node:
    if len(plist.children) != 1 or plist.children[0].tag != "dict":
        raise MalformedDocument(msg="<plist> must wrap a single top-level <dict>")
    return plist.children[0]


def lookup(text: str, plist: Node, path: Sequence[str]) -> Optional[Node]:
    """Value node at `path` (a sequence of dict keys), or None if absent."""
    node = top_dict(plist)
    for name in path:
        if node.tag != "dict":
            return None
        found = None
        for k, _kn, vn in dict_items(text, node):
            if k == name:
                found = vn
                break
        if found is None:
            return None
        node = found
    return node


def splice_scalar(text: str, node: Node, tag: str, inner: str) -> str:
    """
    Replace the content of scalar `node` with `inner` (already escaped).

    Only the bytes between the open and close tag change. A self-closing
    element such as <string/> is expanded in place.
    """
    if node.tag != tag:
        raise MalformedDocument(msg=f"Expected <{tag}> value at offset {node.start}, found <{node.tag}>")
    if node.self_closing:
        return text[:node.start] + f"<{tag}>{inner}</{tag}>" + text[node.end:]
    return text[:node.inner_start] + inner + text[node.inner_end:]


def escape_text(value: str) -> str:
    return escape(value)
