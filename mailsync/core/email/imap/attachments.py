"""Attachment metadata extraction from IMAP BODYSTRUCTURE trees."""

import re
from dataclasses import dataclass, field
from email.utils import collapse_rfc2231_value, decode_params, unquote
from typing import Dict, List, Optional

from mailsync.core.models import AttachmentMeta
from mailsync.utils.errors import ProtocolError

from .protocol import Token, as_text, decode_header_value

MAX_FILENAME_LENGTH = 255
DEFAULT_MIME_TYPE = "application/octet-stream"

_FILENAME_STRIP = re.compile("[\r\n\x00\u202a-\u202e\u2066-\u2069]")
_PATH_SEPARATORS = re.compile(r"[/\\]")


@dataclass
class BodyStructureNode:
    """One node of a message's MIME tree.

    ``part`` is the IMAP section number ("1", "2.1", ...); a multipart root
    has none. ``type`` is the lower-cased full MIME type.
    """

    part: Optional[str] = None
    type: Optional[str] = None
    id: Optional[str] = None
    disposition: Optional[str] = None
    disposition_parameters: Dict[str, str] = field(default_factory=dict)
    parameters: Dict[str, str] = field(default_factory=dict)
    size: Optional[int] = None
    encoding: Optional[str] = None
    child_nodes: List["BodyStructureNode"] = field(default_factory=list)

    def find(self, part: str) -> Optional["BodyStructureNode"]:
        """Depth-first lookup of a node by part number."""
        if self.part == part:
            return self
        for child in self.child_nodes:
            found = child.find(part)
            if found is not None:
                return found
        return None


## Sanitisation


def sanitize_filename(raw: str) -> str:
    """Make an attachment filename safe to use on disk and in a UI.

    CR, LF, NUL and bidi override characters are removed, path separators
    become underscores and the result is capped at 255 characters.
    """
    cleaned = _FILENAME_STRIP.sub("", raw or "")
    cleaned = _PATH_SEPARATORS.sub("_", cleaned)
    return cleaned[:MAX_FILENAME_LENGTH] or "unnamed"


def strip_cid_brackets(cid: str) -> str:
    if cid.startswith("<"):
        cid = cid[1:]
    if cid.endswith(">"):
        cid = cid[:-1]
    return cid


## Classification


def extract_attachments(structure: Optional[BodyStructureNode]) -> List[AttachmentMeta]:
    """Walk a BODYSTRUCTURE tree and collect attachment descriptors.

    Inline images carrying a Content-ID are kept so ``cid:`` references can
    be resolved; other inline parts are ignored. Parts with an
    ``attachment`` disposition, or any disposition filename, are recorded.
    Children are always visited.
    """
    found: List[AttachmentMeta] = []
    if structure is not None:
        _walk(structure, found)
    return found


def _walk(node: BodyStructureNode, found: List[AttachmentMeta]) -> None:
    disposition = (node.disposition or "").lower()
    filename = node.disposition_parameters.get("filename")

    if disposition == "inline":
        if node.id and node.part and (node.type or "").startswith("image/"):
            raw_name = filename or node.parameters.get("name") or "inline-image"
            found.append(
                AttachmentMeta(
                    part_number=node.part,
                    filename=sanitize_filename(raw_name),
                    mime_type=node.type,
                    size=node.size or 0,
                    content_id=strip_cid_brackets(node.id),
                )
            )
    elif (disposition == "attachment" or filename) and node.part:
        raw_name = filename or node.parameters.get("name") or "unnamed"
        found.append(
            AttachmentMeta(
                part_number=node.part,
                filename=sanitize_filename(raw_name),
                mime_type=node.type or DEFAULT_MIME_TYPE,
                size=node.size or 0,
                content_id=strip_cid_brackets(node.id) if node.id else None,
            )
        )

    for child in node.child_nodes:
        _walk(child, found)


## BODYSTRUCTURE conversion


def node_from_bodystructure(raw: Token) -> BodyStructureNode:
    """Convert a tokenized BODYSTRUCTURE into a node tree.

    Part numbers follow RFC 3501 section 6.4.5: a single-part message is
    part "1", the children of a multipart are numbered from 1 under their
    parent, and the body of a ``message/rfc822`` part nests under it.

    Raises:
        ProtocolError: If the structure is malformed
    """
    if not isinstance(raw, list) or not raw:
        raise ProtocolError("Malformed BODYSTRUCTURE")

    if isinstance(raw[0], list):
        return _multipart(raw, prefix=None)
    return _single_part(raw, part="1")


def _child_part(prefix: Optional[str], index: int) -> str:
    return f"{prefix}.{index}" if prefix else str(index)


def _multipart(raw: list, prefix: Optional[str], part: Optional[str] = None) -> BodyStructureNode:
    children: List[BodyStructureNode] = []
    index = 0
    while index < len(raw) and isinstance(raw[index], list):
        child_raw = raw[index]
        child_number = _child_part(prefix, index + 1)
        if child_raw and isinstance(child_raw[0], list):
            children.append(_multipart(child_raw, prefix=child_number, part=child_number))
        else:
            children.append(_single_part(child_raw, part=child_number))
        index += 1

    extension = raw[index:]
    subtype = (as_text(extension[0]) or "mixed").lower() if extension else "mixed"
    parameters = _parameters(extension[1]) if len(extension) > 1 else {}
    disposition, disposition_parameters = (
        _disposition(extension[2]) if len(extension) > 2 else (None, {})
    )

    return BodyStructureNode(
        part=part,
        type=f"multipart/{subtype}",
        disposition=disposition,
        disposition_parameters=disposition_parameters,
        parameters=parameters,
        child_nodes=children,
    )


def _single_part(raw: list, part: str) -> BodyStructureNode:
    if len(raw) < 7:
        raise ProtocolError("Malformed BODYSTRUCTURE part", details={"part": part})

    main_type = (as_text(raw[0]) or "application").lower()
    subtype = (as_text(raw[1]) or "octet-stream").lower()
    mime_type = f"{main_type}/{subtype}"

    try:
        size = int(raw[6]) if raw[6] is not None else None
    except (TypeError, ValueError):
        size = None

    children: List[BodyStructureNode] = []
    index = 7
    if main_type == "text":
        index += 1  # body lines
    elif mime_type == "message/rfc822" and len(raw) >= 10:
        inner = raw[8]
        if isinstance(inner, list) and inner:
            if isinstance(inner[0], list):
                children.append(_multipart(inner, prefix=part))
            else:
                children.append(_single_part(inner, part=f"{part}.1"))
        index = 10

    # extension data: md5, disposition, language, location
    disposition, disposition_parameters = (
        _disposition(raw[index + 1]) if len(raw) > index + 1 else (None, {})
    )

    return BodyStructureNode(
        part=part,
        type=mime_type,
        id=as_text(raw[3]),
        disposition=disposition,
        disposition_parameters=disposition_parameters,
        parameters=_parameters(raw[2]),
        size=size,
        encoding=(as_text(raw[5]) or None),
        child_nodes=children,
    )


def _parameters(raw: Token) -> Dict[str, str]:
    """Decode a body parameter list, handling RFC 2231 and RFC 2047 values."""
    if not isinstance(raw, list) or not raw:
        return {}

    pairs = []
    for key, value in zip(raw[0::2], raw[1::2]):
        key_text = as_text(key)
        if key_text:
            pairs.append((key_text.lower(), as_text(value) or ""))

    params: Dict[str, str] = {}
    for name, value in decode_params([("", "")] + pairs)[1:]:
        if isinstance(value, tuple):
            # decode_params leaves extended values quoted
            charset, language, text = value
            value = (charset, language, unquote(text))
        params[name] = decode_header_value(collapse_rfc2231_value(value))
    return params


def _disposition(raw: Token):
    if not isinstance(raw, list) or not raw:
        return None, {}
    kind = as_text(raw[0])
    parameters = _parameters(raw[1]) if len(raw) > 1 else {}
    return (kind.lower() if kind else None), parameters
