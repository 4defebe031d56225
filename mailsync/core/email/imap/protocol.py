"""IMAP protocol helpers - response parsing and wire format handling.

aioimaplib hands back untagged responses as a flat ``lines`` list in which
literal payloads arrive as separate ``bytearray`` items following a text line
ending in ``{N}``. The helpers here reassemble those pieces, tokenize them and
turn FETCH/LIST/SEARCH responses into plain Python values.
"""

import base64
import binascii
import quopri
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from mailsync.utils.errors import ProtocolError, sanitize_error_message
from mailsync.utils.logging import get_logger

from .constants import SNIPPET_LENGTH, IMAPResponse

logger = get_logger(__name__)

Token = Union[str, bytes, None, list]

_LITERAL = re.compile(rb"\{(\d+)\+?\}\r\n")
_LITERAL_MARKER = re.compile(rb"\{\d+\+?\}$")
_FETCH_START = re.compile(rb"^(\d+) FETCH ", re.IGNORECASE)
_EXISTS = re.compile(rb"^(\d+) EXISTS", re.IGNORECASE)
_PARTIAL_ORIGIN = re.compile(r"<\d+>$")
_ATOM_STOP = frozenset(b' ()"\r\n')


## Response checks


def check_response(response, operation: str) -> None:
    """Check IMAP response and raise if not OK.

    Args:
        response: aioimaplib ``Response``
        operation: Description of the operation performed

    Raises:
        ProtocolError: If the response indicates failure
    """
    if response.result == IMAPResponse.OK:
        return

    error_msg = response.lines[-1] if response.lines else "No response"
    if isinstance(error_msg, (bytes, bytearray)):
        error_msg = bytes(error_msg).decode("utf-8", errors="replace")

    raise ProtocolError(
        f"IMAP operation failed: {operation}",
        details={
            "operation": operation,
            "result": response.result,
            "response": sanitize_error_message(str(error_msg)),
        },
    )


## Tokenizer


class _Tokenizer:
    """Tokenizer for IMAP response data (RFC 3501 section 4)."""

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def parse_all(self) -> List[Token]:
        items: List[Token] = []
        while True:
            self._skip_spaces()
            if self.pos >= len(self.data):
                return items
            items.append(self._next())

    def _skip_spaces(self) -> None:
        while self.pos < len(self.data) and self.data[self.pos] in b" \r\n":
            self.pos += 1

    def _next(self) -> Token:
        ch = self.data[self.pos]
        if ch == 0x28:  # (
            return self._list()
        if ch == 0x29:  # )
            raise ProtocolError("Unexpected ')' in IMAP response")
        if ch == 0x22:  # "
            return self._quoted()
        if ch == 0x7B:  # {
            return self._literal()
        return self._atom()

    def _list(self) -> list:
        self.pos += 1
        items: list = []
        while True:
            self._skip_spaces()
            if self.pos >= len(self.data):
                raise ProtocolError("Unterminated list in IMAP response")
            if self.data[self.pos] == 0x29:
                self.pos += 1
                return items
            items.append(self._next())

    def _quoted(self) -> str:
        self.pos += 1
        out = bytearray()
        while self.pos < len(self.data):
            ch = self.data[self.pos]
            if ch == 0x5C and self.pos + 1 < len(self.data):  # backslash escape
                out.append(self.data[self.pos + 1])
                self.pos += 2
                continue
            if ch == 0x22:
                self.pos += 1
                return out.decode("utf-8", errors="replace")
            out.append(ch)
            self.pos += 1
        raise ProtocolError("Unterminated quoted string in IMAP response")

    def _literal(self) -> bytes:
        match = _LITERAL.match(self.data, self.pos)
        if not match:
            raise ProtocolError("Malformed literal in IMAP response")
        start = match.end()
        end = start + int(match.group(1))
        if end > len(self.data):
            raise ProtocolError("Truncated literal in IMAP response")
        self.pos = end
        return bytes(self.data[start:end])

    def _atom(self) -> Optional[str]:
        start = self.pos
        depth = 0
        while self.pos < len(self.data):
            ch = self.data[self.pos]
            if ch == 0x5B:  # [ opens a BODY section, which may contain spaces
                depth += 1
            elif ch == 0x5D:
                depth -= 1
            elif depth <= 0 and ch in _ATOM_STOP:
                break
            self.pos += 1
        atom = self.data[start : self.pos].decode("utf-8", errors="replace")
        return None if atom.upper() == "NIL" else atom


def tokenize(data: bytes) -> List[Token]:
    """Tokenize IMAP response data into nested lists.

    Atoms and quoted strings become ``str``, literals ``bytes``, ``NIL``
    becomes None and parenthesised lists become Python lists.
    """
    return _Tokenizer(bytes(data)).parse_all()


def join_response_lines(lines: Sequence[Any]) -> List[bytes]:
    """Reassemble aioimaplib response lines, one buffer per untagged response.

    Literal payloads are spliced back in after their ``{N}`` marker so the
    result can be handed straight to :func:`tokenize`.
    """
    joined: List[bytes] = []
    current: Optional[bytes] = None
    after_literal = False

    for line in lines:
        if isinstance(line, str):
            line = line.encode("utf-8")

        if isinstance(line, bytearray):
            if current is None:
                continue
            current += bytes(line)
            after_literal = True
            continue

        if after_literal and current is not None:
            current += line
        else:
            if current is not None:
                joined.append(current)
            current = bytes(line)
        after_literal = False

        if _LITERAL_MARKER.search(line):
            current += b"\r\n"

    if current is not None:
        joined.append(current)

    return joined


## FETCH


def iter_fetch_responses(lines: Sequence[Any]) -> Iterator[bytes]:
    """Yield the raw buffer of each ``N FETCH (...)`` response."""
    for raw in join_response_lines(lines):
        if _FETCH_START.match(raw):
            yield raw


def parse_fetch_item(raw: bytes) -> Dict[str, Any]:
    """Parse one FETCH response into an attribute dict.

    Keys are upper-cased item names with any partial origin stripped
    (``BODY[2]<0>`` becomes ``BODY[2]``); ``SEQ`` and ``UID`` are ints and
    ``FLAGS`` is a tuple of flag strings.

    Raises:
        ProtocolError: If the response cannot be parsed
    """
    match = _FETCH_START.match(raw)
    if not match:
        raise ProtocolError("Not a FETCH response")

    tokens = tokenize(raw[match.end() :])
    if not tokens or not isinstance(tokens[0], list):
        raise ProtocolError("FETCH response without attribute list")

    items = tokens[0]
    if len(items) % 2:
        raise ProtocolError("FETCH attribute list has odd length")

    attrs: Dict[str, Any] = {"SEQ": int(match.group(1))}
    for key, value in zip(items[0::2], items[1::2]):
        if not isinstance(key, str):
            raise ProtocolError("FETCH attribute name is not an atom")
        attrs[_PARTIAL_ORIGIN.sub("", key.upper())] = value

    if "UID" in attrs:
        try:
            attrs["UID"] = int(attrs["UID"])
        except (TypeError, ValueError) as e:
            raise ProtocolError("FETCH response has a non-numeric UID") from e

    flags = attrs.get("FLAGS")
    if flags is not None:
        if not isinstance(flags, list):
            raise ProtocolError("FETCH FLAGS is not a list")
        attrs["FLAGS"] = tuple(str(flag) for flag in flags)

    return attrs


def parse_fetch_response(lines: Sequence[Any]) -> List[Dict[str, Any]]:
    """Parse every FETCH response in ``lines``, dropping malformed ones."""
    results = []
    for raw in iter_fetch_responses(lines):
        try:
            results.append(parse_fetch_item(raw))
        except ProtocolError as e:
            logger.warning(f"Skipping malformed FETCH response: {e.message}")
    return results


## SEARCH / untagged status


def parse_search_response(lines: Sequence[Any]) -> List[int]:
    """Extract UIDs from a (UID) SEARCH response, sorted ascending."""
    uids = set()
    for line in lines:
        if isinstance(line, str):
            line = line.encode("utf-8")
        parts = bytes(line).split()
        if parts and parts[0].upper() == b"SEARCH":
            parts = parts[1:]
        if parts and all(part.isdigit() for part in parts):
            uids.update(int(part) for part in parts)
    return sorted(uids)


def exists_count(lines: Sequence[Any]) -> Optional[int]:
    """Message count from the last untagged ``N EXISTS`` line, if any."""
    count = None
    for line in lines:
        if isinstance(line, str):
            line = line.encode("utf-8")
        if not isinstance(line, (bytes, bytearray)):
            continue
        match = _EXISTS.match(bytes(line).strip())
        if match:
            count = int(match.group(1))
    return count


def has_exists(lines: Sequence[Any]) -> bool:
    """True if any line is an untagged ``N EXISTS`` notification."""
    return exists_count(lines) is not None


## Header / text decoding


def as_text(value: Token) -> Optional[str]:
    """Coerce an atom, quoted string or literal to ``str``."""
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, list):
        raise ProtocolError("Expected a string, got a list")
    return value


def decode_header_value(value: Optional[str]) -> str:
    """Decode RFC 2047 encoded-words; undecodable input is returned as is."""
    if not value:
        return ""
    try:
        return str(make_header(decode_header(value)))
    except (HeaderParseError, LookupError, UnicodeError, ValueError):
        return value


def decode_transfer_encoding(data: bytes, encoding: Optional[str]) -> bytes:
    """Undo a Content-Transfer-Encoding.

    Raises:
        ProtocolError: If base64 data is corrupt
    """
    enc = (encoding or "").strip().lower()
    if enc == "base64":
        cleaned = re.sub(rb"[^A-Za-z0-9+/]", b"", data)
        cleaned += b"=" * (-len(cleaned) % 4)
        try:
            return base64.b64decode(cleaned)
        except (binascii.Error, ValueError) as e:
            raise ProtocolError("Corrupt base64 body") from e
    if enc == "quoted-printable":
        return quopri.decodestring(data)
    return data


def decode_body_text(data: bytes, encoding: Optional[str], charset: Optional[str]) -> str:
    """Decode a body part to text using its transfer encoding and charset."""
    raw = decode_transfer_encoding(data, encoding)
    try:
        return raw.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")


def make_snippet(body_text: str, subject: str = "") -> str:
    """Whitespace-collapsed preview of the body, or the subject if empty."""
    text = " ".join(body_text.split()) or " ".join(subject.split())
    return text[:SNIPPET_LENGTH]


## ENVELOPE


@dataclass(frozen=True)
class Address:
    name: str
    email: str


@dataclass
class Envelope:
    """Parsed IMAP ENVELOPE (only the fields the engine stores)."""

    date: Optional[datetime] = None
    subject: Optional[str] = None
    from_: List[Address] = field(default_factory=list)
    to: List[Address] = field(default_factory=list)
    message_id: Optional[str] = None


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_addresses(raw: Token) -> List[Address]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ProtocolError("ENVELOPE address list is not a list")

    addresses = []
    for entry in raw:
        if not isinstance(entry, list) or len(entry) < 4:
            raise ProtocolError("Malformed ENVELOPE address")
        name, _adl, mailbox, host = (as_text(part) for part in entry[:4])
        if mailbox is None or host is None:
            continue  # RFC 2822 group start/end markers
        addresses.append(
            Address(name=decode_header_value(name), email=f"{mailbox}@{host}")
        )
    return addresses


def parse_envelope(raw: Token) -> Envelope:
    """Parse an ENVELOPE structure.

    Raises:
        ProtocolError: If the structure is not a 10-element list
    """
    if not isinstance(raw, list) or len(raw) < 10:
        raise ProtocolError("Malformed ENVELOPE")

    subject = as_text(raw[1])
    return Envelope(
        date=_parse_date(as_text(raw[0])),
        subject=decode_header_value(subject) if subject is not None else None,
        from_=_parse_addresses(raw[2]),
        to=_parse_addresses(raw[5]),
        message_id=as_text(raw[9]) or None,
    )


## LIST


@dataclass(frozen=True)
class MailboxInfo:
    """One row of a LIST response."""

    path: str
    flags: Tuple[str, ...] = ()
    delimiter: Optional[str] = None

    @property
    def name(self) -> str:
        if self.delimiter and self.delimiter in self.path:
            return self.path.rsplit(self.delimiter, 1)[-1]
        return self.path


def parse_list_response(lines: Sequence[Any]) -> List[MailboxInfo]:
    """Parse LIST responses; malformed rows are logged and skipped."""
    mailboxes = []
    for raw in join_response_lines(lines):
        if raw[:5].upper() == b"LIST ":
            raw = raw[5:]
        if not raw.startswith(b"("):
            continue

        try:
            tokens = tokenize(raw)
            if len(tokens) < 3 or not isinstance(tokens[0], list):
                raise ProtocolError("Malformed LIST response")
            flags = tuple(str(flag) for flag in tokens[0])
            delimiter = as_text(tokens[1])
            path = decode_modified_utf7(as_text(tokens[2]) or "")
        except ProtocolError as e:
            logger.warning(f"Skipping malformed LIST response: {e.message}")
            continue

        mailboxes.append(MailboxInfo(path=path, flags=flags, delimiter=delimiter))

    return mailboxes


## Mailbox names (RFC 3501 section 5.1.3 modified UTF-7)


def decode_modified_utf7(value: str) -> str:
    out = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch != "&":
            out.append(ch)
            i += 1
            continue

        end = value.find("-", i)
        if end == -1:
            out.append(value[i:])
            break

        chunk = value[i + 1 : end]
        if not chunk:
            out.append("&")
        else:
            b64 = chunk.replace(",", "/")
            b64 += "=" * (-len(b64) % 4)
            try:
                out.append(base64.b64decode(b64).decode("utf-16-be"))
            except (binascii.Error, UnicodeDecodeError):
                out.append(value[i : end + 1])
        i = end + 1

    return "".join(out)


def encode_modified_utf7(value: str) -> str:
    out = []
    pending: List[str] = []

    def flush():
        if pending:
            data = "".join(pending).encode("utf-16-be")
            encoded = base64.b64encode(data).decode("ascii").rstrip("=")
            out.append("&" + encoded.replace("/", ",") + "-")
            pending.clear()

    for ch in value:
        if 0x20 <= ord(ch) <= 0x7E:
            flush()
            out.append("&-" if ch == "&" else ch)
        else:
            pending.append(ch)
    flush()

    return "".join(out)


def quote_mailbox(path: str) -> str:
    """Encode and quote a mailbox name for use as a command argument."""
    encoded = encode_modified_utf7(path)
    return '"' + encoded.replace("\\", "\\\\").replace('"', '\\"') + '"'
