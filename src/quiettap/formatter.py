import ipaddress
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo

from dnslib import CLASS, QTYPE

from quiettap.decoder import unpack
from quiettap.message import Envelope, Message, MessageType, SocketProtocol
from quiettap.names import WireNameError, read_name, to_presentation

logger = logging.getLogger("quiettap.formatter")

TIME_FORMAT = "%H:%M:%S"
UNKNOWN_TIME = "??:??:??"
UNKNOWN_USECS = "??????"
MISSING = "X "  # trailing space is part of the placeholder


@dataclass(frozen=True)
class Classification:
    is_query: bool = False
    role: str = ""
    use_query_address: bool = False


_CLASSIFICATIONS: dict[int, Classification] = {
    MessageType.CLIENT_QUERY: Classification(True, "C", True),
    MessageType.CLIENT_RESPONSE: Classification(False, "C"),
    MessageType.RESOLVER_QUERY: Classification(True, "R"),
    MessageType.RESOLVER_RESPONSE: Classification(False, "R"),
    MessageType.AUTH_QUERY: Classification(True, "A", True),
    MessageType.AUTH_RESPONSE: Classification(False, "A"),
    MessageType.FORWARDER_QUERY: Classification(True, "F"),
    MessageType.FORWARDER_RESPONSE: Classification(False, "F"),
    # Stub traffic keeps its role but is always rendered from the response side
    MessageType.STUB_QUERY: Classification(False, "S"),
    MessageType.STUB_RESPONSE: Classification(False, "S"),
}

_UNCLASSIFIED = Classification()


def classify(message_type: MessageType | int) -> Classification:
    """Split a message subtype into direction, role code and address side.

    Subtypes without an entry (tool and update traffic, values newer than
    this table) are treated as role-less responses.
    """
    return _CLASSIFICATIONS.get(message_type, _UNCLASSIFIED)


def format_time(secs: int | None, nsecs: int | None, tz: tzinfo = timezone.utc) -> str:
    """Render ``HH:MM:SS.uuuuuu`` in ``tz``, with ``?`` for missing parts."""
    clock = UNKNOWN_TIME
    if secs is not None:
        try:
            clock = datetime.fromtimestamp(secs, tz=tz).strftime(TIME_FORMAT)
        except (OverflowError, OSError, ValueError) as e:
            logger.debug("Timestamp %d out of range: %s", secs, e)
    if nsecs is not None:
        usecs = "%06d" % (nsecs // 1000)
    else:
        usecs = UNKNOWN_USECS
    return f"{clock}.{usecs}"


def format_address(raw: bytes) -> str:
    if len(raw) in (4, 16):
        return str(ipaddress.ip_address(raw))
    return "?" + raw.hex()


def format_protocol(protocol: SocketProtocol | int) -> str:
    if isinstance(protocol, SocketProtocol):
        return protocol.name
    return str(protocol)


def decode_name(raw: bytes) -> str | None:
    """Decode a wire-format domain name. Returns None if it is malformed."""
    try:
        labels, _ = read_name(raw)
    except WireNameError as e:
        logger.debug("Undecodable query name %s: %s", raw.hex(), e)
        return None
    return to_presentation(labels)


def mnemonic(table, value: int, prefix: str) -> str:
    """Look up a class or type mnemonic, falling back to the RFC 3597 form."""
    return table.forward.get(value, f"{prefix}{value}")


def quote(text: str) -> str:
    """Double-quote ``text``, escaping quotes, backslashes and control characters."""
    return json.dumps(text)


def format_message(
    message: Message,
    tz: tzinfo = timezone.utc,
    suppress_failed_names: bool = False,
) -> bytes:
    """Render one message as a single newline-terminated line.

    ``message.type`` must be set; the decoder rejects records without it.
    """
    kind = classify(message.type)
    parts: list[str] = []

    if kind.is_query:
        parts.append(format_time(message.query_time_sec, message.query_time_nsec, tz))
    else:
        parts.append(format_time(message.response_time_sec, message.response_time_nsec, tz))
    parts.append(" ")

    parts.append(kind.role)
    parts.append("Q " if kind.is_query else "R ")

    address = message.query_address if kind.use_query_address else message.response_address
    if address is not None:
        parts.append(format_address(address))
    parts.append(" ")

    if message.socket_protocol is not None:
        parts.append(format_protocol(message.socket_protocol))
    parts.append(" ")

    payload = message.query_message if kind.is_query else message.response_message
    parts.append(f"{len(payload or b'')}b ")

    if message.query_name is not None:
        name = decode_name(message.query_name)
        if name is None:
            parts.append(MISSING)
            if not suppress_failed_names:
                parts.append(quote(""))
        else:
            parts.append(quote(name))
    else:
        parts.append(MISSING)
    parts.append(" ")

    if message.query_class is not None:
        parts.append(mnemonic(CLASS, message.query_class, "CLASS"))
    else:
        parts.append(MISSING)
    parts.append(" ")

    if message.query_type is not None:
        parts.append(mnemonic(QTYPE, message.query_type, "TYPE"))
    else:
        parts.append("X")

    parts.append("\n")
    return "".join(parts).encode()


def format_envelope(
    envelope: Envelope,
    tz: tzinfo = timezone.utc,
    suppress_failed_names: bool = False,
) -> bytes:
    """Render an envelope. Anything other than a message payload renders as ``b""``."""
    if not envelope.is_message or envelope.message is None:
        return b""
    return format_message(envelope.message, tz, suppress_failed_names)


def quiet_text_convert(
    buf: bytes,
    decode: Callable[[bytes], Envelope | None] = unpack,
    tz: tzinfo = timezone.utc,
    suppress_failed_names: bool = False,
) -> tuple[bytes | None, bool]:
    """Decode one encoded envelope and render it.

    Returns ``(None, False)`` when ``decode`` cannot parse ``buf``; otherwise
    ``(line, True)``, where ``line`` may be empty.
    """
    envelope = decode(buf)
    if envelope is None:
        return None, False
    return format_envelope(envelope, tz, suppress_failed_names), True


class QuietTextFormatter:
    """Holds the rendering options so callers can pass one object around."""

    def __init__(
        self,
        tz: tzinfo = timezone.utc,
        suppress_failed_names: bool = False,
        decode: Callable[[bytes], Envelope | None] = unpack,
    ) -> None:
        self.tz = tz
        self.suppress_failed_names = suppress_failed_names
        self.decode = decode

    def format(self, envelope: Envelope) -> bytes:
        return format_envelope(envelope, self.tz, self.suppress_failed_names)

    def convert(self, buf: bytes) -> tuple[bytes | None, bool]:
        return quiet_text_convert(
            buf, self.decode, self.tz, self.suppress_failed_names
        )
