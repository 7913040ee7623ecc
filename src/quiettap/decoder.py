import logging
from typing import Any

from dnslib.buffer import BufferError as DNSBufferError
from dnslib.dns import DNSError, DNSHeader
from dnslib.label import DNSBuffer
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError

from quiettap.message import (
    Envelope,
    Message,
    MessageType,
    PayloadType,
    SocketFamily,
    SocketProtocol,
    to_enum,
)
from quiettap.names import WireNameError, pack_name, read_name

logger = logging.getLogger("quiettap.decoder")

DNS_HEADER_LEN = 12

_F = descriptor_pb2.FieldDescriptorProto

# Field numbers follow dnstap.proto. Enum-typed fields are declared as uint32
# (same varint encoding) so values newer than this table still decode.
_DNSTAP_FIELDS = [
    ("identity", 1, _F.TYPE_BYTES),
    ("version", 2, _F.TYPE_BYTES),
    ("extra", 3, _F.TYPE_BYTES),
    ("message", 14, _F.TYPE_MESSAGE),
    ("type", 15, _F.TYPE_UINT32),
]

_MESSAGE_FIELDS = [
    ("type", 1, _F.TYPE_UINT32),
    ("socket_family", 2, _F.TYPE_UINT32),
    ("socket_protocol", 3, _F.TYPE_UINT32),
    ("query_address", 4, _F.TYPE_BYTES),
    ("response_address", 5, _F.TYPE_BYTES),
    ("query_port", 6, _F.TYPE_UINT32),
    ("response_port", 7, _F.TYPE_UINT32),
    ("query_time_sec", 8, _F.TYPE_UINT64),
    ("query_time_nsec", 9, _F.TYPE_FIXED32),
    ("query_message", 10, _F.TYPE_BYTES),
    ("query_zone", 11, _F.TYPE_BYTES),
    ("response_time_sec", 12, _F.TYPE_UINT64),
    ("response_time_nsec", 13, _F.TYPE_FIXED32),
    ("response_message", 14, _F.TYPE_BYTES),
]

_REQUIRED = {"type"}
_ENUM_FIELDS = {"type", "socket_family", "socket_protocol"}


def _add_fields(proto: descriptor_pb2.DescriptorProto, fields: list) -> None:
    for name, number, field_type in fields:
        field = proto.field.add(
            name=name,
            number=number,
            type=field_type,
            label=_F.LABEL_REQUIRED if name in _REQUIRED else _F.LABEL_OPTIONAL,
        )
        if field_type == _F.TYPE_MESSAGE:
            field.type_name = ".dnstap.Message"


def _build_dnstap_class():
    """Assemble the dnstap schema at runtime and return the Dnstap message class."""
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="quiettap/dnstap.proto", package="dnstap", syntax="proto2"
    )
    _add_fields(file_proto.message_type.add(name="Dnstap"), _DNSTAP_FIELDS)
    _add_fields(file_proto.message_type.add(name="Message"), _MESSAGE_FIELDS)

    pool = descriptor_pool.DescriptorPool()
    file_desc = pool.AddSerializedFile(file_proto.SerializeToString())
    return message_factory.GetMessageClass(file_desc.message_types_by_name["Dnstap"])


Dnstap = _build_dnstap_class()


def _optional(proto: Any, name: str) -> Any:
    return getattr(proto, name) if proto.HasField(name) else None


def extract_question(wire: bytes) -> tuple[bytes, int, int] | None:
    """Pull the first question out of a DNS message.

    Returns ``(name_bytes, qclass, qtype)`` where ``name_bytes`` is the
    question name re-packed without compression, or None if there is no
    readable question.
    """
    buffer = DNSBuffer(wire)
    try:
        header = DNSHeader.parse(buffer)
        if header.q < 1:
            return None
        labels, buffer.offset = read_name(wire, DNS_HEADER_LEN)
        qtype, qclass = buffer.unpack("!HH")
    except (DNSError, DNSBufferError, WireNameError) as e:
        logger.debug("No question in %d byte DNS message: %s", len(wire), e)
        return None
    return pack_name(labels), qclass, qtype


def _convert_message(proto: Any) -> Message:
    query_message = _optional(proto, "query_message")
    response_message = _optional(proto, "response_message")

    question = None
    wire = query_message if query_message is not None else response_message
    if wire is not None:
        question = extract_question(wire)
    query_name, query_class, query_type = question or (None, None, None)

    return Message(
        type=to_enum(MessageType, proto.type),
        socket_family=to_enum(SocketFamily, _optional(proto, "socket_family")),
        socket_protocol=to_enum(SocketProtocol, _optional(proto, "socket_protocol")),
        query_address=_optional(proto, "query_address"),
        response_address=_optional(proto, "response_address"),
        query_port=_optional(proto, "query_port"),
        response_port=_optional(proto, "response_port"),
        query_time_sec=_optional(proto, "query_time_sec"),
        query_time_nsec=_optional(proto, "query_time_nsec"),
        query_message=query_message,
        query_zone=_optional(proto, "query_zone"),
        response_time_sec=_optional(proto, "response_time_sec"),
        response_time_nsec=_optional(proto, "response_time_nsec"),
        response_message=response_message,
        query_name=query_name,
        query_class=query_class,
        query_type=query_type,
    )


def unpack(buf: bytes) -> Envelope | None:
    """Decode one protobuf-encoded dnstap payload. Returns None on failure."""
    proto = Dnstap()
    try:
        proto.ParseFromString(buf)
    except DecodeError as e:
        logger.debug("Cannot decode %d byte dnstap payload: %s", len(buf), e)
        return None
    if not proto.IsInitialized():
        logger.debug(
            "dnstap payload missing required fields: %s",
            ", ".join(proto.FindInitializationErrors()),
        )
        return None

    message = None
    if proto.HasField("message"):
        message = _convert_message(proto.message)

    return Envelope(
        type=to_enum(PayloadType, proto.type),
        message=message,
        identity=_optional(proto, "identity"),
        version=_optional(proto, "version"),
        extra=_optional(proto, "extra"),
    )


def pack(envelope: Envelope) -> bytes:
    """Encode an envelope back to dnstap protobuf bytes.

    The question fields are derived data and are not written.
    """
    proto = Dnstap(type=int(envelope.type))
    for name in ("identity", "version", "extra"):
        value = getattr(envelope, name)
        if value is not None:
            setattr(proto, name, value)
    if envelope.message is not None:
        for name, _, _ in _MESSAGE_FIELDS:
            value = getattr(envelope.message, name)
            if value is not None:
                setattr(proto.message, name, int(value) if name in _ENUM_FIELDS else value)
    return proto.SerializeToString()

