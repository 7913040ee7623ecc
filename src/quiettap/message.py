from dataclasses import dataclass
from enum import IntEnum


class PayloadType(IntEnum):
    MESSAGE = 1


class MessageType(IntEnum):
    AUTH_QUERY = 1
    AUTH_RESPONSE = 2
    RESOLVER_QUERY = 3
    RESOLVER_RESPONSE = 4
    CLIENT_QUERY = 5
    CLIENT_RESPONSE = 6
    FORWARDER_QUERY = 7
    FORWARDER_RESPONSE = 8
    STUB_QUERY = 9
    STUB_RESPONSE = 10
    TOOL_QUERY = 11
    TOOL_RESPONSE = 12
    UPDATE_QUERY = 13
    UPDATE_RESPONSE = 14


class SocketFamily(IntEnum):
    INET = 1
    INET6 = 2


class SocketProtocol(IntEnum):
    UDP = 1
    TCP = 2
    DOT = 3
    DOH = 4
    DNSCryptUDP = 5
    DNSCryptTCP = 6
    DOQ = 7


def to_enum(enum_cls: type[IntEnum], value: int | None) -> IntEnum | int | None:
    """Map a wire value onto ``enum_cls``, keeping unknown values as plain ints."""
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return value


@dataclass(frozen=True)
class Message:
    """One DNS query or response event. Everything but ``type`` may be absent."""

    type: MessageType | int
    socket_family: SocketFamily | int | None = None
    socket_protocol: SocketProtocol | int | None = None
    query_address: bytes | None = None
    response_address: bytes | None = None
    query_port: int | None = None
    response_port: int | None = None
    query_time_sec: int | None = None
    query_time_nsec: int | None = None
    query_message: bytes | None = None
    query_zone: bytes | None = None
    response_time_sec: int | None = None
    response_time_nsec: int | None = None
    response_message: bytes | None = None

    # Question section, lifted out of the DNS wire message by the decoder
    query_name: bytes | None = None
    query_class: int | None = None
    query_type: int | None = None


@dataclass(frozen=True)
class Envelope:
    """Top-level dnstap record, tagged by payload kind."""

    type: PayloadType | int
    message: Message | None = None
    identity: bytes | None = None
    version: bytes | None = None
    extra: bytes | None = None

    @property
    def is_message(self) -> bool:
        return self.type == PayloadType.MESSAGE
