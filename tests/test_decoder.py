from dnslib import QTYPE, RR, A, DNSRecord

from quiettap.decoder import extract_question, pack, unpack
from quiettap.formatter import quiet_text_convert
from quiettap.message import (
    Envelope,
    Message,
    MessageType,
    PayloadType,
    SocketFamily,
    SocketProtocol,
)


def _query_wire(domain: str = "example.com", qtype: str = "A") -> bytes:
    return bytes(DNSRecord.question(domain, qtype).pack())


def _response_wire(domain: str = "example.com", ip: str = "1.2.3.4") -> bytes:
    reply = DNSRecord.question(domain).reply()
    reply.add_answer(RR(domain, QTYPE.A, rdata=A(ip), ttl=300))
    return bytes(reply.pack())


def _client_query_envelope(**overrides) -> Envelope:
    fields = dict(
        type=MessageType.CLIENT_QUERY,
        socket_family=SocketFamily.INET,
        socket_protocol=SocketProtocol.UDP,
        query_address=bytes([127, 0, 0, 1]),
        query_port=53000,
        query_time_sec=1700000000,
        query_time_nsec=123456000,
        query_message=_query_wire(),
    )
    fields.update(overrides)
    return Envelope(
        type=PayloadType.MESSAGE,
        message=Message(**fields),
        identity=b"ns1",
        version=b"test 1.0",
    )


class TestExtractQuestion:
    def test_query(self):
        name, qclass, qtype = extract_question(_query_wire())
        assert name == b"\x07example\x03com\x00"
        assert qclass == 1
        assert qtype == QTYPE.A

    def test_response_with_answers(self):
        name, qclass, qtype = extract_question(_response_wire("github.com"))
        assert name == b"\x06github\x03com\x00"
        assert qtype == QTYPE.A

    def test_aaaa(self):
        _, _, qtype = extract_question(_query_wire(qtype="AAAA"))
        assert qtype == QTYPE.AAAA

    def test_short_header(self):
        assert extract_question(b"\x00\x01\x02") is None

    def test_no_questions(self):
        assert extract_question(b"\x00" * 12) is None

    def test_pointer_loop_into_header(self):
        wire = (
            b"\xc0\x01A\xc0\x00\x01\x00\x00\x00\x00\x00\x00"
            b"\xc0\x01\x01\xff\x01\xc0\r\r\xc0\x00"
        )
        assert extract_question(wire) is None

    def test_compressed_question_name_is_unpacked(self):
        # "com" sits in the header id/flags bytes; qdcount 1; question "a" + pointer to 0
        wire = b"\x03com\x00" + b"\x01" + b"\x00" * 6 + b"\x01a\xc0\x00\x00\x01\x00\x01"
        name, qclass, qtype = extract_question(wire)
        assert name == b"\x01a\x03com\x00"
        assert (qclass, qtype) == (1, 1)

    def test_truncated_question(self):
        wire = _query_wire()
        assert extract_question(wire[:-3]) is None


class TestUnpack:
    def test_roundtrip_message(self):
        envelope = unpack(pack(_client_query_envelope()))
        assert envelope is not None
        assert envelope.type == PayloadType.MESSAGE
        assert envelope.identity == b"ns1"
        assert envelope.version == b"test 1.0"
        assert envelope.extra is None

        message = envelope.message
        assert message.type is MessageType.CLIENT_QUERY
        assert message.socket_family is SocketFamily.INET
        assert message.socket_protocol is SocketProtocol.UDP
        assert message.query_address == bytes([127, 0, 0, 1])
        assert message.query_port == 53000
        assert message.query_time_sec == 1700000000
        assert message.query_time_nsec == 123456000
        assert message.response_address is None
        assert message.response_time_sec is None
        assert message.response_message is None

    def test_question_lifted_from_query_message(self):
        message = unpack(pack(_client_query_envelope())).message
        assert message.query_name == b"\x07example\x03com\x00"
        assert message.query_class == 1
        assert message.query_type == QTYPE.A

    def test_question_lifted_from_response_message(self):
        envelope = _client_query_envelope(
            type=MessageType.CLIENT_RESPONSE,
            query_message=None,
            response_message=_response_wire("github.com"),
        )
        message = unpack(pack(envelope)).message
        assert message.query_name == b"\x06github\x03com\x00"

    def test_malformed_dns_leaves_question_absent(self):
        envelope = _client_query_envelope(query_message=b"\x01\x02")
        message = unpack(pack(envelope)).message
        assert message.query_message == b"\x01\x02"
        assert message.query_name is None
        assert message.query_class is None
        assert message.query_type is None

    def test_unknown_enum_values_kept_as_ints(self):
        envelope = _client_query_envelope(type=99, socket_protocol=42)
        message = unpack(pack(envelope)).message
        assert message.type == 99
        assert not isinstance(message.type, MessageType)
        assert message.socket_protocol == 42

    def test_non_message_payload(self):
        envelope = unpack(b"\x78\x02")  # type = 2, no message
        assert envelope is not None
        assert envelope.type == 2
        assert envelope.message is None

    def test_truncated_buffer(self):
        assert unpack(b"\x0a\x05ab") is None

    def test_empty_buffer_missing_type(self):
        assert unpack(b"") is None

    def test_message_missing_subtype(self):
        # message { socket_protocol: UDP } type: MESSAGE
        assert unpack(b"\x72\x02\x18\x01\x78\x01") is None


class TestQuietTextConvertWire:
    def test_client_query(self):
        line, ok = quiet_text_convert(pack(_client_query_envelope()))
        assert ok is True
        # question is 29 bytes on the wire: header, name, type, class
        assert line == b'22:13:20.123456 CQ 127.0.0.1 UDP 29b "example.com." IN A\n'

    def test_auth_response(self):
        response = _response_wire()
        envelope = _client_query_envelope(
            type=MessageType.AUTH_RESPONSE,
            response_address=bytes([192, 0, 2, 53]),
            response_time_sec=1700000001,
            response_time_nsec=0,
            response_message=response,
        )
        line, ok = quiet_text_convert(pack(envelope))
        assert ok is True
        assert line == (
            b'22:13:21.000000 AR 192.0.2.53 UDP %db "example.com." IN A\n'
            % len(response)
        )

    def test_pointer_loop_in_question_is_not_fatal(self):
        query = (
            b"\xc0\x01A\xc0\x00\x01\x00\x00\x00\x00\x00\x00"
            b"\xc0\x01\x01\xff\x01\xc0\r\r\xc0\x00"
        )
        envelope = Envelope(
            type=PayloadType.MESSAGE,
            message=Message(type=MessageType.CLIENT_QUERY, query_message=query),
        )
        line, ok = quiet_text_convert(pack(envelope))
        assert ok is True
        assert line == b"??:??:??.?????? CQ   %db X  X  X\n" % len(query)

    def test_non_message(self):
        assert quiet_text_convert(b"\x78\x02") == (b"", True)

    def test_undecodable(self):
        assert quiet_text_convert(b"\x0a\x05ab") == (None, False)
