"""Wire-format domain names: reading, re-packing and presentation text."""

MAX_NAME_LEN = 255
POINTER = 0xC0

# Characters that get a backslash in front of them in presentation format
_SPECIAL = frozenset(b". '@;()\"\\")


class WireNameError(ValueError):
    pass


def read_name(data: bytes, offset: int = 0) -> tuple[list[bytes], int]:
    """Read the name at ``offset``, following compression pointers.

    Returns the labels and the offset just past the name as it appears at
    ``offset``. Every pointer must land before the start of the run of labels
    that led to it, so pointer loops are rejected instead of followed.
    """
    labels: list[bytes] = []
    end = None
    length = 1  # root label
    pos = segment_start = offset
    while True:
        if pos >= len(data):
            raise WireNameError(f"name truncated at offset {pos}")
        size = data[pos]
        if size & POINTER == POINTER:
            if pos + 1 >= len(data):
                raise WireNameError(f"pointer truncated at offset {pos}")
            target = ((size & 0x3F) << 8) | data[pos + 1]
            if end is None:
                end = pos + 2
            if target >= segment_start:
                raise WireNameError(f"bad pointer to {target} at offset {pos}")
            pos = segment_start = target
            continue
        if size & POINTER:
            raise WireNameError(f"reserved label type {size:#04x} at offset {pos}")
        if size == 0:
            break
        label = data[pos + 1:pos + 1 + size]
        if len(label) < size:
            raise WireNameError(f"label truncated at offset {pos}")
        length += size + 1
        if length > MAX_NAME_LEN:
            raise WireNameError(f"name longer than {MAX_NAME_LEN} bytes")
        labels.append(label)
        pos += 1 + size
    if end is None:
        end = pos + 1
    return labels, end


def pack_name(labels: list[bytes]) -> bytes:
    """Encode labels as an uncompressed wire name."""
    return b"".join(bytes([len(label)]) + label for label in labels) + b"\x00"


def _label_text(label: bytes) -> str:
    out = []
    for byte in label:
        if byte in _SPECIAL:
            out.append("\\" + chr(byte))
        elif byte < 0x21 or byte > 0x7E:
            out.append("\\%03d" % byte)
        else:
            out.append(chr(byte))
    return "".join(out)


def to_presentation(labels: list[bytes]) -> str:
    """Render labels as a fully qualified name with ``\\DDD`` escapes."""
    if not labels:
        return "."
    return "".join(_label_text(label) + "." for label in labels)
