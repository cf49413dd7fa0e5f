import logging

logger = logging.getLogger(__name__)

_BOMS = (
    (b"\xef\xbb\xbf", "utf-8-bom", "utf-8"),
    (b"\xff\xfe", "utf-16le", "utf-16-le"),
    (b"\xfe\xff", "utf-16be", "utf-16-be"),
)


def decode_bytes(data: bytes) -> tuple[str, str]:
    """Decode raw upload bytes, returning (text, encoding label).

    BOM first, then strict UTF-8, then Latin-1 which accepts any byte sequence.
    """
    for bom, label, codec in _BOMS:
        if data.startswith(bom):
            return data[len(bom):].decode(codec, errors="replace"), label

    try:
        return data.decode("utf-8"), "utf-8"
    except UnicodeDecodeError:
        logger.info("Input is not valid UTF-8, decoding as latin1")
        return data.decode("latin-1"), "latin1"


def truncate_to_last_line(data: bytes, limit: int) -> bytes:
    """Cut `data` to at most `limit` bytes without leaving a partial trailing line."""
    if len(data) <= limit:
        return data
    head = data[:limit]
    cut = head.rfind(b"\n")
    return head[: cut + 1] if cut > 0 else head
