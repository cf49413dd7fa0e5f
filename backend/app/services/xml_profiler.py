"""Shallow tag-frequency profiler for XML.

This is a regex scan over opening tags, not an XML parser: it has no notion of
nesting, so the "root" is simply the most frequent tag. A wrapper element that
appears more often than the record element (or malformed markup) can win.
Treat the result as a best-effort hint only.
"""

import logging
import re
from collections import Counter

from app.models.profile import ColumnQuality, ColumnStats, SampleInfo, XmlProfile

logger = logging.getLogger(__name__)

XML_MAX_RECORDS = 500
DEFAULT_ROOT = "root"

_OPEN_TAG_RE = re.compile(r"<(\w+)([^>]*)>")
_ATTRIBUTE_RE = re.compile(r"(\w+)=")


def profile_xml(text: str, sample_info: SampleInfo, encoding: str) -> XmlProfile:
    tags = _OPEN_TAG_RE.findall(text)[:XML_MAX_RECORDS]

    counts: Counter[str] = Counter()
    attributes: dict[str, list[str]] = {}
    for tag, attrs in tags:
        counts[tag] += 1
        known = attributes.setdefault(tag, [])
        for name in _ATTRIBUTE_RE.findall(attrs):
            if name not in known:
                known.append(name)

    # most_common keeps first-seen order among equal counts
    root = counts.most_common(1)[0][0] if counts else DEFAULT_ROOT
    names = [root, *(a for a in attributes.get(root, []) if a != root)]
    logger.info("XML profile: %d tags scanned, root element %r", len(tags), root)

    columns = [
        ColumnStats(name=name, quality=ColumnQuality(not_null=1.0, unique=0.5))
        for name in names
    ]
    return XmlProfile(
        root_element=root,
        columns=columns,
        sample_rows_count=len(tags),
        encoding=encoding,
        sample_info=sample_info,
        sampling_warning=sample_info.percent < 100,
        schema_confidence=0.7 if sample_info.percent >= 30 else 0.5,
    )
