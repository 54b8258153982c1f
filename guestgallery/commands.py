"""
Text command grammar.

The only command is "ALBUM <code>": one space, a 3-40 character code of
letters, digits, underscore or hyphen, nothing after it. The keyword is
case-insensitive and surrounding whitespace is ignored.
"""

import re
from typing import Optional

ALBUM_COMMAND_RE = re.compile(r"^ALBUM ([A-Za-z0-9_-]{3,40})$", re.IGNORECASE)


def parse_album_command(text: Optional[str]) -> Optional[str]:
    """
    Return the upper-cased album code, or None if `text` is not a command.
    """
    if not text:
        return None
    match = ALBUM_COMMAND_RE.match(text.strip())
    if match is None:
        return None
    return match.group(1).upper()
