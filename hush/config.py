"""
hush - Configuration

Everything hush reads from the environment is collected here once, at the
edge, and handed to the commands explicitly.

    HUSH_FILE       absolute path of the hush file (default: $HOME/.hush)
    HUSH_ASKPASS    program that prints the password on stdout
    HUSH_EDITOR     editor used to capture values (then VISUAL, then EDITOR)
    HUSH_DEBUG      non-empty to enable debug logging
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import UsageError

EDITOR_VARS = ("HUSH_EDITOR", "VISUAL", "EDITOR")
DEFAULT_EDITOR = "vi"


@dataclass(frozen=True)
class HushConfig:
    hush_file: str
    askpass: Optional[str] = None
    editor: Optional[str] = None
    debug: bool = False

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] = os.environ) -> "HushConfig":
        return cls(
            hush_file=hush_path(environ),
            askpass=environ.get("HUSH_ASKPASS") or None,
            editor=editor(environ),
            debug=bool(environ.get("HUSH_DEBUG")),
        )


def hush_path(environ: Mapping[str, str]) -> str:
    """
    Filename of this user's hush file, whether it exists or not.

    Symlinks along the default path are resolved, so saving replaces the
    real file rather than the link.
    """
    filename = environ.get("HUSH_FILE")
    if filename:
        return filename

    home = environ.get("HOME")
    if not home:
        raise UsageError("Point $HOME at your home directory")
    return os.path.realpath(os.path.join(home, ".hush"))


def editor(environ: Mapping[str, str]) -> Optional[str]:
    """First editor configured in the environment, or None."""
    for name in EDITOR_VARS:
        ed = environ.get(name)
        if ed:
            return ed
    return None
