# Copyright (C) 2014 Andrea Bonomi <andrea.bonomi@gmail.com>

# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to
# deal in the Software without restriction, including without limitation the
# rights to use, copy, modify, merge, publish, distribute, sublicense, and/or
# sell copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN
# THE SOFTWARE.

__all__ = [
    "BLOCK_SIZE",
    "DATA_MARKER",
    "MARKER_SIZE",
    "READ_FILE_FULL",
    "RECORD_SIZE",
    "TAPE_MARKER",
    "FramingError",
    "LabelMismatch",
    "TapeError",
    "UserDeclined",
    "ascii_to_int",
    "ask_yes_no",
    "dump_struct",
    "filename_match",
    "hex_dump",
    "warning",
]

import errno
import fnmatch
import sys
from typing import Any, Dict, List, Optional

BLOCK_SIZE = 512
BYTES_PER_LINE = 16
READ_FILE_FULL = -1
MARKER_SIZE = 4
RECORD_SIZE = MARKER_SIZE + BLOCK_SIZE + MARKER_SIZE  # framed record on tape
TAPE_MARKER = b"\x00\x02\x00\x00"  # frames a 512 bytes record
DATA_MARKER = b"\x00\x00\x00\x00"  # section separator and end of tape


class TapeError(OSError):
    """
    Fatal inconsistency found while reading the tape
    """

    exit_code = 1

    def __init__(self, message: str, position: Optional[int] = None):
        super().__init__(errno.EIO, message)
        self.position = position

    def __str__(self) -> str:
        if self.position is None:
            return f"?DECTAPE-F-{self.strerror}"
        return f"?DECTAPE-F-{self.strerror} at position {self.position}"


class FramingError(TapeError):
    """
    Marker mismatch or short read
    """

    exit_code = 3


class LabelMismatch(TapeError):
    """
    Unexpected label identifier or label number
    """

    exit_code = 4


class UserDeclined(Exception):
    """
    The user refused a confirmation
    """


def ascii_to_int(val: bytes) -> int:
    """
    Converts an ASCII decimal field to integer,
    leading spaces are skipped and parsing stops at the first non digit
    """
    result = 0
    for ch in val.lstrip(b" "):
        if not 0x30 <= ch <= 0x39:
            break
        result = result * 10 + ch - 0x30
    return result


def warning(message: str) -> None:
    sys.stdout.write(f"?DECTAPE-W-{message}\n")


def ask_yes_no(message: str) -> bool:
    """
    Ask a yes/no question, returns False on end of input
    """
    while True:
        try:
            answer = input(f"{message} (y/n)? ").strip()
        except EOFError:
            return False
        if answer[:1] in ("Y", "y"):
            return True
        if answer[:1] in ("N", "n"):
            return False
        sys.stdout.write("Please respond with 'Y' or 'N'\n")


def hex_dump(data: bytes, bytes_per_line: int = BYTES_PER_LINE) -> None:
    """
    Display contents in hexadecimal
    """
    for i in range(0, len(data), bytes_per_line):
        line = data[i : i + bytes_per_line]
        hex_str = " ".join([f"{x:02x}" for x in line])
        ascii_str = "".join([chr(x) if 32 <= x <= 126 else "." for x in line])
        sys.stdout.write(f"{i:08x}   {hex_str.ljust(3 * bytes_per_line)}  {ascii_str}\n")


def dump_struct(d: Dict[str, Any], exclude: List[str] = [], include: List[str] = []) -> str:
    result: List[str] = []
    for k, v in d.items():
        if (type(v) in (int, str, bytes, list, bool) or k in include) and k not in exclude:
            if len(k) < 6:
                label = k.upper() + ":"
            else:
                label = k.replace("_", " ").title() + ":"
            result.append(f"{label:20s}{v}")
    return "\n".join(result)


def filename_match(basename: str, pattern: Optional[str], wildcard: bool) -> bool:
    if not pattern:
        return True
    if wildcard:
        return fnmatch.fnmatch(basename, pattern)
    else:
        return basename == pattern
