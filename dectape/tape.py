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

import typing as t

from .commons import BLOCK_SIZE, DATA_MARKER, MARKER_SIZE, TAPE_MARKER, FramingError

if t.TYPE_CHECKING:
    from .abstract import AbstractFile

__all__ = [
    "Tape",
    "TapeStream",
]

TapeStream = t.Union["AbstractFile", t.BinaryIO]


class Tape:
    """
    RT-11 magtape image records

        +-------------------------------------+
     0  |     Tape marker  00 02 00 00        |  4 bytes
        +-------------------------------------+
     4  |              Data                   | 512 bytes
        +-------------------------------------+
   516  |     Tape marker  00 02 00 00        |  4 bytes
        +-------------------------------------+

    A data marker (00 00 00 00) is a 4 bytes sentinel, not a record.
    It separates the sections of a file and marks the end of tape.
    """

    def __init__(self, file: TapeStream):
        self.f = file

    @property
    def tape_pos(self) -> int:
        """
        Current tape position
        """
        return self.f.tell()

    def tape_seek(self, pos: int) -> None:
        """
        Change the tape position
        """
        self.f.seek(pos, 0)

    def tape_rewind(self) -> None:
        """
        Rewind the tape
        """
        self.f.seek(0, 0)

    def tape_read_marker(self) -> bytes:
        """
        Read the next 4 bytes marker.
        The physical end of the image is returned as a data marker.
        """
        pos = self.tape_pos
        marker = self.f.read(MARKER_SIZE)
        if len(marker) == 0:
            return DATA_MARKER
        elif len(marker) != MARKER_SIZE:
            raise FramingError("Short read of tape marker", pos)
        return bytes(marker)

    def tape_read_record(self) -> t.Optional[bytes]:
        """
        Starting at the current position, read the next record.
        Returns None if a data marker (end of tape/section) is found,
        without consuming other bytes.
        """
        pos = self.tape_pos
        marker = self.tape_read_marker()
        if marker == DATA_MARKER:
            return None
        elif marker != TAPE_MARKER:
            raise FramingError(f"Unknown marker {marker.hex()}", pos)
        buffer = self.f.read(BLOCK_SIZE)
        if len(buffer) != BLOCK_SIZE:
            raise FramingError("Short read of tape record", pos)
        marker = self.f.read(MARKER_SIZE)
        if len(marker) != MARKER_SIZE:
            raise FramingError("Short read of trailing tape marker", pos + MARKER_SIZE + BLOCK_SIZE)
        if marker != TAPE_MARKER:
            raise FramingError("Trailing tape marker mismatch", pos + MARKER_SIZE + BLOCK_SIZE)
        return bytes(buffer)

    def tape_write_record(self, data: bytes) -> None:
        """
        Starting at the current position, write the leading tape marker,
        the 512 bytes record and the trailing tape marker.
        """
        if len(data) != BLOCK_SIZE:
            raise ValueError(f"Invalid record size {len(data)}")
        self.f.write(TAPE_MARKER)
        self.f.write(data)
        self.f.write(TAPE_MARKER)

    def tape_write_mark(self) -> None:
        """
        Starting at the current position, write a data marker.
        Position the tape beyond the new data marker.
        """
        self.f.write(DATA_MARKER)
