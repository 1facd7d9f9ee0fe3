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

import copy
import struct
import typing as t
from datetime import date

from .commons import BLOCK_SIZE, ascii_to_int, dump_struct
from .dates import format_tape_date, tape_to_date

__all__ = [
    "EOF_LABEL",
    "FILE_IDENTIFIER_SIZE",
    "HDR_LABEL",
    "LABEL_NUMBER",
    "SYSTEM_CODE",
    "VOL_LABEL",
    "FileLabel",
    "VolumeHeader",
    "pad_field",
    "trim_field",
]

VOL_LABEL = b"VOL"
HDR_LABEL = b"HDR"
EOF_LABEL = b"EOF"
LABEL_NUMBER = b"1"
OWNER_IDENTIFIER = b"D%B"  # tape written by DEC PDP-11
DEFAULT_VOLUME_ID = "RT11A"
DEFAULT_FILE_SET_ID = "RT11A"
SYSTEM_CODE = "DECRT11A"
FILE_IDENTIFIER_SIZE = 17

VOLUME_HEADER = "3s1s6s1s26s3s10s1s28s1s"
VOLUME_HEADER_SIZE = 80
FILE_LABEL = "3s1s17s6s4s4s4s2s6s6s1s6s13s7s"
FILE_LABEL_SIZE = 80


def pad_field(value: t.Union[str, bytes], width: int) -> bytes:
    """
    Left justify a text field, pad with spaces and truncate to width
    """
    if isinstance(value, str):
        value = value.encode("ascii", errors="replace")
    return value[:width].ljust(width, b" ")


def trim_field(value: bytes) -> str:
    """
    Decode a text field, removing the padding
    """
    return value.decode("ascii", errors="replace").rstrip(" \0")


class VolumeHeader:
    """
    RT-11 Magtape Volume Header Label

    Offset  Size
         0     3   Label identifier     'VOL'
         3     1   Label number         '1'
         4     6   Volume identifier    'RT11A '
        10     1   Accessibility        ' '
        11    26   Reserved
        37     3   Owner identifier     'D%B'
        40    10   Owner name
        50     1   DEC standard version '1'
        51    28   Reserved
        79     1   Label standard vers. '3'

    RT-11 Volume and File Formats Manual, Magtape structure
    """

    label_identifier: bytes = VOL_LABEL
    label_number: bytes = LABEL_NUMBER
    volume_identifier: bytes = b""
    accessibility: bytes = b" "
    owner_identifier: bytes = OWNER_IDENTIFIER
    owner_name: bytes = b""
    dec_standard_version: bytes = b"1"
    label_standard_version: bytes = b"3"

    @classmethod
    def new(cls, label: str, volume_identifier: str = DEFAULT_VOLUME_ID) -> "VolumeHeader":
        self = VolumeHeader()
        self.volume_identifier = pad_field(volume_identifier, 6)
        self.owner_name = pad_field(label, 10)
        return self

    @classmethod
    def read(cls, buffer: bytes) -> "VolumeHeader":
        self = VolumeHeader()
        (
            self.label_identifier,
            self.label_number,
            self.volume_identifier,
            self.accessibility,
            _,
            self.owner_identifier,
            self.owner_name,
            self.dec_standard_version,
            _,
            self.label_standard_version,
        ) = struct.unpack_from(VOLUME_HEADER, buffer, 0)
        return self

    def to_bytes(self) -> bytes:
        buffer = bytearray(b" " * BLOCK_SIZE)
        struct.pack_into(
            VOLUME_HEADER,
            buffer,
            0,
            self.label_identifier,
            self.label_number,
            self.volume_identifier,
            self.accessibility,
            b" " * 26,
            self.owner_identifier,
            self.owner_name,
            self.dec_standard_version,
            b" " * 28,
            self.label_standard_version,
        )
        return bytes(buffer)

    def is_valid(self) -> bool:
        return self.label_identifier == VOL_LABEL and self.label_number == LABEL_NUMBER

    @property
    def label(self) -> str:
        return trim_field(self.owner_name)

    def __str__(self) -> str:
        return (
            f"RT11 TAPE  '{trim_field(self.owner_identifier):<3.3}' "
            f"'{self.owner_name.decode('ascii', errors='replace'):<10.10}' "
            f"V{trim_field(self.dec_standard_version)} "
            f"Label V{trim_field(self.label_standard_version)}"
        )


class FileLabel:
    """
    RT-11 Magtape File Header (HDR) and File Trailer (EOF) Labels

    Offset  Size
         0     3   Label identifier     'HDR' or 'EOF'
         3     1   Label number         '1'
         4    17   File identifier      6.3 file name, left justified
        21     6   File set identifier  'RT11A '
        27     4   File section number  '0001'
        31     4   File sequence number '0001' for the first file
        35     4   Generation number    '0001'
        39     2   Generation version   '00'
        41     6   Creation date        'cYYddd'
        47     6   Expiration date      '000000'
        53     1   Accessibility        ' '
        54     6   Block count          data blocks (EOF label only)
        60    13   System code          'DECRT11A     '
        73     7   Reserved
    """

    label_identifier: bytes = HDR_LABEL
    label_number: bytes = LABEL_NUMBER
    file_identifier: bytes = b""
    file_set_identifier: bytes = b""
    file_section_number: bytes = b"0001"
    file_sequence_number: bytes = b"0001"
    generation_number: bytes = b"0001"
    generation_version: bytes = b"00"
    raw_creation_date: bytes = b"      "
    expiration_date: bytes = b"000000"
    accessibility: bytes = b" "
    raw_block_count: bytes = b"000000"
    system_code: bytes = b""

    @classmethod
    def new(
        cls,
        filename: str,
        sequence: int,
        raw_creation_date: bytes,
        file_set_identifier: str = DEFAULT_FILE_SET_ID,
    ) -> "FileLabel":
        self = FileLabel()
        self.file_identifier = pad_field(filename, FILE_IDENTIFIER_SIZE)
        self.file_set_identifier = pad_field(file_set_identifier, 6)
        self.file_sequence_number = f"{sequence:04d}".encode("ascii")[-4:]
        self.raw_creation_date = pad_field(raw_creation_date, 6)
        self.system_code = pad_field(SYSTEM_CODE, 13)
        return self

    @classmethod
    def read(cls, buffer: bytes) -> "FileLabel":
        self = FileLabel()
        (
            self.label_identifier,
            self.label_number,
            self.file_identifier,
            self.file_set_identifier,
            self.file_section_number,
            self.file_sequence_number,
            self.generation_number,
            self.generation_version,
            self.raw_creation_date,
            self.expiration_date,
            self.accessibility,
            self.raw_block_count,
            self.system_code,
            _,
        ) = struct.unpack_from(FILE_LABEL, buffer, 0)
        return self

    def to_bytes(self) -> bytes:
        buffer = bytearray(BLOCK_SIZE)
        struct.pack_into(
            FILE_LABEL,
            buffer,
            0,
            self.label_identifier,
            self.label_number,
            self.file_identifier,
            self.file_set_identifier,
            self.file_section_number,
            self.file_sequence_number,
            self.generation_number,
            self.generation_version,
            self.raw_creation_date,
            self.expiration_date,
            self.accessibility,
            self.raw_block_count,
            self.system_code,
            b" " * 7,
        )
        return bytes(buffer)

    def trailer(self, block_count: int) -> "FileLabel":
        """
        Build the EOF label matching this header
        """
        eof = copy.copy(self)
        eof.label_identifier = EOF_LABEL
        eof.raw_block_count = f"{block_count:06d}".encode("ascii")[-6:]
        return eof

    def is_valid(self, label_identifier: bytes) -> bool:
        return self.label_identifier == label_identifier and self.label_number == LABEL_NUMBER

    def matches(self, other: "FileLabel") -> bool:
        """
        Check if two labels describe the same file
        """
        return (
            self.file_identifier == other.file_identifier
            and self.file_section_number == other.file_section_number
            and self.file_sequence_number == other.file_sequence_number
            and self.generation_number == other.generation_number
        )

    @property
    def filename(self) -> str:
        return trim_field(self.file_identifier)

    @property
    def sequence(self) -> int:
        return ascii_to_int(self.file_sequence_number)

    @property
    def block_count(self) -> int:
        return ascii_to_int(self.raw_block_count)

    @property
    def creation_date(self) -> t.Optional[date]:
        return tape_to_date(self.raw_creation_date)

    @property
    def creation_date_str(self) -> str:
        return format_tape_date(self.raw_creation_date)

    def __str__(self) -> str:
        return dump_struct(
            {
                "label": trim_field(self.label_identifier + self.label_number),
                "file_identifier": self.filename,
                "file_set_identifier": trim_field(self.file_set_identifier),
                "file_section_number": trim_field(self.file_section_number),
                "file_sequence_number": trim_field(self.file_sequence_number),
                "generation": f"{trim_field(self.generation_number)}.{trim_field(self.generation_version)}",
                "creation_date": self.creation_date_str,
                "expiration_date": trim_field(self.expiration_date),
                "block_count": self.block_count,
                "system_code": trim_field(self.system_code),
            }
        )
