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

import errno
import math
import os
import sys
import typing as t
from datetime import date

from .abstract import AbstractDirectoryEntry, AbstractFile, AbstractFilesystem
from .commons import (
    BLOCK_SIZE,
    DATA_MARKER,
    READ_FILE_FULL,
    RECORD_SIZE,
    FramingError,
    LabelMismatch,
    TapeError,
    UserDeclined,
    dump_struct,
    filename_match,
    hex_dump,
    warning,
)
from .dates import date_to_tape, decode_tape_date
from .labels import EOF_LABEL, FILE_IDENTIFIER_SIZE, HDR_LABEL, FileLabel, VolumeHeader, trim_field
from .tape import Tape, TapeStream

if t.TYPE_CHECKING:
    from .native import NativeFilesystem

__all__ = [
    "DEFAULT_TAPE_LABEL",
    "DEFAULT_TAPE_SIZE",
    "RT11TapeFile",
    "RT11TapeDirectoryEntry",
    "RT11TapeFilesystem",
    "RT11TapeWriter",
    "rt11tape_canonical_filename",
    "rt11tape_output_filename",
]

DEFAULT_TAPE_SIZE = 32 * 1024 * 1024  # 32 MB
DEFAULT_TAPE_LABEL = "dectape"
ZERO_FILL_CHUNK = 64 * BLOCK_SIZE


def rt11tape_canonical_filename(fullname: t.Optional[str]) -> str:
    """
    Generate the canonical 6.3 name
    """
    fullname = os.path.basename(fullname or "").upper().replace(" ", "")
    try:
        filename, extension = fullname.split(".", 1)
    except ValueError:
        filename = fullname
        extension = ""
    filename = filename[:6]
    extension = extension.replace(".", "")[:3]
    return f"{filename}.{extension}" if extension else filename


def rt11tape_output_filename(file_identifier: bytes) -> str:
    """
    Derive the host file name from the file identifier:
    the name up to the first space or dot, followed by
    the dot and up to 3 characters of the extension
    """
    name = file_identifier[:FILE_IDENTIFIER_SIZE].decode("ascii", errors="replace").replace("\0", " ")
    name = name.replace("/", "_").replace("\\", "_")
    base = name.split(" ", 1)[0].split(".", 1)[0]
    extension = ""
    dot = name.find(".")
    if dot >= 0:
        extension = name[dot : dot + 4].split(" ", 1)[0]
    return base + extension


class RT11TapeFile(AbstractFile):
    entry: "RT11TapeDirectoryEntry"
    closed: bool
    size: int  # size in bytes
    content: bytes  # file content

    def __init__(self, entry: "RT11TapeDirectoryEntry"):
        self.entry = entry
        self.closed = False
        self.size = entry.get_size()
        if entry.content is not None:
            self.content = entry.content
        else:
            self.content = entry.fs.read_data(entry)

    def read_block(
        self,
        block_number: int,
        number_of_blocks: int = 1,
    ) -> bytes:
        """
        Read block(s) of data from the file
        """
        if number_of_blocks == READ_FILE_FULL:
            number_of_blocks = self.entry.get_length()
        if self.closed or block_number < 0 or number_of_blocks < 0:
            raise OSError(errno.EIO, os.strerror(errno.EIO))
        return self.content[block_number * BLOCK_SIZE : (block_number + number_of_blocks) * BLOCK_SIZE]

    def write(self, data: bytes) -> int:
        raise OSError(errno.EROFS, os.strerror(errno.EROFS))

    def get_size(self) -> int:
        """
        Get file size in bytes
        """
        return self.size

    def close(self) -> None:
        """
        Close the file
        """
        self.closed = True

    def __str__(self) -> str:
        return self.entry.fullname


class RT11TapeDirectoryEntry(AbstractDirectoryEntry):
    """
    A file on tape: the HDR label, the data blocks and the EOF label
    """

    fs: "RT11TapeFilesystem"
    header: FileLabel
    trailer: t.Optional[FileLabel] = None  # None if the tape ends before the EOF label
    sequence: int = 0  # position of the file on tape, 1-based
    blocks: int = 0  # number of data blocks read
    tape_pos: int = 0  # tape position (before file header)
    data_pos: int = 0  # tape position (before the first data block)
    record: bytes = b""  # raw HDR record
    content: t.Optional[bytes] = None

    def __init__(self, fs: "RT11TapeFilesystem", header: FileLabel, sequence: int, tape_pos: int):
        self.fs = fs
        self.header = header
        self.sequence = sequence
        self.tape_pos = tape_pos

    @property
    def sequence_mismatch(self) -> bool:
        return self.header.sequence != self.sequence

    @property
    def trailer_mismatch(self) -> bool:
        if self.trailer is None:
            return False
        return not self.header.matches(self.trailer) or self.trailer.block_count != self.blocks

    @property
    def truncated(self) -> bool:
        return self.trailer is None

    def write_trailer_mismatch(self) -> None:
        if self.trailer is not None and self.trailer_mismatch:
            sys.stdout.write(
                f'    *EOF HEADER MISMATCH* "{self.trailer.file_identifier.decode("ascii", errors="replace"):<17.17}"'
                f"  {trim_field(self.trailer.raw_block_count)}\n"
            )

    @property
    def fullname(self) -> str:
        return self.header.filename

    @property
    def basename(self) -> str:
        return self.header.filename

    @property
    def output_filename(self) -> str:
        return rt11tape_output_filename(self.header.file_identifier)

    @property
    def creation_date(self) -> t.Optional[date]:
        return self.header.creation_date

    def get_size(self) -> int:
        """
        Get file size in bytes
        """
        return self.blocks * BLOCK_SIZE

    def open(self) -> RT11TapeFile:
        """
        Open a file
        """
        return RT11TapeFile(self)

    def __str__(self) -> str:
        return (
            f"  {self.header.file_identifier.decode('ascii', errors='replace'):<17.17}"
            f"  {self.header.creation_date_str:<9.9}"
            f"  {self.blocks:>6d}"
            f"  {self.get_size():>11d}"
        )

    def __repr__(self) -> str:
        return str(self)


class RT11TapeWriter:
    """
    Tape writer session

    Each file is appended as:

        HDR label, data marker, data blocks, data marker, EOF label, data marker

    The two data markers marking the end of tape are written
    once, when the session is closed.
    If a write fails the tape is left as it is and the session
    refuses further writes.
    """

    def __init__(self, fs: "RT11TapeFilesystem", position: int, sequence: int):
        self.fs = fs
        self.position = position  # logical end of tape
        self.sequence = sequence  # sequence number of the last file on tape
        self.corrupted = False
        self.closed = False

    def append_file(
        self,
        fullname: str,
        content: bytes,
        creation_date: t.Optional[date] = None,
    ) -> FileLabel:
        """
        Append a file to the tape, return the EOF label
        """
        if self.closed:
            raise ValueError("Writer session is closed")
        if self.corrupted:
            raise OSError(errno.EIO, "?DECTAPE-F-Tape image is corrupted")
        filename = rt11tape_canonical_filename(fullname)
        if not filename or filename.startswith("."):
            raise ValueError(f'Invalid RT-11 file name "{fullname}"')
        # the sequence number is committed only after the file is on tape
        sequence = self.sequence + 1
        header = FileLabel.new(
            filename=filename,
            sequence=sequence,
            raw_creation_date=date_to_tape(creation_date),
        )
        number_of_blocks = int(math.ceil(len(content) / BLOCK_SIZE))
        try:
            self.fs.tape_seek(self.position)
            self.fs.tape_write_record(header.to_bytes())
            self.fs.tape_write_mark()
            for i in range(0, number_of_blocks):
                record = content[i * BLOCK_SIZE : (i + 1) * BLOCK_SIZE]
                if len(record) < BLOCK_SIZE:
                    record += b"\0" * (BLOCK_SIZE - len(record))
                self.fs.tape_write_record(record)
            self.fs.tape_write_mark()
            trailer = header.trailer(number_of_blocks)
            self.fs.tape_write_record(trailer.to_bytes())
            self.fs.tape_write_mark()
        except OSError:
            self.corrupted = True
            raise
        self.position = self.fs.tape_pos
        self.sequence = sequence
        return trailer

    def close(self) -> None:
        """
        Write the end of tape markers
        """
        if not self.closed and not self.corrupted:
            self.fs.tape_seek(self.position)
            self.fs.tape_write_mark()
            self.fs.tape_write_mark()
        self.closed = True


class RT11TapeFilesystem(AbstractFilesystem, Tape):
    """
    RT-11 Magtape Filesystem

        +-------------------------------------+
        |        VOL label (optional)         |  record
        +-------------------------------------+
        |             HDR label               |  record
        +-------------------------------------+
        |            Data marker              |
        +-------------------------------------+
        |            Data block               |  record
        /               ...                   /
        +-------------------------------------+
        |            Data marker              |
        +-------------------------------------+
        |             EOF label               |  record
        +-------------------------------------+
        |            Data marker              |
        +-------------------------------------+
        /     ...  (next HDR label)  ...      /
        +-------------------------------------+
        |     Data marker (end of tape)       |
        +-------------------------------------+

    If the tape begins with a HDR label, the volume label is missing
    and the first file starts at the beginning of the tape.
    """

    fs_name = "rt11tape"
    fs_description = "RT-11 Magtape"

    volume: t.Optional[VolumeHeader] = None
    truncated: bool = False  # the last file has no EOF label
    end_pos: t.Optional[int] = None  # logical end of tape

    @classmethod
    def mount(cls, file: TapeStream) -> "RT11TapeFilesystem":
        return cls(file)

    def read_volume_header(self) -> t.Optional[bytes]:
        """
        Rewind the tape and read the first record.
        Returns the HDR record if the tape has no volume label.
        """
        self.tape_rewind()
        self.volume = None
        buffer = self.tape_read_record()
        if buffer is None:
            raise FramingError("Unable to read the tape header", 0)
        if buffer[: len(HDR_LABEL)] == HDR_LABEL:
            return buffer
        volume = VolumeHeader.read(buffer)
        if not volume.is_valid():
            label = trim_field(volume.label_identifier + volume.label_number)
            raise LabelMismatch(f'Bad volume header "{label}"', 0)
        self.volume = volume
        return None

    def read_file_entries(self, read_data: bool = False) -> t.Iterator["RT11TapeDirectoryEntry"]:
        """
        Read the volume label, then iterate over the files
        """
        first_record = self.read_volume_header()
        return self._read_file_entries(first_record, read_data)

    def _read_file_entries(
        self,
        record: t.Optional[bytes],
        read_data: bool,
    ) -> t.Iterator["RT11TapeDirectoryEntry"]:
        self.truncated = False
        self.end_pos = None
        sequence = 0
        while True:
            # File header
            if record is not None:
                # first file of a tape without volume label
                tape_pos = self.tape_pos - RECORD_SIZE
            else:
                tape_pos = self.tape_pos
                record = self.tape_read_record()
                if record is None:
                    self.end_pos = tape_pos
                    return
            header = FileLabel.read(record)
            if not header.is_valid(HDR_LABEL):
                label = trim_field(header.label_identifier + header.label_number)
                raise LabelMismatch(f'Invalid file header "{label}"', tape_pos)
            sequence += 1
            entry = RT11TapeDirectoryEntry(self, header, sequence, tape_pos)
            entry.record = record
            if entry.sequence_mismatch:
                warning(f"Invalid file seq number in header - {sequence} vs {header.sequence}")
            # Data marker
            pos = self.tape_pos
            if self.tape_read_marker() != DATA_MARKER:
                raise FramingError(f'Missing data marker, file "{header.filename}"', pos)
            # Data blocks
            entry.data_pos = self.tape_pos
            data = bytearray() if read_data else None
            while True:
                buffer = self.tape_read_record()
                if buffer is None:
                    break
                entry.blocks += 1
                if data is not None:
                    data.extend(buffer)
            if data is not None:
                entry.content = bytes(data)
            # File trailer
            pos = self.tape_pos
            buffer = self.tape_read_record()
            if buffer is None:
                warning(f'Unexpected end of tape, missing EOF record, file "{header.filename}"')
                self.truncated = True
                self.end_pos = pos
                yield entry
                return
            trailer = FileLabel.read(buffer)
            if not trailer.is_valid(EOF_LABEL):
                label = trim_field(trailer.label_identifier + trailer.label_number)
                raise LabelMismatch(f'Invalid EOF header "{label}"', pos)
            entry.trailer = trailer
            # Data marker
            pos = self.tape_pos
            if self.tape_read_marker() != DATA_MARKER:
                raise FramingError("Missing data marker at end of EOF record", pos)
            yield entry
            record = None

    def read_data(self, entry: "RT11TapeDirectoryEntry") -> bytes:
        """
        Read the data blocks of a file
        """
        pos = self.tape_pos
        try:
            self.tape_seek(entry.data_pos)
            data = bytearray()
            for _ in range(0, entry.blocks):
                buffer = self.tape_read_record()
                if buffer is None:
                    raise FramingError(f'Unexpected data marker, file "{entry.fullname}"', self.tape_pos)
                data.extend(buffer)
            return bytes(data)
        finally:
            self.tape_seek(pos)

    def filter_entries_list(
        self,
        pattern: t.Optional[str],
        include_all: bool = False,
        wildcard: bool = True,
    ) -> t.Iterator["RT11TapeDirectoryEntry"]:
        if pattern:
            pattern = pattern.upper()
        for entry in self.read_file_entries():
            if filename_match(entry.basename, pattern, wildcard):
                yield entry

    @property
    def entries_list(self) -> t.Iterator["RT11TapeDirectoryEntry"]:
        return self.read_file_entries()

    def get_file_entry(self, fullname: str) -> RT11TapeDirectoryEntry:
        fullname = rt11tape_canonical_filename(fullname)
        if not fullname:
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), fullname)
        entries = [x for x in self.filter_entries_list(fullname, wildcard=False)]
        if not entries:
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), fullname)
        # the last copy on tape wins
        return entries[-1]

    def dir(self, verbose: int = 0) -> None:
        """
        Print the tape directory
        """
        files = 0
        blocks = 0
        entries = self.read_file_entries()
        if self.volume is not None:
            sys.stdout.write(f"{self.volume}\n")
        else:
            sys.stdout.write("** NO TAPE HEADER **\n")
        for x in entries:
            if files == 0:
                sys.stdout.write(
                    "  FILE NAME         CREATE DATE  BLOCKS  TOTAL BYTES\n"
                    "  ================  ===========  ======  ===========\n"
                )
            sys.stdout.write(f"{x}\n")
            x.write_trailer_mismatch()
            if verbose:
                sys.stdout.write(f"{x.header}\n")
                if verbose > 1:
                    hex_dump(x.record[:128])
            files += 1
            blocks += x.blocks
        sys.stdout.write(f"\n  {files} FILES  {blocks} BLOCKS  {blocks * BLOCK_SIZE} BYTES\n")
        if self.truncated:
            sys.stdout.write("unexpected (missing EOF record)\n")
        sys.stdout.write("\nEND OF TAPE\n\n")

    def examine(self, arg: t.Optional[str] = None) -> None:
        """
        Dump the labels of every file on tape,
        or the data blocks of a single file
        """
        if arg:
            self.dump(arg)
            return
        entries = self.read_file_entries()
        if self.volume is not None:
            sys.stdout.write(f"{self.volume}\n")
        for entry in entries:
            sys.stdout.write(f"\n{entry.header}\n")
            if entry.trailer is not None:
                sys.stdout.write(f"\n{entry.trailer}\n")
            sys.stdout.write(
                dump_struct(
                    {
                        "sequence": entry.sequence,
                        "tape_position": entry.tape_pos,
                        "data_position": entry.data_pos,
                        "blocks": entry.blocks,
                    }
                )
            )
            sys.stdout.write("\n")

    def validate(self) -> bool:
        """
        Read the whole tape and print the verdict
        """
        try:
            for entry in self.read_file_entries():
                entry.write_trailer_mismatch()
        except TapeError:
            sys.stdout.write("** TAPE NOT VALIDATED **\n")
            raise
        if self.truncated:
            sys.stdout.write("** TAPE NOT VALIDATED **\n")
            return False
        sys.stdout.write("** TAPE VALIDATED **\n")
        return True

    def extract(
        self,
        target: "NativeFilesystem",
        overwrite: bool = False,
        confirm: t.Optional[t.Callable[[str], bool]] = None,
        verbose: int = 0,
    ) -> int:
        """
        Copy the files from the tape to a directory.
        Returns the number of extracted files.
        """
        count = 0
        for entry in self.read_file_entries(read_data=True):
            entry.write_trailer_mismatch()
            filename = entry.output_filename
            if not filename:
                warning(f"Invalid file name, file {entry.sequence}")
                continue
            try:
                f = target.open_output(filename, overwrite, confirm)
            except UserDeclined:
                warning(f"Skipping {filename}")
                continue
            try:
                f.write(entry.content or b"")
            finally:
                f.close()
            if entry.creation_date is not None:
                year, day_of_year = decode_tape_date(entry.header.raw_creation_date)
                target.set_modification_date(filename, year, day_of_year)
            if verbose:
                sys.stdout.write(f"{entry.fullname} -> {filename}\n")
            count += 1
        return count

    def open_writer(self) -> RT11TapeWriter:
        """
        Start a writer session at the end of the tape
        """
        sequence = 0
        for _ in self.read_file_entries():
            sequence += 1
        if self.truncated or self.end_pos is None:
            raise TapeError("Tape ends without EOF record, unable to append", self.end_pos)
        return RT11TapeWriter(self, self.end_pos, sequence)

    def write_bytes(
        self,
        fullname: str,
        content: bytes,
        creation_date: t.Optional[date] = None,
    ) -> None:
        """
        Append a file to the tape
        """
        writer = self.open_writer()
        try:
            writer.append_file(fullname, content, creation_date)
        finally:
            writer.close()

    def initialize(self, label: str = DEFAULT_TAPE_LABEL, size: int = DEFAULT_TAPE_SIZE) -> None:
        """
        Write the volume label and fill the tape with zeros
        """
        if size <= 0:
            raise ValueError(f"Invalid tape size {size}")
        size = max(size, 2 * BLOCK_SIZE)
        size = int(math.ceil(size / BLOCK_SIZE)) * BLOCK_SIZE
        self.tape_rewind()
        self.f.truncate(0)
        self.volume = VolumeHeader.new(label)
        self.tape_write_record(self.volume.to_bytes())
        remaining = size - self.tape_pos
        while remaining > 0:
            length = min(remaining, ZERO_FILL_CHUNK)
            self.f.write(b"\0" * length)
            remaining -= length
        self.tape_seek(RECORD_SIZE)

    def get_size(self) -> int:
        """
        Get tape size in bytes
        """
        pos = self.tape_pos
        size = self.f.seek(0, os.SEEK_END)
        self.tape_seek(pos)
        return size

    def close(self) -> None:
        self.f.close()

    def __str__(self) -> str:
        return str(self.f)
