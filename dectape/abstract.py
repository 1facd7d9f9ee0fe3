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
import os
import sys
import typing as t
from abc import ABC, abstractmethod
from datetime import date

from .commons import BLOCK_SIZE, READ_FILE_FULL, hex_dump

__all__ = [
    "AbstractFile",
    "AbstractDirectoryEntry",
    "AbstractFilesystem",
]


class AbstractFile(ABC):
    """
    An open file, addressed by blocks.
    The byte oriented read/seek/tell are built on top of read_block.
    """

    position: int = 0

    @abstractmethod
    def read_block(
        self,
        block_number: int,
        number_of_blocks: int = 1,
    ) -> bytes:
        """Read block(s) of data from the file"""

    @abstractmethod
    def write(self, data: bytes) -> int:
        """Write bytes at the current position"""

    @abstractmethod
    def get_size(self) -> int:
        """Get file size in bytes"""

    @abstractmethod
    def close(self) -> None:
        """Close the file"""

    def get_block_size(self) -> int:
        return BLOCK_SIZE

    def read(self, size: t.Optional[int] = None) -> bytes:
        """
        Read up to size bytes, or up to the end of the file
        """
        end = self.get_size()
        if size is not None:
            end = min(end, self.position + size)
        if end <= self.position:
            return b""
        block_size = self.get_block_size()
        first = self.position // block_size
        last = (end - 1) // block_size
        data = self.read_block(first, last - first + 1)
        offset = self.position - first * block_size
        data = data[offset : offset + end - self.position]
        self.position += len(data)
        return data

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        if whence == os.SEEK_SET:
            position = offset
        elif whence == os.SEEK_CUR:
            position = self.position + offset
        elif whence == os.SEEK_END:
            position = self.get_size() + offset
        else:
            raise ValueError(f"Invalid whence {whence}")
        self.position = max(position, 0)
        return self.position

    def tell(self) -> int:
        return self.position

    def truncate(self, size: t.Optional[int] = None) -> None:
        raise OSError(errno.EROFS, os.strerror(errno.EROFS))


class AbstractDirectoryEntry(ABC):

    @property
    @abstractmethod
    def fullname(self) -> str:
        """Name with path"""

    @property
    @abstractmethod
    def basename(self) -> str:
        """Final path component"""

    @property
    def creation_date(self) -> t.Optional[date]:
        return None

    @abstractmethod
    def get_size(self) -> int:
        """Get file size in bytes"""

    def get_block_size(self) -> int:
        return BLOCK_SIZE

    def get_length(self) -> int:
        """
        Get the length in blocks, the last one can be partial
        """
        block_size = self.get_block_size()
        return (self.get_size() + block_size - 1) // block_size

    @abstractmethod
    def open(self) -> AbstractFile:
        """Open the file"""

    def read_bytes(self) -> bytes:
        f = self.open()
        try:
            return f.read_block(0, READ_FILE_FULL)[: f.get_size()]
        finally:
            f.close()


class AbstractFilesystem(ABC):
    """
    Files grouped in a directory: the tape or a host directory
    """

    fs_name: str
    fs_description: str

    @abstractmethod
    def filter_entries_list(
        self,
        pattern: t.Optional[str],
        include_all: bool = False,
        wildcard: bool = True,
    ) -> t.Iterator["AbstractDirectoryEntry"]:
        """Iterate over the entries matching a pattern"""

    @property
    def entries_list(self) -> t.Iterator["AbstractDirectoryEntry"]:
        return self.filter_entries_list(None)

    @abstractmethod
    def get_file_entry(self, fullname: str) -> "AbstractDirectoryEntry":
        """Get the directory entry for a file, raise FileNotFoundError if missing"""

    @abstractmethod
    def write_bytes(
        self,
        fullname: str,
        content: bytes,
        creation_date: t.Optional[date] = None,
    ) -> None:
        """Write a file"""

    @abstractmethod
    def get_size(self) -> int:
        """Get filesystem size in bytes"""

    @abstractmethod
    def close(self) -> None:
        """Close the filesystem"""

    def exists(self, fullname: str) -> bool:
        try:
            self.get_file_entry(fullname)
            return True
        except FileNotFoundError:
            return False

    def open_file(self, fullname: str) -> "AbstractFile":
        return self.get_file_entry(fullname).open()

    def read_bytes(self, fullname: str) -> bytes:
        return self.get_file_entry(fullname).read_bytes()

    def dump(self, fullname: str) -> None:
        """
        Hex dump the blocks of a file
        """
        entry = self.get_file_entry(fullname)
        f = entry.open()
        try:
            for block_number in range(0, entry.get_length()):
                data = f.read_block(block_number)
                sys.stdout.write(f"\nBLOCK NUMBER   {block_number:08}\n")
                hex_dump(data)
        finally:
            f.close()
