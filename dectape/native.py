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
import glob
import io
import os
import stat
import typing as t
from datetime import date, datetime

from .abstract import AbstractDirectoryEntry, AbstractFile, AbstractFilesystem
from .commons import BLOCK_SIZE, READ_FILE_FULL, UserDeclined
from .dates import to_calendar_date, to_day_of_year

__all__ = [
    "NativeFile",
    "NativeDirectoryEntry",
    "NativeFilesystem",
]


class NativeFile(AbstractFile):
    """
    Host file, used for tape images and for extracted files
    """

    f: t.Union[io.BufferedReader, io.BufferedRandom]

    def __init__(self, filename: str, create: bool = False):
        self.filename = os.path.abspath(filename)
        self.readonly = False
        if create:
            self.f = open(filename, mode="wb+")
            return
        try:
            self.f = open(filename, mode="rb+")
        except PermissionError:
            self.f = open(filename, mode="rb")
            self.readonly = True

    def read_block(
        self,
        block_number: int,
        number_of_blocks: int = 1,
    ) -> bytes:
        if number_of_blocks == READ_FILE_FULL:
            self.f.seek(0)
            return self.f.read()
        if block_number < 0 or number_of_blocks < 0:
            raise OSError(errno.EIO, os.strerror(errno.EIO))
        self.f.seek(block_number * BLOCK_SIZE)
        return self.f.read(number_of_blocks * BLOCK_SIZE)

    # Byte access goes straight to the host file

    def read(self, size: t.Optional[int] = None) -> bytes:
        return self.f.read(size)

    def write(self, data: bytes) -> int:
        if self.readonly:
            raise OSError(errno.EROFS, os.strerror(errno.EROFS), self.filename)
        return self.f.write(data)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return self.f.seek(offset, whence)

    def tell(self) -> int:
        return self.f.tell()

    def truncate(self, size: t.Optional[int] = None) -> None:
        if self.readonly:
            raise OSError(errno.EROFS, os.strerror(errno.EROFS), self.filename)
        self.f.truncate(size)

    def get_size(self) -> int:
        return os.fstat(self.f.fileno()).st_size

    def close(self) -> None:
        self.f.close()

    def __str__(self) -> str:
        return self.filename


class NativeDirectoryEntry(AbstractDirectoryEntry):

    def __init__(self, fullname: str):
        self.native_fullname = fullname
        self.stat = os.stat(fullname)

    @property
    def fullname(self) -> str:
        return self.native_fullname

    @property
    def basename(self) -> str:
        return os.path.basename(self.native_fullname)

    @property
    def creation_date(self) -> datetime:
        return datetime.fromtimestamp(self.stat.st_mtime)

    @property
    def modification_date(self) -> t.Tuple[int, int]:
        """
        Modification date as (year, day of year)
        """
        d = self.creation_date
        return d.year, to_day_of_year(d.year, d.month, d.day)

    @property
    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.stat.st_mode)

    def get_size(self) -> int:
        return self.stat.st_size

    def open(self) -> NativeFile:
        return NativeFile(self.native_fullname)

    def __str__(self) -> str:
        return f"{self.basename:<20} {self.creation_date:%d-%b-%Y} {self.get_size():>10}"


class NativeFilesystem(AbstractFilesystem):
    """
    Host directory: source of the files written to tape
    and destination of the extracted files
    """

    fs_name = "native"
    fs_description = "Native"

    def __init__(self, base: t.Optional[str] = None):
        self.base = base or os.getcwd()

    def _path(self, fullname: str) -> str:
        return os.path.join(self.base, fullname)

    def filter_entries_list(
        self,
        pattern: t.Optional[str],
        include_all: bool = False,
        wildcard: bool = True,
    ) -> t.Iterator["NativeDirectoryEntry"]:
        if not wildcard and pattern:
            pattern = glob.escape(pattern)
        for filename in sorted(glob.glob(self._path(pattern or "*"))):
            try:
                entry = NativeDirectoryEntry(filename)
            except FileNotFoundError:
                continue
            if include_all or not entry.is_dir:
                yield entry

    def get_file_entry(self, fullname: str) -> NativeDirectoryEntry:
        return NativeDirectoryEntry(self._path(fullname))

    def isdir(self, fullname: str) -> bool:
        return os.path.isdir(self._path(fullname))

    def open_output(
        self,
        fullname: str,
        overwrite: bool = False,
        confirm: t.Optional[t.Callable[[str], bool]] = None,
    ) -> NativeFile:
        """
        Create an output file. An existing file is replaced only if overwrite
        is set or confirm() agrees, otherwise UserDeclined is raised.
        """
        path = self._path(fullname)
        if os.path.exists(path) and not overwrite:
            if confirm is None or not confirm(f'Overwrite "{path}"'):
                raise UserDeclined(path)
        return NativeFile(path, create=True)

    def write_bytes(
        self,
        fullname: str,
        content: bytes,
        creation_date: t.Optional[date] = None,
    ) -> None:
        path = self._path(fullname)
        with open(path, "wb") as f:
            f.write(content)
        if creation_date:
            ts = datetime(creation_date.year, creation_date.month, creation_date.day).timestamp()
            os.utime(path, (ts, ts))

    def set_modification_date(self, fullname: str, year: int, day_of_year: int) -> None:
        month, day = to_calendar_date(year, day_of_year)
        try:
            ts = datetime(year, month, day).timestamp()
        except ValueError:
            raise OSError(errno.EINVAL, f"Invalid date {year}/{day_of_year}", fullname)
        path = self._path(fullname)
        os.utime(path, (ts, ts))

    def get_size(self) -> int:
        st = os.statvfs(self.base)
        return st.f_frsize * st.f_blocks

    def close(self) -> None:
        pass

    def __str__(self) -> str:
        return self.base
