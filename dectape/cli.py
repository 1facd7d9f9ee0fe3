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

import argparse
import os
import sys
import traceback
import typing as t

from .commons import TapeError, ask_yes_no, warning
from .native import NativeFile, NativeFilesystem
from .rt11tapefs import DEFAULT_TAPE_LABEL, RT11TapeFilesystem

__all__ = [
    "main",
]

DEFAULT_TAPE_SIZE_MB = 32
MB = 1024 * 1024

EXIT_OK = 0
EXIT_USAGE = 1  # usage error, declined confirmation, tape without EOF record
EXIT_OPEN = 2  # unable to open the input tape
EXIT_IO = 5  # host I/O error

EPILOG = """
To list the file directory of a tape, use
    dectape tapefile

To copy the tape files to a directory, use
    dectape tapefile directory

To copy a directory to a tape file, use
    dectape directory tapefile
"""


class ArgumentParser(argparse.ArgumentParser):

    def error(self, message: str) -> t.NoReturn:
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = ArgumentParser(
        prog="dectape",
        description="Read and write RT-11 magtape images",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v",
        dest="verbose",
        action="count",
        default=0,
        help="verbosity level (multiple -v to increase it)",
    )
    overwrite = parser.add_mutually_exclusive_group()
    overwrite.add_argument(
        "-n",
        dest="overwrite",
        action="store_false",
        help="do not overwrite existing files (the default)",
    )
    overwrite.add_argument(
        "-o",
        dest="overwrite",
        action="store_true",
        help="DO overwrite existing files",
    )
    parser.set_defaults(overwrite=False)
    parser.add_argument(
        "-q",
        dest="confirm",
        action="store_false",
        default=True,
        help="do not prompt to overwrite files",
    )
    parser.add_argument(
        "-V",
        dest="validate",
        action="store_true",
        default=False,
        help="validate a tape (rather than printing the directory)",
    )
    parser.add_argument(
        "-A",
        dest="append",
        action="store_true",
        default=False,
        help="append to the tape, rather than overwriting (this can put duplicate file names on the tape)",
    )
    parser.add_argument(
        "-I",
        dest="initialize",
        action="store_true",
        default=False,
        help="initialize a new tape file",
    )
    parser.add_argument(
        "-S",
        dest="size",
        type=int,
        default=DEFAULT_TAPE_SIZE_MB,
        metavar="MB",
        help=f"size for a new tape file in MB (default {DEFAULT_TAPE_SIZE_MB})",
    )
    parser.add_argument(
        "-L",
        dest="label",
        default=DEFAULT_TAPE_LABEL,
        metavar="LABEL",
        help="label for a new tape file",
    )
    parser.add_argument(
        "source",
        help="tape file, or the directory to copy to the tape",
    )
    parser.add_argument(
        "target",
        nargs="?",
        help="directory to copy the tape files to, or the tape file",
    )
    return parser


def initialize_tape(
    tapefile: str,
    size: int,
    label: str,
    overwrite: bool,
    confirm: t.Optional[t.Callable[[str], bool]],
) -> t.Optional[RT11TapeFilesystem]:
    """
    Create an empty tape, returns None if the user declined
    """
    if os.path.exists(tapefile) and not overwrite:
        if confirm is None or not confirm("Overwrite existing file"):
            return None
    fs = RT11TapeFilesystem.mount(NativeFile(tapefile, create=True))
    fs.initialize(label=label, size=size * MB)
    return fs


def read_tape(options: argparse.Namespace, confirm: t.Optional[t.Callable[[str], bool]]) -> int:
    try:
        fs = RT11TapeFilesystem.mount(NativeFile(options.source))
    except OSError:
        sys.stdout.write(f'?DECTAPE-F-Unable to open tape file "{options.source}"\n')
        return EXIT_OPEN
    try:
        if options.validate:
            if not fs.validate():
                return EXIT_USAGE
        elif options.target is not None:
            fs.extract(
                NativeFilesystem(options.target),
                overwrite=options.overwrite,
                confirm=confirm,
                verbose=options.verbose,
            )
        else:
            fs.dir(verbose=options.verbose)
        return EXIT_USAGE if fs.truncated else EXIT_OK
    finally:
        fs.close()


def write_tape(options: argparse.Namespace, confirm: t.Optional[t.Callable[[str], bool]]) -> int:
    directory = options.source
    tapefile = options.target
    if options.append:
        try:
            fs = RT11TapeFilesystem.mount(NativeFile(tapefile))
        except OSError:
            sys.stdout.write(f'?DECTAPE-F-Unable to open tape file "{tapefile}"\n')
            return EXIT_OPEN
    else:
        new_fs = initialize_tape(tapefile, options.size, options.label, options.overwrite, confirm)
        if new_fs is None:
            return EXIT_USAGE
        fs = new_fs
    try:
        writer = fs.open_writer()
        try:
            tape_path = os.path.abspath(tapefile)
            for entry in NativeFilesystem(directory).entries_list:
                if os.path.abspath(entry.fullname) == tape_path:
                    continue
                try:
                    writer.append_file(entry.basename, entry.read_bytes(), entry.creation_date)
                except ValueError as ex:
                    # nothing has been written, the session is still usable
                    warning(f"Skipping {entry.fullname}, {ex}")
                    continue
                if options.verbose:
                    sys.stdout.write(f"{entry.fullname} -> {writer.sequence:04d}\n")
        finally:
            writer.close()
    finally:
        fs.close()
    return EXIT_OK


def main(argv: t.Optional[t.List[str]] = None) -> int:
    parser = build_parser()
    options = parser.parse_args(argv)
    confirm = ask_yes_no if options.confirm else None
    if options.size <= 0:
        sys.stdout.write(f"?DECTAPE-F-Invalid drive size {options.size}\n")
        return EXIT_USAGE
    try:
        if options.target is not None:
            if options.initialize:
                sys.stdout.write("?DECTAPE-F-Initialize does not take 2 parameters\n")
                return EXIT_USAGE
            if os.path.isdir(options.target) and not os.path.isdir(options.source):
                return read_tape(options, confirm)
            elif os.path.isdir(options.source) and not os.path.isdir(options.target):
                return write_tape(options, confirm)
            else:
                sys.stdout.write("?DECTAPE-F-Operation not supported for specified files/paths\n")
                return EXIT_USAGE
        elif options.initialize:
            fs = initialize_tape(options.source, options.size, options.label, options.overwrite, confirm)
            if fs is None:
                return EXIT_USAGE
            fs.close()
            return EXIT_OK
        else:
            return read_tape(options, confirm)
    except TapeError as ex:
        sys.stdout.write(f"{ex}\n")
        if options.verbose:
            traceback.print_exc()
        return ex.exit_code
    except OSError as ex:
        sys.stdout.write(f"?DECTAPE-F-{ex}\n")
        if options.verbose:
            traceback.print_exc()
        return EXIT_IO


if __name__ == "__main__":
    sys.exit(main())
