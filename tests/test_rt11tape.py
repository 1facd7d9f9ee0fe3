import io
import os
from datetime import date, datetime

import pytest

from dectape.commons import (
    BLOCK_SIZE,
    DATA_MARKER,
    RECORD_SIZE,
    TAPE_MARKER,
    FramingError,
    LabelMismatch,
    TapeError,
)
from dectape.labels import FileLabel, VolumeHeader
from dectape.native import NativeFile, NativeFilesystem
from dectape.rt11tapefs import (
    RT11TapeFilesystem,
    rt11tape_canonical_filename,
    rt11tape_output_filename,
)

TEXT = b"".join(f"{i:5d} ABCDEFGHIJKLMNOPQRSTUVWXYZ01234567890\n".encode("ascii") for i in range(0, 100))


def new_tape(size=64 * 1024):
    fs = RT11TapeFilesystem.mount(io.BytesIO())
    fs.initialize(label="test", size=size)
    return fs


def raw_tape(volume=True):
    fs = RT11TapeFilesystem.mount(io.BytesIO())
    if volume:
        fs.tape_write_record(VolumeHeader.new("test").to_bytes())
    return fs


def raw_file(fs, header, content, trailer=None, eof=True):
    fs.tape_write_record(header.to_bytes())
    fs.tape_write_mark()
    blocks = 0
    for i in range(0, len(content), BLOCK_SIZE):
        fs.tape_write_record(content[i : i + BLOCK_SIZE].ljust(BLOCK_SIZE, b"\0"))
        blocks += 1
    fs.tape_write_mark()
    if eof:
        fs.tape_write_record((trailer or header.trailer(blocks)).to_bytes())
        fs.tape_write_mark()


def test_canonical_filename():
    assert rt11tape_canonical_filename("hello.txt") == "HELLO.TXT"
    assert rt11tape_canonical_filename("longfilename.text") == "LONGFI.TEX"
    assert rt11tape_canonical_filename("noext") == "NOEXT"
    assert rt11tape_canonical_filename("/tmp/a b.c") == "AB.C"
    assert rt11tape_canonical_filename("archive.tar.gz") == "ARCHIV.TAR"
    assert rt11tape_canonical_filename(None) == ""


def test_output_filename():
    assert rt11tape_output_filename(b"HELLO.TXT        ") == "HELLO.TXT"
    assert rt11tape_output_filename(b"LONG.ABCD        ") == "LONG.ABC"
    assert rt11tape_output_filename(b"NOEXT            ") == "NOEXT"
    assert rt11tape_output_filename(b"A B.TXT          ") == "A.TXT"
    assert rt11tape_output_filename(b"A/B.TXT          ") == "A_B.TXT"
    assert rt11tape_output_filename(b"                 ") == ""


def test_initialize():
    fs = new_tape(size=1024 * 1024)
    assert fs.get_size() == 1024 * 1024
    assert list(fs.entries_list) == []
    assert fs.volume is not None
    assert fs.volume.is_valid()
    assert fs.volume.label == "test"
    assert not fs.truncated
    assert fs.end_pos == RECORD_SIZE
    # Minimum size
    fs = new_tape(size=1)
    assert fs.get_size() == 2 * BLOCK_SIZE
    assert list(fs.entries_list) == []
    with pytest.raises(ValueError):
        fs.initialize(size=0)


def test_write_layout():
    fs = new_tape()
    content = TEXT[:600]
    fs.write_bytes("hello.txt", content, date(1990, 2, 1))
    data = fs.f.getvalue()
    assert len(data) == 64 * 1024
    assert data[0:8] == TAPE_MARKER + b"VOL1"
    # File header
    assert data[520:528] == TAPE_MARKER + b"HDR1"
    assert data[528:545] == b"HELLO.TXT        "
    assert data[1040:1044] == DATA_MARKER
    # Data blocks
    assert data[1044:1048] == TAPE_MARKER
    assert data[1048:1560] == content[:512]
    assert data[1568:1656] == content[512:]
    assert data[1656:2080] == bytes(424)
    assert data[2084:2088] == DATA_MARKER
    # File trailer
    assert data[2088:2096] == TAPE_MARKER + b"EOF1"
    assert data[2146:2152] == b"000002"
    assert data[2608:2620] == DATA_MARKER * 3


def test_read_write():
    fs = new_tape()
    fs.write_bytes("hello.txt", TEXT[:600], date(1990, 2, 1))
    l = list(fs.entries_list)
    assert len(l) == 1
    entry = l[0]
    assert entry.fullname == "HELLO.TXT"
    assert entry.sequence == 1
    assert entry.blocks == 2
    assert entry.get_length() == 2
    assert entry.get_size() == 1024
    assert entry.creation_date == date(1990, 2, 1)
    assert not entry.sequence_mismatch
    assert not entry.trailer_mismatch
    assert not entry.truncated
    # The last block is zero padded
    x = fs.read_bytes("hello.txt")
    assert len(x) == 1024
    assert x[:600] == TEXT[:600]
    assert x[600:] == bytes(424)
    assert x.rstrip(b"\0") == TEXT[:600]

    f = fs.open_file("HELLO.TXT")
    assert f.read(10) == TEXT[:10]
    assert f.read(10) == TEXT[10:20]
    f.close()
    with pytest.raises(OSError):
        f.write(b"x")


def test_multiple_files():
    fs = new_tape()
    fs.write_bytes("1.txt", TEXT[:10])
    fs.write_bytes("2.txt", TEXT)
    fs.write_bytes("empty.dat", b"")
    fs.write_bytes("3.txt", TEXT[:BLOCK_SIZE])
    l = list(fs.entries_list)
    assert [x.fullname for x in l] == ["1.TXT", "2.TXT", "EMPTY.DAT", "3.TXT"]
    assert [x.header.sequence for x in l] == [1, 2, 3, 4]
    assert [x.blocks for x in l] == [1, 9, 0, 1]
    assert fs.read_bytes("EMPTY.DAT") == b""
    assert fs.read_bytes("3.TXT") == TEXT[:BLOCK_SIZE]
    assert fs.read_bytes("2.txt").rstrip(b"\0") == TEXT
    assert [x.fullname for x in fs.filter_entries_list("*.txt")] == ["1.TXT", "2.TXT", "3.TXT"]
    assert fs.exists("2.TXT")
    assert not fs.exists("4.TXT")
    with pytest.raises(FileNotFoundError):
        fs.get_file_entry("4.TXT")

    writer = fs.open_writer()
    assert writer.sequence == 4
    writer.close()


def test_duplicate_files():
    fs = new_tape()
    fs.write_bytes("dup.txt", b"first")
    fs.write_bytes("dup.txt", b"second")
    assert len(list(fs.entries_list)) == 2
    # The last copy wins
    entry = fs.get_file_entry("DUP.TXT")
    assert entry.sequence == 2
    assert fs.read_bytes("dup.txt").rstrip(b"\0") == b"second"


def test_dir(capsys):
    fs = new_tape()
    fs.write_bytes("hello.txt", TEXT[:600], date(1990, 2, 1))
    capsys.readouterr()
    fs.dir()
    captured = capsys.readouterr()
    lines = captured.out.splitlines()
    assert lines[0] == "RT11 TAPE  'D%B' 'test      ' V1 Label V3"
    assert "FILE NAME" in lines[1]
    assert lines[3].split() == ["HELLO.TXT", "01-Feb-90", "2", "1024"]
    assert "  1 FILES  2 BLOCKS  1024 BYTES" in lines
    assert "END OF TAPE" in lines
    assert "unexpected (missing EOF record)" not in lines
    # Verbose
    fs.dir(verbose=2)
    captured = capsys.readouterr()
    assert "File Identifier:    HELLO.TXT" in captured.out
    assert "HDR1HELLO.TXT" in captured.out


def test_empty_tape_dir(capsys):
    fs = new_tape()
    fs.dir()
    captured = capsys.readouterr()
    assert "FILE NAME" not in captured.out
    assert "  0 FILES  0 BLOCKS  0 BYTES" in captured.out


def test_reopen_and_append(tmp_path):
    filename = str(tmp_path / "test.tap")
    fs = RT11TapeFilesystem.mount(NativeFile(filename, create=True))
    fs.initialize(label="test", size=64 * 1024)
    fs.write_bytes("1.txt", TEXT[:100])
    fs.close()
    assert os.path.getsize(filename) == 64 * 1024

    fs = RT11TapeFilesystem.mount(NativeFile(filename))
    fs.write_bytes("2.txt", TEXT[:200])
    l = list(fs.entries_list)
    assert [x.fullname for x in l] == ["1.TXT", "2.TXT"]
    assert l[1].header.sequence == 2
    assert fs.read_bytes("1.TXT").rstrip(b"\0") == TEXT[:100]
    fs.close()


def test_sequence_mismatch(capsys):
    fs = raw_tape()
    raw_file(fs, FileLabel.new("ONE.TXT", 1, b" 90032"), TEXT[:100])
    raw_file(fs, FileLabel.new("TWO.TXT", 5, b" 90032"), TEXT[:100])
    fs.tape_write_mark()
    fs.tape_write_mark()
    l = list(fs.entries_list)
    assert len(l) == 2
    assert not l[0].sequence_mismatch
    assert l[1].sequence_mismatch
    assert l[1].sequence == 2
    assert l[1].header.sequence == 5
    captured = capsys.readouterr()
    assert "?DECTAPE-W-Invalid file seq number in header - 2 vs 5" in captured.out
    assert fs.read_bytes("TWO.TXT").rstrip(b"\0") == TEXT[:100]


def test_trailer_mismatch(capsys):
    fs = raw_tape()
    header = FileLabel.new("ONE.TXT", 1, b" 90032")
    raw_file(fs, header, TEXT[:100], trailer=header.trailer(7))
    raw_file(fs, FileLabel.new("TWO.TXT", 2, b" 90032"), TEXT[:100])
    fs.tape_write_mark()
    fs.tape_write_mark()
    l = list(fs.entries_list)
    assert len(l) == 2
    assert l[0].trailer_mismatch
    assert not l[1].trailer_mismatch
    assert l[0].blocks == 1
    assert l[0].trailer.block_count == 7

    # The mismatch is reported below the file row
    fs.dir()
    lines = capsys.readouterr().out.splitlines()
    rows = [i for i, line in enumerate(lines) if line.startswith("  ONE.TXT") or line.startswith("  TWO.TXT")]
    assert len(rows) == 2
    assert lines[rows[0] + 1] == '    *EOF HEADER MISMATCH* "ONE.TXT          "  000007'
    assert rows[1] == rows[0] + 2
    assert len([line for line in lines if "*EOF HEADER MISMATCH*" in line]) == 1

    assert fs.validate()
    captured = capsys.readouterr()
    assert captured.out == '    *EOF HEADER MISMATCH* "ONE.TXT          "  000007\n** TAPE VALIDATED **\n'


def test_missing_volume_header(capsys):
    fs = raw_tape(volume=False)
    raw_file(fs, FileLabel.new("ONE.TXT", 1, b" 90032"), TEXT[:100])
    raw_file(fs, FileLabel.new("TWO.TXT", 2, b" 90032"), TEXT[:600])
    fs.tape_write_mark()
    fs.tape_write_mark()
    l = list(fs.entries_list)
    assert fs.volume is None
    assert [x.fullname for x in l] == ["ONE.TXT", "TWO.TXT"]
    assert l[0].tape_pos == 0
    assert [x.blocks for x in l] == [1, 2]
    fs.dir()
    captured = capsys.readouterr()
    assert captured.out.startswith("** NO TAPE HEADER **\n")
    assert "  2 FILES  3 BLOCKS  1536 BYTES" in captured.out


def test_unexpected_end_of_tape(capsys):
    fs = raw_tape()
    raw_file(fs, FileLabel.new("ONE.TXT", 1, b" 90032"), TEXT[:100])
    raw_file(fs, FileLabel.new("TWO.TXT", 2, b" 90032"), TEXT[:100], eof=False)
    l = list(fs.entries_list)
    assert len(l) == 2
    assert fs.truncated
    assert not l[0].truncated
    assert l[1].truncated
    assert l[1].blocks == 1
    captured = capsys.readouterr()
    assert '?DECTAPE-W-Unexpected end of tape, missing EOF record, file "TWO.TXT"' in captured.out

    fs.dir()
    captured = capsys.readouterr()
    assert "unexpected (missing EOF record)" in captured.out

    assert not fs.validate()
    captured = capsys.readouterr()
    assert "** TAPE NOT VALIDATED **" in captured.out

    with pytest.raises(TapeError):
        fs.open_writer()


def test_validate(capsys):
    fs = new_tape()
    fs.write_bytes("hello.txt", TEXT)
    capsys.readouterr()
    assert fs.validate()
    captured = capsys.readouterr()
    assert captured.out == "** TAPE VALIDATED **\n"


def test_bad_volume_header(capsys):
    fs = RT11TapeFilesystem.mount(io.BytesIO())
    fs.tape_write_record(b"XXX1".ljust(BLOCK_SIZE, b" "))
    fs.tape_write_mark()
    with pytest.raises(LabelMismatch) as ex:
        list(fs.entries_list)
    assert ex.value.position == 0
    assert ex.value.exit_code == 4
    assert str(ex.value).startswith("?DECTAPE-F-Bad volume header")
    with pytest.raises(LabelMismatch):
        fs.validate()
    captured = capsys.readouterr()
    assert "** TAPE NOT VALIDATED **" in captured.out


def test_empty_image():
    fs = RT11TapeFilesystem.mount(io.BytesIO())
    with pytest.raises(FramingError):
        list(fs.entries_list)


def test_bad_file_header():
    fs = raw_tape()
    fs.tape_write_record(b"FOO1".ljust(BLOCK_SIZE, b" "))
    fs.tape_write_mark()
    with pytest.raises(LabelMismatch) as ex:
        list(fs.entries_list)
    assert ex.value.position == RECORD_SIZE


def test_bad_eof_header():
    fs = raw_tape()
    header = FileLabel.new("ONE.TXT", 1, b" 90032")
    raw_file(fs, header, TEXT[:100], trailer=header)
    with pytest.raises(LabelMismatch) as ex:
        list(fs.entries_list)
    assert "Invalid EOF header" in str(ex.value)


def test_missing_data_marker():
    fs = raw_tape()
    fs.tape_write_record(FileLabel.new("ONE.TXT", 1, b" 90032").to_bytes())
    fs.tape_write_record(TEXT[:BLOCK_SIZE])
    with pytest.raises(FramingError) as ex:
        list(fs.entries_list)
    assert ex.value.position == 2 * RECORD_SIZE
    assert ex.value.exit_code == 3


def test_extract(tmp_path):
    fs = new_tape()
    fs.write_bytes("hello.txt", TEXT[:600], date(1990, 2, 1))
    fs.write_bytes("leap.txt", TEXT[:10], date(2000, 2, 29))
    fs.write_bytes("empty", b"")
    target = NativeFilesystem(str(tmp_path))
    assert fs.extract(target) == 3

    x = (tmp_path / "HELLO.TXT").read_bytes()
    assert len(x) == 1024
    assert x[:600] == TEXT[:600]
    assert x[600:] == bytes(424)
    assert (tmp_path / "EMPTY").read_bytes() == b""
    mtime = datetime.fromtimestamp(os.stat(tmp_path / "HELLO.TXT").st_mtime)
    assert mtime.date() == date(1990, 2, 1)
    mtime = datetime.fromtimestamp(os.stat(tmp_path / "LEAP.TXT").st_mtime)
    assert mtime.date() == date(2000, 2, 29)


def test_extract_overwrite(tmp_path, capsys):
    fs = new_tape()
    fs.write_bytes("hello.txt", TEXT[:600], date(1990, 2, 1))
    target = NativeFilesystem(str(tmp_path))
    path = tmp_path / "HELLO.TXT"

    # Existing files are skipped
    path.write_bytes(b"old")
    assert fs.extract(target) == 0
    assert path.read_bytes() == b"old"
    captured = capsys.readouterr()
    assert "?DECTAPE-W-Skipping HELLO.TXT" in captured.out

    # Declined
    questions = []

    def decline(message):
        questions.append(message)
        return False

    assert fs.extract(target, confirm=decline) == 0
    assert path.read_bytes() == b"old"
    assert len(questions) == 1

    # Confirmed
    assert fs.extract(target, confirm=lambda message: True) == 1
    assert path.read_bytes()[:600] == TEXT[:600]

    # Overwrite without asking
    path.write_bytes(b"old")
    assert fs.extract(target, overwrite=True, confirm=decline) == 1
    assert path.read_bytes()[:600] == TEXT[:600]
    assert len(questions) == 1


class FailingStream(io.BytesIO):
    fail = False

    def write(self, data):
        if self.fail:
            raise OSError(28, "No space left on device")
        return super().write(data)


def test_writer_corrupted():
    f = FailingStream()
    fs = RT11TapeFilesystem.mount(f)
    fs.initialize(label="test", size=64 * 1024)
    fs.write_bytes("1.txt", TEXT[:100])
    before = f.getvalue()

    writer = fs.open_writer()
    f.fail = True
    with pytest.raises(OSError):
        writer.append_file("2.txt", TEXT)
    assert writer.corrupted
    f.fail = False
    with pytest.raises(OSError):
        writer.append_file("3.txt", TEXT)
    writer.close()
    assert f.getvalue() == before
    assert [x.fullname for x in fs.entries_list] == ["1.TXT"]

    with pytest.raises(ValueError):
        writer.append_file("4.txt", TEXT)


def test_examine(capsys):
    fs = new_tape()
    fs.write_bytes("hello.txt", TEXT[:600], date(1990, 2, 1))
    capsys.readouterr()
    fs.examine()
    captured = capsys.readouterr()
    assert "LABEL:              HDR1" in captured.out
    assert "LABEL:              EOF1" in captured.out
    assert "Tape Position:      520" in captured.out
    assert "Data Position:      1044" in captured.out

    fs.examine("hello.txt")
    captured = capsys.readouterr()
    assert "BLOCK NUMBER   00000000" in captured.out
    assert "BLOCK NUMBER   00000001" in captured.out
    assert "BLOCK NUMBER   00000002" not in captured.out


def test_writer_invalid_date():
    fs = new_tape()
    writer = fs.open_writer()
    with pytest.raises(ValueError):
        writer.append_file("old.txt", b"x", date(1850, 1, 1))
    assert not writer.corrupted
    assert writer.sequence == 0
    writer.append_file("new.txt", b"y")
    writer.close()

    l = list(fs.entries_list)
    assert [x.fullname for x in l] == ["NEW.TXT"]
    assert l[0].sequence == 1
    assert l[0].header.sequence == 1
    assert l[0].trailer.sequence == 1
    assert not l[0].sequence_mismatch


def test_writer_invalid_filename():
    fs = new_tape()
    fs.write_bytes("1.txt", TEXT[:100])
    before = fs.f.getvalue()
    writer = fs.open_writer()
    for filename in (".profile", "   ", "", " .txt"):
        with pytest.raises(ValueError):
            writer.append_file(filename, TEXT[:100])
    assert not writer.corrupted
    assert writer.sequence == 1
    writer.close()
    assert fs.f.getvalue() == before
    with pytest.raises(ValueError):
        fs.write_bytes(".profile", TEXT[:100])
    assert [x.fullname for x in fs.entries_list] == ["1.TXT"]
