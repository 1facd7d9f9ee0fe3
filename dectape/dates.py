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

"""
Magtape label dates

The creation date is stored in 6 ASCII characters as 'cYYddd'
where 'c' is a space (1900) or the number of centuries since 1900,
'YY' is the year in the century and 'ddd' is the day in the year
(1 = January 1st).
"""

import typing as t
from datetime import date

__all__ = [
    "MONTH_NAMES",
    "date_to_tape",
    "decode_tape_date",
    "encode_tape_date",
    "format_tape_date",
    "is_leap_year",
    "tape_to_date",
    "to_calendar_date",
    "to_day_of_year",
]

MONTH_NAMES = ["???", "Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

# First day in the year of each month (1-based month, index 0 is unused)
DAYS = [0, 1, 32, 60, 91, 121, 152, 182, 213, 244, 274, 305, 335]
DAYS_LEAP = [0, 1, 32, 61, 92, 122, 153, 183, 214, 245, 275, 306, 336]


def _digit(ch: int) -> int:
    return ch - 0x30 if 0x30 <= ch <= 0x39 else 0


def is_leap_year(year: int) -> bool:
    return (year % 400) == 0 or ((year % 4) == 0 and (year % 100) != 0)


def _days_table(year: int) -> t.List[int]:
    return DAYS_LEAP if is_leap_year(year) else DAYS


def decode_tape_date(val: bytes) -> t.Tuple[int, int]:
    """
    Decode a packed date into (year, day of year)
    """
    val = val[:6].ljust(6, b" ")
    year = 1900 + 100 * _digit(val[0])
    year += 10 * _digit(val[1]) + _digit(val[2])
    day_of_year = 100 * _digit(val[3]) + 10 * _digit(val[4]) + _digit(val[5])
    return year, day_of_year


def encode_tape_date(year: int, day_of_year: int) -> bytes:
    """
    Encode (year, day of year) as packed date
    """
    if not 1900 <= year <= 2899:
        raise ValueError(f"Year {year} out of range")
    century = (year - 1900) // 100
    prefix = str(century) if century else " "
    return f"{prefix}{year % 100:02d}{day_of_year:03d}".encode("ascii")


def to_calendar_date(year: int, day_of_year: int) -> t.Tuple[int, int]:
    """
    Convert day of year to (month, day)
    """
    days = _days_table(year)
    month = 1
    while month < 12 and days[month + 1] <= day_of_year:
        month += 1
    return month, day_of_year - days[month] + 1


def to_day_of_year(year: int, month: int, day: int) -> int:
    """
    Convert (month, day) to day of year
    """
    if not 1 <= month <= 12:
        return 0
    return _days_table(year)[month] + day - 1


def format_tape_date(val: bytes) -> str:
    """
    Format a packed date as DD-Mon-YY
    """
    year, day_of_year = decode_tape_date(val)
    month, day = to_calendar_date(year, day_of_year)
    return f"{day % 100:02d}-{MONTH_NAMES[month]}-{year % 100:02d}"


def tape_to_date(val: bytes) -> t.Optional[date]:
    """
    Translate packed date to Python date
    """
    year, day_of_year = decode_tape_date(val)
    month, day = to_calendar_date(year, day_of_year)
    try:
        return date(year, month, day)
    except ValueError:
        return None


def date_to_tape(d: t.Optional[date]) -> bytes:
    """
    Translate Python date to packed date
    """
    if d is None:
        return b"      "
    return encode_tape_date(d.year, to_day_of_year(d.year, d.month, d.day))
