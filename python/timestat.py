#!/usr/bin/env python3
"""
Name: timestat
Description: display and set file time stamps
Author: John Taylor (Original Author)
License: MIT
"""

import sys
import os
import re
import glob
import argparse
from collections import namedtuple
from datetime import datetime

PROGRAM = 'timestat'
DESCRIPTION = 'Display and set file time stamps'
VERSION = '1.1.0'
HOMEPAGE = 'https://github.com/jftuga/gostat'
LICENSE_URL = 'https://github.com/jftuga/gostat/blob/main/LICENSE'

# --- Exit Codes ---
EX_SUCCESS = 0
EX_FAILURE = 1

# --- Operations ---
OP_ACCESS = 'a'
OP_MODIFY = 'm'
OP_BOTH = 'b'

TIME_FORMAT_HELP = 'YYYYMMDD.HHMMSS'
TIMESTAMP_RE = re.compile(r'[0-9]{8}\.[0-9]{6}')

# The result of processing one file in a batch; error is None on success.
FileResult = namedtuple('FileResult', ['path', 'times', 'error'])


class TimestampFormatError(ValueError):
    """Raised when a time stamp is not a valid YYYYMMDD.HHMMSS value."""


def warn(err, message):
    print(f"{PROGRAM}: {message}", file=err)


# --- Path resolution ---

def bad_pattern(pattern: str) -> bool:
    """True if the pattern opens a '[' character class it never closes."""
    i = 0
    while i < len(pattern):
        if pattern[i] == '[':
            # A ']' directly after '[' (or '[!') is part of the class.
            j = i + 1
            if j < len(pattern) and pattern[j] == '!':
                j += 1
            if j < len(pattern) and pattern[j] == ']':
                j += 1
            close = pattern.find(']', j)
            if close == -1:
                return True
            i = close
        i += 1
    return False


def expand_globs(patterns, err=sys.stderr) -> list:
    """
    Expands each pattern into the files it matches. A pattern that matches
    nothing is kept as a literal file name if such a file exists, which
    covers names containing glob metacharacters. Malformed patterns are
    reported and skipped. Results are not deduplicated.
    """
    all_files = []
    for pattern in patterns:
        if bad_pattern(pattern):
            warn(err, f"glob error: {pattern}: unbalanced brackets")
            continue

        matches = glob.glob(pattern, include_hidden=True)
        if matches:
            all_files.extend(matches)
        elif os.path.exists(pattern):
            all_files.append(pattern)
    return all_files


# --- Reading ---

def get_file_times(path, err=sys.stderr) -> dict:
    """
    Returns the time stamps of a single file as nanoseconds since the epoch.

    'access' and 'modify' are always present on success. 'change' and
    'birth' are only present when the platform and filesystem report them
    for this file. An empty dict means the file could not be stat'ed.
    """
    try:
        stats = os.stat(path)
    except OSError as e:
        warn(err, f"{path}: {e.strerror}")
        return {}

    times = {'access': stats.st_atime_ns, 'modify': stats.st_mtime_ns}

    # On Windows st_ctime is the creation time, not the inode change time.
    if os.name == 'posix':
        times['change'] = stats.st_ctime_ns

    birth = getattr(stats, 'st_birthtime_ns', None)
    if birth is None and hasattr(stats, 'st_birthtime'):
        birth = int(stats.st_birthtime * 1_000_000_000)
    # Filesystems without birth time report zero (or -1 on some BSDs).
    if birth is not None and birth > 0:
        times['birth'] = birth
    return times


# --- Parsing ---

def parse_timestamp(time_str: str) -> datetime:
    """
    Parses a YYYYMMDD.HHMMSS time stamp into an aware datetime in the
    local time zone.
    """
    if not isinstance(time_str, str) or not TIMESTAMP_RE.fullmatch(time_str):
        raise TimestampFormatError(f"invalid time stamp: {time_str}")

    try:
        dt = datetime(
            int(time_str[0:4]), int(time_str[4:6]), int(time_str[6:8]),
            int(time_str[9:11]), int(time_str[11:13]), int(time_str[13:15]),
        )
        # Near year 1 and year 9999 the local offset can push the value out of range.
        return dt.astimezone()
    except (ValueError, OverflowError) as e:
        raise TimestampFormatError(f"invalid time stamp: {time_str}: {e}") from e


def to_ns(dt: datetime) -> int:
    return int(dt.timestamp()) * 1_000_000_000


# --- Display ---

def format_with_commas(n: int) -> str:
    return f"{n:,}"


def format_time(ns: int) -> str:
    seconds, remainder = divmod(ns, 1_000_000_000)
    dt = datetime.fromtimestamp(seconds).astimezone()
    return dt.strftime('%Y-%m-%d %H:%M:%S') + f".{remainder:09d} " + dt.strftime('%z %Z')


def show_file_times(files, out=sys.stdout, err=sys.stderr) -> int:
    """
    Prints the name, size and time stamps of each file. Returns the number
    of files that could be stat'ed.
    """
    count = 0
    for path in files:
        print(f"name  : {path}", file=out)
        try:
            size = os.stat(path).st_size
        except OSError as e:
            warn(err, f"{path}: {e.strerror}")
            continue
        count += 1
        print(f"size  : {format_with_commas(size)}", file=out)

        times = get_file_times(path, err)
        if 'birth' in times:
            print(f"btime : {format_time(times['birth'])}", file=out)
        if 'change' in times:
            print(f"ctime : {format_time(times['change'])}", file=out)
        if times:
            print(f"mtime : {format_time(times['modify'])}", file=out)
            print(f"atime : {format_time(times['access'])}", file=out)
        print(file=out)
    return count


# --- Writing ---

def compute_times(current: dict, new_ns: int, op: str) -> tuple:
    """Returns the (atime, mtime) pair to write for the given operation."""
    if op == OP_ACCESS:
        return new_ns, current['modify']
    if op == OP_MODIFY:
        return current['access'], new_ns
    if op == OP_BOTH:
        return new_ns, new_ns
    raise ValueError(f"invalid op: {op}")


class BatchSummary(list):
    """The FileResults of one batch, in processing order."""

    @property
    def succeeded(self):
        return [r for r in self if r.error is None]

    @property
    def failed(self):
        return [r for r in self if r.error is not None]


class TimeSetter:
    """
    Sets the access and/or modification time of a batch of files. A file
    that cannot be updated is reported and skipped; the rest of the batch
    is still processed.
    """
    def __init__(self, out=sys.stdout, err=sys.stderr):
        self.out = out
        self.err = err

    def apply(self, files, new_time: datetime, op: str) -> BatchSummary:
        new_ns = to_ns(new_time)
        summary = BatchSummary()
        for path in files:
            summary.append(self._apply_one(path, new_ns, op))
        return summary

    def _apply_one(self, path, new_ns, op):
        current = get_file_times(path, self.err)
        if not current:
            return FileResult(path, current, "could not read time stamps")

        atime, mtime = compute_times(current, new_ns, op)
        try:
            os.utime(path, ns=(atime, mtime))
        except OSError as e:
            warn(self.err, f"{path}: cannot set times: {e.strerror}")
            return FileResult(path, current, e.strerror)
        except (ValueError, OverflowError) as e:
            # The filesystem cannot represent the requested time.
            warn(self.err, f"{path}: cannot set times: {e}")
            return FileResult(path, current, str(e))

        show_file_times([path], self.out, self.err)
        return FileResult(path, get_file_times(path, self.err), None)


def set_file_times(patterns, time_str, op, out=sys.stdout, err=sys.stderr) -> BatchSummary:
    """Parses time_str once, then applies it to every file the patterns match."""
    new_time = parse_timestamp(time_str)
    return TimeSetter(out, err).apply(expand_globs(patterns, err), new_time, op)


# --- Command line ---

def show_version(err=sys.stderr):
    print(PROGRAM, file=err)
    print(DESCRIPTION, file=err)
    print(f"version: {VERSION}", file=err)
    print(f"homepage: {HOMEPAGE}", file=err)
    print(f"license: {LICENSE_URL}", file=err)
    print(file=err)


def build_parser():
    parser = argparse.ArgumentParser(
        prog=PROGRAM,
        description=DESCRIPTION,
        usage="%(prog)s [-v] [-a | -m | -b TIMESTAMP] file..."
    )
    parser.add_argument('-v', action='store_true', help='Show program version and then exit.')
    parser.add_argument('-a', metavar='TIMESTAMP', help=f'Set file access time, format: {TIME_FORMAT_HELP}')
    parser.add_argument('-m', metavar='TIMESTAMP', help=f'Set file modify time, format: {TIME_FORMAT_HELP}')
    parser.add_argument('-b', metavar='TIMESTAMP', help=f'Set both access and modify time, format: {TIME_FORMAT_HELP}')
    parser.add_argument('files', nargs='*', help='Files or glob patterns.')
    return parser


def main(argv=None, out=sys.stdout, err=sys.stderr) -> int:
    """Parses arguments and displays or sets file time stamps."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.v:
        show_version(err)
        return EX_SUCCESS

    if not args.files:
        parser.print_help(err)
        return EX_FAILURE

    # Empty strings count as unset, the same as an absent flag.
    requested = [(op, value) for op, value in
                 ((OP_ACCESS, args.a), (OP_MODIFY, args.m), (OP_BOTH, args.b)) if value]
    if len(requested) > 1:
        warn(err, "-a, -m, and -b are all mutually exclusive")
        return EX_FAILURE

    if requested:
        op, time_str = requested[0]
        try:
            set_file_times(args.files, time_str, op, out, err)
        except TimestampFormatError:
            warn(err, f"invalid time stamp: {time_str}")
            print(f"Please use: {TIME_FORMAT_HELP}", file=err)
            return EX_FAILURE
        return EX_SUCCESS

    count = show_file_times(expand_globs(args.files, err), out, err)
    if count == 0:
        warn(err, f"'{' '.join(args.files)}' did not match any files")
        return EX_FAILURE
    return EX_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
