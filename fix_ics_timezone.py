#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# fix_ics_timezone.py - bind bare DTSTART/DTEND lines to the calendar's TZID
# Usage:
#   python3 fix_ics_timezone.py <INPUT_PATH> <OUTPUT_PATH>
#
import logging
import re
import sys

log = logging.getLogger(__name__)

TZID_RE = re.compile(r'^TZID:(.*)$', re.MULTILINE)
# Only the bare form; lines that already carry parameters are left alone.
BARE_DT_RE = re.compile(r'^DT(START|END):', re.MULTILINE)


class TimezoneError(ValueError):
    """The document does not declare exactly one TZID line."""


class NoTimezoneError(TimezoneError):
    def __init__(self):
        super().__init__("no timezone found, using none")


class MultipleTimezonesError(TimezoneError):
    def __init__(self, found):
        super().__init__("multiple timezones found, using none")
        self.found = found


def find_timezone(ics: str) -> str:
    """Return the value of the single `TZID:` line in the document."""
    matches = TZID_RE.findall(ics)
    if not matches:
        raise NoTimezoneError()
    if len(matches) > 1:
        raise MultipleTimezonesError(matches)
    tzid = matches[0]
    # in case file is in DOS format
    if tzid.endswith('\r'):
        tzid = tzid[:-1]
    return tzid


def normalize(ics: str) -> str:
    """
    Rewrite `DTSTART:`/`DTEND:` to `DTSTART;TZID=<tz>:`/`DTEND;TZID=<tz>:`.
    Anything that is not a bare DTSTART/DTEND prefix is kept byte for byte.
    Returns the input unchanged when the timezone is missing or ambiguous.
    """
    try:
        tzid = find_timezone(ics)
    except TimezoneError as e:
        log.warning("%s", e)
        return ics

    # tzid goes in as written, no escaping or quoting
    return BARE_DT_RE.sub(lambda m: f"DT{m.group(1)};TZID={tzid}:", ics)


def main():
    if len(sys.argv) != 3:
        print("Usage: python3 fix_ics_timezone.py <INPUT_PATH> <OUTPUT_PATH>", file=sys.stderr)
        sys.exit(1)

    input_file, output_file = sys.argv[1], sys.argv[2]

    # newline='' keeps CRLF as it is on both sides
    with open(input_file, 'r', encoding='utf-8', errors='ignore', newline='') as f:
        ics_data = f.read()

    try:
        print(f"Timezone: {find_timezone(ics_data)}")
    except TimezoneError as e:
        print(f"WARNING: {e}", file=sys.stderr)

    with open(output_file, 'w', encoding='utf-8', newline='') as f:
        f.write(normalize(ics_data))

    print(f"Wrote {output_file}")


if __name__ == "__main__":
    main()
