#!/usr/bin/env python
"""
Convert an Opera notes archive (notes.adr) into Tomboy notes.

Writes one <uid>.note file per note into the output directory.

Features:
  - Opera folders become Tomboy tags (or notebooks with --tags-to-notebooks)
  - Skips notes in the trash folder unless --export-trash is given
  - Optional default tag added to every exported note
  - Multi-line note text preserved inside <note-content>
"""

from __future__ import annotations

import argparse
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from bs4 import BeautifulSoup
from loguru import logger


NO_TITLE = "<no-title>"
NOTEBOOK_PREFIX = "system:notebook:"

# Opera separates title and paragraphs in NAME values with byte 2
FIELD_SEPARATOR = "\x02"
PARAGRAPH_SEPARATOR = FIELD_SEPARATOR * 2

MAX_UNIX_TIME = 0xFFFFFFFF
UNIX_TIME_RE = re.compile(r"[0-9]+")

TOMBOY_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"
MISSING_DATE = datetime(1970, 1, 1)


# --------------------------------------------------------------------------- #
# Configuration
# --------------------------------------------------------------------------- #
@dataclass
class Options:
    """Resolved settings for one conversion run."""

    input: Path
    output: Path
    default_tag: str = ""
    export_trash: bool = False
    convert_tags_to_notebooks: bool = False


class AdrFormatError(ValueError):
    """Raised when the .adr input cannot be interpreted."""

    def __init__(self, message: str, line_num: int = 0) -> None:
        if line_num:
            message = f"Line {line_num}: {message}"
        super().__init__(message)
        self.line_num = line_num


# --------------------------------------------------------------------------- #
# Helper: XML escaping
# --------------------------------------------------------------------------- #
XML_ESCAPES = {
    "&": "&amp;",
    '"': "&quot;",
    "'": "&apos;",
    "<": "&lt;",
    ">": "&gt;",
}


def escape_xml(text: str) -> str:
    """
    Escape text for use in XML character data and attribute values.

    Only the five predefined entities are produced; every other character is
    copied unchanged.
    """
    return "".join(XML_ESCAPES.get(ch, ch) for ch in text)


# --------------------------------------------------------------------------- #
# Note record
# --------------------------------------------------------------------------- #
@dataclass
class Note:
    """One note from the Opera archive."""

    title: str = NO_TITLE
    text: str = ""
    tags: List[str] = field(default_factory=list)
    created: Optional[datetime] = None
    uid: str = ""

    def add_tag(self, tag: str) -> None:
        self.tags.append(tag)

    def set_created_from_unix_time(self, seconds: int) -> None:
        """Store a Unix timestamp as naive local time."""
        self.created = datetime.fromtimestamp(seconds)


# --------------------------------------------------------------------------- #
# Helper: split a .adr line into property name and value
# --------------------------------------------------------------------------- #
def split_property(line: str) -> Tuple[str, str]:
    """
    Split ``[\\t]NAME=VALUE`` into ``(NAME, VALUE)``.

    A line without ``=`` is all name with an empty value. Only the first
    ``=`` separates; later ones belong to the value.
    """
    line = line.rstrip("\r\n")
    if line.startswith("\t"):
        line = line[1:]
    name, _, value = line.partition("=")
    return name, value


def parse_folder_name(value: str) -> str:
    return value.split(FIELD_SEPARATOR, 1)[0]


def parse_note_title(value: str) -> str:
    """Return the text before the first separator, or NO_TITLE."""
    title, sep, _ = value.partition(FIELD_SEPARATOR)
    if not sep or not title:
        return NO_TITLE
    return title


def parse_note_text(value: str) -> str:
    """
    Return the note body with paragraph separators turned into newlines.

    When the value carries a title, the body starts after the separator
    (single or paired) that ends it. A lone separator left in the body also
    becomes a newline, byte 2 not being allowed in XML.
    """
    _, sep, rest = value.partition(FIELD_SEPARATOR)
    if not sep:
        body = value
    elif rest.startswith(FIELD_SEPARATOR):
        body = rest[1:]
    else:
        body = rest
    body = body.replace(PARAGRAPH_SEPARATOR, "\n")
    return body.replace(FIELD_SEPARATOR, "\n")


def parse_unix_time(value: str, line_num: int = 0) -> int:
    """
    Parse a CREATED value as an unsigned 32-bit Unix timestamp.

    :raises AdrFormatError: If the value is not a decimal number in range.
    """
    if not UNIX_TIME_RE.fullmatch(value):
        raise AdrFormatError(f"Invalid CREATED value: {value!r}", line_num)
    seconds = int(value)
    if seconds > MAX_UNIX_TIME:
        raise AdrFormatError(f"CREATED value out of range: {value}", line_num)
    return seconds


# --------------------------------------------------------------------------- #
# Line parser
# --------------------------------------------------------------------------- #
@dataclass
class ParserState:
    """Everything the parser carries from one line to the next."""

    folder_name: str = ""
    in_folder: bool = False
    in_trash: bool = False
    notes: List[Note] = field(default_factory=list)
    current: Optional[Note] = None
    malformed_lines: List[int] = field(default_factory=list)

    def start_note(self) -> Note:
        note = Note()
        self.notes.append(note)
        self.current = note
        self.in_folder = False
        return note


def _current_note(state: ParserState, prop: str, line_num: int) -> Optional[Note]:
    if state.current is None:
        state.malformed_lines.append(line_num)
        logger.error("Line {}: {} appears before any #NOTE, ignoring it", line_num, prop)
    return state.current


def process_line(state: ParserState, line: str, options: Options, line_num: int = 0) -> None:
    """
    Apply one .adr line to the parser state.

    :raises AdrFormatError: If a CREATED value is not a valid timestamp.
    """
    prop, value = split_property(line)

    if prop == "#FOLDER":
        state.in_folder = True
        state.in_trash = False
        return
    if prop == "TRASH FOLDER" and value == "YES":
        state.in_trash = True

    if state.in_trash and not options.export_trash:
        return

    if prop == "#NOTE":
        note = state.start_note()
        if options.default_tag:
            note.add_tag(options.default_tag)
        if state.folder_name:
            note.add_tag(state.folder_name)
        logger.debug("Line {}: new note (tags: {})", line_num, note.tags)

    elif prop == "UNIQUEID" and not state.in_folder:
        note = _current_note(state, prop, line_num)
        if note is not None:
            note.uid = value

    elif prop == "NAME":
        if state.in_folder:
            state.folder_name = parse_folder_name(value)
            logger.debug("Line {}: entering folder '{}'", line_num, state.folder_name)
            return
        note = _current_note(state, prop, line_num)
        if note is not None:
            note.title = parse_note_title(value)
            note.text = parse_note_text(value)

    elif prop == "CREATED":
        seconds = parse_unix_time(value, line_num)
        note = _current_note(state, prop, line_num)
        if note is not None:
            note.set_created_from_unix_time(seconds)


def parse_adr_lines(lines: Iterable[str], options: Options) -> List[Note]:
    """
    Parse .adr lines into notes, in the order they appear.

    :raises AdrFormatError: On an invalid CREATED value.
    """
    state = ParserState()
    for line_num, line in enumerate(lines, 1):
        process_line(state, line, options, line_num)
    if state.malformed_lines:
        logger.warning("Ignored {} malformed line(s)", len(state.malformed_lines))
    return state.notes


def read_adr_file(input_path: Path, options: Options) -> List[Note]:
    """
    Read and parse an Opera notes file.

    :raises OSError: If the file cannot be opened.
    :raises AdrFormatError: On an invalid CREATED value.
    """
    logger.info("Reading Opera notes file: {}", input_path)
    with open(input_path, encoding="utf-8", errors="replace", newline="\n") as fh:
        notes = parse_adr_lines(fh, options)
    logger.info("Extracted {} notes", len(notes))
    return notes


# --------------------------------------------------------------------------- #
# Tomboy rendering
# --------------------------------------------------------------------------- #
def format_tomboy_date(created: Optional[datetime]) -> str:
    """Render a creation time the way Tomboy stores it (no UTC offset)."""
    return (created or MISSING_DATE).strftime(TOMBOY_DATE_FORMAT)


def build_tomboy_note(note: Note, convert_tags_to_notebooks: bool = False) -> str:
    """
    Build the complete Tomboy XML document for one note.

    :param note: Parsed note.
    :param convert_tags_to_notebooks: Prefix tags so Tomboy shows them as notebooks.
    :return: XML text ending with a newline.
    """
    date = format_tomboy_date(note.created)
    prefix = NOTEBOOK_PREFIX if convert_tags_to_notebooks else ""

    lines = [
        '<note version="0.3" xmlns:link="http://beatniksoftware.com/tomboy/link"'
        ' xmlns:size="http://beatniksoftware.com/tomboy/size"'
        ' xmlns="http://beatniksoftware.com/tomboy">',
        f"\t<title>{escape_xml(note.title)}</title>",
        '\t<text xml:space="preserve"><note-content version="0.1">'
        f"{escape_xml(note.text)}</note-content></text>",
        f"\t<last-change-date>{date}</last-change-date>",
        f"\t<last-metadata-change-date>{date}</last-metadata-change-date>",
        f"\t<create-date>{date}</create-date>",
        "\t<tags>",
    ]
    lines.extend(f"\t\t<tag>{prefix}{escape_xml(tag)}</tag>" for tag in note.tags)
    lines.extend([
        "\t</tags>",
        "\t<cursor-position>0</cursor-position>",
        "\t<width>450</width>",
        "\t<height>360</height>",
        "\t<x>0</x>",
        "\t<y>0</y>",
        "\t<open-on-startup>False</open-on-startup>",
        "</note>",
    ])
    return "\n".join(lines) + "\n"


def read_tomboy_tags(xml_text: str, strip_notebook_prefix: bool = True) -> List[str]:
    """
    Return the tags of a Tomboy note, in document order.

    :param xml_text: Tomboy note XML.
    :param strip_notebook_prefix: Drop ``system:notebook:`` from notebook tags.
    """
    soup = BeautifulSoup(xml_text, "xml")
    tags = []
    for tag_elem in soup.find_all("tag"):
        tag = tag_elem.get_text()
        if strip_notebook_prefix and tag.startswith(NOTEBOOK_PREFIX):
            tag = tag[len(NOTEBOOK_PREFIX):]
        tags.append(tag)
    return tags


# --------------------------------------------------------------------------- #
# Writing
# --------------------------------------------------------------------------- #
def tomboy_files(notes: Iterable[Note], options: Options) -> List[Tuple[str, str]]:
    """
    Render every exportable note as a ``(filename, xml)`` pair.

    Notes without text are skipped quietly. Notes are skipped with an error
    when the UNIQUEID is missing or is not a plain file name (it names the
    file) or when the rendered tags do not read back unchanged.
    """
    files: List[Tuple[str, str]] = []
    for note in notes:
        if not note.text:
            logger.info("Skipping empty note '{}'", note.title)
            continue
        if not note.uid:
            logger.error("Failed to create note '{}': note has no UNIQUEID", note.title)
            continue
        if not is_safe_uid(note.uid):
            logger.error("Failed to create note '{}': UNIQUEID {!r} is not a plain file name", note.title, note.uid)
            continue
        xml_text = build_tomboy_note(note, options.convert_tags_to_notebooks)
        parsed_tags = read_tomboy_tags(xml_text, options.convert_tags_to_notebooks)
        if parsed_tags != note.tags:
            logger.error(
                "Failed to create note '{}': tags {} read back as {}", note.title, note.tags, parsed_tags
            )
            continue
        files.append((f"{note.uid}.note", xml_text))
    return files


def is_safe_uid(uid: str) -> bool:
    """True if ``<uid>.note`` stays inside the output directory."""
    return not any(ch in uid for ch in ("/", "\\", "\x00"))


def write_tomboy_files(files: Iterable[Tuple[str, str]], output_dir: Path) -> List[Path]:
    """
    Write rendered notes into ``output_dir``, overwriting existing files.

    A file that cannot be written is logged and skipped.

    :return: Paths that were written.
    """
    written: List[Path] = []
    for filename, content in files:
        out_path = output_dir / filename
        try:
            out_path.write_text(content, encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to create note {}: {}", out_path, exc)
            continue
        logger.debug("Wrote {}", out_path)
        written.append(out_path)
    return written


# --------------------------------------------------------------------------- #
# Main conversion
# --------------------------------------------------------------------------- #
def convert_adr_to_tomboy(options: Options) -> List[Path]:
    """
    Convert an Opera notes file into a directory of Tomboy notes.

    :param options: Resolved run settings.
    :return: Paths of the written .note files.
    :raises OSError: If the input cannot be read or the output directory created.
    :raises AdrFormatError: On an invalid CREATED value.
    """
    notes = read_adr_file(options.input, options)

    output_dir = Path(options.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    files = tomboy_files(notes, options)
    written = write_tomboy_files(files, output_dir)
    logger.info("Wrote {} of {} notes to {}", len(written), len(notes), output_dir)
    return written


# --------------------------------------------------------------------------- #
# CLI entry-point
# --------------------------------------------------------------------------- #
TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


def str_to_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise argparse.ArgumentTypeError(f"Expected a boolean, got {value!r}")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opera-to-tomboy",
        description="Convert Opera notes (notes.adr) into Tomboy .note files.",
    )
    parser.add_argument("input_pos", nargs="?", metavar="input", help="Opera notes file (.adr)")
    parser.add_argument("output_pos", nargs="?", metavar="output", help="Output folder for .note files")
    parser.add_argument("--input", help="Input file (same as the first positional argument)")
    parser.add_argument("--output", help="Output folder (same as the second positional argument)")
    parser.add_argument("--tag", default="", help="Tag which is added to all exported notes")
    parser.add_argument(
        "--export-trash",
        type=str_to_bool,
        nargs="?",
        const=True,
        default=False,
        help="If true, notes in the trash folder are exported too",
    )
    parser.add_argument(
        "--tags-to-notebooks",
        type=str_to_bool,
        nargs="?",
        const=True,
        default=False,
        help="If true, tags are converted to Tomboy notebooks",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug messages")
    return parser


def options_from_args(args: argparse.Namespace) -> Optional[Options]:
    """Merge positional and named arguments; None if input or output is missing."""
    input_path = args.input or args.input_pos
    output_path = args.output or args.output_pos
    if not input_path or not output_path:
        return None
    return Options(
        input=Path(input_path),
        output=Path(output_path),
        default_tag=args.tag,
        export_trash=args.export_trash,
        convert_tags_to_notebooks=args.tags_to_notebooks,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "INFO")

    options = options_from_args(args)
    if options is None:
        parser.print_help()
        return 1

    try:
        written = convert_adr_to_tomboy(options)
    except (OSError, AdrFormatError) as e:
        logger.error("Error: {}", e)
        return 1

    print(f"Success: {len(written)} notes written to {options.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
