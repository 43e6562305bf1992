"""Text extraction into document statistics.

Best-effort chain per file type:
1) PDF: `pypdf` page text, then `pdfplumber` when pypdf yields nothing
2) RTF: minimal control-word parser
3) OOXML: `python-docx`, `python-pptx` or `openpyxl`
4) ZIP office containers (ODF, or OOXML the libraries reject): tag-stripped
   XML members
5) legacy Office binaries: printable ASCII and UTF-16LE runs
6) raw bytes

Every failed attempt clears the statistics before the next one runs.
"""
from __future__ import annotations

import html
import io
import logging
import re
import threading
import zipfile
import zlib
from pathlib import Path
from typing import Iterable, Iterator

from matchtext.config import settings
from matchtext.core.statistics import DocumentStatistics
from matchtext.core.tokenizer import StatisticsTokenizer

logger = logging.getLogger(__name__)

_PDF_SIGNATURE = b"%PDF-"
_ZIP_SIGNATURE = b"PK"
_FLUSH_BYTES = 4096
_MIN_RUN_CHARS = 4

# Serialises PDF parsing in safe mode.
_pdf_lock = threading.Lock()

DOCX_LIKE = {".docx", ".docm", ".dotx", ".dotm"}
PPTX_LIKE = {".pptx", ".pptm", ".potx", ".potm", ".ppsx", ".ppsm"}
XLSX_LIKE = {".xlsx", ".xlsm", ".xltx", ".xltm"}
ODF_LIKE = {".odt", ".ods", ".odp"}
OOXML_LIKE = DOCX_LIKE | PPTX_LIKE | XLSX_LIKE
ZIP_OFFICE = OOXML_LIKE | ODF_LIKE
LEGACY_OFFICE = {".doc", ".dot", ".xls", ".xlt", ".ppt", ".pps", ".pot"}

ALLOWED_EXTENSIONS = frozenset({
    ".1", ".1p", ".3", ".3p", ".adoc", ".ads", ".adb", ".ada", ".ahk", ".as",
    ".asm", ".asciidoc", ".awk", ".bash", ".bas", ".bat", ".bib", ".c", ".c++",
    ".cc", ".cfg", ".cl", ".clj", ".cljc", ".cljs", ".cmake", ".cmd", ".cob",
    ".cbl", ".coffee", ".conf", ".cp", ".cpp", ".cppm", ".cs", ".csproj",
    ".csx", ".css", ".csv", ".cxx", ".d", ".dart", ".diff", ".doc", ".docm",
    ".docx", ".dot", ".dotm", ".dotx",
    ".dpr", ".dts", ".dtsi", ".edn", ".el", ".elm", ".erl", ".ex", ".exs",
    ".f", ".f03", ".f08", ".f77", ".f90", ".f95", ".fish", ".for", ".fs",
    ".fsi", ".fsproj", ".fsx", ".fpp", ".go", ".gql", ".gradle", ".groovy",
    ".gvy", ".gyp", ".gypi", ".h", ".h++", ".hxx", ".hh", ".hpp", ".hrl",
    ".hs", ".htm", ".html", ".idl", ".inc", ".inl", ".ini", ".ipp", ".ipynb",
    ".ixx", ".java", ".jl", ".js", ".json", ".jsx", ".kt", ".kts", ".less",
    ".lhs", ".lisp", ".log", ".lua", ".m", ".make", ".markdown", ".md", ".mk",
    ".mm", ".mjs", ".cjs", ".ml", ".mli", ".mll", ".mly", ".mpp", ".nim",
    ".odin", ".odp", ".ods", ".odt", ".pas", ".p", ".php", ".phtml", ".phps",
    ".pl", ".pm", ".pod", ".pp", ".proto", ".ps1", ".psd1", ".psm1", ".py",
    ".pyi", ".pyw", ".pyx", ".pxd", ".qml", ".qbs", ".r", ".rake", ".rmd",
    ".rb", ".rei", ".res", ".rst", ".rs", ".rtf", ".s", ".scala", ".sc",
    ".scm", ".scss", ".sh", ".sql", ".ss", ".sld", ".sty", ".sv", ".svh",
    ".svg", ".swift", ".t", ".tex", ".thrift", ".toml", ".ts", ".tsv", ".tsx",
    ".txt", ".vala", ".vapi", ".vb", ".vba", ".vbs", ".v", ".vh", ".vhd",
    ".vhdl", ".vue", ".xaml", ".xsd", ".xsl", ".xslt", ".xml", ".yaml",
    ".yml", ".zsh", ".zig", ".pdf", ".pot", ".potm", ".potx", ".pps",
    ".ppsm", ".ppsx", ".ppt", ".pptm", ".pptx", ".xls", ".xlsm", ".xlsx",
    ".xlt", ".xltm", ".xltx",
})

_TAG_RE = re.compile(rb"<[^>]*>")
_CDATA_RE = re.compile(rb"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_PRINTABLE = frozenset(range(0x20, 0x7F)) | {0x09, 0x0A, 0x0D}


def is_allowed_text_file(path: str | Path) -> bool:
    return Path(path).suffix.lower() in ALLOWED_EXTENSIONS


def _has_prefix(path: Path, prefix: bytes) -> bool:
    try:
        with path.open("rb") as fh:
            return fh.read(len(prefix)) == prefix
    except OSError:
        return False


def _feed(tokenizer: StatisticsTokenizer, pieces: Iterable[bytes]) -> None:
    for piece in pieces:
        tokenizer.add_chunk(piece)
    tokenizer.finish()


def _feed_texts(stats: DocumentStatistics, texts: Iterable[str]) -> bool:
    """Tokenize each text followed by a newline; True when any token landed."""
    tokenizer = StatisticsTokenizer(stats)
    for text in texts:
        tokenizer.add_chunk(text.encode("utf-8"))
        tokenizer.add_chunk(b"\n")
    tokenizer.finish()
    return not stats.is_empty()


# ── PDF ──


def _pdf_pages_pypdf(data: bytes) -> list[str]:
    pages: list[str] = []
    try:
        from pypdf import PdfReader
    except Exception as exc:
        logger.debug("pypdf unavailable: %s", exc)
        return pages

    try:
        reader = PdfReader(io.BytesIO(data))
        for page in reader.pages:
            text = (page.extract_text() or "").strip()
            if text:
                pages.append(text)
    except Exception as exc:
        logger.warning("pypdf extraction failed: %s", exc)
    return pages


def _pdf_pages_pdfplumber(data: bytes) -> list[str]:
    pages: list[str] = []
    try:
        import pdfplumber
    except Exception as exc:
        logger.debug("pdfplumber unavailable: %s", exc)
        return pages

    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            for page in pdf.pages:
                text = (page.extract_text() or "").strip()
                if text:
                    pages.append(text)
    except Exception as exc:
        logger.warning("pdfplumber extraction failed: %s", exc)
    return pages


def extract_pdf_pages(data: bytes) -> list[str]:
    pages = _pdf_pages_pypdf(data)
    if pages:
        return pages
    logger.debug("No text from pypdf, trying pdfplumber.")
    return _pdf_pages_pdfplumber(data)


def extract_pdf_text(path: Path, stats: DocumentStatistics, safe_mode: bool = False) -> bool:
    data = path.read_bytes()
    if safe_mode:
        with _pdf_lock:
            pages = extract_pdf_pages(data)
    else:
        pages = extract_pdf_pages(data)
    if not pages:
        return False
    return _feed_texts(stats, pages)


# ── RTF ──


def _hex_value(ch: str) -> int:
    try:
        return int(ch, 16)
    except ValueError:
        return -1


def iter_rtf_text(data: str) -> Iterator[str]:
    """Visible text of an RTF document, with paragraph/tab breaks kept."""
    buffer: list[str] = []
    size = len(data)
    i = 0
    while i < size:
        ch = data[i]
        if ch in "{}":
            i += 1
            continue
        if ch != "\\":
            buffer.append(ch)
            i += 1
        elif i + 1 >= size:
            break
        else:
            nxt = data[i + 1]
            if nxt in "\\{}":
                buffer.append(nxt)
                i += 2
            elif nxt == "'" and i + 3 < size:
                hi, lo = _hex_value(data[i + 2]), _hex_value(data[i + 3])
                if hi >= 0 and lo >= 0:
                    buffer.append(chr((hi << 4) | lo))
                    i += 4
                else:
                    i += 2
            elif nxt == "u" and i + 2 < size and (data[i + 2].isdigit() or data[i + 2] == "-"):
                i += 2
                sign = 1
                if data[i] == "-":
                    sign = -1
                    i += 1
                value = 0
                while i < size and data[i].isdigit():
                    value = value * 10 + int(data[i])
                    i += 1
                codepoint = sign * value
                if codepoint < 0:
                    codepoint += 65536
                if 0 <= codepoint <= 0x10FFFF:
                    buffer.append(chr(codepoint))
                if i < size and data[i] == "?":
                    i += 1
                if i < size and data[i] == " ":
                    i += 1
            elif nxt.isalpha():
                cursor = i + 1
                while cursor < size and data[cursor].isalpha():
                    cursor += 1
                word = data[i + 1:cursor].lower()
                if cursor < size and data[cursor] == "-":
                    cursor += 1
                while cursor < size and data[cursor].isdigit():
                    cursor += 1
                if word in {"par", "line"}:
                    buffer.append("\n")
                elif word == "tab":
                    buffer.append("\t")
                i = cursor
                if i < size and data[i] == " ":
                    i += 1
            else:
                i += 2
        if len(buffer) >= _FLUSH_BYTES:
            yield "".join(buffer)
            buffer.clear()
    if buffer:
        yield "".join(buffer)


def extract_rtf_text(path: Path, stats: DocumentStatistics) -> bool:
    raw = path.read_bytes()
    if not raw:
        return False
    # \'hh escapes are code-page bytes; latin-1 keeps them one-to-one
    text = raw.decode("latin-1")
    _feed(StatisticsTokenizer(stats), (piece.encode("utf-8") for piece in iter_rtf_text(text)))
    return not stats.is_empty()


# ── OOXML ──


def iter_docx_texts(path: Path) -> Iterator[str]:
    import docx

    document = docx.Document(str(path))
    for paragraph in document.paragraphs:
        if paragraph.text:
            yield paragraph.text
    for table in document.tables:
        for row in table.rows:
            row_text = "\t".join(cell.text or "" for cell in row.cells)
            if row_text.strip():
                yield row_text
    for section in document.sections:
        for part in (section.header, section.footer):
            # linked parts have no definition of their own
            if part.is_linked_to_previous:
                continue
            for paragraph in part.paragraphs:
                if paragraph.text:
                    yield paragraph.text


def _pptx_shape_texts(shape) -> Iterator[str]:
    from pptx.shapes.group import GroupShape

    if isinstance(shape, GroupShape):
        for child in shape.shapes:
            yield from _pptx_shape_texts(child)
        return
    if shape.has_text_frame and shape.text_frame.text.strip():
        yield shape.text_frame.text
    if shape.has_table:
        for row in shape.table.rows:
            row_text = "\t".join(cell.text or "" for cell in row.cells)
            if row_text.strip():
                yield row_text


def iter_pptx_texts(path: Path) -> Iterator[str]:
    import pptx

    presentation = pptx.Presentation(str(path))
    for slide in presentation.slides:
        for shape in slide.shapes:
            yield from _pptx_shape_texts(shape)
        if slide.has_notes_slide:
            frame = slide.notes_slide.notes_text_frame
            if frame is not None and frame.text.strip():
                yield frame.text


def iter_xlsx_texts(path: Path) -> Iterator[str]:
    """Cell values row by row; formulas contribute their cached results."""
    import openpyxl

    workbook = openpyxl.load_workbook(str(path), read_only=True, data_only=True)
    try:
        for sheet in workbook.worksheets:
            for row in sheet.iter_rows(values_only=True):
                values = [str(value) for value in row if value not in (None, "")]
                if values:
                    yield "\t".join(values)
    finally:
        workbook.close()


def extract_ooxml_text(path: Path, stats: DocumentStatistics) -> bool:
    ext = path.suffix.lower()
    if ext in DOCX_LIKE:
        texts = iter_docx_texts(path)
    elif ext in PPTX_LIKE:
        texts = iter_pptx_texts(path)
    elif ext in XLSX_LIKE:
        texts = iter_xlsx_texts(path)
    else:
        return False
    return _feed_texts(stats, texts)


# ── ZIP office containers ──


def should_extract_member(ext: str, name: str) -> bool:
    name = name.lower()
    if ext in DOCX_LIKE:
        return (
            name in {"word/document.xml", "word/footnotes.xml", "word/endnotes.xml"}
            or name.startswith("word/header")
            or name.startswith("word/footer")
        )
    if ext in PPTX_LIKE:
        return name.startswith("ppt/slides/") or name.startswith("ppt/notesslides/")
    if ext in XLSX_LIKE:
        return name == "xl/sharedstrings.xml" or name.startswith("xl/worksheets/")
    if ext in ODF_LIKE:
        return name in {"content.xml", "styles.xml"}
    return False


def xml_to_text(data: bytes) -> bytes:
    """Strip tags, keep CDATA bodies and decode entities; tags become spaces."""
    pieces: list[bytes] = []
    pos = 0
    for m in _CDATA_RE.finditer(data):
        pieces.append(_TAG_RE.sub(b" ", data[pos:m.start()]))
        pieces.append(b" " + m.group(1) + b" ")
        pos = m.end()
    pieces.append(_TAG_RE.sub(b" ", data[pos:]))
    stripped = b"".join(pieces).decode("utf-8", errors="replace")
    return html.unescape(stripped).encode("utf-8", errors="surrogatepass")


def extract_zip_xml_text(path: Path, stats: DocumentStatistics) -> bool:
    ext = path.suffix.lower()
    extracted = False
    tokenizer = StatisticsTokenizer(stats)
    try:
        with zipfile.ZipFile(path) as archive:
            for info in archive.infolist():
                if info.is_dir() or not should_extract_member(ext, info.filename):
                    continue
                try:
                    data = archive.read(info)
                except (zipfile.BadZipFile, zlib.error, EOFError, OSError, RuntimeError) as exc:
                    logger.debug("Cannot read %s in %s: %s", info.filename, path, exc)
                    continue
                if not data:
                    continue
                tokenizer.add_chunk(xml_to_text(data))
                tokenizer.add_chunk(b"\n")
                extracted = True
    except (zipfile.BadZipFile, OSError) as exc:
        logger.debug("Not a readable ZIP container %s: %s", path, exc)
        return False
    tokenizer.finish()
    return extracted and not stats.is_empty()


# ── legacy binaries ──


def iter_binary_text(data: bytes) -> Iterator[bytes]:
    """Printable ASCII runs and UTF-16LE runs of at least four characters."""
    size = len(data)
    i = 0
    while i < size:
        if i + 1 < size and data[i + 1] == 0 and data[i] in _PRINTABLE:
            j = i
            segment = bytearray()
            while j + 1 < size and data[j + 1] == 0 and data[j] in _PRINTABLE:
                segment.append(data[j])
                j += 2
            if len(segment) >= _MIN_RUN_CHARS:
                yield bytes(segment) + b"\n"
                i = j
                continue

        if data[i] in _PRINTABLE:
            j = i
            while j < size and data[j] in _PRINTABLE:
                j += 1
            if j - i >= _MIN_RUN_CHARS:
                yield data[i:j] + b"\n"
            i = j
            continue

        i += 1


def extract_legacy_office_text(path: Path, stats: DocumentStatistics) -> bool:
    data = path.read_bytes()
    if not data:
        return False
    _feed(StatisticsTokenizer(stats), iter_binary_text(data))
    return not stats.is_empty()


# ── raw ──


def read_raw_file(path: Path, stats: DocumentStatistics) -> bool:
    chunk_size = max(1, settings.READ_CHUNK_BYTES)
    tokenizer = StatisticsTokenizer(stats)
    try:
        with path.open("rb") as fh:
            while chunk := fh.read(chunk_size):
                tokenizer.add_chunk(chunk)
    except OSError as exc:
        logger.warning("Cannot read file %s: %s", path, exc)
        return False
    tokenizer.finish()
    return True


def read_file_to_statistics(
    path: str | Path,
    stats: DocumentStatistics,
    *,
    safe_mode: bool = False,
    no_convert: bool = False,
) -> bool:
    """Fill ``stats`` from ``path`` with the best extractor that succeeds."""
    path = Path(path)
    stats.clear()
    if no_convert:
        return read_raw_file(path, stats)

    ext = path.suffix.lower()
    attempts = []
    if ext == ".pdf" and _has_prefix(path, _PDF_SIGNATURE):
        attempts.append(("pdf", lambda: extract_pdf_text(path, stats, safe_mode)))
    if ext == ".rtf":
        attempts.append(("rtf", lambda: extract_rtf_text(path, stats)))
    if ext in ZIP_OFFICE and _has_prefix(path, _ZIP_SIGNATURE):
        if ext in OOXML_LIKE:
            attempts.append(("ooxml", lambda: extract_ooxml_text(path, stats)))
        attempts.append(("zip-xml", lambda: extract_zip_xml_text(path, stats)))
    if ext in LEGACY_OFFICE:
        attempts.append(("legacy-binary", lambda: extract_legacy_office_text(path, stats)))

    for name, attempt in attempts:
        try:
            if attempt():
                return True
        except Exception as exc:
            logger.warning("%s extraction failed for %s: %s", name, path, exc)
        logger.debug("%s extraction yielded nothing for %s, falling back", name, path)
        stats.clear()

    return read_raw_file(path, stats)
