"""Attachment validation and text extraction."""

import asyncio
import csv
import io
import json
import re
from typing import Any, Dict, List, Optional

import docx
import openpyxl
import structlog
from bs4 import BeautifulSoup
from pypdf import PdfReader

from eventai.models.validation import ValidationResult
from eventai.services.textract_service import TextractService


logger = structlog.get_logger(__name__)

MAX_FILE_SIZE = 50 * 1024 * 1024

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC = "application/msword"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLS = "application/vnd.ms-excel"
OCR_IMAGES = ("image/jpeg", "image/png")
NON_OCR_IMAGES = ("image/gif", "image/bmp", "image/webp")

FULLY_SUPPORTED = {
    "text/plain": "Plain text files (.txt) - Direct text extraction",
    "text/csv": "Comma-separated values (.csv) - Structured record extraction",
    "text/markdown": "Markdown files (.md) - Direct text extraction",
    "text/html": "HTML files (.html, .htm) - HTML parsing and text extraction",
    "application/json": "JSON files (.json) - Structured data extraction",
    PDF: "PDF documents (.pdf) - Full text extraction with metadata",
    DOCX: "Word documents (.docx) - Full text extraction",
    XLSX: "Excel spreadsheets (.xlsx) - Data extraction from all worksheets",
    "image/jpeg": "JPEG images (.jpg, .jpeg) - OCR text extraction with AWS Textract",
    "image/png": "PNG images (.png) - OCR text extraction with AWS Textract",
}

PARTIALLY_SUPPORTED = {
    DOC: "Legacy Word documents (.doc) - Stored, convert to .docx for text extraction",
    XLS: "Legacy Excel spreadsheets (.xls) - Stored, convert to .xlsx for data extraction",
    "image/gif": "GIF images (.gif) - Not supported by AWS Textract, convert to JPEG/PNG",
    "image/bmp": "BMP images (.bmp) - Not supported by AWS Textract, convert to JPEG/PNG",
    "image/webp": "WebP images (.webp) - Not supported by AWS Textract, convert to JPEG/PNG",
}

# types whose extraction goes beyond decoding the bytes as text
LIMITED_EXTRACTION = {PDF, DOCX, XLSX, *OCR_IMAGES, *PARTIALLY_SUPPORTED}

MIME_EXTENSIONS = {
    "text/plain": ["txt", "text"],
    "text/csv": ["csv"],
    "text/markdown": ["md", "markdown"],
    "text/html": ["html", "htm"],
    "application/json": ["json"],
    PDF: ["pdf"],
    DOCX: ["docx"],
    DOC: ["doc"],
    XLSX: ["xlsx"],
    XLS: ["xls"],
    "image/jpeg": ["jpg", "jpeg"],
    "image/png": ["png"],
    "image/gif": ["gif"],
    "image/bmp": ["bmp"],
    "image/webp": ["webp"],
}

CSV_DELIMITERS = (",", ";", "\t", "|")
LOCATION_KEYWORDS = ("room", "hall", "stage", "area", "venue", "building", "floor")
ROLE_KEYWORDS = ("manager", "team", "host", "speaker", "coordinator", "staff", "volunteer")
PDF_METADATA = (
    ("Title", "/Title"),
    ("Author", "/Author"),
    ("Subject", "/Subject"),
    ("Creator", "/Creator"),
    ("Producer", "/Producer"),
    ("Creation Date", "/CreationDate"),
    ("Modification Date", "/ModDate"),
)

_TIME = re.compile(r"\b\d{1,2}:\d{2}\b")
_DATE = re.compile(r"\b\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}\b|\b[A-Za-z]{3,9}\s+\d{1,2},?\s+\d{4}\b")
_CONTROL = re.compile(r"[\x00-\x1F\x7F-\x9F]")


def _unique(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


def keyword_phrases(text: str, keywords) -> List[str]:
    """Comma/line-delimited fragments that contain any of the keywords."""
    matches: List[str] = []
    for keyword in keywords:
        pattern = re.compile(rf"\b[^,\n]*{re.escape(keyword)}[^,\n]*\b", re.IGNORECASE)
        matches.extend(match.strip() for match in pattern.findall(text))
    return _unique([match for match in matches if match])


def html_to_text(html: str) -> str:
    """Visible text of an HTML document, entities decoded and whitespace collapsed."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return " ".join(soup.get_text(separator=" ", strip=True).split())


class FileProcessor:
    """Validates uploads and turns supported types into analysable text."""

    def __init__(self, textract: Optional[TextractService] = None):
        self.textract = textract
        self.logger = logger.bind(component="file_processor")

    def validate_file(self, content: bytes, mime_type: str, original_name: str) -> ValidationResult:
        result = ValidationResult()

        if len(content) > MAX_FILE_SIZE:
            result.add_error(
                f"File size ({round(len(content) / 1024 / 1024)}MB) exceeds maximum allowed size (50MB)"
            )
        if len(content) == 0:
            result.add_error("File is empty")

        if mime_type in LIMITED_EXTRACTION:
            result.add_warning(f"File type {mime_type} has limited text extraction support")
        elif mime_type not in FULLY_SUPPORTED:
            result.add_warning(f"File type {mime_type} may not be supported for text extraction")

        extension = original_name.lower().rsplit(".", 1)[-1] if "." in original_name else ""
        expected = MIME_EXTENSIONS.get(mime_type)
        if expected and extension not in expected:
            result.add_warning(f"File extension '{extension}' may not match MIME type '{mime_type}'")

        return result

    async def extract_text_content(self, content: bytes, mime_type: str, original_name: str) -> str:
        """
        Text for analysis.

        Document parsing runs in a worker thread. A file that cannot be read
        produces a bracketed note naming the problem instead of an exception,
        so one bad attachment never fails the upload.
        """
        if mime_type == PDF:
            extracted = await asyncio.to_thread(self.extract_pdf_content, content, original_name)
        elif mime_type == DOCX:
            extracted = await asyncio.to_thread(self.extract_docx_content, content, original_name)
        elif mime_type == XLSX:
            extracted = await asyncio.to_thread(self.extract_excel_content, content, original_name)
        elif mime_type in OCR_IMAGES:
            extracted = await self.extract_image_content(content, original_name, mime_type)
        else:
            extracted = self.extract_plain_content(content, mime_type, original_name)

        self.logger.info("Text extraction completed", file_name=original_name,
                         mime_type=mime_type, extracted_length=len(extracted))
        return extracted

    def extract_plain_content(self, content: bytes, mime_type: str, original_name: str) -> str:
        text = content.decode("utf-8", errors="replace")

        if mime_type in ("text/plain", "text/markdown"):
            return text
        if mime_type == "text/csv":
            return self.extract_csv_content(text, original_name)
        if mime_type == "application/json":
            try:
                return json.dumps(json.loads(text), indent=2, ensure_ascii=False)
            except ValueError:
                self.logger.warning("Failed to parse JSON, treating as plain text", file_name=original_name)
                return text
        if mime_type == "text/html":
            return html_to_text(text)
        if mime_type == DOC:
            return (f"[WORD DOCUMENT: {original_name}] - Legacy .doc format not supported. "
                    f"Please convert to .docx format for text extraction.")
        if mime_type == XLS:
            return (f"[EXCEL SPREADSHEET: {original_name}] - Legacy .xls format not supported. "
                    f"Please convert to .xlsx format for data extraction.")
        if mime_type in NON_OCR_IMAGES:
            return (f"[IMAGE FILE: {original_name}] - Image type {mime_type} not supported by AWS Textract. "
                    f"Please convert to JPEG or PNG format for OCR.")
        if self.is_text_content(text):
            return text
        return (f"[BINARY FILE: {original_name}] - File type {mime_type} "
                f"is not supported for text extraction.")

    def extract_pdf_content(self, content: bytes, original_name: str) -> str:
        try:
            reader = PdfReader(io.BytesIO(content))
            pages = [page.extract_text() or "" for page in reader.pages]
            info = reader.metadata or {}
        except Exception as e:
            self.logger.error("Error extracting PDF content", file_name=original_name, error=str(e))
            return f"[PDF EXTRACTION ERROR: {original_name}] - Failed to extract text from PDF: {e}"

        header = [f"[PDF DOCUMENT: {original_name}]", f"Pages: {len(pages)}"]
        header.extend(f"{label}: {info.get(key) or 'Not specified'}" for label, key in PDF_METADATA)

        self.logger.info("PDF text extraction completed", file_name=original_name, pages=len(pages))
        return "\n".join(header) + "\n\n--- EXTRACTED CONTENT ---\n\n" + "\n\n".join(pages).strip()

    def extract_docx_content(self, content: bytes, original_name: str) -> str:
        try:
            document = docx.Document(io.BytesIO(content))
        except Exception as e:
            self.logger.error("Error extracting Word document content", file_name=original_name, error=str(e))
            return (f"[WORD EXTRACTION ERROR: {original_name}] - "
                    f"Failed to extract text from Word document: {e}")

        parts = [paragraph.text for paragraph in document.paragraphs if paragraph.text.strip()]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells]
                if any(cells):
                    parts.append("\t".join(cells))
        text = "\n".join(parts)

        self.logger.info("Word document text extraction completed", file_name=original_name,
                         text_length=len(text), tables=len(document.tables))
        return (f"[WORD DOCUMENT: {original_name}]\n"
                f"Text Length: {len(text)} characters\n"
                f"Tables: {len(document.tables)}\n\n"
                f"--- EXTRACTED CONTENT ---\n\n{text}")

    def extract_excel_content(self, content: bytes, original_name: str) -> str:
        try:
            workbook = openpyxl.load_workbook(io.BytesIO(content), data_only=True)
        except Exception as e:
            self.logger.error("Error extracting Excel content", file_name=original_name, error=str(e))
            return (f"[EXCEL EXTRACTION ERROR: {original_name}] - "
                    f"Failed to extract data from Excel file: {e}")

        sections = []
        try:
            for index, sheet in enumerate(workbook.worksheets, start=1):
                rows = [
                    "\t".join("" if value is None else str(value) for value in row)
                    for row in sheet.iter_rows(values_only=True)
                ]
                sections.append(
                    f"\n--- WORKSHEET {index}: {sheet.title} ---\n"
                    f"Dimensions: {sheet.max_row} rows x {sheet.max_column} columns\n"
                    f"Range: {sheet.dimensions}\n\n" + "\n".join(rows) + "\n"
                )
            sheet_names = workbook.sheetnames
        finally:
            workbook.close()

        body = "".join(sections)
        self.logger.info("Excel data extraction completed", file_name=original_name,
                         sheets=len(sheet_names), content_length=len(body))
        return (f"[EXCEL SPREADSHEET: {original_name}]\n"
                f"Worksheets: {len(sheet_names)}\n"
                f"Sheet Names: {', '.join(sheet_names)}\n"
                f"Total Content Length: {len(body)} characters\n\n"
                f"--- EXTRACTED DATA ---" + body)

    async def extract_image_content(self, content: bytes, original_name: str, mime_type: str) -> str:
        if self.textract is None:
            return f"[IMAGE FILE: {original_name}] - OCR is not configured; the image is stored for reference."

        suitability = self.textract.assess_image_suitability(content, mime_type)
        if not suitability["suitable"]:
            return f"[IMAGE OCR ERROR: {original_name}] - {'; '.join(suitability['warnings'])}"

        try:
            ocr = await self.textract.extract_text_from_image(content, original_name)
        except Exception as e:
            self.logger.error("Error extracting text from image", file_name=original_name, error=str(e))
            return f"[IMAGE OCR ERROR: {original_name}] - Failed to extract text from image: {e}"

        return (f"[IMAGE FILE: {original_name}]\n"
                f"MIME Type: {mime_type}\n"
                f"OCR Confidence: {ocr['averageConfidence']:.1f}%\n"
                f"Text Length: {len(ocr['fullText'])} characters\n\n"
                f"--- EXTRACTED TEXT ---\n\n{ocr['fullText']}")

    def detect_csv_delimiter(self, csv_text: str) -> str:
        sample = csv_text[:4096]
        try:
            return csv.Sniffer().sniff(sample, delimiters="".join(CSV_DELIMITERS)).delimiter
        except csv.Error:
            first_line = sample.split("\n", 1)[0]
            best, best_count = ",", 0
            for delimiter in CSV_DELIMITERS:
                count = first_line.count(delimiter)
                if count > best_count:
                    best, best_count = delimiter, count
            return best

    def extract_csv_content(self, csv_text: str, original_name: str) -> str:
        """Render CSV as a headed, record-per-block document the analysers can read."""
        delimiter = self.detect_csv_delimiter(csv_text)
        records = [
            [cell.strip() for cell in row]
            for row in csv.reader(io.StringIO(csv_text), delimiter=delimiter)
            if any(cell.strip() for cell in row)
        ]
        if not records:
            return f"[EMPTY CSV FILE: {original_name}] - No content found"

        headers, rows = records[0], records[1:]
        shown_delimiter = "\\t" if delimiter == "\t" else delimiter
        out = [
            f"[CSV FILE: {original_name}]",
            f"Rows: {len(rows) + 1} (including header)",
            f"Columns: {len(headers)}",
            f"Column Headers: {', '.join(headers)}",
            f'Delimiter: "{shown_delimiter}"',
            "",
            "=== DATA SUMMARY ===",
        ]
        for index, header in enumerate(headers):
            column = [row[index] for row in rows if index < len(row) and row[index]]
            examples = _unique(column)[:5]
            line = f"{header}: {len(column)} entries"
            if examples:
                line += f" (examples: {', '.join(examples)})"
            out.append(line)

        out.append("")
        out.append("=== STRUCTURED DATA ===")
        for number, row in enumerate(rows, start=1):
            out.append("")
            out.append(f"Record {number}:")
            for index, header in enumerate(headers):
                value = row[index] if index < len(row) else ""
                if value:
                    out.append(f"  {header}: {value}")

        out.append("")
        out.append("=== CONTENT ANALYSIS ===")
        times = _unique(_TIME.findall(csv_text))
        if times:
            out.append(f"Time entries found: {', '.join(times)}")
        dates = _unique(_DATE.findall(csv_text))
        if dates:
            out.append(f"Date entries found: {', '.join(dates)}")
        locations = keyword_phrases(csv_text, LOCATION_KEYWORDS)
        if locations:
            out.append(f"Location references: {', '.join(locations[:5])}")
        roles = keyword_phrases(csv_text, ROLE_KEYWORDS)
        if roles:
            out.append(f"Roles/People mentioned: {', '.join(roles[:5])}")

        out.append("")
        out.append("=== ORIGINAL CSV DATA ===")
        out.append(csv_text)

        self.logger.info("CSV content extracted", file_name=original_name,
                         rows=len(rows) + 1, columns=len(headers))
        return "\n".join(out)

    def is_text_content(self, content: str) -> bool:
        if not content:
            return False
        sample = content[:1000]
        printable = len(_CONTROL.sub("", sample))
        return printable / len(sample) > 0.8


    def get_supported_file_types(self) -> Dict[str, Any]:
        return {
            "fullySupported": dict(FULLY_SUPPORTED),
            "partiallySupported": dict(PARTIALLY_SUPPORTED),
            "maxFileSize": "50MB (10MB for images due to AWS Textract limits)",
            "ocrEnabled": self.textract is not None,
            "recommendations": [
                "For best AI analysis results, ensure text is clearly readable and well-structured",
                "CSV files are processed as structured records with column summaries",
                "PDF documents include their metadata for context",
                "Excel files are processed as tab-separated data per worksheet",
                "Use JPEG or PNG format for images containing text",
            ],
        }
