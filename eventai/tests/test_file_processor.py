"""Tests for attachment validation and text extraction."""

import io
import json
from unittest.mock import MagicMock, patch

import docx
import openpyxl
import pytest
from botocore.exceptions import ClientError
from pypdf.errors import PdfReadError

from eventai.services.file_processor import (
    DOCX,
    MAX_FILE_SIZE,
    PDF,
    XLSX,
    FileProcessor,
    html_to_text,
    keyword_phrases,
)
from eventai.services.textract_service import TextractService


@pytest.fixture
def processor():
    return FileProcessor()


@pytest.fixture
def textract_client():
    client = MagicMock()
    client.detect_document_text.return_value = {
        "Blocks": [
            {"BlockType": "PAGE"},
            {"BlockType": "LINE", "Text": "GATE A", "Confidence": 99.0},
            {"BlockType": "LINE", "Text": "Opens 17:00", "Confidence": 95.0},
            {"BlockType": "WORD", "Text": "GATE"},
            {"BlockType": "WORD", "Text": "A"},
        ],
    }
    return client


@pytest.fixture
def ocr_processor(eventai_config, textract_client):
    return FileProcessor(TextractService(eventai_config, client=textract_client))


def docx_bytes() -> bytes:
    document = docx.Document()
    document.add_paragraph("Run sheet for the festival")
    table = document.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Gate A"
    table.rows[0].cells[1].text = "17:00"
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def xlsx_bytes() -> bytes:
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = "Staffing"
    sheet.append(["Gate", "Stewards"])
    sheet.append(["A", 12])
    sheet.append(["B", None])
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class TestValidateFile:
    """Test upload validation."""

    def test_supported_text(self, processor):
        result = processor.validate_file(b"hello", "text/plain", "notes.txt")
        assert result
        assert result.warnings == []

    def test_empty_file(self, processor):
        result = processor.validate_file(b"", "text/plain", "notes.txt")
        assert not result
        assert result.errors == ["File is empty"]

    def test_oversized_file(self, processor):
        result = processor.validate_file(b"x" * (MAX_FILE_SIZE + 1), "text/plain", "big.txt")
        assert not result
        assert "exceeds maximum allowed size (50MB)" in result.errors[0]

    def test_document_type_warns(self, processor):
        result = processor.validate_file(b"%PDF-1.7", PDF, "plan.pdf")
        assert result
        assert result.warnings == ["File type application/pdf has limited text extraction support"]

    def test_extension_mismatch_warns(self, processor):
        result = processor.validate_file(b"a,b", "text/csv", "data.txt")
        assert result.warnings == ["File extension 'txt' may not match MIME type 'text/csv'"]

    def test_unknown_type_warns(self, processor):
        result = processor.validate_file(b"data", "application/x-thing", "blob.bin")
        assert result
        assert "may not be supported" in result.warnings[0]


class TestExtractText:
    """Test per-type text extraction."""

    @pytest.mark.asyncio
    async def test_json_is_pretty_printed(self, processor):
        text = await processor.extract_text_content(b'{"gates":["A","B"]}', "application/json", "layout.json")
        assert json.loads(text) == {"gates": ["A", "B"]}
        assert "\n" in text

    @pytest.mark.asyncio
    async def test_invalid_json_falls_back_to_text(self, processor):
        assert await processor.extract_text_content(b"{oops", "application/json", "bad.json") == "{oops"

    @pytest.mark.asyncio
    async def test_html_is_stripped(self, processor):
        html = b"<html><style>p{}</style><script>alert(1)</script><p>Gate  A opens</p></html>"
        assert await processor.extract_text_content(html, "text/html", "info.html") == "Gate A opens"

    @pytest.mark.asyncio
    async def test_legacy_word_placeholder(self, processor):
        text = await processor.extract_text_content(b"\xd0\xcf\x11\xe0", "application/msword", "plan.doc")
        assert text.startswith("[WORD DOCUMENT: plan.doc] - Legacy .doc format not supported")

    @pytest.mark.asyncio
    async def test_binary_placeholder(self, processor):
        text = await processor.extract_text_content(bytes(range(32)) * 10, "application/octet-stream", "blob.bin")
        assert text.startswith("[BINARY FILE: blob.bin]")

    @pytest.mark.asyncio
    async def test_unknown_text_passes_through(self, processor):
        assert await processor.extract_text_content(b"plain words", "application/x-log", "run.log") == "plain words"


class TestHtml:
    """Test HTML to text conversion."""

    def test_entities_are_decoded(self):
        assert html_to_text("<p>Tom &amp; Jerry &lt;VIP&gt;</p>") == "Tom & Jerry <VIP>"

    def test_angle_bracket_inside_attribute(self):
        html = '<a title="a > b" href="/x">Tickets</a> <noscript>enable js</noscript>'
        assert html_to_text(html) == "Tickets"


class TestDocuments:
    """Test PDF, Word and Excel extraction."""

    @pytest.mark.asyncio
    async def test_pdf(self, processor):
        page = MagicMock()
        page.extract_text.return_value = "Gate A opens at 17:00"
        reader = MagicMock(pages=[page, page], metadata={"/Title": "Run sheet", "/Author": "Ops"})

        with patch("eventai.services.file_processor.PdfReader", return_value=reader):
            text = await processor.extract_text_content(b"%PDF-1.7", PDF, "plan.pdf")

        assert text.startswith("[PDF DOCUMENT: plan.pdf]\nPages: 2\nTitle: Run sheet\nAuthor: Ops\n")
        assert "Subject: Not specified" in text
        assert text.endswith("--- EXTRACTED CONTENT ---\n\nGate A opens at 17:00\n\nGate A opens at 17:00")

    @pytest.mark.asyncio
    async def test_unreadable_pdf(self, processor):
        with patch("eventai.services.file_processor.PdfReader", side_effect=PdfReadError("EOF marker not found")):
            text = await processor.extract_text_content(b"%PDF", PDF, "plan.pdf")
        assert text == "[PDF EXTRACTION ERROR: plan.pdf] - Failed to extract text from PDF: EOF marker not found"

    @pytest.mark.asyncio
    async def test_docx(self, processor):
        text = await processor.extract_text_content(docx_bytes(), DOCX, "runsheet.docx")

        assert text.startswith("[WORD DOCUMENT: runsheet.docx]")
        assert "Tables: 1" in text
        assert text.endswith("--- EXTRACTED CONTENT ---\n\nRun sheet for the festival\nGate A\t17:00")

    @pytest.mark.asyncio
    async def test_corrupt_docx(self, processor):
        text = await processor.extract_text_content(b"not a zip", DOCX, "runsheet.docx")
        assert text.startswith("[WORD EXTRACTION ERROR: runsheet.docx]")

    @pytest.mark.asyncio
    async def test_xlsx(self, processor):
        text = await processor.extract_text_content(xlsx_bytes(), XLSX, "staff.xlsx")

        assert text.startswith("[EXCEL SPREADSHEET: staff.xlsx]\nWorksheets: 1\nSheet Names: Staffing\n")
        assert "--- WORKSHEET 1: Staffing ---" in text
        assert "Dimensions: 3 rows x 2 columns" in text
        assert "Range: A1:B3" in text
        assert "Gate\tStewards\nA\t12\nB\t\n" in text

    @pytest.mark.asyncio
    async def test_corrupt_xlsx(self, processor):
        text = await processor.extract_text_content(b"not a zip", XLSX, "staff.xlsx")
        assert text.startswith("[EXCEL EXTRACTION ERROR: staff.xlsx]")


class TestImages:
    """Test image OCR."""

    @pytest.mark.asyncio
    async def test_ocr(self, ocr_processor, textract_client):
        text = await ocr_processor.extract_text_content(b"\x89PNG", "image/png", "sign.png")

        textract_client.detect_document_text.assert_called_once_with(Document={"Bytes": b"\x89PNG"})
        assert text.startswith("[IMAGE FILE: sign.png]\nMIME Type: image/png\nOCR Confidence: 97.0%\n")
        assert text.endswith("--- EXTRACTED TEXT ---\n\nGATE A\nOpens 17:00")

    @pytest.mark.asyncio
    async def test_ocr_failure(self, ocr_processor, textract_client):
        textract_client.detect_document_text.side_effect = ClientError(
            {"Error": {"Code": "UnsupportedDocumentException", "Message": "bad image"}}, "DetectDocumentText")

        text = await ocr_processor.extract_text_content(b"\xff\xd8", "image/jpeg", "sign.jpg")

        assert text.startswith("[IMAGE OCR ERROR: sign.jpg] - Failed to extract text from image")

    @pytest.mark.asyncio
    async def test_oversized_image(self, ocr_processor, textract_client):
        text = await ocr_processor.extract_text_content(b"x" * (10 * 1024 * 1024 + 1), "image/png", "big.png")

        assert "exceeds Textract limit (10MB)" in text
        textract_client.detect_document_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_ocr_image(self, ocr_processor):
        text = await ocr_processor.extract_text_content(b"GIF89a", "image/gif", "map.gif")
        assert "not supported by AWS Textract" in text

    @pytest.mark.asyncio
    async def test_ocr_not_configured(self, processor):
        text = await processor.extract_text_content(b"\x89PNG", "image/png", "sign.png")
        assert text.startswith("[IMAGE FILE: sign.png] - OCR is not configured")


class TestCsv:
    """Test CSV rendering."""

    def test_detect_delimiter(self, processor):
        assert processor.detect_csv_delimiter("a;b;c\n1;2;3") == ";"
        assert processor.detect_csv_delimiter("a\tb\n1\t2") == "\t"
        assert processor.detect_csv_delimiter("single") == ","

    def test_extract_csv_content(self, processor):
        csv_text = 'Time,Activity,Location\n09:00,"Registration",Main Hall\n10:00,Keynote,\n'

        text = processor.extract_csv_content(csv_text, "schedule.csv")

        assert text.startswith("[CSV FILE: schedule.csv]")
        assert "Rows: 3 (including header)" in text
        assert "Column Headers: Time, Activity, Location" in text
        assert "Location: 1 entries (examples: Main Hall)" in text
        assert "Record 1:\n  Time: 09:00\n  Activity: Registration\n  Location: Main Hall" in text
        assert "Record 2:\n  Time: 10:00\n  Activity: Keynote\n" in text
        assert "Time entries found: 09:00, 10:00" in text
        assert text.endswith(csv_text)

    def test_quoted_delimiter_stays_in_field(self, processor):
        csv_text = 'Time,Location,Activity\n09:00,"Hall A, Level 2",Registration\n10:00,Stage,Keynote\n'

        text = processor.extract_csv_content(csv_text, "schedule.csv")

        assert "Columns: 3" in text
        assert "Record 1:\n  Time: 09:00\n  Location: Hall A, Level 2\n  Activity: Registration" in text

    def test_empty_csv(self, processor):
        assert processor.extract_csv_content("\n\n", "empty.csv") == "[EMPTY CSV FILE: empty.csv] - No content found"


class TestHelpers:
    """Test shared helpers."""

    def test_keyword_phrases(self):
        phrases = keyword_phrases("Main Hall, Stage A\nBackstage area", ("hall", "stage"))
        assert phrases == ["Main Hall", "Stage A", "Backstage area"]

    def test_supported_types(self, processor):
        types = processor.get_supported_file_types()
        assert "text/csv" in types["fullySupported"]
        assert "image/png" in types["fullySupported"]
        assert "image/gif" in types["partiallySupported"]
        assert types["maxFileSize"].startswith("50MB")
