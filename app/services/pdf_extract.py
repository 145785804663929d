from io import BytesIO

from pypdf import PdfReader

MAX_PDF_PAGES = 50


def extract_text_from_pdf(file_content: bytes) -> str:
    """Text of the first 50 pages; empty string when the PDF has no text layer."""
    reader = PdfReader(BytesIO(file_content))
    parts = []
    for i, page in enumerate(reader.pages):
        if i >= MAX_PDF_PAGES:
            break
        text = page.extract_text()
        if text and text.strip():
            parts.append(text.strip())
    return "\n\n".join(parts).strip()
