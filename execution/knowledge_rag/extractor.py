"""
Text Extractor - turns uploaded files into plain text

Text payloads are decoded directly. PDFs use the native text layer via
PyMuPDF4LLM when it has enough content; scanned PDFs, Word documents and
anything else supported are transcribed by a vision-capable chat model.
"""

import re
import html
import base64
import logging
from typing import Optional

from .config import KnowledgeConfig
from .errors import ExtractionError
from .prompts import get_prompt

logger = logging.getLogger(__name__)


PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_MIME = "application/msword"

SUPPORTED_MIME_TYPES = {
    PDF_MIME: "PDF",
    DOCX_MIME: "DOCX",
    DOC_MIME: "DOC",
    "text/plain": "TXT",
    "text/markdown": "MD",
    "text/csv": "CSV",
}

# Fallback when the client does not send a usable content type
EXTENSION_MIME_TYPES = {
    ".pdf": PDF_MIME,
    ".docx": DOCX_MIME,
    ".doc": DOC_MIME,
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".csv": "text/csv",
}


def is_supported_mime_type(mime_type: Optional[str]) -> bool:
    if not mime_type:
        return False
    return mime_type in SUPPORTED_MIME_TYPES or mime_type.startswith("text/")


def guess_mime_type(file_name: Optional[str], declared: Optional[str] = None) -> Optional[str]:
    """Prefer a supported declared type, else infer from the file extension."""
    if is_supported_mime_type(declared):
        return declared
    if file_name and "." in file_name:
        ext = "." + file_name.rsplit(".", 1)[-1].lower()
        return EXTENSION_MIME_TYPES.get(ext, declared)
    return declared


def markdown_to_text(markdown: str) -> str:
    """Strip markdown formatting from PyMuPDF4LLM output."""
    text = re.sub(r'^#+\s*', '', markdown, flags=re.MULTILINE)  # Headers
    text = re.sub(r'\*\*([^*]+)\*\*', r'\1', text)  # Bold
    text = re.sub(r'\*([^*]+)\*', r'\1', text)  # Italic
    text = re.sub(r'!\[([^\]]*)\]\([^)]+\)', '', text)  # Images
    text = re.sub(r'\[([^\]]+)\]\([^)]+\)', r'\1', text)  # Links
    text = re.sub(r'`([^`]+)`', r'\1', text)  # Code
    text = re.sub(r'<!--.*?-->', '', text)
    return html.unescape(text).strip()


class TextExtractor:
    """
    Extracts text from file bytes.

    One model call at most per file; retries belong to the caller.
    """

    def __init__(self, config: Optional[KnowledgeConfig] = None, client=None):
        self.config = config or KnowledgeConfig()
        self._client = client
        if self._client is None and self.config.openai_api_key:
            self._client = self.config.create_llm_client(max_retries=0)

    def extract(self, file_bytes: bytes, mime_type: str, file_name: Optional[str] = None) -> str:
        """
        Extract plain text from a file.

        Args:
            file_bytes: Raw file content
            mime_type: Declared MIME type
            file_name: Optional original file name (hint for the model)

        Returns:
            Trimmed extracted text

        Raises:
            ExtractionError: Unsupported type, empty payload, or no usable text
        """
        if not is_supported_mime_type(mime_type):
            raise ExtractionError(f"Unsupported file type: {mime_type}")
        if not file_bytes:
            raise ExtractionError("File is empty")

        if mime_type.startswith("text/"):
            text = file_bytes.decode("utf-8", errors="replace").strip()
            return self._check_length(text)

        if mime_type == PDF_MIME:
            native = self._extract_pdf_text(file_bytes)
            if len(native) >= self.config.min_native_text_chars:
                logger.info(f"Extracted {len(native)} chars from PDF text layer")
                return native
            logger.info("PDF has no usable text layer, falling back to vision model")

        return self._extract_with_model(file_bytes, mime_type, file_name)

    def _extract_pdf_text(self, file_bytes: bytes) -> str:
        """Read the native text layer; returns "" for scanned or unreadable PDFs."""
        import fitz  # PyMuPDF
        import pymupdf4llm

        try:
            with fitz.open(stream=file_bytes, filetype="pdf") as doc:
                markdown = pymupdf4llm.to_markdown(doc)
        except (RuntimeError, ValueError) as e:
            logger.warning(f"PDF text layer unreadable: {e}")
            return ""
        return markdown_to_text(markdown)

    def _extract_with_model(self, file_bytes: bytes, mime_type: str, file_name: Optional[str]) -> str:
        if not self._client:
            raise ExtractionError("Extraction client not initialized. Check OPENAI_API_KEY.")

        from openai import OpenAIError

        language = self.config.language
        user_text = get_prompt(language, "extract_document_user")
        if file_name:
            user_text += get_prompt(language, "file_name_hint").format(file_name=file_name)

        data_url = f"data:{mime_type};base64,{base64.b64encode(file_bytes).decode('ascii')}"

        try:
            response = self._client.chat.completions.create(
                model=self.config.extraction_model,
                messages=[
                    {"role": "system", "content": get_prompt(language, "extract_document_system")},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": user_text},
                            {"type": "image_url", "image_url": {"url": data_url}},
                        ],
                    },
                ],
                temperature=0.1,
                max_tokens=4000,
            )
        except OpenAIError as e:
            logger.error(f"Extraction request failed: {e}")
            raise ExtractionError(f"Extraction request failed: {e}")

        text = self._parse_response(response)
        logger.info(f"Extracted {len(text)} chars with {self.config.extraction_model}")
        return text

    def _parse_response(self, response) -> str:
        """Validate the chat response shape and return the trimmed text."""
        choices = getattr(response, "choices", None)
        if not choices:
            raise ExtractionError("Extraction response contains no choices")
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        if not isinstance(content, str):
            raise ExtractionError("Extraction response contains no text")
        return self._check_length(content.strip())

    def _check_length(self, text: str) -> str:
        if len(text) < self.config.min_extracted_chars:
            raise ExtractionError(
                f"Could not extract enough text from file ({len(text)} chars)"
            )
        return text


# CLI for testing
if __name__ == "__main__":
    import sys
    import mimetypes
    from pathlib import Path
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) < 2:
        print("Usage: python -m execution.knowledge_rag.extractor <file>")
        sys.exit(1)

    path = Path(sys.argv[1])
    mime = guess_mime_type(path.name, mimetypes.guess_type(path.name)[0])
    extractor = TextExtractor(KnowledgeConfig.from_env())
    text = extractor.extract(path.read_bytes(), mime, path.name)
    print(f"Extracted {len(text)} chars:\n")
    print(text[:1000])
