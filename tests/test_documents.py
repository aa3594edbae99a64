"""
Тесты для источников текста документа.
"""

import unittest
import sys
import os
import tempfile

from pypdf import PdfWriter

# Добавляем путь к src для импорта
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from docrag.errors import ExtractionError
from docrag.rag.documents import PdfDocument, TextDocument
from docrag.rag.segmenter import extract_and_chunk


class TestTextDocument(unittest.TestCase):
    """Тесты TextDocument."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)

    def test_pages_from_memory(self):
        document = TextDocument(["один", "два"])

        self.assertEqual(document.get_page_count(), 2)
        self.assertEqual(document.get_page_text(1), "один")

    def test_page_out_of_range(self):
        document = TextDocument(["один"])

        for page in (0, 2):
            with self.assertRaises(ExtractionError) as context:
                document.get_page_text(page)
            self.assertEqual(context.exception.page_number, page)

    def test_from_file_splits_on_form_feed(self):
        path = os.path.join(self.tmpdir.name, "doc.txt")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("Страница один.\fСтраница два.\f")

        document = TextDocument.from_file(path)

        self.assertEqual(document.get_page_count(), 3)
        self.assertEqual(document.get_page_text(2), "Страница два.")
        self.assertEqual(document.get_page_text(3), "")

    def test_from_file_non_utf8(self):
        path = os.path.join(self.tmpdir.name, "latin.txt")
        with open(path, 'wb') as f:
            f.write("café".encode("latin-1"))

        self.assertEqual(TextDocument.from_file(path).get_page_text(1), "café")


class TestPdfDocument(unittest.TestCase):
    """Тесты PdfDocument."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)

    def test_blank_pdf_has_no_text(self):
        """PDF без текстового слоя: страницы есть, текста нет."""
        path = os.path.join(self.tmpdir.name, "blank.pdf")
        writer = PdfWriter()
        writer.add_blank_page(width=200, height=200)
        writer.add_blank_page(width=200, height=200)
        with open(path, 'wb') as f:
            writer.write(f)

        document = PdfDocument(path)

        self.assertEqual(document.get_page_count(), 2)
        self.assertEqual(document.get_page_text(1).strip(), "")
        result = extract_and_chunk(document, 500, 50)
        self.assertFalse(result.has_text)
        self.assertEqual(result.empty_pages, [1, 2])

    def test_invalid_pdf(self):
        path = os.path.join(self.tmpdir.name, "broken.pdf")
        with open(path, 'wb') as f:
            f.write(b"this is not a pdf")

        with self.assertRaises(ExtractionError):
            PdfDocument(path)

    def test_missing_pdf(self):
        with self.assertRaises(ExtractionError):
            PdfDocument(os.path.join(self.tmpdir.name, "missing.pdf"))


if __name__ == '__main__':
    unittest.main()
