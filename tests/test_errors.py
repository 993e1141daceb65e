from invoice_ocr.errors import (
    DocumentLoadError,
    OCRError,
    RasterizationError,
    TranscriptionError,
)


def test_subclasses_carry_their_default_code():
    assert OCRError("boom").code == "OCR_ERROR"
    assert DocumentLoadError("missing").code == "DOCUMENT_LOAD_ERROR"
    assert RasterizationError("bad xref").code == "PDF_PROCESSING_ERROR"
    assert TranscriptionError("timed out").code == "VISION_API_ERROR"


def test_code_can_be_given_per_instance():
    error = DocumentLoadError("download refused", code="DOWNLOAD_FAILED")

    assert error.code == "DOWNLOAD_FAILED"
    assert DocumentLoadError.code == "DOCUMENT_LOAD_ERROR"
    assert error.details == {}


def test_message_and_details_are_kept():
    error = OCRError("no pages processed", details={"errors": ["Page 1: blank"]})

    assert str(error) == "no pages processed"
    assert error.message == "no pages processed"
    assert error.details == {"errors": ["Page 1: blank"]}
