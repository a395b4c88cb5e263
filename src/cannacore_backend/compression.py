"""
PDF size reduction through Ghostscript.

Large COA scans routinely exceed what the workflow engine will download, so
assembled PDFs above a size threshold are rewritten with Ghostscript's
``pdfwrite`` device. The reducer is a black box: bytes in, bytes out. When
Ghostscript is missing, fails, or produces a larger file, the original
buffer is returned unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"


def looks_like_pdf(data: bytes, file_name: Optional[str] = None) -> bool:
    if data[:1024].lstrip().startswith(PDF_MAGIC):
        return True
    return bool(file_name) and file_name.lower().endswith(".pdf")  # type: ignore[union-attr]


class PdfSizeReducer:
    def __init__(
        self,
        threshold_bytes: int,
        enabled: bool = True,
        ghostscript_binary: str = "gs",
        pdf_settings: str = "/ebook",
        timeout_seconds: float = 120,
    ) -> None:
        self.threshold_bytes = threshold_bytes
        self.enabled = enabled
        self.ghostscript_binary = ghostscript_binary
        self.pdf_settings = pdf_settings
        self.timeout_seconds = timeout_seconds

    def should_reduce(self, data: bytes, file_name: Optional[str] = None) -> bool:
        return self.enabled and len(data) > self.threshold_bytes and looks_like_pdf(data, file_name)

    def _command(self, source: Path, target: Path) -> list[str]:
        return [
            self.ghostscript_binary,
            "-sDEVICE=pdfwrite",
            "-dCompatibilityLevel=1.4",
            f"-dPDFSETTINGS={self.pdf_settings}",
            "-dNOPAUSE",
            "-dQUIET",
            "-dBATCH",
            f"-sOutputFile={target}",
            str(source),
        ]

    def reduce_sync(self, data: bytes) -> bytes:
        if shutil.which(self.ghostscript_binary) is None:
            logger.warning(f"Ghostscript binary '{self.ghostscript_binary}' not found; skipping compression")
            return data

        with tempfile.TemporaryDirectory(prefix="cannacore_gs_") as workdir:
            source = Path(workdir) / "input.pdf"
            target = Path(workdir) / "output.pdf"
            source.write_bytes(data)
            try:
                subprocess.run(
                    self._command(source, target),
                    check=True,
                    capture_output=True,
                    timeout=self.timeout_seconds,
                )
            except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as exc:
                logger.warning(f"Ghostscript compression failed, keeping original: {exc}")
                return data

            if not target.exists():
                return data
            reduced = target.read_bytes()

        if not reduced or len(reduced) >= len(data):
            logger.info(f"Compression did not shrink the PDF ({len(data)} -> {len(reduced)} bytes); keeping original")
            return data

        logger.info(f"Compressed PDF from {len(data) / 1024 / 1024:.2f}MB to {len(reduced) / 1024 / 1024:.2f}MB")
        return reduced

    async def reduce(self, data: bytes) -> bytes:
        return await asyncio.to_thread(self.reduce_sync, data)
