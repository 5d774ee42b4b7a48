"""Page rasterization with pdftoppm."""

import logging
import os
import shutil
import subprocess
import tempfile

from shared.errors import RenderError
from shared.models import PageSource

logger = logging.getLogger(__name__)


class PageRenderer:
    """Renders single PDF pages to PNG images using poppler's pdftoppm."""

    def __init__(self, dpi: int = 150, executable: str = "pdftoppm", timeout: float = 120.0):
        self.dpi = dpi
        self.executable = executable
        self.timeout = timeout

    def check_installation(self) -> str:
        """
        Verify that pdftoppm is available.

        Returns:
            Absolute path of the executable

        Raises:
            RenderError: If pdftoppm cannot be found
        """
        path = shutil.which(self.executable)
        if not path:
            raise RenderError(
                f"{self.executable} not found. Install poppler (brew install poppler "
                f"or apt-get install poppler-utils)"
            )
        logger.debug(f"{self.executable} found at {path}")
        return path

    def render(self, page: PageSource) -> bytes:
        """
        Render one page to PNG bytes.

        Output goes to a temporary directory that is removed whether or not
        rendering succeeds.

        Args:
            page: Page to render

        Returns:
            PNG image data

        Raises:
            RenderError: On a missing PDF, a missing pdftoppm or a failed conversion
        """
        if not os.path.isfile(page.pdf_path):
            raise RenderError(f"PDF not found: {page.pdf_path}")

        with tempfile.TemporaryDirectory(prefix="ink2notion-") as tmp_dir:
            prefix = os.path.join(tmp_dir, "page")
            command = [
                self.executable,
                "-png",
                "-r", str(self.dpi),
                "-f", str(page.number),
                "-l", str(page.number),
                "-singlefile",
                page.pdf_path,
                prefix,
            ]

            logger.debug(f"Rendering page {page.number} of {page.pdf_path}")
            try:
                completed = subprocess.run(
                    command,
                    capture_output=True,
                    timeout=self.timeout,
                    check=False
                )
            except FileNotFoundError:
                raise RenderError(f"{self.executable} not found")
            except subprocess.TimeoutExpired:
                raise RenderError(f"Rendering page {page.number} timed out after {self.timeout}s")

            if completed.returncode != 0:
                stderr = completed.stderr.decode(errors="replace").strip()
                raise RenderError(
                    f"PDF to image conversion failed for page {page.number}: {stderr or completed.returncode}"
                )

            output_path = f"{prefix}.png"
            if not os.path.isfile(output_path):
                raise RenderError(f"No image generated for page {page.number}")

            with open(output_path, "rb") as f:
                return f.read()
