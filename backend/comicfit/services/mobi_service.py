"""Frontera con KindleGen: EPUB en memoria -> archivo MOBI en disco.

Es el único punto del conversor que depende de un proceso externo. El
`runner` se inyecta para poder probar el pipeline sin el binario instalado.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Callable

from comicfit.core.config import get_settings
from comicfit.core.errors import ConversionError, ExternalToolError

logger = logging.getLogger(__name__)


class MobiConverter:
    """
    Escribe el EPUB junto al destino, invoca el binario y deja el MOBI en
    `output_path`.
    """

    def __init__(
        self,
        binary: str | None = None,
        locale: str | None = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        settings = get_settings()
        self.binary = binary or settings.kindlegen_binary
        self.locale = locale or settings.kindlegen_locale
        self.runner = runner
        self.which = which

    def is_available(self) -> bool:
        return self.which(self.binary) is not None

    def convert(self, epub: bytes, output_path: Path, keep_epub: bool = False) -> Path:
        executable = self.which(self.binary)
        if executable is None:
            raise ExternalToolError(
                self.binary,
                f"{self.binary} was not found in PATH; install KindleGen to produce MOBI files",
            )

        output_path.parent.mkdir(parents=True, exist_ok=True)
        epub_path = output_path.with_name(output_path.stem + ".epub")
        epub_path.write_bytes(epub)

        logger.info("Converting EPUB to MOBI: %s -> %s", epub_path, output_path)
        try:
            completed = self.runner(
                [executable, "-dont_append_source", "-locale", self.locale, str(epub_path)],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise ExternalToolError(self.binary, f"Failed to execute {self.binary}: {exc}") from exc

        output = "\n".join(part for part in (completed.stdout, completed.stderr) if part)

        # KindleGen sale con código 1 cuando sólo hay avisos
        if completed.returncode != 0 and "Warnings" not in output:
            raise ConversionError(
                f"{self.binary} failed with code {completed.returncode}",
                returncode=completed.returncode,
                output=output,
            )

        # KindleGen deja el .mobi junto al .epub
        produced = epub_path.with_suffix(".mobi")
        if not produced.exists():
            raise ConversionError(
                f"{self.binary} did not produce {produced.name}",
                returncode=completed.returncode,
                output=output,
            )
        if produced != output_path:
            shutil.move(str(produced), str(output_path))

        if not keep_epub:
            epub_path.unlink(missing_ok=True)

        logger.info("MOBI creation successful: %s", output_path)
        return output_path
