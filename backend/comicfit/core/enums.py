"""Enumeraciones compartidas que describen estados, formatos y estrategias."""

from enum import Enum


class JobStatus(str, Enum):
    """Estados posibles de un trabajo de conversión."""

    UPLOADED = "uploaded"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ArchiveKind(str, Enum):
    """Contenedor de entrada que sabemos abrir."""

    ZIP = "zip"  # CBZ/ZIP
    RAR = "rar"  # CBR/RAR


class OutputFormat(str, Enum):
    """Formato en el que devolvemos el cómic convertido."""

    CBZ = "cbz"
    EPUB = "epub"
    MOBI = "mobi"

    @property
    def media_type(self) -> str:
        return _OUTPUT_MEDIA_TYPES[self]


_OUTPUT_MEDIA_TYPES = {
    OutputFormat.CBZ: "application/vnd.comicbook+zip",
    OutputFormat.EPUB: "application/epub+zip",
    OutputFormat.MOBI: "application/x-mobipocket-ebook",
}


class ImageFormat(str, Enum):
    """Codificación de cada página procesada."""

    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"

    @property
    def extension(self) -> str:
        return "jpg" if self is ImageFormat.JPEG else self.value

    @property
    def media_type(self) -> str:
        return f"image/{self.value}"

    @property
    def pillow_format(self) -> str:
        return self.value.upper()


class PngCompression(str, Enum):
    FAST = "fast"
    DEFAULT = "default"
    BEST = "best"

    @property
    def level(self) -> int:
        """Nivel de zlib que entiende Pillow (`compress_level`)."""
        return {"fast": 1, "default": 6, "best": 9}[self.value]


class SplitStrategy(str, Enum):
    """Qué hacer con las páginas dobles (spreads)."""

    NONE = "none"
    SPLIT = "split"
    ROTATE = "rotate"
    ROTATE_SPLIT = "rotate-split"


class ReadingDirection(str, Enum):
    LTR = "ltr"
    RTL = "rtl"


class MarginColor(str, Enum):
    """Color de relleno cuando la página no ocupa todo el lienzo."""

    NONE = "none"
    BLACK = "black"
    WHITE = "white"

    @property
    def luminance(self) -> int | None:
        if self is MarginColor.BLACK:
            return 0
        if self is MarginColor.WHITE:
            return 255
        return None


class PageErrorKind(str, Enum):
    """Etapa en la que falló una página concreta."""

    READ = "read"
    DECODE = "decode"
    PROCESS = "process"
    ENCODE = "encode"


class ConversionStatus(str, Enum):
    """Resultado final visible para el usuario."""

    SUCCEEDED = "succeeded"
    SUCCEEDED_WITH_FAILURES = "succeeded_with_failures"
    FAILED = "failed"
