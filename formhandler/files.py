"""
Upload validation: size limits, content sniffing and relocation.

Key Features:
- Byte size limits through the limiting engine using the ``file`` unit
- Magic number detection of the real content type of the temp file
- Extension spoofing detection by cross-checking the declared file name
- Extension allow-lists per field, with per-category defaults
- Optional relocation into a target directory under a random name
"""

import os
import re
import secrets
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import structlog

from formhandler.context import ValidationContext
from formhandler.engines.limiting import UNIT_FILE
from formhandler.exceptions import DirectoryNotFoundError, FileMoveError
from formhandler.validators import TypeValidator

logger = structlog.get_logger(__name__)

# Number of leading bytes read when sniffing
SNIFF_LENGTH = 512

FILE_SIGNATURES: Tuple[Tuple[bytes, Tuple[str, ...]], ...] = (
    (b'\x89PNG\r\n\x1a\n', ('png',)),
    (b'\xD0\xCF\x11\xE0\xA1\xB1\x1A\xE1', ('doc', 'xls', 'ppt', 'msi')),
    (b'Rar!\x1a\x07', ('rar',)),
    (b'7z\xBC\xAF\x27\x1C', ('7z',)),
    (b'\x1A\x45\xDF\xA3', ('mkv', 'webm')),
    (b'\xFF\xD8\xFF', ('jpg',)),
    (b'GIF87a', ('gif',)),
    (b'GIF89a', ('gif',)),
    (b'%PDF', ('pdf',)),
    (b'PK\x03\x04', ('zip', 'docx', 'xlsx', 'pptx', 'odt', 'ods', 'epub', 'jar')),
    (b'{\\rtf', ('rtf',)),
    (b'II*\x00', ('tiff',)),
    (b'MM\x00*', ('tiff',)),
    (b'OggS', ('ogg', 'oga', 'ogv')),
    (b'fLaC', ('flac',)),
    (b'ID3', ('mp3',)),
    (b'\xFF\xFB', ('mp3',)),
    (b'\xFF\xF3', ('mp3',)),
    (b'\xFF\xF2', ('mp3',)),
    (b'\x00\x00\x01\x00', ('ico',)),
    (b'\x1f\x8b', ('gz', 'tgz')),
    (b'BM', ('bmp',)),
)

RIFF_SUBTYPES = {
    b'WEBP': ('webp',),
    b'AVI ': ('avi',),
    b'WAVE': ('wav',),
}

ISO_MEDIA_CANDIDATES = ('mp4', 'm4a', 'm4v', 'mov')

EXTENSION_ALIASES = {
    'jpeg': 'jpg',
    'jpe': 'jpg',
    'jfif': 'jpg',
    'tif': 'tiff',
    'htm': 'html',
    'mpeg': 'mp3',
    'mpga': 'mp3',
    'qt': 'mov',
    'text': 'txt',
    'tgz': 'gz',
}

MIME_EXTENSIONS = {
    'image/jpeg': 'jpg',
    'image/png': 'png',
    'image/gif': 'gif',
    'image/webp': 'webp',
    'image/bmp': 'bmp',
    'image/tiff': 'tiff',
    'application/pdf': 'pdf',
    'application/msword': 'doc',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document': 'docx',
    'text/plain': 'txt',
    'application/rtf': 'rtf',
    'application/zip': 'zip',
    'application/x-tar': 'tar',
    'application/gzip': 'gz',
    'application/x-rar-compressed': 'rar',
    'video/mp4': 'mp4',
    'video/x-msvideo': 'avi',
    'video/quicktime': 'mov',
    'audio/mpeg': 'mp3',
    'audio/wav': 'wav',
    'audio/flac': 'flac',
    'audio/ogg': 'ogg',
}

DEFAULT_FILE_MIMES: Dict[str, Tuple[str, ...]] = {
    'image': ('jpg', 'png', 'gif', 'webp', 'bmp', 'tiff', 'ico'),
    'audio': ('mp3', 'wav', 'flac', 'ogg', 'm4a'),
    'video': ('mp4', 'avi', 'mov', 'mkv', 'webm', 'm4v', 'ogv'),
    'document': ('pdf', 'doc', 'docx', 'xls', 'xlsx', 'ppt', 'pptx', 'odt', 'ods', 'txt', 'rtf'),
    'archive': ('zip', 'tar', 'gz', 'rar', '7z'),
}
DEFAULT_FILE_MIMES['media'] = (
    DEFAULT_FILE_MIMES['image'] + DEFAULT_FILE_MIMES['audio'] + DEFAULT_FILE_MIMES['video']
)

FILE_TYPES = ('file', 'image', 'audio', 'video', 'media', 'document', 'archive')

DECLARED_EXTENSION = re.compile(r'\.(\w+)$')


# ============================================================================
# CONTENT DETECTION
# ============================================================================

class FileExtensionDetector:
    """
    Default content sniffer.

    ``detect`` reads the leading bytes of a file and returns every extension whose
    signature matches. Content without a known signature that decodes as UTF-8 is
    reported as ``txt``.
    """

    def __init__(self):
        self._magic_byte = ''

    def detect(self, path: str) -> List[str]:
        with open(path, 'rb') as handle:
            header = handle.read(SNIFF_LENGTH)
        candidates = self.detect_bytes(header)
        logger.debug("File content sniffed", path=path, candidates=candidates,
                     magic_byte=self._magic_byte)
        return candidates

    def detect_bytes(self, header: bytes) -> List[str]:
        self._magic_byte = header[:8].hex()

        if header.startswith(b'RIFF') and header[8:12] in RIFF_SUBTYPES:
            self._magic_byte = header[:12].hex()
            return list(RIFF_SUBTYPES[header[8:12]])
        if header[4:8] == b'ftyp':
            self._magic_byte = header[:8].hex()
            return list(ISO_MEDIA_CANDIDATES)
        if header[257:262] == b'ustar':
            return ['tar']

        for signature, extensions in FILE_SIGNATURES:
            if header.startswith(signature):
                self._magic_byte = signature.hex()
                return list(extensions)

        if self._is_text(header):
            return ['txt']
        return []

    @staticmethod
    def _is_text(header: bytes) -> bool:
        if b'\x00' in header:
            return False
        try:
            header.decode('utf-8')
        except UnicodeDecodeError as exc:
            # a multi-byte character may be cut at the sniff boundary
            return exc.start >= len(header) - 3 and exc.reason == 'unexpected end of data'
        return True

    def resolve_extension(self, ext: str) -> str:
        """Canonical extension for an extension, alias or MIME type."""
        ext = ext.strip().lower()
        if '/' in ext:
            return MIME_EXTENSIONS.get(ext, ext.rsplit('/', 1)[-1])
        ext = ext.lstrip('.')
        return EXTENSION_ALIASES.get(ext, ext)

    def resolve_extensions(self, extensions: Iterable[str]) -> List[str]:
        resolved = []
        for ext in extensions:
            canonical = self.resolve_extension(ext)
            if canonical not in resolved:
                resolved.append(canonical)
        return resolved

    def get_magic_byte(self) -> str:
        """Hex signature of the most recently sniffed file."""
        return self._magic_byte


# ============================================================================
# FILE VALIDATOR
# ============================================================================

def file_attribute(files: Mapping[str, Any], field: str, attribute: str,
                   index: int = 0) -> Any:
    """Read one attribute of an upload, indexing into list attributes."""
    entry = files.get(field) or {}
    value = entry.get(attribute)
    if isinstance(value, (list, tuple)):
        return value[index] if index < len(value) else None
    return value


class FileValidator(TypeValidator):
    """
    Validates uploaded files of one field.

    The resolved extension and, when relocation is configured, the generated file
    name of the last validated upload are kept on the instance and per field.
    """

    def __init__(self, detector: Optional[FileExtensionDetector] = None, **kwargs):
        super().__init__(**kwargs)
        self.detector = detector or FileExtensionDetector()
        self._file_names: Dict[str, List[str]] = {}
        self._extensions: Dict[str, List[str]] = {}
        self._last_file_name: Optional[str] = None

    def check(self, ctx: ValidationContext) -> bool:
        size = file_attribute(ctx.files, ctx.field, 'size', ctx.index) or 0
        if not self.limiting.check(ctx, float(size), UNIT_FILE):
            return False

        path = file_attribute(ctx.files, ctx.field, 'tmpName', ctx.index) \
            or file_attribute(ctx.files, ctx.field, 'path', ctx.index)
        if not path:
            return ctx.fail(ctx.option('err', '{_this} upload is missing its temporary file'))

        ext = self.resolve_file_extension(ctx, str(path))
        if ext is None:
            return False

        mimes = ctx.option('mimes')
        if mimes:
            if isinstance(mimes, str):
                mimes = [item for item in re.split(r'[,\s]+', mimes) if item]
            if ext not in self.detector.resolve_extensions(mimes):
                return ctx.fail(ctx.option('mimeErr', f'".{ext}" file extension not accepted'))

        override = ctx.option('overrideMime')
        if override:
            ext = self.detector.resolve_extension(str(override))

        self._extensions.setdefault(ctx.field, []).append(ext)

        move_to = ctx.option('moveTo')
        if move_to:
            self.move_file(ctx, str(path), str(move_to), ext)
        return True

    def resolve_file_extension(self, ctx: ValidationContext, path: str) -> Optional[str]:
        """Sniff the upload and cross-check the declared name; None means failure."""
        candidates = self.detector.detect(path)

        if 'txt' in candidates:
            return 'txt'

        declared = DECLARED_EXTENSION.search(str(ctx.value))
        if declared:
            ext = self.detector.resolve_extension(declared.group(1))
            if ext not in candidates:
                logger.warning(
                    "File extension spoofing detected",
                    field=ctx.field,
                    declared=ext,
                    candidates=candidates,
                    magic_byte=self.detector.get_magic_byte()
                )
                ctx.fail('File extension spoofing detected')
                return None
            return ext

        if not candidates:
            ctx.fail(ctx.option('err', '{_this} file type could not be detected'))
            return None
        return candidates[0]

    def move_file(self, ctx: ValidationContext, path: str, move_to: str, ext: str) -> str:
        """
        Rename the upload into ``move_to`` under a random name.

        Raises:
            DirectoryNotFoundError: If the target directory does not exist
            FileMoveError: If the rename fails
        """
        directory = move_to.rstrip('/\\') or move_to
        if not os.path.isdir(directory):
            raise DirectoryNotFoundError(directory)

        file_name = f"{secrets.token_hex(16)}.{ext}"
        destination = Path(directory) / file_name
        try:
            os.replace(path, destination)
        except OSError as exc:
            raise FileMoveError(
                ctx.option('moveErr', 'Error occured while moving uploaded file'),
                details={'source': path, 'destination': str(destination)}
            ) from exc

        self._last_file_name = file_name
        self._file_names.setdefault(ctx.field, []).append(file_name)
        logger.info("Uploaded file relocated", field=ctx.field, file_name=file_name,
                    directory=directory)
        return file_name

    def get_file_name(self, field: Optional[str] = None) -> Optional[str]:
        """Generated name of the last relocated file, optionally for one field."""
        if field is None:
            return self._last_file_name
        names = self._file_names.get(field)
        return names[-1] if names else None

    def get_file_names(self, field: str) -> List[str]:
        return list(self._file_names.get(field, ()))

    def get_extensions(self, field: str) -> List[str]:
        return list(self._extensions.get(field, ()))

    def get_file_magic_byte(self) -> str:
        return self.detector.get_magic_byte()
