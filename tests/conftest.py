"""
Global pytest Configuration and Fixtures

Shared fixtures for the form handler test suite: handler settings with metrics turned
off, an in-memory counting adapter standing in for a MongoDB collection, and an upload
factory that writes real files with known magic numbers into a temporary directory.

Key Components:
- ``settings``: isolated ``HandlerSettings`` independent from the process environment
- ``make_handler``: factory building handlers wired to the in-memory adapter
- ``memory_adapter``: ``DBAdapter`` counting records of named in-memory models
- ``upload``: writes PDF, PNG, JPEG or text uploads and returns files-source entries
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import structlog

from formhandler.adapters import DBAdapter
from formhandler.config.settings import DBCaseStyle, HandlerSettings
from formhandler.handler import Handler


PDF_BYTES = b'%PDF-1.4\n%\xe2\xe3\xcf\xd3\n1 0 obj\n<<>>\nendobj\n'
PNG_BYTES = b'\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x02'
JPEG_BYTES = b'\xFF\xD8\xFF\xE0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00'
TEXT_BYTES = b'plain text upload\nsecond line\n'

UPLOAD_CONTENT = {
    'pdf': (PDF_BYTES, 'application/pdf'),
    'png': (PNG_BYTES, 'image/png'),
    'jpg': (JPEG_BYTES, 'image/jpeg'),
    'txt': (TEXT_BYTES, 'text/plain'),
}


class MemoryAdapter(DBAdapter):
    """Counts records of in-memory models by exact key/value match."""

    def __init__(self, records: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.records = records or {}
        self.queries: List[Dict[str, Any]] = []

    async def count(self, model: Any, query: Dict[str, Any]) -> int:
        self.queries.append(dict(query))
        return sum(
            1 for record in self.records.get(model, [])
            if all(record.get(key) == value for key, value in query.items())
        )


@pytest.fixture(autouse=True)
def structlog_test_configuration():
    """Route structlog through the standard library without custom renderers."""
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()


@pytest.fixture
def settings() -> HandlerSettings:
    return HandlerSettings(
        db_case_style=DBCaseStyle.CAMEL,
        log_level='DEBUG',
        log_format='console',
        metrics_enabled=False
    )


@pytest.fixture
def memory_adapter() -> MemoryAdapter:
    return MemoryAdapter({
        'users': [
            {'firstName': 'Harrison', 'email': 'someone@example.com'},
            {'firstName': 'Jack', 'email': 'jack@example.com'},
        ]
    })


@pytest.fixture
def make_handler(settings, memory_adapter):
    """Factory building handlers that share the test settings and adapter."""

    def factory(data=None, files=None, rules=None, **kwargs) -> Handler:
        kwargs.setdefault('settings', settings)
        kwargs.setdefault('db_adapter', memory_adapter)
        return Handler(data, files, rules, **kwargs)

    return factory


@pytest.fixture
def upload(tmp_path):
    """
    Write an upload into ``tmp_path`` and return its files-source attributes.

    Args:
        kind: One of ``pdf``, ``png``, ``jpg`` or ``txt`` selecting the real content
        name: Client supplied file name, defaults to ``upload.<kind>``
    """
    counter = {'value': 0}

    def factory(kind: str = 'pdf', name: Optional[str] = None) -> Dict[str, Any]:
        content, mime = UPLOAD_CONTENT[kind]
        counter['value'] += 1
        tmp_file = tmp_path / f"upload-{counter['value']}.tmp"
        tmp_file.write_bytes(content)
        return {
            'name': name or f'upload.{kind}',
            'tmpName': str(tmp_file),
            'path': str(tmp_file),
            'size': len(content),
            'type': mime,
        }

    return factory


@pytest.fixture
def upload_collection(upload):
    """Merge several uploads into one list-valued files-source entry."""

    def factory(*entries: Dict[str, Any]) -> Dict[str, List[Any]]:
        keys = entries[0].keys()
        return {key: [entry[key] for entry in entries] for key in keys}

    return factory


@pytest.fixture
def move_dir(tmp_path) -> Path:
    directory = tmp_path / 'uploads'
    directory.mkdir()
    return directory
