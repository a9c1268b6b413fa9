"""Upload, history and queue data models.

Persisted models serialize with camelCase keys so documents written by
earlier releases of the desktop app stay readable.
"""

import random
import string
import time
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from picnexus.core.constants import (
    RESULT_SUCCESS, RESULT_FAILED, QUEUE_STATE_PENDING, DEFAULT_MAX_RETRIES,
    OUTCOME_SUCCESS,
)


def now_ms() -> int:
    """Current unix time in milliseconds."""
    return int(time.time() * 1000)


def generate_item_id() -> str:
    """Unique id from the current timestamp plus 9 random base36 chars."""
    alphabet = string.digits + string.ascii_lowercase
    suffix = "".join(random.choice(alphabet) for _ in range(9))
    return f"{now_ms()}_{suffix}"


@dataclass
class UploadResult:
    """What a backend returns for one successful upload."""
    service_id: str
    url: str
    file_key: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'serviceId': self.service_id, 'url': self.url}
        if self.file_key is not None:
            data['fileKey'] = self.file_key
        if self.metadata:
            data['metadata'] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UploadResult':
        return cls(
            service_id=data.get('serviceId', ''),
            url=data.get('url', ''),
            file_key=data.get('fileKey'),
            metadata=dict(data.get('metadata') or {}),
        )


@dataclass
class ServiceUploadResult:
    """Outcome of one attempted backend for one upload."""
    service_id: str
    status: str
    result: Optional[UploadResult] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RESULT_SUCCESS and self.result is not None

    @classmethod
    def success(cls, service_id: str, result: UploadResult) -> 'ServiceUploadResult':
        return cls(service_id=service_id, status=RESULT_SUCCESS, result=result)

    @classmethod
    def failure(cls, service_id: str, error: str) -> 'ServiceUploadResult':
        return cls(service_id=service_id, status=RESULT_FAILED, error=error)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'serviceId': self.service_id, 'status': self.status}
        if self.result is not None:
            data['result'] = self.result.to_dict()
        if self.error is not None:
            data['error'] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ServiceUploadResult':
        result = data.get('result')
        return cls(
            service_id=data.get('serviceId', ''),
            status=data.get('status', RESULT_FAILED),
            result=UploadResult.from_dict(result) if result else None,
            error=data.get('error'),
        )


@dataclass
class MultiUploadResult:
    """Aggregate of a multi-service fan-out for one file."""
    primary_service: str
    primary_url: str
    results: List[ServiceUploadResult] = field(default_factory=list)

    def result_for(self, service_id: str) -> Optional[ServiceUploadResult]:
        for r in self.results:
            if r.service_id == service_id:
                return r
        return None


@dataclass
class HistoryItem:
    """Persisted record of one upload and its per-backend outcomes."""
    id: str
    timestamp: int
    local_file_name: str
    primary_service: Optional[str]
    results: List[ServiceUploadResult] = field(default_factory=list)
    generated_link: str = ""
    file_path: Optional[str] = None
    backup_key: Optional[str] = None

    # Image metadata (optional)
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None
    format: Optional[str] = None

    @property
    def has_success(self) -> bool:
        return any(r.succeeded for r in self.results)

    def result_for(self, service_id: str) -> Optional[ServiceUploadResult]:
        for r in self.results:
            if r.service_id == service_id:
                return r
        return None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'id': self.id,
            'timestamp': self.timestamp,
            'localFileName': self.local_file_name,
            'primaryService': self.primary_service,
            'results': [r.to_dict() for r in self.results],
            'generatedLink': self.generated_link,
        }
        if self.file_path is not None:
            data['filePath'] = self.file_path
        if self.backup_key is not None:
            data['backupKey'] = self.backup_key
        for key, value in (('width', self.width), ('height', self.height),
                           ('fileSize', self.file_size), ('format', self.format)):
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HistoryItem':
        return cls(
            id=str(data.get('id', '')),
            timestamp=int(data.get('timestamp', 0) or 0),
            local_file_name=data.get('localFileName', ''),
            primary_service=data.get('primaryService'),
            results=[ServiceUploadResult.from_dict(r) for r in data.get('results') or []],
            generated_link=data.get('generatedLink', ''),
            file_path=data.get('filePath'),
            # r2Key is the field name used by pre-multi-service history
            backup_key=data.get('backupKey', data.get('r2Key')),
            width=data.get('width'),
            height=data.get('height'),
            file_size=data.get('fileSize'),
            format=data.get('format'),
        )


@dataclass
class FailedItem:
    """A retryable failed upload with the configuration it was attempted with."""
    id: str
    file_path: str
    config_snapshot: Dict[str, Any]
    error_message: str
    timestamp: int = field(default_factory=now_ms)
    error_kind: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'filePath': self.file_path,
            'configSnapshot': self.config_snapshot,
            'errorMessage': self.error_message,
            'timestamp': self.timestamp,
        }
        if self.error_kind is not None:
            data['errorKind'] = self.error_kind
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FailedItem':
        return cls(
            id=str(data.get('id', '')),
            file_path=data.get('filePath', ''),
            config_snapshot=dict(data.get('configSnapshot') or {}),
            error_message=data.get('errorMessage', ''),
            timestamp=int(data.get('timestamp', 0) or 0),
            error_kind=data.get('errorKind'),
        )


@dataclass
class UploadOutcome:
    """Result of the single-backend upload path."""
    status: str
    link: Optional[str] = None
    message: Optional[str] = None
    history_item: Optional[HistoryItem] = None

    @property
    def ok(self) -> bool:
        return self.status == OUTCOME_SUCCESS


@dataclass
class ServiceProgress:
    """Per-service progress of a queue item (UI facing)."""
    service_id: str
    percent: float = 0.0
    status: str = "waiting"
    link: Optional[str] = None
    error: Optional[str] = None
    is_retrying: bool = False


@dataclass
class QueueItem:
    """In-memory queue entry for one file."""
    id: str
    file_path: str
    file_name: str
    enabled_services: List[str]
    service_progress: Dict[str, ServiceProgress] = field(default_factory=dict)
    status: str = QUEUE_STATE_PENDING
    error_message: Optional[str] = None
    primary_url: Optional[str] = None
    history_id: Optional[str] = None
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    added_time: float = field(default_factory=time.time)
    finished_time: Optional[float] = None
