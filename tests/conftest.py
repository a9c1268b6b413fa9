"""
Pytest configuration and shared fixtures for PicNexus tests.
Provides temp stores with a fixed key, fake backend uploaders and sample
image files. No test touches the real home directory, keyring or network.
"""

import os
import tempfile
import threading
import time
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

# Point the app directory at a throwaway location before picnexus is imported
os.environ["PICNEXUS_HOME"] = tempfile.mkdtemp(prefix="picnexus-test-")

import pytest
from PIL import Image

from picnexus.core.config import UserConfig
from picnexus.core.events import ProgressBus
from picnexus.core.models import UploadResult
from picnexus.network.uploaders import BackendUploader, UploaderRegistry
from picnexus.processing.multi_service import MultiServiceUploader
from picnexus.processing.orchestrator import UploadOrchestrator
from picnexus.storage.encrypted_store import EncryptedStore
from picnexus.storage.secure_storage import SecureStorage
from picnexus.storage.stores import Stores


TEST_KEY = b"\x01" * 32


class FakeUploader(BackendUploader):
    """Configurable in-memory backend.

    Args:
        service_id: Service id
        url: URL template for successful uploads ({name} is the file name)
        errors: Exceptions raised by successive calls (None entries succeed)
        delay: Seconds each upload blocks
        relogin_cookie: Cookie returned by refresh_credentials (enables relogin)
    """

    def __init__(self, service_id: str, url: str = "https://img.example/{service}/{name}",
                 errors: Optional[List[Optional[BaseException]]] = None, delay: float = 0.0,
                 requires_credentials: bool = False, relogin_cookie: Optional[str] = None):
        self.service_id = service_id
        self.display_name = service_id.upper()
        self.requires_credentials = requires_credentials
        self.url = url
        self.errors = list(errors or [])
        self.delay = delay
        self.relogin_cookie = relogin_cookie
        self.calls: List[Dict[str, Any]] = []
        self.relogin_calls = 0
        self._lock = threading.Lock()

    def upload(self, file_path, credentials, on_progress=None) -> UploadResult:
        with self._lock:
            self.calls.append({'file_path': file_path, 'credentials': dict(credentials)})
            error = self.errors.pop(0) if self.errors else None
        if self.delay:
            time.sleep(self.delay)
        if on_progress:
            on_progress(50.0)
        if error is not None:
            raise error
        if on_progress:
            on_progress(100.0)
        name = os.path.basename(file_path)
        return UploadResult(
            service_id=self.service_id,
            url=self.url.format(service=self.service_id, name=name),
            file_key=f"files/{name}",
        )

    @property
    def supports_relogin(self) -> bool:
        return self.relogin_cookie is not None

    def refresh_credentials(self, account) -> str:
        self.relogin_calls += 1
        if self.relogin_cookie is None:
            return super().refresh_credentials(account)
        return self.relogin_cookie


@pytest.fixture
def fake_uploader():
    """The FakeUploader class, for tests that build their own registry."""
    return FakeUploader


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def cipher():
    """SecureStorage with a fixed key (no keyring access)."""
    return SecureStorage(key=TEST_KEY)


@pytest.fixture
def stores(temp_dir, cipher):
    """Settings/history/retry stores in a temp directory."""
    return Stores(
        settings=EncryptedStore(os.path.join(temp_dir, "settings.dat"), cipher),
        history=EncryptedStore(os.path.join(temp_dir, "history.dat"), cipher),
        retry=EncryptedStore(os.path.join(temp_dir, "retry.dat"), cipher),
    )


@pytest.fixture
def image_file(temp_dir):
    """A small real PNG image."""
    path = os.path.join(temp_dir, "photo.png")
    Image.new("RGB", (4, 3), color=(255, 0, 0)).save(path)
    return path


@pytest.fixture
def make_images(temp_dir):
    """Factory creating n distinct PNG files."""
    def make(count: int) -> List[str]:
        paths = []
        for i in range(count):
            path = os.path.join(temp_dir, f"image_{i}.png")
            Image.new("RGB", (2 + i, 2), color=(0, 0, 255)).save(path)
            paths.append(path)
        return paths
    return make


@pytest.fixture
def progress_bus():
    return ProgressBus()


@pytest.fixture
def uploaders():
    """Two always-succeeding fake backends."""
    return {'alpha': FakeUploader('alpha'), 'beta': FakeUploader('beta')}


@pytest.fixture
def registry(uploaders):
    return UploaderRegistry(list(uploaders.values()))


@pytest.fixture
def config():
    """User config enabling both fake services, raw links."""
    return UserConfig.from_dict({
        'enabledServices': ['alpha', 'beta'],
        'services': {'alpha': {'enabled': True}, 'beta': {'enabled': True}},
        'outputFormat': 'weibo',
    })


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def clipboard():
    return Mock()


@pytest.fixture
def orchestrator(stores, registry, progress_bus, notifier, clipboard):
    """UploadOrchestrator wired to fakes; object storage is a Mock client."""
    storage_client = Mock()
    orch = UploadOrchestrator(
        stores=stores,
        registry=registry,
        multi_uploader=MultiServiceUploader(registry, progress_bus),
        webdav_sync=Mock(),
        notifier=notifier,
        clipboard=clipboard,
        object_storage_factory=lambda cfg: storage_client,
        backup_timeout=2,
    )
    orch.storage_client = storage_client
    return orch
