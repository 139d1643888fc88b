from __future__ import annotations

import pytest

from renderbridge.storage.job_store import FileJobStore
from renderbridge.storage.temp_results import RenderOutputStore


@pytest.fixture
def image_path(tmp_path) -> str:
    path = tmp_path / "capture.png"
    path.write_bytes(b"\x89PNG capture")
    return str(path)


@pytest.fixture
def store(tmp_path) -> FileJobStore:
    return FileJobStore(str(tmp_path / "jobs"))


@pytest.fixture
def outputs(tmp_path) -> RenderOutputStore:
    return RenderOutputStore(str(tmp_path / "outputs"))
