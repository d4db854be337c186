import io
import tarfile
import zipfile
from unittest import mock

import pytest
import requests

from rtvm.core.download_manager import (
    DownloadError,
    DownloadManager,
    ExtractionError,
    InstallationError,
)
from rtvm.core.models import Provenance
from rtvm.core.registry import InstallationRegistry, VersionAlreadyInstalledError
from rtvm.core.tool_plugin import PluginRegistry
from rtvm.utils.rate_limiter import RateLimiter
from rtvm.utils.retry import RetryHandler


def _zip_bytes(files):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def _tar_gz_bytes(files):
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tf:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = 0o755
            tf.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def _download_response(payload):
    response = mock.Mock()
    response.headers = {"content-length": str(len(payload))}
    response.iter_content.return_value = [payload[:10], payload[10:]]
    response.raise_for_status.return_value = None
    return response


@pytest.fixture
def registry(config_manager):
    return InstallationRegistry(config_manager, PluginRegistry(config_manager, windows=False))


@pytest.fixture
def downloader(config_manager, registry):
    return DownloadManager(
        config_manager,
        registry,
        registry.plugins,
        retry_handler=RetryHandler(max_retries=1, sleep=lambda s: None),
        rate_limiter=RateLimiter(None),
    )


def _tool_dir_entries(config_manager, tool):
    return sorted(p.name for p in config_manager.tool_versions_dir(tool).iterdir())


def test_install_zip_uses_full_version_from_archive(downloader, config_manager):
    payload = _zip_bytes({
        "jdk-21.0.7+6/bin/java": b"#!/bin/sh\n",
        "jdk-21.0.7+6/release": b'JAVA_VERSION="21.0.7"\n',
    })
    progress = []

    with mock.patch("rtvm.core.download_manager.requests.get", return_value=_download_response(payload)):
        installed = downloader.download_version(
            "java", "21", "https://example.invalid/jdk", lambda done, total: progress.append((done, total))
        )

    assert installed.raw == "21.0.7+6"
    assert installed.provenance == Provenance.MANAGED
    assert (config_manager.tool_versions_dir("java") / "21.0.7+6" / "bin" / "java").is_file()
    assert _tool_dir_entries(config_manager, "java") == ["21.0.7+6"]
    assert progress[-1] == (len(payload), len(payload))
    assert list(config_manager.cache_dir.iterdir()) == []


def test_install_tar_gz(downloader, config_manager):
    payload = _tar_gz_bytes({"node-v20.15.0-linux-x64/bin/node": b"#!/bin/sh\n"})

    with mock.patch("rtvm.core.download_manager.requests.get", return_value=_download_response(payload)):
        installed = downloader.download_version("node", "20.15.0", "https://example.invalid/node.tar.gz")

    assert installed.raw == "20.15.0"
    assert (config_manager.tool_versions_dir("node") / "20.15.0" / "bin" / "node").is_file()


def test_archive_without_tool_layout_is_rejected(downloader, config_manager):
    payload = _zip_bytes({"node-v20.15.0/README.md": b"hello"})

    with mock.patch("rtvm.core.download_manager.requests.get", return_value=_download_response(payload)):
        with pytest.raises(InstallationError):
            downloader.download_version("node", "20.15.0", "https://example.invalid/node.zip")

    assert _tool_dir_entries(config_manager, "node") == []


def test_corrupt_archive_leaves_no_partial_install(downloader, config_manager):
    payload = b"this is not an archive at all"

    with mock.patch("rtvm.core.download_manager.requests.get", return_value=_download_response(payload)):
        with pytest.raises(ExtractionError):
            downloader.download_version("java", "21", "https://example.invalid/jdk")

    assert _tool_dir_entries(config_manager, "java") == []
    assert list(config_manager.cache_dir.iterdir()) == []


def test_tar_with_path_traversal_is_rejected(downloader, config_manager):
    payload = _tar_gz_bytes({"../escape/bin/node": b"x"})

    with mock.patch("rtvm.core.download_manager.requests.get", return_value=_download_response(payload)):
        with pytest.raises(ExtractionError):
            downloader.download_version("node", "20.15.0", "https://example.invalid/node.tar.gz")

    assert not (config_manager.tool_versions_dir("node").parent / "escape").exists()


def test_network_failure_raises_download_error(downloader, config_manager):
    error = requests.exceptions.ConnectionError("offline")

    with mock.patch("rtvm.core.download_manager.requests.get", side_effect=error) as get:
        with pytest.raises(DownloadError):
            downloader.download_version("node", "20.15.0", "https://example.invalid/node.tar.gz")

    assert get.call_count == 2
    assert _tool_dir_entries(config_manager, "node") == []


def test_existing_version_is_not_downloaded(downloader, make_install):
    make_install("node", "20.15.0")

    with mock.patch("rtvm.core.download_manager.requests.get") as get:
        with pytest.raises(VersionAlreadyInstalledError):
            downloader.download_version("node", "20.15.0", "https://example.invalid/node.tar.gz")
    get.assert_not_called()
