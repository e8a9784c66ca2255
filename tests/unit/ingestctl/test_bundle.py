"""
Tests for deployment package download and extraction.
"""

import io
import tarfile

import httpx
import pytest

from ingestctl.bundle import PACKAGE_FILENAME, download_package, extract_package, find_terraform_dir
from ingestctl.errors import UserInputError


def make_archive(path, members):
    with tarfile.open(path, "w:gz") as tar:
        for name, content in members.items():
            data = content.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return path


class TestDownload:
    def test_streams_to_file(self, tmp_path):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"archive-bytes"))
        archive = download_package("https://cdn.test/pkg.tar.gz", tmp_path / "dl", transport=transport)
        assert archive == tmp_path / "dl" / PACKAGE_FILENAME
        assert archive.read_bytes() == b"archive-bytes"

    def test_http_error(self, tmp_path):
        transport = httpx.MockTransport(lambda request: httpx.Response(403))
        with pytest.raises(UserInputError, match="HTTP 403"):
            download_package("https://cdn.test/pkg.tar.gz", tmp_path, transport=transport)

    def test_connection_error(self, tmp_path):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UserInputError, match="download failed"):
            download_package("https://cdn.test/pkg.tar.gz", tmp_path, transport=httpx.MockTransport(handler))


class TestExtract:
    def test_extract_and_find_terraform(self, tmp_path):
        archive = make_archive(tmp_path / "pkg.tar.gz", {
            "corco/deployment/terraform/main.tf": "",
            "corco/README.md": "hello",
        })
        root = extract_package(archive, tmp_path / "out")
        assert find_terraform_dir(root / "corco") == root / "corco" / "deployment" / "terraform"

    def test_find_by_main_tf(self, tmp_path):
        (tmp_path / "infra" / "gcp").mkdir(parents=True)
        (tmp_path / "infra" / "gcp" / "main.tf").write_text("")
        assert find_terraform_dir(tmp_path) == tmp_path / "infra" / "gcp"

    def test_no_root_module(self, tmp_path):
        assert find_terraform_dir(tmp_path) is None

    def test_rejects_path_traversal(self, tmp_path):
        archive = make_archive(tmp_path / "pkg.tar.gz", {"../escape.txt": "x"})
        (tmp_path / "out").mkdir()
        with pytest.raises(UserInputError, match="unsafe"):
            extract_package(archive, tmp_path / "out")
        assert not (tmp_path / "escape.txt").exists()

    def test_invalid_archive(self, tmp_path):
        bogus = tmp_path / "pkg.tar.gz"
        bogus.write_bytes(b"not a tarball")
        with pytest.raises(UserInputError, match="not a valid archive"):
            extract_package(bogus, tmp_path / "out")
