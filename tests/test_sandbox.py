"""Tests for PackageSandbox extraction safety, tool runs and teardown."""

from __future__ import annotations

import io
import json
import shutil
import tarfile
from pathlib import Path
from unittest.mock import patch

import pytest

from npmsentinel.engines.scanner.sandbox import PackageSandbox
from npmsentinel.exceptions import ExtractionError, ToolError, ToolUnavailableError
from npmsentinel.models.package import PackageInfo


def make_tarball(
    path: Path, files: dict[str, bytes], *, symlinks: dict[str, str] | None = None
):
    with tarfile.open(path, "w:gz") as tar:
        for name, data in files.items():
            member = tarfile.TarInfo(name)
            member.size = len(data)
            tar.addfile(member, io.BytesIO(data))
        for name, target in (symlinks or {}).items():
            member = tarfile.TarInfo(name)
            member.type = tarfile.SYMTYPE
            member.linkname = target
            tar.addfile(member)
    return path


class FakeRegistry:
    def __init__(self, tarball: Path) -> None:
        self.tarball = tarball

    async def download_tarball(self, info, dest, max_bytes):
        shutil.copy(self.tarball, dest)
        return dest


INFO = PackageInfo(name="demo", version="1.0.0")


class TestPrepare:
    @pytest.mark.asyncio
    async def test_strips_leading_component(self, tmp_path):
        tgz = make_tarball(
            tmp_path / "demo.tgz",
            {
                "package/package.json": b'{"name": "demo", "version": "1.0.0"}',
                "package/lib/index.js": b"module.exports = 1;",
            },
        )
        async with PackageSandbox(FakeRegistry(tgz), tmp_path / "work") as sandbox:
            root = await sandbox.prepare(INFO)
            assert (root / "lib" / "index.js").read_text() == "module.exports = 1;"
            assert json.loads((root / "package.json").read_text())["name"] == "demo"

    @pytest.mark.asyncio
    async def test_rejects_traversal_and_forbidden_entries(self, tmp_path):
        tgz = make_tarball(
            tmp_path / "evil.tgz",
            {
                "package/ok.js": b"1",
                "package/../../escape.js": b"x",
                "package/.env": b"SECRET=1",
                "package/.npmrc": b"//registry:_authToken=x",
                "package/node_modules/dep/index.js": b"x",
                "package/.git/config": b"x",
                "package/bin/tool.exe": b"MZ",
                "package/native/addon.so": b"\x7fELF",
            },
            symlinks={"package/link": "/etc/passwd"},
        )
        async with PackageSandbox(FakeRegistry(tgz), tmp_path / "work") as sandbox:
            root = await sandbox.prepare(INFO)
            names = sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())

        assert names == ["ok.js", "package.json"]
        assert not (tmp_path / "escape.js").exists()

    @pytest.mark.asyncio
    async def test_synthesizes_missing_package_json(self, tmp_path):
        tgz = make_tarball(tmp_path / "demo.tgz", {"package/index.js": b"1"})
        info = PackageInfo(name="demo", version="1.0.0", dependencies={"left-pad": "^1"})
        async with PackageSandbox(FakeRegistry(tgz), tmp_path / "work") as sandbox:
            root = await sandbox.prepare(info)
            manifest = json.loads((root / "package.json").read_text())

        assert manifest == {
            "name": "demo",
            "version": "1.0.0",
            "dependencies": {"left-pad": "^1"},
            "devDependencies": {},
        }

    @pytest.mark.asyncio
    async def test_corrupt_tarball_raises_extraction_error(self, tmp_path):
        bad = tmp_path / "bad.tgz"
        bad.write_bytes(b"not a tarball")
        async with PackageSandbox(FakeRegistry(bad), tmp_path / "work") as sandbox:
            with pytest.raises(ExtractionError):
                await sandbox.prepare(INFO)

    @pytest.mark.asyncio
    async def test_extracted_size_limit(self, tmp_path):
        tgz = make_tarball(tmp_path / "bomb.tgz", {"package/big.bin": b"\0" * 6000})
        sandbox = PackageSandbox(FakeRegistry(tgz), tmp_path / "work", max_tarball_bytes=1000)
        async with sandbox:
            with pytest.raises(ExtractionError):
                await sandbox.prepare(INFO)


class TestTeardown:
    @pytest.mark.asyncio
    async def test_directory_removed_even_when_read_only(self, tmp_path):
        tgz = make_tarball(tmp_path / "demo.tgz", {"package/a/b.js": b"1"})
        async with PackageSandbox(FakeRegistry(tgz), tmp_path / "work") as sandbox:
            root = await sandbox.prepare(INFO)
            (root / "a" / "b.js").chmod(0o400)
            (root / "a").chmod(0o500)
            sandbox_root = sandbox.root

        assert not sandbox_root.exists()

    @pytest.mark.asyncio
    async def test_each_sandbox_gets_unique_root(self, tmp_path):
        a = PackageSandbox(FakeRegistry(tmp_path), tmp_path)
        b = PackageSandbox(FakeRegistry(tmp_path), tmp_path)
        assert a.root != b.root


class TestRunTool:
    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        async with PackageSandbox(FakeRegistry(tmp_path), tmp_path / "work") as sandbox:
            with patch("npmsentinel.engines.scanner.sandbox.shutil.which", return_value=None):
                with pytest.raises(ToolUnavailableError) as exc_info:
                    await sandbox.run_tool(["semgrep", "--version"], cwd=sandbox.root)
        assert exc_info.value.tool == "semgrep"

    @pytest.mark.asyncio
    async def test_captures_stdout(self, tmp_path):
        async with PackageSandbox(FakeRegistry(tmp_path), tmp_path / "work") as sandbox:
            out = await sandbox.run_tool(["echo", "hello"], cwd=sandbox.root)
        assert out.strip() == "hello"

    @pytest.mark.asyncio
    async def test_unexpected_exit_code(self, tmp_path):
        async with PackageSandbox(FakeRegistry(tmp_path), tmp_path / "work") as sandbox:
            with pytest.raises(ToolError):
                await sandbox.run_tool(["false"], cwd=sandbox.root)

    @pytest.mark.asyncio
    async def test_allowed_exit_code(self, tmp_path):
        async with PackageSandbox(FakeRegistry(tmp_path), tmp_path / "work") as sandbox:
            out = await sandbox.run_tool(["false"], cwd=sandbox.root, ok_codes=(0, 1))
        assert out == ""

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, tmp_path):
        async with PackageSandbox(FakeRegistry(tmp_path), tmp_path / "work") as sandbox:
            with pytest.raises(ToolError, match="timed out"):
                await sandbox.run_tool(["sleep", "5"], cwd=sandbox.root, timeout=0.1)
