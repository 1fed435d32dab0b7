"""源码来源适配器 - 支持 Git / 归档 / 本地目录

职责：
- 定位符分类（非法定位符在任何网络/文件系统操作前即失败）
- Git 仓库浅克隆
- 归档下载（http/https）或本地归档，校验 sha256 后解压
- 本地目录复制
"""

from __future__ import annotations

import hashlib
import logging
import re
import shutil
import subprocess
import tarfile
import urllib.error
import urllib.request
from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

from formulary.core.exceptions import ExecutionError, FetchError, ValidationError
from formulary.core.models import SourceRef
from formulary.utils.net import SCP_LIKE_RE, has_host, validate_url_scheme
from formulary.utils.shell import CommandExecutor, run_cmd

logger = logging.getLogger(__name__)

_SAFE_REF_RE = re.compile(r"^[a-zA-Z0-9_./@\-]+$")
_ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".tar.xz", ".txz", ".tar")


class SourceKind(str, Enum):
    """源码类型"""
    GIT = "git"
    ARCHIVE = "archive"
    LOCAL = "local"


def classify_locator(url: str) -> SourceKind:
    """判定定位符类型，格式非法时抛 FetchError（不触发任何 IO）"""
    if not url or not url.strip() or any(c.isspace() for c in url):
        raise FetchError(f"源定位符格式非法: {url!r}")

    if url.startswith("git+"):
        url = url[len("git+"):]
        if not has_host(url):
            raise FetchError(f"Git 地址缺少主机名: {url}")
        return SourceKind.GIT
    if SCP_LIKE_RE.match(url):
        return SourceKind.GIT

    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme in ("git", "ssh"):
        if not has_host(url):
            raise FetchError(f"Git 地址缺少主机名: {url}")
        return SourceKind.GIT
    if scheme in ("http", "https"):
        if not has_host(url):
            raise FetchError(f"URL 缺少主机名: {url}")
        path = parsed.path.rstrip("/")
        if path.endswith(".git"):
            return SourceKind.GIT
        if not path.endswith(_ARCHIVE_SUFFIXES):
            raise FetchError(f"不支持的归档类型: {url}（支持 {', '.join(_ARCHIVE_SUFFIXES)}）")
        return SourceKind.ARCHIVE
    if scheme == "file" or not scheme:
        path = parsed.path if scheme == "file" else url
        if not path:
            raise FetchError(f"本地路径为空: {url}")
        if path.endswith(_ARCHIVE_SUFFIXES):
            return SourceKind.ARCHIVE
        return SourceKind.LOCAL
    raise FetchError(f"不支持的源协议 '{scheme}': {url}")


def local_path(url: str) -> Path:
    """file:// 或裸路径 → 本地 Path"""
    parsed = urlparse(url)
    return Path(parsed.path if parsed.scheme == "file" else url).expanduser()


class GitSource:
    """Git 仓库来源（浅克隆）"""

    def __init__(self, executor: CommandExecutor | None = None, timeout: int | None = None) -> None:
        self._executor = executor
        self._timeout = timeout

    def fetch(self, source: SourceRef, dest: Path, download_dir: Path) -> None:
        """克隆到 dest（dest 不能预先存在内容）"""
        if source.ref and not _SAFE_REF_RE.match(source.ref):
            raise FetchError(f"ref 包含非法字符: {source.ref}")
        url = source.url[len("git+"):] if source.url.startswith("git+") else source.url
        cmd = ["git", "clone", "--depth", "1"]
        if source.ref:
            cmd += ["--branch", source.ref]
        cmd += [url, str(dest)]
        try:
            run_cmd(
                cmd, cwd=str(dest.parent), label="git clone",
                timeout=self._timeout, executor=self._executor,
            )
        except ExecutionError as e:
            raise FetchError(f"Git 克隆失败: {url}", output=e.output) from e
        except subprocess.TimeoutExpired as e:
            raise FetchError(f"Git 克隆超时 ({self._timeout}s): {url}") from e
        except OSError as e:
            raise FetchError(f"无法执行 git: {e}") from e
        logger.info("Git 就绪: %s@%s -> %s", url, source.ref or "HEAD", dest)


class ArchiveSource:
    """归档来源（远程 http/https 或本地文件）"""

    def __init__(self, timeout: int | None = None) -> None:
        self._timeout = timeout

    def fetch(self, source: SourceRef, dest: Path, download_dir: Path) -> None:
        """下载（如需）→ 校验 → 解压到 dest"""
        download_dir.mkdir(parents=True, exist_ok=True)
        if urlparse(source.url).scheme in ("http", "https"):
            archive = self._download(source.url, download_dir)
        else:
            archive = local_path(source.url)
            if not archive.is_file():
                raise FetchError(f"本地归档不存在: {archive}")

        if source.sha256:
            self._verify_checksum(archive, source.sha256)

        try:
            if not tarfile.is_tarfile(str(archive)):
                raise FetchError(f"归档格式无效: {archive}")
            dest.mkdir(parents=True, exist_ok=True)
            with tarfile.open(str(archive)) as tf:
                tf.extractall(path=str(dest), filter="data")  # noqa: S202
        except (OSError, tarfile.TarError) as e:
            raise FetchError(f"归档解压失败 {archive}: {e}") from e
        logger.info("归档解压就绪: %s -> %s", source.url, dest)

    def _download(self, url: str, download_dir: Path) -> Path:
        try:
            validate_url_scheme(url, context="source download")
        except ValidationError as e:
            raise FetchError(str(e)) from e
        filename = urlparse(url).path.rstrip("/").split("/")[-1] or "download"
        target = download_dir / filename
        logger.info("  下载: %s", url)
        try:
            with urllib.request.urlopen(url, timeout=self._timeout) as resp, \
                    open(target, "wb") as f:  # nosec B310
                shutil.copyfileobj(resp, f)
        except urllib.error.HTTPError as e:
            target.unlink(missing_ok=True)
            if e.code in (401, 403):
                raise FetchError(f"下载认证失败 (HTTP {e.code}): {url}") from e
            if e.code == 404:
                raise FetchError(f"源不存在 (HTTP 404): {url}") from e
            raise FetchError(f"下载失败 (HTTP {e.code}): {url}") from e
        except (urllib.error.URLError, OSError) as e:
            target.unlink(missing_ok=True)
            raise FetchError(f"下载失败: {url} - {e}") from e
        return target

    @staticmethod
    def _verify_checksum(path: Path, expected: str) -> None:
        sha256 = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha256.update(chunk)
        actual = sha256.hexdigest()
        if actual != expected.lower():
            raise FetchError(f"校验和不匹配 {path.name}: 期望 {expected}, 实际 {actual}")
        logger.info("  校验和通过: %s", path.name)


class LocalSource:
    """本地目录来源"""

    def fetch(self, source: SourceRef, dest: Path, download_dir: Path) -> None:
        src = local_path(source.url)
        if not src.is_dir():
            raise FetchError(f"本地源目录不存在: {src}")
        try:
            shutil.copytree(src, dest, symlinks=True)
        except (OSError, shutil.Error) as e:
            raise FetchError(f"复制本地源失败 {src}: {e}") from e
        logger.info("本地源就绪: %s -> %s", src, dest)
