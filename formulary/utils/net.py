"""网络工具 - URL / 源码定位符校验"""

from __future__ import annotations

import re
from urllib.parse import urlparse

from formulary.core.exceptions import ValidationError

_ALLOWED_SCHEMES = frozenset(("http", "https"))

# git@github.com:owner/repo.git 形式的 scp 风格地址
SCP_LIKE_RE = re.compile(r"^[A-Za-z0-9_.\-]+@[A-Za-z0-9_.\-]+:[^\s]+$")


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def has_host(url: str) -> bool:
    """URL 是否带有合法主机名"""
    parsed = urlparse(url)
    return bool(parsed.hostname) and " " not in url
