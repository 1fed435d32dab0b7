"""安装回执

每次安装成功后在安装前缀内写入 <prefix>/var/formulary/receipts/<name>.json，
记录版本、渠道、源与已安装文件。依赖检查和 `list` 命令读取这些回执。
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from formulary.utils.yaml_io import write_json

logger = logging.getLogger(__name__)

RECEIPTS_DIR = Path("var") / "formulary" / "receipts"


@dataclass
class InstallReceipt:
    """单个配方的安装回执"""

    name: str
    version: str = ""
    channel: str = "stable"
    source: str = ""
    files: list[str] = field(default_factory=list)
    installed_at: str = ""


class ReceiptStore:
    """安装前缀内的回执存储"""

    def __init__(self, prefix: str | Path) -> None:
        self.root = Path(prefix) / RECEIPTS_DIR

    def path_for(self, name: str) -> Path:
        return self.root / f"{name}.json"

    def write(self, receipt: InstallReceipt) -> Path:
        """原子写入回执（同名覆盖）"""
        if not receipt.installed_at:
            receipt.installed_at = datetime.now(timezone.utc).isoformat()
        path = self.path_for(receipt.name)
        write_json(path, asdict(receipt))
        logger.info("安装回执已写入: %s", path)
        return path

    def get(self, name: str) -> InstallReceipt | None:
        path = self.path_for(name)
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise TypeError(f"顶层应为对象，实际为 {type(data).__name__}")
            known = InstallReceipt.__dataclass_fields__
            return InstallReceipt(**{k: v for k, v in data.items() if k in known})
        except (OSError, json.JSONDecodeError, TypeError) as e:
            logger.warning("回执文件损坏，忽略: %s (%s)", path, e)
            return None

    def is_installed(self, name: str) -> bool:
        return self.get(name) is not None

    def list_all(self) -> list[InstallReceipt]:
        if not self.root.is_dir():
            return []
        receipts = (self.get(p.stem) for p in sorted(self.root.glob("*.json")))
        return [r for r in receipts if r is not None]
