"""产物安装模块"""

from formulary.services.install.installer import Installer

__all__ = ["Installer"]
