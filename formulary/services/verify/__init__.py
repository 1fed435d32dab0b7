"""安装后验证模块"""

from formulary.services.verify.verifier import Verifier

__all__ = ["Verifier"]
