"""formulary - 配方描述与安装运行时"""

__version__ = "0.3.0"
