"""
CLI 模块 - relaybot 命令行入口（Typer）。
"""
