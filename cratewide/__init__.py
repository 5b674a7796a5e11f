"""Managed workspaces, toolchains, crate preparation and log capture for Rust builds."""

__version__ = "0.1.0"

__all__ = ["logging", "utils", "native", "toolchain", "tools", "workspace", "prepare"]