"""Privileged execution backends."""

from .executor import DirectExecutor, ExecResult, Executor, RootShellExecutor


__all__ = ["DirectExecutor", "ExecResult", "Executor", "RootShellExecutor"]
