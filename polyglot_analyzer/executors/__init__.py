"""Dual executor: one evaluator per grammar over the shared memory store."""

from __future__ import annotations

from ._base import BaseExecutor, BreakSignal, NextSignal, ReturnSignal
from .c_executor import CExecutor
from .ruby_executor import RubyExecutor

__all__ = [
    "BaseExecutor",
    "BreakSignal",
    "CExecutor",
    "NextSignal",
    "ReturnSignal",
    "RubyExecutor",
]
