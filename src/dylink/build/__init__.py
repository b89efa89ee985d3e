"""Compilation pipeline: staleness, build units, compilers and coordination."""

from dylink.build.compiler import BytecodeCompiler, CommandCompiler, CompileOptions, CompilerInterface
from dylink.build.coordinator import CompileCoordinator, CompileReport
from dylink.build.staleness import StalenessDetector
from dylink.build.unit import UNIT_FILE, BuildUnit, qualified_name

__all__ = [
    "UNIT_FILE",
    "BuildUnit",
    "BytecodeCompiler",
    "CommandCompiler",
    "CompileCoordinator",
    "CompileOptions",
    "CompileReport",
    "CompilerInterface",
    "StalenessDetector",
    "qualified_name",
]
