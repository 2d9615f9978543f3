"""
kernelctl: CLI for inspecting kernel discovery.

Commands:
    local    List kernel specs installed on this machine
    sources  List kernel sources (Local, Remote) and their kernels
    cache    Show the remote kernel caches persisted in a store file
    config   Print the resolved configuration
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import logging

import yaml

from kernel_finder.config import KernelFinderConfig, load_config
from kernel_finder.errors import ConfigError
from kernel_finder.finder import KernelFinder
from kernel_finder.local_finder import LocalKernelFinder
from kernel_finder.logging_utils import setup_logging
from kernel_finder.remote_finder import deserialize_cache_entry
from kernel_finder.sources import KernelSourceService
from kernel_finder.store import JsonFileStore
from kernel_finder.version import __version__, get_short_banner

logger = logging.getLogger(__name__)

# ANSI color helpers (auto-disabled for non-TTY)
_USE_COLOR = sys.stdout.isatty()


def _c(code: str, text: str) -> str:
    if not _USE_COLOR:
        return text
    return f"\033[{code}m{text}\033[0m"


def _bold(text: str) -> str:
    return _c("1", text)


def _red(text: str) -> str:
    return _c("31", text)


def _dim(text: str) -> str:
    return _c("2", text)


# ---------------------------------------------------------------------------
# Command: local
# ---------------------------------------------------------------------------

async def _list_local(paths: List[str]):
    kernel_finder = KernelFinder()
    local = LocalKernelFinder(kernel_finder, kernel_search_paths=paths)
    try:
        await local.refresh()
        return await kernel_finder.list_all()
    finally:
        local.dispose()
        kernel_finder.dispose()


def cmd_local(args: argparse.Namespace) -> int:
    """List local kernel specs."""
    config = load_config(Path(args.config) if args.config else None)
    paths = list(args.path or []) + list(config.sources.kernel_search_paths)
    kernels = asyncio.run(_list_local(paths))

    if args.json:
        print(json.dumps([kernel.to_dict() for kernel in kernels], indent=2, default=str))
        return 0

    print(_bold(f"Local kernel specs ({len(kernels)})"))
    for kernel in kernels:
        print(f"  {kernel.display_name:<30} {kernel.language:<10} {_dim(kernel.id)}")
        if args.verbose:
            print(f"    {_dim(' '.join(kernel.launch_args))}")
    return 0


# ---------------------------------------------------------------------------
# Command: sources
# ---------------------------------------------------------------------------

async def _list_sources(config: KernelFinderConfig, paths: List[str]):
    kernel_finder = KernelFinder()
    local = None
    if not config.sources.web_mode:
        local = LocalKernelFinder(kernel_finder, kernel_search_paths=paths)
    service = KernelSourceService.from_config(config.sources, local, kernel_finder)
    try:
        if local is not None:
            await local.refresh()
        return [(source, await source.list_kernels()) for source in service.kernel_sources]
    finally:
        service.dispose()
        if local is not None:
            local.dispose()
        kernel_finder.dispose()


def cmd_sources(args: argparse.Namespace) -> int:
    """List kernel sources and the kernels each one offers."""
    config = load_config(Path(args.config) if args.config else None)
    if args.web:
        config.sources.web_mode = True
    paths = list(args.path or []) + list(config.sources.kernel_search_paths)
    listed = asyncio.run(_list_sources(config, paths))

    if args.json:
        print(json.dumps(
            [{**source.to_dict(), "kernels": [kernel.id for kernel in kernels]} for source, kernels in listed],
            indent=2,
        ))
        return 0

    mode = " (web mode)" if config.sources.web_mode else ""
    print(_bold(f"Kernel sources ({len(listed)}){mode}"))
    for source, kernels in listed:
        print(f"  {source.display_name:<10} {len(kernels)} kernels {_dim(source.id)}")
        for kernel in kernels:
            print(f"    {kernel.display_name} {_dim(kernel.id)}")
    return 0


# ---------------------------------------------------------------------------
# Command: cache
# ---------------------------------------------------------------------------

def cmd_cache(args: argparse.Namespace) -> int:
    """Show persisted remote kernel caches."""
    store_path = Path(args.store)
    if not store_path.exists():
        print(_red(f"Error: No store found at {store_path}"))
        return 1

    config = load_config(Path(args.config) if args.config else None)
    store = JsonFileStore(store_path)
    prefix = f"{config.remote.cache_key_prefix}-"
    keys = [key for key in store.keys() if key.startswith(prefix)]

    print(_bold(f"Remote kernel caches ({len(keys)})"))
    for key in keys:
        value = store.get(key)
        kernels = deserialize_cache_entry(value, __version__)
        version = value.get("schema_version", "?") if isinstance(value, dict) else "?"
        stale = "" if version == __version__ else _red(" (stale)")
        print(f"  {key[len(prefix):][:16]}  {len(kernels)} kernels, schema {version}{stale}")
        for kernel in kernels:
            print(f"    [{kernel.kind.value}] {kernel.display_name} {_dim(kernel.id)}")
    return 0


# ---------------------------------------------------------------------------
# Command: config
# ---------------------------------------------------------------------------

def cmd_config(args: argparse.Namespace) -> int:
    """Print the resolved configuration."""
    try:
        config = load_config(Path(args.config) if args.config else None)
    except ConfigError as e:
        print(_red(f"Error: {e}"))
        return 1
    print(yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False), end="")
    return 0


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the kernelctl argument parser."""
    parser = argparse.ArgumentParser(
        prog="kernelctl",
        description="Kernel discovery, caching and ranking inspector",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Verbose output"
    )
    parser.add_argument("--version", action="version", version=get_short_banner())
    parser.add_argument("--config", help="Path to kernel_finder.yaml (default: auto)")

    sub = parser.add_subparsers(dest="command", help="Available commands")

    # --- local ---
    p_local = sub.add_parser("local", help="List local kernel specs")
    p_local.add_argument(
        "--path", action="append",
        help="Extra kernel spec directory (repeatable)"
    )
    p_local.add_argument("--json", action="store_true", help="Print JSON")
    p_local.set_defaults(func=cmd_local)

    # --- sources ---
    p_sources = sub.add_parser("sources", help="List kernel sources and their kernels")
    p_sources.add_argument(
        "--path", action="append",
        help="Extra kernel spec directory (repeatable)"
    )
    p_sources.add_argument("--web", action="store_true", help="Force web mode (no local source)")
    p_sources.add_argument("--json", action="store_true", help="Print JSON")
    p_sources.set_defaults(func=cmd_sources)

    # --- cache ---
    p_cache = sub.add_parser("cache", help="Show persisted remote kernel caches")
    p_cache.add_argument("store", help="Path to a JSON store file")
    p_cache.set_defaults(func=cmd_cache)

    # --- config ---
    p_config = sub.add_parser("config", help="Print the resolved configuration")
    p_config.set_defaults(func=cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for kernelctl."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        setup_logging("DEBUG")
    else:
        try:
            setup_logging(load_config(Path(args.config) if args.config else None).logging.level)
        except ConfigError:
            # Reported by the command itself
            setup_logging("WARNING")

    if not args.command:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
