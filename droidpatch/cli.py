# droidpatch/cli.py
from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

import requests

from droidpatch import __version__
from droidpatch.services import alias, matcher, metadata, storage, wrapper
from droidpatch.services.descriptors import PatchFlags, build_descriptors, normalize_url
from droidpatch.services.errors import DroidPatchError
from droidpatch.services.patch_engine import PatchRunResult, apply_patches

log = logging.getLogger(__name__)

LINE = "=" * 60
COMMANDS = ("list", "remove", "version", "update", "scan", "restore",
            "proxy-status", "proxy-stop", "proxy-log")


def banner(title: str) -> None:
    print(LINE)
    print(f"  {title}")
    print(LINE)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING,
                        format="    %(message)s")

# -------------------------------
# Salida
# -------------------------------
def print_results(res: PatchRunResult) -> None:
    for r in res.results:
        if r.error:
            print(f"  [x] {r.name}: {r.error}")
        elif r.already_patched:
            print(f"  [=] {r.name}: already patched")
        elif r.found:
            verb = "will be patched" if res.dry_run else "patched"
            mark = "x" if r.verified is False else "+"
            print(f"  [{mark}] {r.name}: {r.found} occurrence(s) {verb}")
        else:
            print(f"  [!] {r.name}: pattern not found")
    if res.backup_path:
        print(f"  backup: {res.backup_path}")
    if res.fallback_output:
        print(f"  output was locked, wrote {res.output_path} instead")


def print_usage_hint() -> None:
    print("No patch flags specified. Available patches:")
    print("  --is-custom    Patch isCustom for custom models")
    print("  --skip-login   Bypass login by injecting a fake API key")
    print("  --api-base     Replace Factory API URL with custom server")
    print("  --websearch    Enable local WebSearch through the droid-patch proxy")
    print("  --standalone   Mock non-LLM Factory APIs through the proxy")
    print("  --recipe       Apply patches from a YAML recipe")
    print()
    print("Usage examples:")
    print("  droid-patch --is-custom droid-custom")
    print("  droid-patch --is-custom --skip-login droid-patched")
    print("  droid-patch --skip-login -o . my-droid")
    print("  droid-patch --api-base http://localhost:3000 droid-local")
    print("  droid-patch --websearch droid-search")

# -------------------------------
# patch
# -------------------------------
def flags_from_args(args) -> PatchFlags:
    return PatchFlags(
        is_custom=args.is_custom,
        skip_login=args.skip_login,
        api_base=normalize_url(args.api_base) if args.api_base else None,
        websearch=args.websearch,
        standalone=args.standalone,
        recipe=str(Path(args.recipe).resolve()) if args.recipe else None,
    )


def install(result_path: Path, alias_name: str, flags: PatchFlags) -> alias.AliasResult:
    """Alias directo al binario o, con proxy, al launcher."""
    if flags.needs_proxy():
        binary = alias.store_binary(result_path, alias_name)
        script = wrapper.write_wrapper(binary, alias_name, upstream=flags.api_base,
                                       standalone=flags.standalone)
        return alias.create_wrapper_alias(script, alias_name)
    return alias.create_alias(result_path, alias_name)


def cmd_patch(args) -> int:
    flags = flags_from_args(args)
    if not flags.any():
        print_usage_hint()
        return 1
    if not args.alias and not args.dry_run and not args.replace:
        print("Error: alias name is required")
        print("Usage: droid-patch [--is-custom] [--skip-login] [-o <dir>] <alias-name>")
        return 1

    binary = Path(args.path) if args.path else storage.find_default_binary()
    output = Path(args.output) / args.alias if args.output and args.alias else None

    banner("Droid Binary Patcher")
    descriptors = build_descriptors(flags, proxy_url=storage.proxy_url())
    res = apply_patches(binary, output, descriptors, dry_run=args.dry_run,
                        make_backup=args.backup, verbose=args.verbose)
    print_results(res)

    if res.dry_run:
        banner("DRY RUN COMPLETE")
        return 0 if res.success else 1
    if not res.success or res.output_path is None:
        print("[!] Patching failed")
        return 1

    if args.replace:
        if res.no_patch_needed:
            print(f"[=] {binary} is already up to date")
        else:
            backup = alias.replace_original(res.output_path, binary)
            print(f"[*] Replaced {binary} (original saved to {backup})")
            if not args.output:
                # la copia intermedia <bin>.patched ya no hace falta
                res.output_path.unlink(missing_ok=True)
    elif args.output:
        print(f"Patched binary saved to: {res.output_path}")
    else:
        inst = install(res.output_path, args.alias, flags)
        print(f"[*] Created: {inst.alias_path} -> {inst.binary_path}")
        if not inst.immediate:
            print(f"    Run `source {alias.shell_config_path()}` or open a new terminal")
        meta = metadata.create_metadata(args.alias, binary, flags,
                                        applied=res.applied_names(), alias_path=inst.alias_path)
        metadata.save_metadata(meta)

    banner("PATCH SUCCESSFUL")
    return 0

# -------------------------------
# update
# -------------------------------
def update_alias(meta: metadata.AliasMetadata, new_binary: Path, verbose: bool = False) -> bool:
    flags = meta.patches
    descriptors = build_descriptors(flags, proxy_url=storage.proxy_url())
    out = storage.bins_dir() / f"{meta.name}-patched"
    storage.ensure_dirs()
    res = apply_patches(new_binary, out, descriptors, make_backup=False, verbose=verbose)
    print_results(res)
    if not res.success or res.output_path is None:
        return False
    if res.output_path != out:
        alias.store_binary(res.output_path, meta.name)
    if flags.needs_proxy():
        wrapper.write_wrapper(out, meta.name, upstream=flags.api_base, standalone=flags.standalone)
    meta.applied = res.applied_names()
    metadata.save_metadata(metadata.touch(meta, new_binary))
    return True


def cmd_update(args) -> int:
    binary = Path(args.path) if args.path else storage.find_default_binary()
    banner("Droid-Patch Update")
    if not binary.exists():
        print(f"Error: Droid binary not found at {binary}")
        return 1

    if args.alias:
        meta = metadata.load_metadata(args.alias)
        if not meta:
            print(f'Error: No metadata found for alias "{args.alias}"')
            return 1
        metas = [meta]
    else:
        metas = metadata.list_metadata()
        if not metas:
            print("No aliases with metadata found.")
            return 0

    ok = failed = 0
    for meta in metas:
        print(f"Updating: {meta.name}  ({metadata.format_patches(meta.patches)})")
        if args.dry_run:
            print("  [DRY RUN] Would re-apply patches")
            ok += 1
            continue
        try:
            done = update_alias(meta, binary, verbose=args.verbose)
        except DroidPatchError as e:
            print(f"  [x] Error: {e}")
            done = False
        if done:
            ok += 1
        else:
            failed += 1
    print(f"Updated {ok} alias(es), {failed} failed")
    return 0 if failed == 0 else 1

# -------------------------------
# list / remove / restore / scan
# -------------------------------
def cmd_list(args) -> int:
    banner("Droid-Patch Aliases")
    items = alias.list_aliases()
    if not items:
        print("  No aliases configured.")
        return 0
    for a in items:
        status = "immediate" if a.immediate else "requires source"
        print(f"  * {a.name} [{status}] -> {a.target}")
        meta = metadata.load_metadata(a.name)
        if meta:
            print(f"    patches: {metadata.format_patches(meta.patches)}")
    return 0


def cmd_remove(args) -> int:
    target = args.target
    if "/" in target:
        p = Path(target)
        if not p.exists():
            print(f"Error: {p} not found")
            return 1
        p.unlink()
        print(f"[*] Removed: {p}")
        return 0
    removed = alias.remove_alias(target)
    removed = metadata.remove_metadata(target) or removed
    if not removed:
        print(f'    Alias "{target}" not found')
        return 1
    print(f'[*] Alias "{target}" removed')
    return 0


def cmd_restore(args) -> int:
    binary = Path(args.path) if args.path else storage.find_default_binary()
    src = alias.restore_original(binary)
    print(f"[*] Restored {binary} from {src}")
    return 0


def cmd_scan(args) -> int:
    data = Path(args.binary).read_bytes()
    if args.regex:
        hits = [(m.start(), len(m.group(0))) for m in matcher.find_regex(data, args.needle)]
    else:
        needle = bytes.fromhex(args.needle) if args.hex else args.needle.encode()
        hits = [(pos, len(needle)) for pos in matcher.find_all(data, needle)]
    print(f"[i] {len(hits)} match(es) for {args.needle!r}")
    for pos, n in hits[:args.limit]:
        print(f"  @ 0x{pos:08x}: ...{matcher.context(data, pos, n)}...")
    if len(hits) > args.limit:
        print(f"  ... and {len(hits) - args.limit} more")
    return 0 if hits else 1

# -------------------------------
# proxy
# -------------------------------
def cmd_proxy_status(args) -> int:
    banner("WebSearch Proxy Status")
    try:
        data = requests.get(f"{storage.proxy_url()}/health", timeout=2).json()
    except (requests.RequestException, ValueError):
        print("  Status: Not running")
        return 1
    print("  Status: Running")
    print(f"  Port: {data.get('port')}  Mode: {data.get('mode')}")
    if storage.PROXY_PID_FILE.exists():
        print(f"  PID: {storage.PROXY_PID_FILE.read_text().strip()}")
    if data.get("idleTimeout"):
        print(f"  Idle: {data.get('idleSeconds')}s, auto-shutdown in {data.get('willShutdownIn')}s")
    else:
        print("  Auto-shutdown: disabled")
    print(f"  Log: {storage.PROXY_LOG_FILE}")
    return 0


def cmd_proxy_stop(args) -> int:
    pid_file = storage.PROXY_PID_FILE
    if not pid_file.exists():
        print("Proxy is not running (no PID file)")
        return 0
    pid = pid_file.read_text().strip()
    try:
        os.kill(int(pid), signal.SIGTERM)
        print(f"[*] Proxy stopped (PID: {pid})")
    except (OSError, ValueError) as e:
        print(f"[!] Could not stop proxy: {e}")
    pid_file.unlink(missing_ok=True)
    return 0


def cmd_proxy_log(args) -> int:
    if not storage.PROXY_LOG_FILE.exists():
        print("No log file found")
        return 0
    lines = storage.PROXY_LOG_FILE.read_text(encoding="utf-8", errors="replace").splitlines()
    print("\n".join(lines[-args.lines:]))
    return 0


def cmd_version(args) -> int:
    print(f"droid-patch v{__version__}")
    return 0

# -------------------------------
# argparse
# -------------------------------
def build_patch_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="droid-patch",
                                 description="Patch the droid binary with various modifications",
                                 epilog=f"commands: {', '.join(COMMANDS)}")
    ap.add_argument("alias", nargs="?", help="alias name for the patched binary")
    ap.add_argument("--is-custom", action="store_true", help="patch isCustom:!0 to isCustom:!1")
    ap.add_argument("--skip-login", action="store_true", help="inject a fake FACTORY_API_KEY")
    ap.add_argument("--api-base", metavar="URL", help="replace https://api.factory.ai (max 22 chars)")
    ap.add_argument("--websearch", action="store_true", help="route through the local search proxy")
    ap.add_argument("--standalone", action="store_true", help="mock non-LLM APIs in the proxy")
    ap.add_argument("--recipe", metavar="FILE", help="YAML recipe with extra patches")
    ap.add_argument("--dry-run", action="store_true", help="verify patches without writing")
    ap.add_argument("--replace", action="store_true", help="replace the original binary in place")
    ap.add_argument("-p", "--path", help="path to the droid binary")
    ap.add_argument("-o", "--output", metavar="DIR", help="output directory (no alias created)")
    ap.add_argument("--no-backup", dest="backup", action="store_false", help="do not back up the original")
    ap.add_argument("-v", "--verbose", action="store_true")
    ap.set_defaults(func=cmd_patch)
    return ap


def build_command_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="droid-patch")
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="list aliases").set_defaults(func=cmd_list)

    p = sub.add_parser("remove", help="remove an alias or a patched file")
    p.add_argument("target", help="alias name or file path")
    p.set_defaults(func=cmd_remove)

    sub.add_parser("version").set_defaults(func=cmd_version)

    p = sub.add_parser("update", help="re-apply alias patches to a new droid binary")
    p.add_argument("alias", nargs="?")
    p.add_argument("--dry-run", action="store_true")
    p.add_argument("-p", "--path")
    p.add_argument("-v", "--verbose", action="store_true")
    p.set_defaults(func=cmd_update)

    p = sub.add_parser("scan", help="find a pattern in a binary")
    p.add_argument("binary")
    p.add_argument("needle")
    p.add_argument("--hex", action="store_true", help="needle is hex")
    p.add_argument("--regex", action="store_true", help="needle is a regex")
    p.add_argument("--limit", type=int, default=20)
    p.set_defaults(func=cmd_scan)

    p = sub.add_parser("restore", help="restore the original droid binary")
    p.add_argument("-p", "--path")
    p.set_defaults(func=cmd_restore)

    sub.add_parser("proxy-status").set_defaults(func=cmd_proxy_status)
    sub.add_parser("proxy-stop").set_defaults(func=cmd_proxy_stop)
    p = sub.add_parser("proxy-log")
    p.add_argument("-n", "--lines", type=int, default=50)
    p.set_defaults(func=cmd_proxy_log)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if argv and argv[0] in COMMANDS:
        args = build_command_parser().parse_args(argv)
    else:
        args = build_patch_parser().parse_args(argv)
    _setup_logging(getattr(args, "verbose", False))
    try:
        return args.func(args)
    except (DroidPatchError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        if getattr(args, "verbose", False):
            log.exception("details")
        return 1


if __name__ == "__main__":
    sys.exit(main())
