#!/usr/bin/env python3
"""
scpull  —  receive files from a remote host over the scp wire protocol
======================================================================

Subcommands:
  init      Create a .scpull config file in the current directory.
  pull      Download a remote file (or a directory tree with -r).

Run 'scpull <subcommand> --help' for more details.
"""
import sys
import argparse
from pathlib import Path, PurePosixPath


# ── init ─────────────────────────────────────────────────────────────────────

def cmd_init(args):
    """Create a .scpull profile file in the current directory."""
    from scpull import config as _cfg

    target = Path.cwd() / _cfg.PROJECT_FILE

    if target.exists() and not args.force:
        print(f"error: {_cfg.PROJECT_FILE} already exists in {Path.cwd()}", file=sys.stderr)
        print("Use --force to overwrite.", file=sys.stderr)
        sys.exit(1)

    g_defaults = _cfg.load_global_config().get("defaults", {})

    server = args.server or g_defaults.get("server", "example.com")
    if not args.server and sys.stdin.isatty():
        val = input(f"Server hostname [{server}]: ").strip()
        if val:
            server = val

    user = args.user or g_defaults.get("user", "root")
    if not args.user and sys.stdin.isatty():
        val = input(f"SSH user [{user}]: ").strip()
        if val:
            user = val

    port = args.port or int(g_defaults.get("port", 22))

    profile_name = args.profile or "default"

    def _yq(value: str) -> str:
        """Wrap a string in YAML single quotes, escaping embedded single quotes."""
        return "'" + value.replace("'", "''") + "'"

    lines = [
        "# .scpull — scpull project configuration",
        "#",
        "# profiles: list of connection profiles for this project.",
        "# Each profile has: name, server, port, user and optionally ssh_key.",
        "profiles:",
        f"  - name: {profile_name}",
        f"    server: {_yq(server)}",
        f"    port: {port}",
        f"    user: {_yq(user)}",
    ]
    if args.ssh_key:
        lines.append(f"    ssh_key: {_yq(args.ssh_key)}")
    lines += [
        f"    scp_command: {_yq(_cfg.SCP_COMMAND)}",
        f"    block_size: {_cfg.BLOCK_SIZE}",
    ]

    content = "\n".join(lines) + "\n"

    if args.dry_run:
        print(f"[dry-run] Would write {target}:")
        print(content)
        return

    target.write_text(content, encoding="utf-8")
    print(f"Created {target}")

    if args.verbose:
        print(content)


# ── pull ─────────────────────────────────────────────────────────────────────

def _resolve_local(remote: str, local: str, recursive: bool) -> str:
    """A single file pulled into an existing directory keeps its remote name."""
    local_path = Path(local).expanduser()
    if not recursive and local_path.is_dir():
        name = PurePosixPath(remote.rstrip("/")).name
        if name:
            return str(local_path / name)
    return str(local_path)


def cmd_pull(args):
    """Run one pull using the nearest .scpull config."""
    import paramiko
    import scpull.config as _cfg
    from scpull.core.ssh_manager import SSHManager
    from scpull.core.pull import Pull
    from scpull.errors import ScpError
    from scpull.utils.logging import log, vlog, set_verbose

    set_verbose(args.verbose)

    project = _cfg.load_config(args.profile or "default")
    if project is not None:
        vlog(f"[config] Using {project}")
    if args.server:
        _cfg.SSH_HOST = args.server
    if args.user:
        _cfg.SSH_USER = args.user
    if args.port:
        _cfg.SSH_PORT = args.port

    local = _resolve_local(args.remote, args.local, args.recursive)

    ssh = SSHManager()
    pull = Pull(ssh, args.remote, local, recursive=args.recursive,
                preserve=not args.no_preserve)

    if args.dry_run:
        print(f"[dry-run] Would run on {_cfg.SSH_HOST}: {pull.build_command()}")
        print(f"[dry-run] Destination: {Path(local).resolve()}")
        return

    if args.recursive:
        Path(local).mkdir(parents=True, exist_ok=True)

    counts = {"files": 0, "dirs": 0, "bytes": 0}

    def _on_download(path, size):
        vlog(f"  [PULL] {path} ({size} bytes)")

    def _on_mkdir(path):
        counts["dirs"] += 1
        vlog(f"  [MKDIR] {path}")

    def _on_progress(path, written, total):
        if written == total:
            counts["bytes"] += total
        elif total:
            vlog(f"  [PULL] {path} {written * 100 // total}%")

    def _on_done(path):
        counts["files"] += 1
        log(f"  [PULL ✓] {path}")

    pull.on("download", _on_download)
    pull.on("mkdir", _on_mkdir)
    pull.on("progress", _on_progress)
    pull.on("done", _on_done)

    try:
        ssh.connect()
        log(f"[PULL] {_cfg.SSH_HOST}:{args.remote} → {local}")
        pull.start()
    except KeyboardInterrupt:
        print("\ninterrupted.", file=sys.stderr)
        sys.exit(130)
    except (ScpError, OSError, paramiko.SSHException) as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)
    finally:
        ssh.disconnect()

    log(f"[PULL] done: {counts['files']} file(s), {counts['dirs']} dir(s), "
        f"{counts['bytes']} bytes")


# ── main ──────────────────────────────────────────────────────────────────────

def main():
    """CLI entry point for scpull"""
    parser = argparse.ArgumentParser(
        prog="scpull",
        description="Receive files from a remote host over the scp wire protocol",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    # ── init ──────────────────────────────────────────────────────────────────
    init_p = subparsers.add_parser(
        "init",
        help="Create a .scpull config file in the current directory",
        description="Create a .scpull YAML config file for this project.",
    )
    init_p.add_argument("--server", metavar="HOST",
                        help="Remote server hostname or IP")
    init_p.add_argument("--user", metavar="NAME",
                        help="SSH username (default: root)")
    init_p.add_argument("--port", type=int, metavar="N",
                        help="SSH port (default: 22)")
    init_p.add_argument("--ssh-key", metavar="PATH",
                        help="Private key file")
    init_p.add_argument("--profile", metavar="NAME", default="default",
                        help="Profile name to create (default: default)")
    init_p.add_argument("--force", action="store_true",
                        help="Overwrite existing .scpull")
    init_p.add_argument("-n", "--dry-run", action="store_true",
                        help="Preview without writing files")
    init_p.add_argument("-v", "--verbose", action="store_true",
                        help="Show extra output")

    # ── pull ──────────────────────────────────────────────────────────────────
    pull_p = subparsers.add_parser(
        "pull",
        help="Download a remote path",
        description="Download a remote file, or a directory tree with -r.",
    )
    pull_p.add_argument("remote", metavar="REMOTE",
                        help="Remote path to fetch")
    pull_p.add_argument("local", metavar="LOCAL", nargs="?", default=".",
                        help="Local destination (default: current directory)")
    pull_p.add_argument("-r", "--recursive", action="store_true",
                        help="Copy a directory tree")
    pull_p.add_argument("--no-preserve", action="store_true",
                        help="Do not request modification/access times")
    pull_p.add_argument("--profile", metavar="NAME", default="default",
                        help="Profile to use (default: default)")
    pull_p.add_argument("--server", metavar="HOST",
                        help="Override the profile's server")
    pull_p.add_argument("--user", metavar="NAME",
                        help="Override the profile's SSH user")
    pull_p.add_argument("--port", type=int, metavar="N",
                        help="Override the profile's SSH port")
    pull_p.add_argument("-n", "--dry-run", action="store_true",
                        help="Print the remote command without connecting")
    pull_p.add_argument("-v", "--verbose", action="store_true",
                        help="Show every entry and remote diagnostics")

    args = parser.parse_args()

    if args.command == "init":
        cmd_init(args)
    elif args.command == "pull":
        cmd_pull(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
