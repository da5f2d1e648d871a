from __future__ import annotations

import argparse
import asyncio
import socket
import sys
from importlib import metadata
from pathlib import Path

import tomllib
import uvicorn
from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.text import Text
from rich.tree import Tree

from .errors import FocusReadError
from .focus import split_focus
from .library import TreeNode
from .library_io import ingest_paths, read_library_file, write_export
from .logging_utils import build_uvicorn_log_config, set_debug_logging
from .scheduler import ReaderStatus
from .session import ReaderSession
from .store import JsonDirectoryPort, LibraryStore, default_home
from .web import ENGINE_CHOICES, WebConfig, create_app

console = Console()
err_console = Console(stderr=True)


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover - installed layout
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("focusread")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"focusread {__version__}",
    )


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--home",
        help="Library data directory (default: $FOCUSREAD_HOME or ~/.focusread).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging (scheduler, narration, library moves).",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="focusread",
        description=(
            "Speed-read text documents one word at a time. Subcommands: "
            "web, import, export, tree, mv, rm, read."
        ),
    )
    _add_version_flag(ap)
    return ap


def build_web_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="focusread web",
        description="Serve the library and RSVP reader in the browser.",
    )
    _add_version_flag(ap)
    _add_common_flags(ap)
    ap.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host interface for the web server (default: 127.0.0.1).",
    )
    ap.add_argument(
        "--port",
        type=int,
        default=2047,
        help="Port for the web server (default: 2047).",
    )
    ap.add_argument(
        "--engine",
        choices=ENGINE_CHOICES,
        default="pyttsx3",
        help="Speech engine used for narration (default: pyttsx3).",
    )
    ap.add_argument(
        "--voice",
        help="Voice identifier passed to the speech engine.",
    )
    return ap


def build_import_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="focusread import",
        description="Add .txt/.md files or folders to the library, or restore a JSON backup.",
    )
    _add_common_flags(ap)
    ap.add_argument("paths", nargs="*", help="Files or folders to add.")
    ap.add_argument(
        "--json",
        dest="backup",
        help="Replace the whole library with an exported JSON backup.",
    )
    return ap


def build_export_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="focusread export",
        description="Write the library to focusread_backup_<date>.json.",
    )
    _add_common_flags(ap)
    ap.add_argument(
        "-o",
        "--output-dir",
        default=".",
        help="Directory for the backup file (default: current directory).",
    )
    return ap


def build_tree_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="focusread tree", description="Show the library tree.")
    _add_common_flags(ap)
    return ap


def build_mv_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="focusread mv",
        description="Move a file or folder into another folder ('' for the library root).",
    )
    _add_common_flags(ap)
    ap.add_argument("source", help="Library path of the file or folder to move.")
    ap.add_argument("dest", help="Destination folder path; use '' for the root.")
    return ap


def build_rm_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="focusread rm",
        description="Delete a file, or a folder with everything beneath it.",
    )
    _add_common_flags(ap)
    ap.add_argument("path", help="Library path to delete.")
    return ap


def build_read_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="focusread read",
        description="Read a library entry in the terminal, one word at a time.",
    )
    _add_common_flags(ap)
    ap.add_argument("path", help="Library path of the entry to read.")
    ap.add_argument("--wpm", type=int, help="Override the reading speed for this session.")
    ap.add_argument(
        "--from",
        dest="start",
        type=int,
        help="Start at this 1-based word position instead of the saved one.",
    )
    return ap


def _open_store(args: argparse.Namespace) -> LibraryStore:
    home = Path(args.home).expanduser() if getattr(args, "home", None) else default_home()
    return LibraryStore.load(JsonDirectoryPort(home))


def _render_tree(node: TreeNode, branch: Tree, active_id: str | None) -> None:
    for child in node.sorted_children():
        if child.is_file:
            style = "bold red" if child.id == active_id else ""
            branch.add(Text(child.name, style=style))
        else:
            _render_tree(child, branch.add(Text(f"{child.name}/", style="bold")), active_id)


def _run_tree(args: argparse.Namespace) -> int:
    store = _open_store(args)
    session = ReaderSession(store)
    root = Tree(Text("Library", style="bold"))
    _render_tree(session.tree(), root, store.active_id)
    console.print(root)
    console.print(f"{len(store.entries)} entries")
    return 0


def _run_import(args: argparse.Namespace) -> int:
    store = _open_store(args)
    if args.backup:
        entries = read_library_file(Path(args.backup).expanduser())
        ReaderSession(store).replace_library(entries)
        console.print(f"Imported {len(entries)} entries from {args.backup}")
        return 0
    if not args.paths:
        raise FocusReadError("Nothing to import: pass files/folders or --json BACKUP.")
    result = ingest_paths((Path(path).expanduser() for path in args.paths), store.entries)
    store.add_entries(result.entries)
    for entry in result.entries:
        console.print(f"[green]+[/green] {escape(entry.path)}")
    for path, reason in result.skipped:
        err_console.print(f"[yellow]skipped[/yellow] {escape(path)}: {escape(reason)}")
    console.print(f"Added {len(result.entries)} entries")
    return 0


def _run_export(args: argparse.Namespace) -> int:
    store = _open_store(args)
    target = write_export(store.entries, Path(args.output_dir).expanduser())
    console.print(f"Exported {len(store.entries)} entries to {target}")
    return 0


def _run_mv(args: argparse.Namespace) -> int:
    store = _open_store(args)
    source = args.source.strip("/")
    dest = args.dest.strip("/")
    if not ReaderSession(store).move_path(source, dest):
        err_console.print(
            f"[yellow]Move ignored:[/yellow] {escape(repr(source))} -> {escape(repr(dest))}"
        )
        return 1
    console.print(f"Moved {source} -> {dest or '/'}")
    return 0


def _run_rm(args: argparse.Namespace) -> int:
    store = _open_store(args)
    removed = ReaderSession(store).delete_path(args.path.strip("/"))
    if not removed:
        err_console.print(f"[yellow]Nothing at[/yellow] {escape(args.path)}")
        return 1
    for entry in removed:
        console.print(f"[red]-[/red] {escape(entry.path)}")
    return 0


def _word_renderable(session: ReaderSession) -> Text:
    snapshot = session.snapshot()
    if session.status is ReaderStatus.FINISHED:
        return Text("DONE", style="bold red", justify="center")
    word = session.scheduler.current_word()
    if word is None:
        return Text("")
    focus = split_focus(word.text)
    # Pad so the focal letter stays in a fixed column.
    pad = " " * max(0, 14 - len(focus.before))
    focal_style = "bold red" if session.settings.show_focus_point else "bold"
    line = Text(pad + focus.before, style="bold")
    line.append(focus.focal, style=focal_style)
    line.append(focus.after, style="bold")
    line.append(f"\n\n{snapshot['progress']}  ·  {snapshot['eta']} left", style="dim")
    return line


async def _read_in_terminal(session: ReaderSession) -> None:
    finished = asyncio.Event()
    with Live(_word_renderable(session), console=console, refresh_per_second=30) as live:

        def _on_change(current: ReaderSession) -> None:
            live.update(_word_renderable(current))
            if current.status is not ReaderStatus.PLAYING:
                finished.set()

        session.add_listener(_on_change)
        if not session.play():
            return
        try:
            await finished.wait()
        finally:
            session.close()


def _run_read(args: argparse.Namespace) -> int:
    store = _open_store(args)
    entry = store.get_by_path(args.path.strip("/"))
    if entry is None:
        raise FocusReadError(f"No entry at {args.path}")
    session = ReaderSession(store)
    session.select_entry(entry.id)
    if not session.words:
        console.print(f"{entry.path} has no words to read.")
        return 0
    if args.wpm is not None:
        session.set_wpm(args.wpm)
    if args.start is not None:
        session.select_word(max(0, args.start - 1))
    try:
        asyncio.run(_read_in_terminal(session))
    except KeyboardInterrupt:
        session.close()
    console.print(f"Stopped at word {session.current_index + 1} of {len(session.words)}")
    return 0


def _resolve_local_ip(host: str) -> str:
    if host not in {"0.0.0.0", "::"}:
        return host
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"


def _run_web(args: argparse.Namespace) -> int:
    home = Path(args.home).expanduser() if args.home else default_home()
    config = WebConfig(
        root=home,
        host=args.host,
        port=args.port,
        engine=args.engine,
        voice=args.voice,
    )
    app = create_app(config)
    url = f"http://{_resolve_local_ip(args.host)}:{args.port}/"
    console.print(f"Serving focusread library from {home}")
    console.print(f"Web URL: {url}")
    console.print("Press Ctrl+C to stop.\n")
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level="debug" if args.debug else "info",
        log_config=build_uvicorn_log_config(),
    )
    return 0


_COMMANDS = {
    "web": (build_web_parser, _run_web),
    "import": (build_import_parser, _run_import),
    "export": (build_export_parser, _run_export),
    "tree": (build_tree_parser, _run_tree),
    "mv": (build_mv_parser, _run_mv),
    "rm": (build_rm_parser, _run_rm),
    "read": (build_read_parser, _run_read),
}


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] in _COMMANDS:
        build, run = _COMMANDS[argv[0]]
        args = build().parse_args(argv[1:])
        set_debug_logging(bool(getattr(args, "debug", False)))
        try:
            return run(args)
        except FocusReadError as exc:
            err_console.print(f"[red]{escape(str(exc))}[/red]")
            return 1

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    parser.parse_args(argv)
    parser.error(f"unknown command: {argv[0]}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
