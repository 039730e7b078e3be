"""Command-line runner for the generation orchestrator.

Usage::

    python -m appforge "build a todo app" -o ./todo
    appforge "change button color to blue" --existing ./todo -o ./todo
    appforge "notes app with login" --backend-active --image mockup.png

Exit codes: 0 on success, 2 when the build is waiting for a backend
connection, 1 otherwise.  Ctrl-C cancels the run cooperatively.
"""

from __future__ import annotations

import asyncio
import mimetypes
import signal
import sys
from pathlib import Path

from .callbacks import OrchestratorCallbacks
from .cancellation import CancellationToken
from .collaborators import InMemoryBilling, StaticBackendStatus
from .config import Config
from .models import AuditRecord, BuildRequest, Image, Message, Phase, RunOutcome
from .orchestrator import GenerationOrchestrator
from .usage import UsageSnapshot
from .utils import console, format_cost, print_error, print_success, print_warning, write_files

EXIT_CODES: dict[RunOutcome, int] = {
    RunOutcome.SUCCEEDED: 0,
    RunOutcome.AWAITING_BACKEND: 2,
    RunOutcome.FAILED: 1,
    RunOutcome.CANCELLED: 1,
}

_IGNORED_DIRS = {".git", "node_modules", ".appforge", "__pycache__"}


class ConsoleCallbacks(OrchestratorCallbacks):
    """Prints orchestrator events to the shared console."""

    async def on_plan_update(self, phases: list[Phase]) -> None:
        summary = ", ".join(f"{p.title or p.type.value} [{p.status.value}]" for p in phases)
        console.print(f"  [dim]Plan: {summary}[/dim]")

    async def on_message(self, message: Message) -> None:
        console.print(f"\n{message.content}\n")

    async def on_step_start(self, index: int, label: str) -> None:
        console.print(f"  [cyan]>[/cyan] {label}")

    async def on_chunk_complete(self, files: dict[str, str], explanation: str, usage: UsageSnapshot) -> None:
        console.print(f"    [dim]{explanation} -- {len(files)} file(s), {format_cost(usage.cost_usd)}[/dim]")

    async def on_error(self, message: str, retries_remaining: int) -> None:
        print_warning(f"  Retrying ({retries_remaining} left): {message}")

    async def on_final_error(self, message: str, audit: AuditRecord | None = None) -> None:
        print_error(message)

    async def on_success(
        self,
        files: dict[str, str],
        explanation: str,
        audit: AuditRecord,
        usage: UsageSnapshot,
    ) -> None:
        print_success(f"{len(files)} file(s) ready, QA: {audit.qa_status}")

    async def on_cancelled(self) -> None:
        print_warning("Cancelled.")


def load_image(path: str | Path) -> Image:
    """Read an image file from disk, guessing its MIME type from the name."""
    image_path = Path(path)
    mime_type, _ = mimetypes.guess_type(image_path.name)
    return Image(data=image_path.read_bytes(), mime_type=mime_type or "image/jpeg")


def load_existing_files(root: str | Path) -> dict[str, str]:
    """Read a project directory into a ``path -> content`` mapping.

    Binary or undecodable files and common tool directories are skipped.
    """
    root_dir = Path(root)
    files: dict[str, str] = {}
    if not root_dir.is_dir():
        return files
    for file_path in sorted(root_dir.rglob("*")):
        if not file_path.is_file():
            continue
        rel = file_path.relative_to(root_dir)
        if any(part in _IGNORED_DIRS for part in rel.parts):
            continue
        try:
            files[rel.as_posix()] = file_path.read_text(encoding="utf-8")
        except (UnicodeDecodeError, OSError):
            continue
    return files


async def run_build(
    request: BuildRequest,
    config: Config,
    backend_active: bool = False,
    cancel_token: CancellationToken | None = None,
) -> RunOutcome:
    """Run one build and materialise its files under ``config.output_dir``."""
    token = cancel_token or CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted by user")
    except (NotImplementedError, RuntimeError):
        pass

    billing = InMemoryBilling()
    orchestrator = GenerationOrchestrator(
        request,
        ConsoleCallbacks(),
        config=config,
        billing=billing,
        backend_status=StaticBackendStatus(active=backend_active),
        cancel_token=token,
    )
    try:
        outcome = await orchestrator.run()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    if outcome is RunOutcome.SUCCEEDED:
        written = write_files(orchestrator.state.accumulated_files, config.output_dir)
        console.print(f"  Wrote {len(written)} file(s) to {config.output_dir.resolve()}")
    await orchestrator.save_state()
    console.print(f"  Credits charged: {billing.total_credits:.5f}")
    return outcome


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for ``python -m appforge`` and the ``appforge`` script."""
    import argparse

    parser = argparse.ArgumentParser(
        description="AppForge -- multi-step LLM project generator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            '  appforge "build a todo app" -o ./todo\n'
            '  appforge "change button color to blue" --existing ./todo -o ./todo\n'
        ),
    )
    parser.add_argument("prompt", help="Natural-language build request")
    parser.add_argument("--output", "-o", default=None, help="Output directory (default: ./output)")
    parser.add_argument("--project-id", default="local-project", help="Project identity for billing/webhooks")
    parser.add_argument("--user-id", default="local-user", help="User identity for billing")
    parser.add_argument("--existing", default=None, help="Directory holding the project's current files")
    parser.add_argument("--image", action="append", default=[], help="Image to attach (repeatable)")
    parser.add_argument(
        "--backend-active",
        action="store_true",
        help="Treat the project's backend connection as active",
    )

    args = parser.parse_args(argv)

    if not args.prompt.strip():
        console.print("[bold red]Error:[/bold red] Prompt must not be empty")
        sys.exit(1)

    images: list[Image] = []
    for image_arg in args.image:
        if not Path(image_arg).is_file():
            console.print(f"[bold red]Error:[/bold red] Image not found: {image_arg}")
            sys.exit(1)
        images.append(load_image(image_arg))

    config = Config.from_env()
    if args.output:
        config.output_dir = Path(args.output)

    request = BuildRequest(
        prompt=args.prompt,
        images=images,
        project_id=args.project_id,
        user_id=args.user_id,
        existing_files=load_existing_files(args.existing) if args.existing else {},
    )

    outcome = asyncio.run(run_build(request, config, backend_active=args.backend_active))
    sys.exit(EXIT_CODES[outcome])


if __name__ == "__main__":
    main()
