"""CLI commands for Study Coach.

Commands:
- profile: Show or update the learner profile
- plan: Generate, review and save a study plan
- ask: Tutoring conversation against the actionable plan
- dashboard: Progress figures for the actionable plan
- serve: Run the Web API
"""

import asyncio
import base64
import mimetypes
from datetime import datetime, timezone
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from studycoach.config.app_config import load_app_config
from studycoach.core.diagnostics import DiagnosticsChannel, PersistenceIssue
from studycoach.core.errors import (
    InvalidRequestError,
    PreconditionMissingError,
    StudyCoachError,
)
from studycoach.core.models import StudySession, TutorTurn
from studycoach.core.progress import aggregate_progress
from studycoach.core.schedule_builder import StudyPlanRequest, build_study_plan
from studycoach.core.session_locator import locate_active_session, topic_for
from studycoach.core.tutor import TutorOrchestrator
from studycoach.db.document_store import DocumentStore
from studycoach.db.repositories import LearnerRepository
from studycoach.llm.client import LLMClient
from studycoach.llm.speech import SpeechClient
from studycoach.web.conversations import Conversation, ConversationManager

app = typer.Typer(
    name="studycoach",
    help="Personalized study plans, tutoring and progress tracking.",
    no_args_is_help=True,
)

console = Console()

USER_ENV = "STUDYCOACH_USER"
DEFAULT_USER = "local"

EXIT_WORDS = {"exit", "quit", "q"}


def _repository(user: str) -> LearnerRepository:
    store = DocumentStore(load_app_config().db_path)
    return LearnerRepository(store, user)


def _fail(error: Exception) -> None:
    """Print a classified error and exit."""
    if isinstance(error, PreconditionMissingError):
        console.print(f"[yellow]⚠ {error}[/yellow]")
    elif isinstance(error, StudyCoachError) and error.retryable:
        console.print(f"[red]✗ {error}[/red] [dim](you can try again)[/dim]")
    else:
        console.print(f"[red]✗ {error}[/red]")
    raise typer.Exit(code=1)


def _sessions_table(sessions: list[StudySession]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Date")
    table.add_column("Time")
    table.add_column("Min", justify="right")
    table.add_column("Topic")
    table.add_column("Objective", style="dim")
    for session in sessions:
        table.add_row(
            session.date,
            session.time,
            str(session.duration_minutes),
            session.topic,
            session.learning_objective,
        )
    return table


def _file_to_data_uri(path: Path) -> str:
    mime, _ = mimetypes.guess_type(path.name)
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime or 'application/octet-stream'};base64,{encoded}"


def _write_audio(data_uri: str, target: Path) -> Path:
    header, _, body = data_uri.partition(",")
    mime = header[5:].split(";")[0]
    extension = mimetypes.guess_extension(mime) or ".mp3"
    path = target.with_suffix(extension)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(base64.b64decode(body))
    return path


# =============================================================================
# PROFILE
# =============================================================================


@app.command()
def profile(
    name: str | None = typer.Option(None, "--name", "-n", help="Learner name"),
    age: int | None = typer.Option(None, "--age", help="Age in years"),
    grade: str | None = typer.Option(None, "--grade", "-g", help="Grade level"),
    country: str | None = typer.Option(None, "--country", "-c", help="Country"),
    language: str | None = typer.Option(
        None, "--language", "-l", help="Preferred learning language"
    ),
    user: str = typer.Option(DEFAULT_USER, "--user", "-u", envvar=USER_ENV, help="Learner id"),
) -> None:
    """Show the profile, or create/update it when options are given."""
    repository = _repository(user)

    fields = {
        "name": name,
        "age": age,
        "gradeLevel": grade,
        "country": country,
        "preferredLearningLanguage": language,
    }
    fields = {k: v for k, v in fields.items() if v is not None}

    try:
        if fields:
            if repository.get_profile() is None:
                missing = [
                    option for option, key in (
                        ("--name", "name"),
                        ("--age", "age"),
                        ("--grade", "gradeLevel"),
                        ("--country", "country"),
                        ("--language", "preferredLearningLanguage"),
                    )
                    if key not in fields
                ]
                if missing:
                    raise InvalidRequestError(missing)
            student = repository.save_profile(fields)
            console.print("[green]✓ Profile saved[/green]")
        else:
            student = repository.require_profile()
    except (StudyCoachError, InvalidRequestError) as e:
        _fail(e)

    console.print(f"  [dim]name:[/dim]     {student.name}")
    console.print(f"  [dim]age:[/dim]      {student.age}")
    console.print(f"  [dim]grade:[/dim]    {student.grade_level}")
    console.print(f"  [dim]country:[/dim]  {student.country}")
    console.print(f"  [dim]language:[/dim] {student.preferred_learning_language}")


# =============================================================================
# PLAN
# =============================================================================


@app.command()
def plan(
    subject: str = typer.Option(..., "--subject", "-s", help="Subject to study"),
    curriculum: str = typer.Option(..., "--curriculum", help="Curriculum or syllabus"),
    materials: str = typer.Option(..., "--materials", "-m", help="Educational materials"),
    study_time: str = typer.Option(..., "--time", "-t", help="Preferred study time"),
    duration: str = typer.Option(..., "--duration", "-d", help="Preferred session duration"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Save without asking"),
    user: str = typer.Option(DEFAULT_USER, "--user", "-u", envvar=USER_ENV, help="Learner id"),
) -> None:
    """Generate a study plan, review it, and save it."""
    repository = _repository(user)
    request = StudyPlanRequest(
        subject=subject,
        curriculum=curriculum,
        educational_materials=materials,
        study_time_preference=study_time,
        study_duration_preference=duration,
    )

    try:
        student = repository.require_profile()
        with console.status("Generating study plan..."):
            generated = asyncio.run(build_study_plan(student, request, LLMClient()))
    except (StudyCoachError, InvalidRequestError) as e:
        _fail(e)

    console.print(Panel(generated.narrative, title=f"[bold]{generated.subject}[/bold]"))
    console.print(_sessions_table(generated.sessions))
    if generated.dropped_sessions:
        console.print(
            f"[yellow]⚠ {generated.dropped_sessions} malformed session(s) were dropped[/yellow]"
        )

    if not yes and not typer.confirm("Save this plan?", default=True):
        console.print("[dim]Plan discarded[/dim]")
        raise typer.Exit(code=0)

    try:
        plan_id = repository.save_plan(generated.to_study_plan())
    except StudyCoachError as e:
        _fail(e)

    console.print(f"[green]✓ Plan saved[/green] [dim]({plan_id})[/dim]")


# =============================================================================
# ASK
# =============================================================================


def _print_turn(turn: TutorTurn, audio_dir: Path | None, index: int) -> None:
    console.print(Panel(turn.explanation, title="Explanation", expand=False))
    console.print(Panel(turn.example, title="Example", expand=False))
    if audio_dir is not None:
        explanation_path = _write_audio(turn.explanation_audio, audio_dir / f"turn{index:02d}_explanation")
        example_path = _write_audio(turn.example_audio, audio_dir / f"turn{index:02d}_example")
        console.print(f"  [dim]audio:[/dim] {explanation_path}, {example_path}")


async def _run_conversation(
    manager: ConversationManager,
    conversation: Conversation,
    questions: list[str],
    interactive: bool,
    attachment: str | None,
    attachment_name: str | None,
    audio_dir: Path | None,
) -> int:
    failures = 0
    index = 0

    while True:
        if questions:
            question = questions.pop(0)
        elif interactive:
            question = (await asyncio.to_thread(typer.prompt, "You", default="")).strip()
            if not question or question.lower() in EXIT_WORDS:
                break
        else:
            break

        try:
            with console.status("Thinking..."):
                outcome = await manager.submit_turn(
                    conversation,
                    question,
                    attachment=attachment,
                    attachment_name=attachment_name,
                )
        except (StudyCoachError, InvalidRequestError) as e:
            failures += 1
            console.print(f"[red]✗ {e}[/red]")
            continue

        # The attachment belongs to the first question only
        attachment = attachment_name = None
        index += 1
        if index == 1:
            console.print(f"[dim]topic: {outcome.topic}[/dim]")
        _print_turn(outcome.turn, audio_dir, index)

    await manager.drain()
    return failures


@app.command()
def ask(
    question: str | None = typer.Argument(None, help="Question (omit for interactive mode)"),
    attach: Path | None = typer.Option(None, "--attach", "-a", help="File to attach"),
    audio_dir: Path | None = typer.Option(
        None, "--audio-dir", help="Write the audio answers to this directory"
    ),
    user: str = typer.Option(DEFAULT_USER, "--user", "-u", envvar=USER_ENV, help="Learner id"),
) -> None:
    """Ask the tutor about the current session (or anything, if none is active)."""
    repository = _repository(user)
    channel = DiagnosticsChannel()

    def _notify(issue: PersistenceIssue) -> None:
        console.print(f"[yellow]⚠ Progress was not saved: {issue.message}[/yellow]")

    channel.subscribe(_notify)
    manager = ConversationManager(
        TutorOrchestrator(LLMClient(), SpeechClient()),
        channel,
    )

    try:
        conversation = manager.create_conversation(repository)
    except StudyCoachError as e:
        _fail(e)

    attachment = None
    attachment_name = None
    if attach is not None:
        if not attach.is_file():
            console.print(f"[red]✗ File not found: {attach}[/red]")
            raise typer.Exit(code=1)
        attachment = _file_to_data_uri(attach)
        attachment_name = attach.name

    failures = asyncio.run(
        _run_conversation(
            manager,
            conversation,
            [question] if question else [],
            interactive=question is None,
            attachment=attachment,
            attachment_name=attachment_name,
            audio_dir=audio_dir,
        )
    )

    if question is not None and failures:
        raise typer.Exit(code=1)


# =============================================================================
# DASHBOARD
# =============================================================================


@app.command()
def dashboard(
    user: str = typer.Option(DEFAULT_USER, "--user", "-u", envvar=USER_ENV, help="Learner id"),
) -> None:
    """Show monthly study minutes and completion for the current plan."""
    repository = _repository(user)

    try:
        current = repository.require_latest_plan()
        records = repository.list_progress(current.plan_id)
    except StudyCoachError as e:
        _fail(e)

    summary = aggregate_progress(records, len(current.schedule))

    header = (
        f"[bold]{current.subject}[/bold]\n"
        f"Sessions completed: {summary.completed_sessions}/{summary.total_sessions} "
        f"({summary.completion_percent}%)\n"
        f"Total minutes: {summary.total_minutes}  ·  Active days: {summary.active_days}"
    )
    console.print(Panel(header, title=f"[bold]{summary.year}[/bold]", expand=False))

    peak = max((m.minutes for m in summary.monthly), default=0)
    table = Table(show_header=True, header_style="bold")
    table.add_column("Month")
    table.add_column("Minutes", justify="right")
    table.add_column("")
    for month in summary.monthly:
        bar = "█" * (round(month.minutes / peak * 30) if peak else 0)
        table.add_row(month.month, str(month.minutes), f"[cyan]{bar}[/cyan]")
    console.print(table)

    upcoming = locate_active_session(datetime.now(timezone.utc), current.schedule)
    console.print(f"[dim]Next session:[/dim] {topic_for(upcoming)}")


# =============================================================================
# SERVE
# =============================================================================


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the Web API with uvicorn."""
    import uvicorn

    console.print(f"[green]Serving on http://{host}:{port}[/green]")
    uvicorn.run("studycoach.web.api:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
