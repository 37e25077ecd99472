"""Interactive CLI application."""
import argparse
import asyncio

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from coursepilot import config
from coursepilot.backend import BackendClient
from coursepilot.errors import AudioFailure, CoursePilotError
from coursepilot.logger import setup_logging
from coursepilot.models import NEEDED, AssessmentAnswer
from coursepilot.phases import (
    Assessment, CourseComplete, DayComplete, DayCover, Flashcards, Overview, Quiz, Results, Search,
)
from coursepilot.study import Session, SessionVariant

console = Console()

EDIT_COMMANDS = [
    ("rename <n> <title>", "Rename module n"),
    ("sub <n> <i> <title>", "Rename subtopic i of module n"),
    ("add-sub <n>", "Append a subtopic to module n"),
    ("del-sub <n> <i>", "Delete subtopic i of module n"),
    ("up <n> <i> / down <n> <i>", "Move subtopic i of module n"),
    ("add-module", "Append an empty module"),
    ("del-module <n>", "Delete module n"),
    ("save / cancel", "Commit or discard the draft"),
]


class QuitRequested(Exception):
    """Raised when the user asks to leave the application."""


async def ask(prompt: str, **kwargs) -> str:
    """Prompt without blocking the event loop, so prefetches keep running."""
    answer = await asyncio.to_thread(Prompt.ask, prompt, **kwargs)
    answer = (answer or "").strip()
    if answer.lower() in ("quit", "exit"):
        raise QuitRequested()
    return answer


def show_welcome(session: Session):
    mode = "Creator" if session.variant is SessionVariant.CREATOR else "Learner"
    console.print(Panel(
        f"[bold]CoursePilot[/bold]\n[dim]Personalized courses, one day at a time ({mode} mode)[/dim]",
        title="Welcome", border_style="blue",
    ))


def show_commands(commands: list[tuple[str, str]]):
    console.print("\n[bold]Commands:[/bold]")
    for cmd, desc in commands:
        console.print(f"  [cyan]{cmd:<26}[/cyan] {desc}")


def show_error(session: Session):
    if session.error:
        console.print(f"[red]{session.error}[/red]")
        session.error = None


# -------------------------------------------------------------------
# Rendering
# -------------------------------------------------------------------
def show_overview(session: Session):
    plan = session.plan
    days_by_topic = {d.focus_topic: d.day for d in plan.days}
    completed = set(session.completed_days)
    table = Table(title=f"{plan.topic} — {plan.total_days} days, {plan.total_duration} min")
    table.add_column("#", justify="right")
    table.add_column("Module", style="cyan")
    table.add_column("Day", justify="right")
    table.add_column("Subtopics", justify="right")
    table.add_column("Status")
    for number, module in enumerate(plan.modules, 1):
        day = days_by_topic.get(module.topic)
        if module.tag != NEEDED:
            status = "[dim]not needed[/dim]"
        elif day in completed:
            status = "[green]Done[/green]"
        elif session.content_for_day(day) is not None:
            status = "[cyan]Ready[/cyan]"
        else:
            status = ""
        table.add_row(str(number), module.topic, str(day or "-"), str(len(module.subtopics)), status)
    console.print(table)


def show_draft(session: Session):
    table = Table(title="Editing syllabus (draft)")
    table.add_column("#", justify="right")
    table.add_column("Module", style="cyan")
    table.add_column("Subtopics")
    for number, module in enumerate(session.editor.draft, 1):
        subs = "\n".join(f"{i}. {s.name}" for i, s in enumerate(module.subtopics, 1)) or "[dim]none[/dim]"
        table.add_row(str(number), module.topic, subs)
    console.print(table)


def show_card(session: Session):
    phase = session.phase
    content = session.content_for_day(phase.current_day)
    card = session.current_card
    title = f"Day {phase.current_day} · Card {phase.card_index + 1}/{len(content)}"
    heading = f"{card.emoji} {card.title}" if card.emoji else card.title
    body = f"[bold]{heading}[/bold]\n\n{card.content}"
    if card.reference:
        body += f"\n\n[dim]{card.reference}[/dim]"
    console.print(Panel(body, title=title, border_style="cyan"))


# -------------------------------------------------------------------
# Phase handlers
# -------------------------------------------------------------------
async def handle_search(session: Session):
    topic = await ask("\n[bold]What do you want to learn?[/bold]")
    if not topic:
        return
    if session.variant is SessionVariant.CREATOR:
        expertise = await ask("Audience / expertise level", default="beginner")
        await session.generate(topic, expertise)
    else:
        await session.search_courses(topic)


async def handle_results(session: Session):
    phase = session.phase
    table = Table(title=f"Existing courses for '{phase.topic}'")
    table.add_column("#", justify="right")
    table.add_column("Course", style="cyan")
    table.add_column("By")
    table.add_column("Match", justify="right")
    for number, course in enumerate(phase.courses, 1):
        table.add_row(str(number), course.title, course.creator_name, f"{course.match_score:.0%}")
    console.print(table)
    choices = [str(n) for n in range(1, len(phase.courses) + 1)] + ["new"]
    choice = await ask("Enroll in a course or build a [cyan]new[/cyan] one", choices=choices)
    if choice == "new":
        await session.start_new_course()
    else:
        await session.enroll(phase.courses[int(choice) - 1].id)


async def run_assessment(session: Session) -> list[AssessmentAnswer]:
    phase = session.phase
    console.print(f"\n[bold]Quick assessment: {phase.topic}[/bold] — {len(phase.questions)} questions\n")
    answers = []
    for i, q in enumerate(phase.questions, 1):
        console.print(f"[bold]Q{i}.[/bold] {q.question_text}")
        for n, option in enumerate(q.options, 1):
            console.print(f"  [cyan]{n})[/cyan] {option}")
        picked = await ask("Your answer", choices=[str(n) for n in range(1, len(q.options) + 1)])
        answers.append(AssessmentAnswer(q.id, q.question_text, q.options[int(picked) - 1]))
        console.print()
    return answers


async def run_quiz(session: Session):
    phase = session.phase
    console.print(f"\n[bold]Knowledge check[/bold] — {len(phase.questions)} questions\n")
    answers = []
    for i, q in enumerate(phase.questions, 1):
        console.print(f"[bold]Q{i}.[/bold] {q.question}\n")
        for n, option in enumerate(q.options, 1):
            console.print(f"  [cyan]{n})[/cyan] {option}")
        picked = await ask(
            "\nYour answer ([dim]skip[/dim] to skip the quiz)",
            choices=[str(n) for n in range(1, len(q.options) + 1)] + ["skip"],
        )
        if picked == "skip":
            session.skip_quiz()
            return
        index = int(picked) - 1
        answers.append(index)
        if index == q.correct_index:
            console.print("[green]Correct![/green]")
        else:
            console.print(f"[red]Incorrect.[/red] Answer: [green]{q.options[q.correct_index]}[/green]")
        if q.explanation:
            console.print(f"[dim]{q.explanation}[/dim]")
        console.print()
    result = session.finish_quiz(answers)
    color = "green" if result.passed else "yellow"
    verdict = "Quiz complete!" if result.passed else "Keep practicing"
    console.print(f"[bold {color}]{verdict} Score: {result.correct}/{result.total} ({result.percentage}%)[/bold {color}]\n")


async def handle_edit(session: Session, command: str, args: list[str]):
    editor = session.editor
    draft = editor.draft

    def module_title(n: str) -> str:
        return draft[int(n) - 1].topic

    if command == "rename":
        editor.rename_module(module_title(args[0]), " ".join(args[1:]))
    elif command == "sub":
        editor.rename_subtopic(module_title(args[0]), int(args[1]) - 1, " ".join(args[2:]))
    elif command == "add-sub":
        editor.add_subtopic(module_title(args[0]))
    elif command == "del-sub":
        editor.delete_subtopic(module_title(args[0]), int(args[1]) - 1)
    elif command in ("up", "down"):
        editor.reorder_subtopic(module_title(args[0]), int(args[1]) - 1, command)
    elif command == "add-module":
        editor.add_module()
    elif command == "del-module":
        editor.delete_module(module_title(args[0]))
    elif command == "save":
        await session.save_edits()
        console.print("[green]Syllabus saved.[/green]")
    elif command == "cancel":
        session.cancel_edit()
    else:
        console.print("[red]Unknown command. Try again.[/red]")


async def handle_overview(session: Session):
    if session.editor.editing:
        show_draft(session)
        show_commands(EDIT_COMMANDS)
        command, *args = (await ask("\n[bold]edit>[/bold]")).split() or [""]
        await handle_edit(session, command, args)
        return

    show_overview(session)
    commands = [
        ("start <day>", "Study a day (generates content if needed)"),
        ("day <day>", "Open a day without generating"),
        ("toggle <n>", "Mark module n needed / not needed"),
        ("edit", "Edit the syllabus"),
        ("restart", "Start over with a new topic"),
        ("quit", "Exit"),
    ]
    if session.variant is SessionVariant.CREATOR:
        state = "Unpublish" if session.plan.published else "Publish"
        commands.insert(4, ("publish", f"{state} this course"))
    show_commands(commands)

    command, *args = (await ask("\n[bold]>[/bold]", default="start 1")).split() or [""]
    if command == "start":
        await session.start_day(int(args[0]))
    elif command == "day":
        await session.go_to_day(int(args[0]))
    elif command == "toggle":
        session.toggle_module(session.plan.modules[int(args[0]) - 1].topic)
    elif command == "edit":
        session.start_edit()
    elif command == "publish" and session.variant is SessionVariant.CREATOR:
        if await session.toggle_publish():
            console.print("[green]Published.[/green]" if session.plan.published else "[dim]Unpublished.[/dim]")
    elif command == "restart":
        session.restart()
    else:
        console.print("[red]Unknown command. Try again.[/red]")


async def handle_flashcards(session: Session):
    show_card(session)
    choice = await ask(
        "[dim]n[/dim]ext · [dim]p[/dim]rev · audio [lang] · simplify · explain <term> · overview",
        default="n",
    )
    command, _, rest = choice.partition(" ")
    if command in ("n", "next"):
        await session.next_card()
    elif command in ("p", "prev"):
        await session.previous_card()
    elif command == "audio":
        language = rest.strip() or None
        try:
            clip = await session.play_audio(language)
        except AudioFailure:
            console.print("[yellow]Audio unavailable for this card.[/yellow]")
            return
        console.print(f"[green]Narration saved:[/green] {clip.save(config.AUDIO_DIR)}")
    elif command == "simplify":
        console.print(Panel(await session.simplify_card(), title="In simpler words", border_style="green"))
    elif command == "explain" and rest:
        console.print(Panel(await session.explain_term(rest.strip()), title=rest.strip(), border_style="magenta"))
    elif command == "overview":
        session.go_to_overview()
    else:
        console.print("[red]Unknown command. Try again.[/red]")


async def step(session: Session):
    """Render the current phase and handle one round of input."""
    show_error(session)
    phase = session.phase
    if isinstance(phase, Search):
        await handle_search(session)
    elif isinstance(phase, Results):
        await handle_results(session)
    elif isinstance(phase, Assessment):
        await session.submit_assessment(await run_assessment(session))
    elif isinstance(phase, Overview):
        await handle_overview(session)
    elif isinstance(phase, DayCover):
        console.print(Panel(
            f"[bold]{phase.module_title}[/bold]", title=f"Day {phase.current_day} of {session.plan.total_days}",
        ))
        choice = await ask("Start this day?", choices=["start", "overview"], default="start")
        if choice == "start":
            await session.start_day(phase.current_day)
        else:
            session.go_to_overview()
    elif isinstance(phase, Flashcards):
        await handle_flashcards(session)
    elif isinstance(phase, Quiz):
        await run_quiz(session)
    elif isinstance(phase, DayComplete):
        console.print(f"[green]Day {phase.current_day} complete![/green]")
        choice = await ask("Continue?", choices=["next", "overview"], default="next")
        if choice == "next":
            session.proceed_to_next_day()
        else:
            session.go_to_overview()
    elif isinstance(phase, CourseComplete):
        console.print(Panel("[bold green]Course complete![/bold green]", border_style="green"))
        choice = await ask("Start again?", choices=["restart", "quit"], default="restart")
        if choice == "restart":
            session.restart()
        else:
            raise QuitRequested()
    else:
        # loading phases resolve inside the awaited call that entered them
        console.print(f"[dim]{phase.name}...[/dim]")


async def run(session: Session):
    show_welcome(session)
    while True:
        try:
            await step(session)
        except QuitRequested:
            console.print("[dim]Happy learning![/dim]")
            break
        except (CoursePilotError, LookupError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")


async def _main(variant: SessionVariant):
    async with BackendClient() as backend:
        await run(Session(backend, variant=variant))


def main():
    parser = argparse.ArgumentParser(prog="coursepilot", description=__doc__)
    parser.add_argument("--creator", action="store_true", help="author courses instead of taking them")
    parser.add_argument("--log-level", default=config.LOG_LEVEL)
    args = parser.parse_args()
    setup_logging(args.log_level)
    variant = SessionVariant.CREATOR if args.creator else SessionVariant.LEARNER
    try:
        asyncio.run(_main(variant))
    except KeyboardInterrupt:
        console.print("\n[dim]Bye.[/dim]")


if __name__ == "__main__":
    main()
