# ABOUTME: Provides a CLI that drives synthetic students through the mastery engine.
# ABOUTME: Shows profiles, replays, calibration outcomes, item exports, and prediction metrics.

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

import numpy as np
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from src.common.config import load_engine_config
from src.common.content import load_content_fixture
from src.common.errors import NoEligibleItemError
from src.common.evaluation import evaluate_predictions
from src.common.events import EventRecorder
from src.irt import CalibrationJob, export_item_params
from src.irt.model import p_correct
from src.pipeline import MasteryService, build_service

console = Console()
app = typer.Typer(help="Simulate students against the real-time mastery engine.")

DEFAULT_CONFIG = Path("configs/engine.yaml")
DEFAULT_CONTENT = Path("configs/demo_content.yaml")


@dataclass
class Session:
    service: MasteryService
    job: CalibrationJob
    recorder: EventRecorder
    attempts: int
    exhausted: List[str]


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _synthetic_response(answer_key, probability: float, rng: np.random.Generator):
    if isinstance(answer_key, (list, tuple)):
        return [value if rng.random() < probability else "?" for value in answer_key]
    return answer_key if rng.random() < probability else "?"


async def _simulate(
    config_path: Path,
    content_path: Path,
    rounds: int,
    seed: int,
    use_sequence_model: bool,
) -> Session:
    config = load_engine_config(config_path)
    graph, catalog, students = load_content_fixture(content_path)
    recorder = EventRecorder()
    service = build_service(config, graph, catalog, students, use_sequence_model=use_sequence_model)
    service.events.subscribe(recorder)
    job = CalibrationJob(catalog, service.attempt_log, service.store, config.calibration)
    service.events.subscribe(job.on_mastery_changed)

    rng = np.random.default_rng(seed)
    abilities: Dict[str, Dict[str, float]] = {
        student_id: {skill_id: float(rng.normal(0.0, 1.0)) for skill_id in graph.skill_ids()}
        for student_id in students.student_ids()
    }

    attempts = 0
    exhausted: List[str] = []
    for round_index in range(rounds):
        for student_id in students.student_ids():
            if student_id in exhausted:
                continue
            try:
                item_id = await service.next_item(student_id)
            except NoEligibleItemError:
                exhausted.append(student_id)
                continue
            item = catalog.get_item(item_id)
            ability = abilities[student_id][item.skill_id]
            # practice nudges true ability upward
            abilities[student_id][item.skill_id] = ability + 0.05
            probability = p_correct(ability, item.difficulty, item.discrimination)
            await service.submit_attempt(
                student_id,
                item_id,
                _synthetic_response(item.answer_key, probability, rng),
                idempotency_key=f"{student_id}-{round_index}",
                response_time=float(rng.gamma(2.0, 15.0)),
            )
            attempts += 1
    return Session(service, job, recorder, attempts, exhausted)


def _run(config_path: Path, content_path: Path, rounds: int, seed: int, use_sequence_model: bool) -> Session:
    return asyncio.run(_simulate(config_path, content_path, rounds, seed, use_sequence_model))


def _profile_table(title: str, profile: Dict[str, Dict]) -> Table:
    table = Table(title=title)
    table.add_column("Skill")
    table.add_column("P(mastery)", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Last update")
    for skill_id, row in profile.items():
        table.add_row(
            skill_id,
            f"{row['probability_mastery']:.3f}",
            f"{row['confidence']:.3f}",
            row["last_update"].isoformat() if row["last_update"] else "-",
        )
    return table


@app.command()
def simulate(
    rounds: int = typer.Option(20, "--rounds", help="Attempts per student."),
    seed: int = typer.Option(13, "--seed", help="Random seed for synthetic students."),
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", help="Engine config path."),
    content_path: Path = typer.Option(DEFAULT_CONTENT, "--content", help="Content fixture path."),
    use_sequence_model: bool = typer.Option(True, "--sequence-model/--bkt-only", help="Blend the sequence tracer."),
    log_level: str = typer.Option("warning", "--log-level", help="Python logging level."),
) -> None:
    """Run every student through the engine and summarize their mastery."""

    _configure_logging(log_level)
    session = _run(config_path, content_path, rounds, seed, use_sequence_model)
    console.rule("[bold blue]Simulation[/bold blue]")
    console.print(f"[bold]Attempts committed:[/] {session.attempts}")
    console.print(f"[bold]Events published:[/] {len(session.recorder.events)}")
    degraded = sum(1 for event in session.recorder.events if event.degraded)
    console.print(f"[bold]Degraded updates:[/] {degraded}")
    if session.exhausted:
        console.print(f"[yellow]All caught up:[/] {', '.join(session.exhausted)}")

    table = Table(title="Mean mastery by student")
    table.add_column("Student")
    table.add_column("Skills seen", justify="right")
    table.add_column("Mean P(mastery)", justify="right")
    for student_id in session.service.students.student_ids():
        profile = asyncio.run(session.service.get_profile(student_id))
        values = [row["probability_mastery"] for row in profile.values()]
        table.add_row(student_id, str(len(values)), f"{np.mean(values):.3f}" if values else "-")
    console.print(table)


@app.command()
def profile(
    student_id: str = typer.Option(..., "--student-id", help="Student to display."),
    rounds: int = typer.Option(20, "--rounds"),
    seed: int = typer.Option(13, "--seed"),
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config"),
    content_path: Path = typer.Option(DEFAULT_CONTENT, "--content"),
    use_sequence_model: bool = typer.Option(True, "--sequence-model/--bkt-only"),
) -> None:
    """Show one student's mastery profile after a simulated session."""

    session = _run(config_path, content_path, rounds, seed, use_sequence_model)
    if not session.service.students.exists(student_id):
        raise typer.BadParameter(f"Unknown student '{student_id}'", param_hint="--student-id")
    console.print(_profile_table(f"Profile for {student_id}", asyncio.run(session.service.get_profile(student_id))))


@app.command()
def recompute(
    student_id: str = typer.Option(..., "--student-id", help="Student whose attempt log is replayed."),
    rounds: int = typer.Option(20, "--rounds"),
    seed: int = typer.Option(13, "--seed"),
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config"),
    content_path: Path = typer.Option(DEFAULT_CONTENT, "--content"),
    use_sequence_model: bool = typer.Option(True, "--sequence-model/--bkt-only"),
) -> None:
    """Replay a student's attempt log and compare with the live profile."""

    session = _run(config_path, content_path, rounds, seed, use_sequence_model)
    service = session.service

    async def _replay():
        live = await service.get_profile(student_id)
        await service.recompute_mastery(student_id)
        return live, await service.get_profile(student_id)

    live, replayed = asyncio.run(_replay())
    table = Table(title=f"Live vs replayed mastery for {student_id}")
    table.add_column("Skill")
    table.add_column("Live", justify="right")
    table.add_column("Replayed", justify="right")
    table.add_column("Match")
    mismatches = 0
    for skill_id in sorted(set(live) | set(replayed)):
        a = live.get(skill_id, {}).get("probability_mastery")
        b = replayed.get(skill_id, {}).get("probability_mastery")
        match = a is not None and b is not None and a == b
        mismatches += 0 if match else 1
        table.add_row(
            skill_id,
            f"{a:.6f}" if a is not None else "-",
            f"{b:.6f}" if b is not None else "-",
            "[green]yes[/green]" if match else "[red]no[/red]",
        )
    console.print(table)
    if mismatches:
        console.print(f"[yellow]{mismatches} skill(s) differ (degraded live updates are not reproduced)[/yellow]")


@app.command()
def calibrate(
    rounds: int = typer.Option(40, "--rounds"),
    seed: int = typer.Option(13, "--seed"),
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config"),
    content_path: Path = typer.Option(DEFAULT_CONTENT, "--content"),
    use_sequence_model: bool = typer.Option(False, "--sequence-model/--bkt-only"),
) -> None:
    """Run the calibration batch job over a simulated attempt log."""

    session = _run(config_path, content_path, rounds, seed, use_sequence_model)
    outcomes = session.job.run_once()
    table = Table(title="Calibration outcomes")
    table.add_column("Item")
    table.add_column("Responses", justify="right")
    table.add_column("Difficulty", justify="right")
    table.add_column("Discrimination", justify="right")
    table.add_column("Status")
    for outcome in outcomes:
        status = f"[yellow]low confidence: {outcome.reason}[/yellow]" if outcome.low_confidence else "[green]fit[/green]"
        table.add_row(
            outcome.item_id,
            str(outcome.responses),
            f"{outcome.difficulty:.3f}",
            f"{outcome.discrimination:.3f}",
            status,
        )
    console.print(table)


@app.command("export-items")
def export_items(
    output_dir: Path = typer.Option(Path("reports"), "--output-dir", help="Directory for item_params.parquet."),
    rounds: int = typer.Option(40, "--rounds"),
    seed: int = typer.Option(13, "--seed"),
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config"),
    content_path: Path = typer.Option(DEFAULT_CONTENT, "--content"),
) -> None:
    """Calibrate, then export item parameters and the health summary."""

    session = _run(config_path, content_path, rounds, seed, False)
    session.job.run_once()
    params_df = export_item_params(session.service.content.snapshot(), output_dir)
    console.print(f"[green]✅ Exported {len(params_df)} items to {output_dir}[/green]")


@app.command()
def evaluate(
    rounds: int = typer.Option(40, "--rounds"),
    seed: int = typer.Option(13, "--seed"),
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config"),
    content_path: Path = typer.Option(DEFAULT_CONTENT, "--content"),
    use_sequence_model: bool = typer.Option(True, "--sequence-model/--bkt-only"),
) -> None:
    """Score replayed next-attempt predictions against observed correctness."""

    session = _run(config_path, content_path, rounds, seed, use_sequence_model)
    predictions = session.service.replay_predictions()
    metrics = evaluate_predictions(predictions)
    table = Table(title=f"Prediction metrics ({len(predictions)} attempts)")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for name, value in metrics.items():
        table.add_row(name, "-" if np.isnan(value) else f"{value:.4f}")
    console.print(table)


if __name__ == "__main__":
    app()
