"""Command line interface for the livediar speaker identity core."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import numpy as np
import typer

from .errors import IdentityError
from .identity import ClusteringConfig, IdentitySession, SpeakerClusteringEngine
from .identity.logger import set_verbose
from .identity.metrics import discriminability_report

app = typer.Typer(help="Offline tooling around the livediar speaker identity engine.")


def _make_json_safe(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _make_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_make_json_safe(v) for v in value]
    if isinstance(value, np.ndarray):
        return [float(x) for x in value.reshape(-1)]
    if isinstance(value, np.generic):
        return value.item()
    return value


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        typer.echo(f"Invalid JSON in {path}: {exc}", err=True)
        raise typer.Exit(code=2) from exc


def _read_phrases(path: Path) -> list[dict[str, Any]]:
    phrases: list[dict[str, Any]] = []
    for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        if not line.strip():
            continue
        try:
            phrases.append(json.loads(line))
        except json.JSONDecodeError as exc:
            typer.echo(f"{path}:{lineno}: invalid JSON ({exc.msg})", err=True)
            raise typer.Exit(code=2) from exc
    return phrases


@app.command(help="Replay a JSON-lines session and print one decision per phrase.")
def assign(
    session: Path = typer.Argument(..., exists=True, readable=True, help="JSON-lines phrases"),
    enrolled: Path | None = typer.Option(
        None, exists=True, readable=True, help="Exported enrolled speakers (JSON list)"
    ),
    num_speakers: int = typer.Option(2, help="Expected number of speakers (clamped to 1-10)"),
    similarity_threshold: float | None = typer.Option(
        None, help="Confident-match cosine threshold"
    ),
    debug: bool = typer.Option(False, "--debug", help="Log every decision", is_flag=True),
):
    try:
        config = ClusteringConfig.from_mapping(
            {
                "num_speakers": num_speakers,
                "similarity_threshold": similarity_threshold,
                "debug_logging": debug,
            }
        )
    except IdentityError as exc:
        typer.echo(f"Invalid configuration: {exc} {json.dumps(dict(exc.context))}", err=True)
        raise typer.Exit(code=2) from exc

    set_verbose(debug)
    engine = SpeakerClusteringEngine(config)
    if enrolled is not None:
        for warning in engine.import_enrolled_speakers(_read_json(enrolled)):
            typer.echo(
                "warning: enrolled speakers {speaker1} and {speaker2} are similar "
                "({similarity:.3f})".format(**warning),
                err=True,
            )

    identity = IdentitySession(engine)
    for position, phrase in enumerate(_read_phrases(session)):
        segment = identity.process_phrase(
            phrase.get("embedding"), text=phrase.get("text"), words=phrase.get("words")
        )
        if segment is None:
            continue
        row: dict[str, Any] = {"line": position + 1, "text": segment.text}
        if segment.environmental:
            row["environmental"] = True
        else:
            row.update(segment.decision.to_dict())
            row["label"] = identity.label_for(segment)
            row.pop("allSimilarities", None)
        typer.echo(json.dumps(_make_json_safe(row)))


@app.command("inspect-enrolled", help="Report how well an enrolled set separates its voices.")
def inspect_enrolled(
    path: Path = typer.Argument(..., exists=True, readable=True, help="Enrolled speakers JSON"),
    warning_threshold: float = typer.Option(
        0.72, help="Pairwise similarity above which a pair is flagged"
    ),
):
    payload = _read_json(path)
    if not isinstance(payload, list):
        typer.echo("Expected a JSON list of enrolled speakers", err=True)
        raise typer.Exit(code=2)
    engine = SpeakerClusteringEngine(
        ClusteringConfig(inter_enrollment_warning_threshold=warning_threshold)
    )
    warnings = engine.import_enrolled_speakers(payload)
    speakers = [
        {"id": s["id"], "name": s["name"], "centroid": s["centroid"]}
        for s in engine.get_all_speakers_for_visualization()
    ]
    report = discriminability_report(speakers)
    report["speakerCount"] = len(speakers)
    report["warnings"] = warnings
    typer.echo(json.dumps(_make_json_safe(report), indent=2))


def main() -> None:  # pragma: no cover - thin wrapper
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
