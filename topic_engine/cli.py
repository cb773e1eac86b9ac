#!filepath: topic_engine/cli.py
from typing import List, Optional

import typer
from rich import print
from rich.table import Table

from topic_engine import __version__, logs
from topic_engine.config.app_config import AppConfig
from topic_engine.master.args import (
    ExportModelArgs,
    GetTopicModelArgs,
    ImportModelArgs,
    MergeModelArgs,
    NormalizeModelArgs,
)
from topic_engine.master.master_component import MasterComponent

app = typer.Typer(help="Topic Engine model file CLI")


def _offline_master(config_path: Optional[str]) -> MasterComponent:
    """
    Master without processors: file commands never dispatch batches.
    """
    cfg = AppConfig.load(config_path)
    logs.configure(cfg.master.log)
    master_config = cfg.master.model_copy(
        update={"processors_count": 0, "processor_queue_max_size": None}
    )
    return MasterComponent(master_config)


@app.command()
def version():
    print(f"v{__version__}")


@app.command()
def inspect(
    file: str,
    top: int = typer.Option(10, help="tokens shown per topic"),
    config: Optional[str] = typer.Option(None, help="YAML config path"),
):
    """
    Show the shape and the heaviest tokens of an exported model
    """
    with _offline_master(config) as master:
        master.import_model(ImportModelArgs(model_name="inspect", file_name=file))
        chunk = master.request_topic_model(GetTopicModelArgs(model_name="inspect"))

    frame = master.instance.store.get_phi_matrix("inspect").to_frame()
    print(f"[green]{file}[/green]")
    print(f"{chunk.token_size} tokens x {chunk.topic_size} topics")

    table = Table(title="top tokens")
    table.add_column("topic")
    table.add_column("tokens")
    for topic in frame.columns:
        heaviest = frame[topic].nlargest(top)
        table.add_row(
            topic,
            ", ".join(f"{keyword} ({weight:.3g})" for (_, keyword), weight in heaviest.items()),
        )
    print(table)


@app.command()
def merge(
    files: List[str],
    weight: Optional[List[float]] = typer.Option(None, help="one weight per file (1.0 if omitted)"),
    out: str = typer.Option(..., help="output model file"),
    config: Optional[str] = typer.Option(None, help="YAML config path"),
):
    """
    Weighted sum of exported count matrices
    """
    weights = list(weight or []) or [1.0] * len(files)
    if len(weights) != len(files):
        print("[red]--weight must be given once per file[/red]")
        raise typer.Exit(code=1)

    with _offline_master(config) as master:
        names = []
        for i, file in enumerate(files):
            name = f"source_{i}"
            master.import_model(ImportModelArgs(model_name=name, file_name=file))
            names.append(name)

        master.merge_model(
            MergeModelArgs(nwt_target_name="merged", nwt_source_name=names, source_weight=weights)
        )
        master.export_model(ExportModelArgs(model_name="merged", file_name=out))

    print(f"[blue]Merged {len(files)} model(s) -> {out}[/blue]")


@app.command()
def normalize(
    file: str,
    out: str = typer.Option(..., help="output model file"),
    config: Optional[str] = typer.Option(None, help="YAML config path"),
):
    """
    Turn an exported count matrix into per-topic probabilities
    """
    with _offline_master(config) as master:
        master.import_model(ImportModelArgs(model_name="nwt", file_name=file))
        master.normalize_model(NormalizeModelArgs(pwt_target_name="pwt", nwt_source_name="nwt"))
        master.export_model(ExportModelArgs(model_name="pwt", file_name=out))

    print(f"[yellow]Normalized {file} -> {out}[/yellow]")


if __name__ == "__main__":
    app()

# python -m topic_engine.cli inspect model.bin
