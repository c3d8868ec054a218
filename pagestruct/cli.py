"""CLI entry-point: run extraction or the full pipeline locally, or serve the API."""

import asyncio
import json

import typer
from rich.console import Console

from pagestruct.config import get_settings
from pagestruct.errors import PageStructError
from pagestruct.jobs.models import JobOptions
from pagestruct.service import build_service

app = typer.Typer(help="Extract web page content and structure it into JSON")
console = Console()


@app.command()
def extract(
    url: str = typer.Argument(..., help="Page URL"),
    force_headless: bool = typer.Option(False, "--force-headless", help="Skip the static fetch"),
    max_chars: int = typer.Option(2000, help="Characters of text to print (0 = all)"),
):
    """Fetch a page and print its extracted text and the method used."""
    settings = get_settings()

    async def _run():
        service = build_service(settings)
        try:
            await service.orchestrator.guard.check(url)
            return await service.orchestrator.extractor.extract(
                url, JobOptions(force_headless=force_headless)
            )
        finally:
            await service.close()

    try:
        result = asyncio.run(_run())
    except PageStructError as e:
        console.print(f"[red]{e.code}[/red] {e.message}")
        if e.details:
            console.print_json(data=e.details)
        raise typer.Exit(1)

    console.print(f"[green]method:[/green] {result.method.value}  [green]chars:[/green] {len(result.content)}")
    text = result.content if max_chars <= 0 else result.content[:max_chars]
    console.print(text, markup=False, highlight=False)


@app.command()
def parse(
    url: str = typer.Argument(..., help="Page URL"),
    schema_endpoint: str = typer.Option(..., "--schema-endpoint", "-s", help="URL serving {schema, prompt}"),
    client_id: str = typer.Option("cli", help="Client id recorded on the job"),
    force_headless: bool = typer.Option(False, "--force-headless"),
    timeout: float = typer.Option(None, help="Per-job time limit in seconds"),
):
    """Run the full pipeline in-process and print the finished job as JSON."""
    settings = get_settings()

    async def _run():
        service = build_service(settings)
        try:
            job = await service.orchestrator.submit(
                url=url,
                schema_endpoint=schema_endpoint,
                client_id=client_id,
                options=JobOptions(timeout=timeout, force_headless=force_headless),
            )
            console.print(f"Job [bold]{job.job_id}[/bold] submitted")
            return await service.orchestrator.wait(job.job_id)
        finally:
            await service.close()

    try:
        job = asyncio.run(_run())
    except PageStructError as e:
        console.print(f"[red]{e.code}[/red] {e.message}")
        raise typer.Exit(1)

    console.print_json(json.dumps(job.model_dump(mode="json", exclude={"raw_content"})))
    if job.status.value != "completed":
        raise typer.Exit(1)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(None, help="Port (default from PORT / settings)"),
    reload: bool = typer.Option(False, "--reload"),
):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run("backend.main:app", host=host, port=port or get_settings().port, reload=reload)


if __name__ == "__main__":
    app()
