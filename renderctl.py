#!/usr/bin/env python3
"""
CLI tool for the static pod config renderer
Reads and writes upstream configuration and shows render status
"""

import json
import time

import click
import requests
import yaml
from tabulate import tabulate

API_BASE_URL = "http://localhost:8000/api/v1"


class RendererCLI:
    """CLI client for the renderer HTTP API"""

    def __init__(self, base_url: str = API_BASE_URL):
        self.base_url = base_url.rstrip("/")

    def _make_request(self, method: str, endpoint: str, **kwargs):
        """Make HTTP request to the API"""
        url = f"{self.base_url}{endpoint}"
        try:
            response = requests.request(method, url, timeout=30, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            click.echo(f"Error: {e}", err=True)
            if getattr(e, "response", None) is not None:
                try:
                    error_detail = e.response.json()
                    detail = (
                        error_detail.get("detail", error_detail)
                        if isinstance(error_detail, dict)
                        else error_detail
                    )
                    click.echo(f"Detail: {detail}", err=True)
                except ValueError:
                    click.echo(f"Response: {e.response.text}", err=True)
            return None


def load_spec(filename: str):
    """Load a spec from a YAML or JSON file"""
    with open(filename, "r") as f:
        if filename.endswith(".json"):
            return json.load(f)
        return yaml.safe_load(f)


def render(data, output: str) -> str:
    if output == "yaml":
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    return json.dumps(data, indent=2)


@click.group()
@click.option(
    "--url",
    envvar="RENDERER_API_URL",
    default=API_BASE_URL,
    show_default=True,
    help="Base URL of the renderer API",
)
@click.pass_context
def cli(ctx, url):
    """Static pod config renderer CLI"""
    ctx.obj = RendererCLI(url)


@cli.command()
@click.option("--follow", "-f", is_flag=True, help="Follow status updates")
@click.option("--interval", "-i", default=5, help="Polling interval in seconds")
@click.pass_obj
def status(client, follow, interval):
    """Show the published render status"""

    def show_status():
        result = client._make_request("GET", "/status")
        if result is None:
            return False
        click.echo(f"Ready: {'yes' if result['ready'] else 'no'}")
        click.echo(f"Version: {result['version'] or '<none>'}")
        return True

    if not show_status() and not follow:
        raise click.exceptions.Exit(1)

    if follow:
        try:
            while True:
                time.sleep(interval)
                click.clear()
                show_status()
        except KeyboardInterrupt:
            click.echo("\nStopped following")


@cli.command()
@click.argument("kind", required=False)
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
@click.option("--reveal", is_flag=True, help="Show sensitive specs")
@click.pass_obj
def get(client, kind, output, reveal):
    """List resources, or show one KIND"""
    if kind:
        params = {"reveal": "true"} if reveal else {}
        result = client._make_request("GET", f"/resources/{kind}", params=params)
        if result is None:
            raise click.exceptions.Exit(1)

        if output == "table":
            headers = ["Kind", "ID", "Version", "Spec"]
            spec = result["spec"]
            if not isinstance(spec, str):
                spec = json.dumps(spec)
            rows = [[result["kind"], result["resource_id"], result["version"], spec]]
            click.echo(tabulate(rows, headers=headers, tablefmt="grid"))
        else:
            click.echo(render(result, output))
        return

    result = client._make_request("GET", "/resources")
    if result is None:
        raise click.exceptions.Exit(1)

    if output != "table":
        click.echo(render(result, output))
        return

    headers = ["Kind", "ID", "Required", "Present", "Version"]
    rows = []
    for entry in result:
        rows.append(
            [
                entry["kind"],
                entry["resource_id"],
                (
                    "output"
                    if entry["output"]
                    else ("yes" if entry["required"] else "no")
                ),
                "✓" if entry["present"] else "✗",
                entry.get("version") or "",
            ]
        )
    click.echo(tabulate(rows, headers=headers, tablefmt="grid"))


@cli.command()
@click.argument("kind")
@click.argument("filename", type=click.Path(exists=True))
@click.pass_obj
def apply(client, kind, filename):
    """Write KIND from a YAML/JSON spec file"""
    spec = load_spec(filename)
    if not isinstance(spec, dict):
        raise click.BadParameter(
            "spec file must contain a mapping", param_hint="FILENAME"
        )

    result = client._make_request("PUT", f"/resources/{kind}", json={"spec": spec})
    if result is None:
        raise click.exceptions.Exit(1)

    click.echo(f"{result['kind']} applied at version {result['version']}")


@cli.command()
@click.argument("kind")
@click.confirmation_option(prompt="Are you sure you want to delete this resource?")
@click.pass_obj
def delete(client, kind):
    """Delete an upstream resource"""
    result = client._make_request("DELETE", f"/resources/{kind}")
    if result is None:
        raise click.exceptions.Exit(1)

    click.echo(f"{kind} deleted")


if __name__ == "__main__":
    cli()
