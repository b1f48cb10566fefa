"""Command-line interface for proxyhop - HTTP requests through forward proxies."""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel

from proxyhop import __version__
from proxyhop.config import settings
from proxyhop.engine.context import NodeContext
from proxyhop.engine.errors import EngineError
from proxyhop.engine.nodes import HttpsOverProxyNode
from proxyhop.engine.runtime.pool import ConnectionPoolManager
from proxyhop.logger import setup_global_logger

console = Console()
logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__)
def main():
    """
    proxyhop - HTTP requests through forward proxies.

    Send a single request (or a paginated series) the same way the workflow
    node does, and print the resulting items.
    """
    pass


def _split_pairs(values: Tuple[str, ...], separator: str, label: str):
    pairs = []
    for value in values:
        name, sep, rest = value.partition(separator)
        if not sep or not name.strip():
            raise click.BadParameter(f"expected NAME{separator}VALUE, got {value!r}", param_hint=label)
        pairs.append({"name": name.strip(), "value": rest.strip()})
    return pairs


def build_parameters(
    url: str,
    method: str,
    headers: Tuple[str, ...],
    query: Tuple[str, ...],
    data: Optional[str],
    proxy: Optional[str],
    proxy_user: Optional[str],
    timeout: Optional[int],
    insecure: bool,
    allow_internal: bool,
    response_format: str,
    full_response: bool,
    no_follow: bool,
    max_redirects: Optional[int],
    base: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Merge command line options over a parameter file."""
    params: Dict[str, Any] = dict(base or {})
    params["url"] = url
    params["method"] = method.upper()
    options = dict(params.get("options") or {})

    if headers:
        params["sendHeaders"] = True
        params["specifyHeaders"] = "keypair"
        params["headerParameters"] = {"parameters": _split_pairs(headers, ":", "--header")}
    if query:
        params["sendQuery"] = True
        params["specifyQuery"] = "keypair"
        params["queryParameters"] = {"parameters": _split_pairs(query, "=", "--query")}
    if data is not None:
        params["sendBody"] = True
        params["contentType"] = "json"
        params["specifyBody"] = "json"
        params["bodyParametersJson"] = data

    if proxy:
        proxy_settings: Dict[str, Any] = {"proxyUrl": proxy}
        if proxy_user:
            username, _, password = proxy_user.partition(":")
            proxy_settings.update(proxyAuth=True, proxyUsername=username, proxyPassword=password)
        options["proxy"] = {"settings": proxy_settings}

    if timeout is not None:
        options["timeout"] = timeout
    if insecure:
        options["allowUnauthorizedCerts"] = True
    if allow_internal:
        options["allowInternalNetworkAccess"] = True
    if full_response:
        options["fullResponse"] = True
    options.setdefault("responseFormat", response_format)
    if no_follow or max_redirects is not None:
        options["redirect"] = {
            "redirect": {
                "followRedirects": not no_follow,
                "maxRedirects": max_redirects if max_redirects is not None else settings.DEFAULT_MAX_REDIRECTS,
            }
        }

    params["options"] = options
    return params


async def _run(parameters: Dict[str, Any]):
    async with ConnectionPoolManager() as pool:
        node = HttpsOverProxyNode(pool=pool)
        context = NodeContext(parameters=parameters)
        return await node.execute(context)


@main.command()
@click.argument("url")
@click.option("-X", "--method", default="GET", help="HTTP method")
@click.option("-H", "--header", "headers", multiple=True, help="Header as 'Name: value' (repeatable)")
@click.option("-q", "--query", multiple=True, help="Query parameter as name=value (repeatable)")
@click.option("-d", "--data", help="JSON request body")
@click.option("--proxy", help="Proxy URL, e.g. http://myproxy:3128 or myproxy:3128")
@click.option("--proxy-user", help="Proxy credentials as user:password")
@click.option("--timeout", type=int, help="Hard timeout in milliseconds")
@click.option("-k", "--insecure", is_flag=True, help="Skip TLS certificate verification")
@click.option("--allow-internal", is_flag=True, help="Allow loopback and private network targets")
@click.option(
    "--format",
    "response_format",
    type=click.Choice(["autodetect", "json", "text", "file"]),
    default="autodetect",
    show_default=True,
)
@click.option("--full-response", is_flag=True, help="Include status and headers")
@click.option("--no-follow", is_flag=True, help="Do not follow redirects")
@click.option("--max-redirects", type=int, help="Maximum redirects to follow")
@click.option(
    "--params",
    "params_file",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file with node parameters (pagination, batching, auth...)",
)
@click.option("--log-level", default=settings.LOG_LEVEL, help="Log level")
def request(
    url, method, headers, query, data, proxy, proxy_user, timeout, insecure, allow_internal,
    response_format, full_response, no_follow, max_redirects, params_file, log_level,
):
    """Send a request to URL and print the output items."""
    setup_global_logger(log_level)

    base = None
    if params_file:
        with open(params_file, encoding="utf-8") as f:
            try:
                base = json.load(f)
            except json.JSONDecodeError as e:
                raise click.BadParameter(f"invalid JSON: {e}", param_hint="--params")

    parameters = build_parameters(
        url, method, headers, query, data, proxy, proxy_user, timeout, insecure,
        allow_internal, response_format, full_response, no_follow, max_redirects, base,
    )

    try:
        items = asyncio.run(_run(parameters))
    except EngineError as e:
        console.print(Panel(str(e), title=f"[bold red]{e.code}[/bold red]", border_style="red"))
        sys.exit(1)

    console.print_json(json.dumps([item.to_dict() for item in items], default=str))


if __name__ == "__main__":
    main()
