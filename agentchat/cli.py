"""Click CLI: loads config, resolves the credential, streams a chat or consensus run."""

import asyncio
import base64
import importlib
import logging
import mimetypes
import signal
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from agentchat.agent import AgentRuntimeFactory
from agentchat.chat import ChatOrchestrator
from agentchat.consensus import ConsensusOrchestrator
from agentchat.credentials import EnvCredentialStore, credential_for
from agentchat.errors import AgentChatError
from agentchat.healthcheck import run_health_checks
from agentchat.models import Attachment, ChatMessage, ConsensusDetails, ProviderConfig, ProviderKind
from agentchat.output import print_answer, print_consensus, save_transcript
from agentchat.providers.registry import ProviderRegistry
from agentchat.runs import RunHandle, StreamObserver
from agentchat.tools import ApprovalHandler, ApprovalRequest, ToolProvider
from config.config_loader import AppConfig, load_config

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_EFFORTS = ["none", "minimal", "low", "medium", "high", "xhigh"]


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


class CliObserver(StreamObserver):
    """Prints the stream to the console and keeps what the run produced."""

    def __init__(self, show_reasoning: bool = True, live: bool = True) -> None:
        self.show_reasoning = show_reasoning
        self.live = live
        self.text: list[str] = []
        self.reasoning: list[str] = []
        self.details: ConsensusDetails | None = None
        self.stop_reason: str | None = None
        self.error: Exception | None = None

    def on_text(self, text: str) -> None:
        self.text.append(text)
        if self.live:
            console.print(text, end="", markup=False, highlight=False)

    def on_reasoning(self, text: str) -> None:
        self.reasoning.append(text)
        if self.live and self.show_reasoning:
            console.print(text, end="", style="dim", markup=False, highlight=False)

    def on_tool_call(self, tool_name: str, arguments: str) -> None:
        if self.live:
            console.print(f"\n[cyan]tool[/cyan] {tool_name} {arguments}")

    def on_tool_result(self, tool_name: str, result: str) -> None:
        if self.live:
            console.print(f"[dim]{tool_name} -> {result[:200]}[/dim]")

    def on_consensus_update(self, details: ConsensusDetails) -> None:
        self.details = details

    def on_complete(self, stop_reason: str) -> None:
        self.stop_reason = stop_reason

    def on_error(self, error: Exception) -> None:
        self.error = error

    @property
    def answer(self) -> str:
        return "".join(self.text)


def read_attachments(paths: tuple[str, ...]) -> list[Attachment]:
    """Base64-encode local files; media type guessed from the extension."""
    attachments: list[Attachment] = []
    for raw in paths:
        path = Path(raw)
        media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        payload = base64.b64encode(path.read_bytes()).decode("ascii")
        attachments.append(Attachment(media_type=media_type, base64=payload, name=path.name))
    return attachments


def build_provider_config(
    config: AppConfig,
    provider: str | None,
    model: str | None,
    base_url: str | None,
    system: str | None,
    temperature: float | None,
    reasoning: bool,
    effort: str | None,
    web_search: bool = True,
) -> ProviderConfig:
    """Combine CLI flags with settings.yaml defaults.

    Raises:
        click.BadParameter: Unknown provider name.
    """
    name = provider or config.defaults.provider
    try:
        kind = ProviderKind(name)
    except ValueError as exc:
        choices = ", ".join(k.value for k in ProviderKind)
        raise click.BadParameter(f"Unknown provider '{name}'. Choose from: {choices}", param_hint="--provider") from exc

    settings = config.providers.get(kind.value)
    credential_ref = settings.api_key_env if settings else f"{kind.value.upper()}_API_KEY"
    return ProviderConfig(
        provider_kind=kind,
        model_id=model or config.defaults.model,
        credential_ref=credential_ref,
        base_url=base_url,
        system_prompt=system,
        temperature=temperature,
        reasoning_enabled=reasoning or effort is not None,
        reasoning_effort=effort,
        web_search_enabled=web_search,
    )


def make_approval_handler(auto_approve: bool) -> ApprovalHandler:
    """Approve gated tool calls up front (``--yes``) or ask on the terminal."""

    async def handler(request: ApprovalRequest) -> bool:
        if auto_approve:
            return True
        console.print(f"\n[yellow]Tool approval:[/yellow] {request.tool_name} {request.arguments}")
        return await asyncio.to_thread(click.confirm, f"Allow {request.tool_name}?", default=False)

    return handler


def load_object(path: str, param_hint: str) -> object:
    """Import ``package.module:attribute``.

    Raises:
        click.BadParameter: Malformed path, missing module or attribute.
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise click.BadParameter(f"Expected 'module:attribute', got '{path}'", param_hint=param_hint)
    try:
        return getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        raise click.BadParameter(f"Cannot load '{path}': {exc}", param_hint=param_hint) from exc


def _check_endpoint(registry: ProviderRegistry, provider_config: ProviderConfig, credential: str | None) -> None:
    """Ping the endpoint and exit when it does not answer."""
    console.print("\n[bold]Checking provider...[/bold]")
    name = provider_config.provider_kind.value
    endpoint = registry.resolve(provider_config, credential)
    results = asyncio.run(run_health_checks({name: endpoint}))
    ok, err = results[name]
    if ok:
        console.print(f"  [green]OK  [/green] {name} ({provider_config.model_id})\n")
        return
    short_err = err.splitlines()[0][:120] if err else "unknown error"
    console.print(f"  [red]FAIL[/red] {name}: {short_err}")
    sys.exit(1)


def _cancel_on_interrupt(handle: RunHandle) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, handle.cancel)
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGINT handler not supported on this platform")


async def _run(
    config: AppConfig,
    messages: list[ChatMessage],
    provider_config: ProviderConfig,
    credential: str | None,
    observer: CliObserver,
    consensus: bool,
    agent_mode: bool,
    session: str | None,
    auto_approve: bool = False,
    runtime_factory: AgentRuntimeFactory | None = None,
    tool_provider: ToolProvider | None = None,
) -> None:
    registry = ProviderRegistry(config.providers)
    if consensus:
        orchestrator = ConsensusOrchestrator(
            registry, config.consensus, config.prompts, credentials=EnvCredentialStore()
        )
        handle = orchestrator.start(messages, provider_config, credential, observer)
    else:
        chat = ChatOrchestrator(registry, config.agent, runtime_factory=runtime_factory, tool_provider=tool_provider)
        handle = chat.start(
            messages, provider_config, credential, observer,
            session_id=session, force_agent_mode=agent_mode,
            approval_handler=make_approval_handler(auto_approve) if runtime_factory else None,
        )
    _cancel_on_interrupt(handle)
    await handle.wait()


@click.command()
@click.argument("prompt")
@click.option("--provider", default=None, help="Provider kind (default: from config)")
@click.option("--model", default=None, help="Model id (default: from config)")
@click.option("--base-url", default=None, help="Override the API base URL")
@click.option("--system", default=None, help="Custom system prompt")
@click.option("--temperature", default=None, type=float, help="Sampling temperature")
@click.option("--reasoning", is_flag=True, help="Enable provider reasoning / thinking")
@click.option("--effort", default=None, type=click.Choice(_EFFORTS), help="Reasoning effort level")
@click.option("--no-web-search", is_flag=True, help="Disable web search tools")
@click.option("--attach", "attach", multiple=True, type=click.Path(exists=True, dir_okay=False),
              help="Attach a file (repeatable)")
@click.option("--consensus", is_flag=True, help="Run a multi-agent consensus instead of a single chat")
@click.option("--agent-mode", is_flag=True, help="Force the plan / execute / summarize format")
@click.option("--session", default=None, help="Session id; persists the conversation to memory")
@click.option("--runtime", "runtime_path", default=None, metavar="MODULE:FACTORY",
              help="Agent runtime factory; enables tools, planning and approvals")
@click.option("--tools", "tools_path", default=None, metavar="MODULE:PROVIDER",
              help="External tool provider (called with no arguments); needs --runtime")
@click.option("--yes", "auto_approve", is_flag=True, help="Approve gated tool calls without asking")
@click.option("--check", is_flag=True, help="Ping the provider before running")
@click.option("--export", "export_dir", default=None, type=click.Path(file_okay=False),
              help="Save the transcript to this directory")
@click.option("--format", "export_format", default="md", type=click.Choice(["md", "json"]),
              help="Transcript format")
@click.option("--quiet", is_flag=True, help="Hide reasoning and progress lines")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(
    prompt: str,
    provider: str | None,
    model: str | None,
    base_url: str | None,
    system: str | None,
    temperature: float | None,
    reasoning: bool,
    effort: str | None,
    no_web_search: bool,
    attach: tuple[str, ...],
    consensus: bool,
    agent_mode: bool,
    session: str | None,
    runtime_path: str | None,
    tools_path: str | None,
    auto_approve: bool,
    check: bool,
    export_dir: str | None,
    export_format: str,
    quiet: bool,
    verbose: bool,
) -> None:
    """agentchat -- stream a chat or a multi-agent consensus from any provider.

    \b
    Examples:
      agentchat "Explain CRDTs in two paragraphs"
      agentchat "Monorepo vs polyrepo?" --consensus
      agentchat "What is in this picture?" --provider google --model gemini-2.5-flash --attach cat.png
      agentchat "Plan a migration" --provider anthropic --model claude-sonnet-4 --reasoning
      agentchat "Draft notes.md" --runtime mypkg.agents:make_runtime --tools mypkg.tools:SearchTools --yes
    """
    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    provider_config = build_provider_config(
        config, provider, model, base_url, system, temperature, reasoning, effort, web_search=not no_web_search,
    )
    credential = credential_for(EnvCredentialStore(), provider_config)
    messages = [ChatMessage(role="user", content=prompt, attachments=read_attachments(attach))]

    runtime_factory = load_object(runtime_path, "--runtime") if runtime_path else None
    tool_provider = load_object(tools_path, "--tools")() if tools_path else None
    if runtime_factory is None and (tool_provider is not None or auto_approve or no_web_search):
        console.print("[yellow]--tools, --yes and --no-web-search only apply with --runtime; ignoring.[/yellow]")

    if check:
        try:
            _check_endpoint(ProviderRegistry(config.providers), provider_config, credential)
        except AgentChatError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            sys.exit(1)

    observer = CliObserver(show_reasoning=not quiet)
    asyncio.run(_run(
        config, messages, provider_config, credential, observer, consensus, agent_mode, session, auto_approve,
        runtime_factory, tool_provider,
    ))
    console.print()

    if observer.error is not None:
        console.print(f"[bold red]Error:[/bold red] {observer.error}")
        sys.exit(1)
    if observer.details is not None and not quiet:
        print_consensus(observer.details)
        if observer.answer:
            print_answer(observer.answer, title="Final answer")
    if observer.stop_reason == "abort":
        console.print("[yellow]Cancelled.[/yellow]")

    if export_dir:
        transcript = messages + [ChatMessage(
            role="assistant",
            content=observer.answer,
            reasoning="".join(observer.reasoning) or None,
        )]
        saved = save_transcript(transcript, Path(export_dir), fmt=export_format)
        console.print(f"\n[dim]Saved to: {saved}[/dim]")


if __name__ == "__main__":
    main()
