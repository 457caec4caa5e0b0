"""Rich console output and transcript export for chat and consensus runs."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from agentchat.models import AgentStatus, ChatMessage, ConsensusDetails

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_ROLE_LABELS = {"user": "**You**", "assistant": "**Assistant**"}
_STATUS_STYLES = {
    AgentStatus.PENDING: "dim",
    AgentStatus.RUNNING: "yellow",
    AgentStatus.COMPLETE: "green",
}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len] or "chat"


def _preview(text: str, words: int = 50) -> str:
    """Return first N words of a text."""
    all_words = text.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _format_timestamp(value: str) -> str:
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return value


def print_consensus(details: ConsensusDetails) -> None:
    """Print analyst results and the reviewer verdict."""
    console.print(Rule("[bold cyan]Consensus[/bold cyan]"))
    table = Table(show_header=True, header_style="bold")
    table.add_column("Analyst")
    table.add_column("Model")
    table.add_column("Status")
    for result in details.agent_results:
        style = _STATUS_STYLES.get(result.status, "")
        table.add_row(result.role, result.model_ref, Text(result.status.value, style=style))
    console.print(table)

    for result in details.agent_results:
        if result.status != AgentStatus.COMPLETE:
            continue
        console.print(Panel(_preview(result.output), title=f"[bold]{result.role}[/bold]", border_style="dim"))

    if details.reviewer_verdict:
        reviewer = details.reviewer_model_ref or "reviewer"
        console.print(Panel(Markdown(details.reviewer_verdict), title=f"Verdict ({reviewer})", border_style="cyan"))


def print_answer(text: str, title: str = "Answer") -> None:
    console.print(Rule(f"[bold green]{title}[/bold green]"))
    console.print(Markdown(text))


def chat_to_markdown(messages: list[ChatMessage], title: str | None = None) -> str:
    """Render a conversation as a markdown document."""
    lines: list[str] = [
        f"# {title or 'Chat Export'}",
        f"_Exported on {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}_",
        "",
        "---",
        "",
    ]
    for msg in messages:
        lines.append(f"### {_ROLE_LABELS.get(msg.role, '_System_')}")
        lines.append(f"_{_format_timestamp(msg.timestamp)}_")
        lines.append("")
        lines.append(msg.content)
        if msg.attachments:
            lines.append("")
            lines.append("Attachments:")
            for att in msg.attachments:
                lines.append(f"- {att.name or 'file'} ({att.media_type or 'unknown'})")
        lines += ["", "---", ""]
    return "\n".join(lines)


def chat_to_json(messages: list[ChatMessage], title: str | None = None) -> str:
    """Render a conversation as JSON. Attachment payloads are left out."""
    data = {
        "title": title or "Chat Export",
        "exported_at": datetime.now().astimezone().isoformat(),
        "message_count": len(messages),
        "messages": [],
    }
    for msg in messages:
        item: dict = {"id": msg.id, "role": msg.role, "content": msg.content, "timestamp": msg.timestamp}
        if msg.reasoning:
            item["reasoning"] = msg.reasoning
        if msg.attachments:
            item["attachments"] = [
                {"name": a.name, "media_type": a.media_type, "size": len(a.base64)} for a in msg.attachments
            ]
        data["messages"].append(item)
    return json.dumps(data, indent=2, ensure_ascii=False)


def save_transcript(
    messages: list[ChatMessage],
    output_dir: Path,
    title: str | None = None,
    fmt: str = "md",
) -> Path:
    """Save a conversation under ``output_dir`` as markdown or JSON.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    first_user = next((m.content for m in messages if m.role == "user"), "")
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filepath = output_dir / f"{timestamp}_{_slug(title or first_user)}.{fmt}"

    content = chat_to_json(messages, title) if fmt == "json" else chat_to_markdown(messages, title)
    filepath.write_text(content, encoding="utf-8")
    logger.info("Transcript saved to: %s", filepath)
    return filepath
