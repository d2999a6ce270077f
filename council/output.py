"""Rich console rendering and markdown file save for council turns."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console, Group, RenderableType
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from council.models import (
    CouncilMemberState,
    JudgeResult,
    MemberStatus,
    ParsedJudgeResponse,
    SessionResult,
    UsageRecord,
)
from council.usage import total_cost

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_STATUS_STYLES = {
    MemberStatus.IDLE: "dim",
    MemberStatus.LOADING: "yellow",
    MemberStatus.STREAMING: "cyan",
    MemberStatus.COMPLETED: "green",
    MemberStatus.ERROR: "red",
}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(text: str, words: int = 50) -> str:
    """Return first N words of a text."""
    all_words = text.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _tail(text: str, chars: int = 80) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= chars else "…" + flat[-chars:]


def render_council(states: list[CouncilMemberState]) -> Table:
    """Live status table: one row per member."""
    table = Table(title="Council", expand=True, show_lines=False)
    table.add_column("Member", style="bold", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Chars", justify="right")
    table.add_column("Latest output", overflow="ellipsis")
    for state in states:
        style = _STATUS_STYLES[state.status]
        latest = state.error_message if state.status is MemberStatus.ERROR else _tail(state.content)
        table.add_row(
            state.model_name,
            Text(state.status.value, style=style),
            str(len(state.content)),
            latest or "",
        )
    return table


def render_judge(text: str, parsed: ParsedJudgeResponse) -> RenderableType:
    """Reasoning and answer panels while streaming; raw text when untagged."""
    if not parsed.has_tags:
        return Panel(Markdown(text or "…"), title="Judge", border_style="dim")
    parts: list[RenderableType] = []
    if parsed.reasoning is not None:
        parts.append(Panel(Markdown(parsed.reasoning or "…"), title="Reasoning", border_style="dim"))
    if parsed.answer is not None:
        title = "Answer" if parsed.answer_complete else "Answer (streaming)"
        parts.append(Panel(Markdown(parsed.answer or "…"), title=title, border_style="green"))
    return Group(*parts)


def print_council_summary(states: list[CouncilMemberState]) -> None:
    """Print a brief panel per member."""
    console.print(Rule("[bold cyan]Council Responses[/bold cyan]"))
    for state in states:
        if state.status is MemberStatus.ERROR:
            body = f"[red]{state.error_message}[/red]"
        else:
            body = _preview(state.content)
        console.print(
            Panel(
                body,
                title=f"[bold]{state.model_name}[/bold] ({state.model_id})",
                subtitle=state.status.value,
                border_style="dim" if state.status is MemberStatus.COMPLETED else "red",
            )
        )


def print_judge_result(result: JudgeResult) -> None:
    console.print(Rule("[bold green]Council Synthesis[/bold green]"))
    console.print(Text(f"Synthesized by: {result.model_id}", style="dim"))
    console.print(render_judge(result.raw_text, result.parsed))
    if result.parsed.has_tags and not result.parsed.answer_complete:
        console.print("[yellow]Warning:[/yellow] judge answer was not closed; it may be truncated.")


def print_usage(member_usage: list[UsageRecord], judge_usage: UsageRecord) -> None:
    table = Table(title="Usage", show_footer=True)
    table.add_column("Model", footer="Total")
    table.add_column("Prompt", justify="right")
    table.add_column("Completion", justify="right")
    records = [*member_usage, judge_usage]
    table.add_column("Cost (USD)", justify="right", footer=f"${total_cost(records):.4f}")
    for record in records:
        marker = " ~" if record.estimated else ""
        label = f"{record.model_id} (judge)" if record is judge_usage else record.model_id
        table.add_row(
            label,
            f"{record.prompt_tokens}{marker}",
            f"{record.completion_tokens}{marker}",
            f"${record.cost:.4f}",
        )
    console.print(table)


def save_to_file(
    question: str,
    result: SessionResult,
    output_dir: Path,
    slug_override: str | None = None,
) -> Path:
    """Save the full council turn as a markdown file.

    Args:
        question: The user question of this turn.
        result: The completed SessionResult.
        output_dir: Directory to save the file in.
        slug_override: If provided, use this as the filename stem instead of
            deriving one from the question text.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(question)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    members = result.transcript.members
    completed = sum(1 for s in members if s.status is MemberStatus.COMPLETED)
    all_usage = [*result.member_usage, result.judge.usage]

    lines: list[str] = [
        f"# AI Council: {question[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Chat:** {result.chat_id}",
        f"**Council:** {', '.join(s.model_id for s in members)}",
        f"**Judge:** {result.judge.model_id}",
        f"**Responses:** {completed}/{len(members)}",
        f"**Estimated cost:** ${total_cost(all_usage):.4f}",
        "",
        "---",
        "",
        "## Council Responses",
        "",
    ]

    for state in members:
        lines.append(f"### {state.model_name} ({state.model_id})")
        lines.append("")
        if state.status is MemberStatus.ERROR:
            lines.append(f"*Failed: {state.error_message}*")
        else:
            lines.append(state.content)
        lines.append("")

    parsed = result.judge.parsed
    lines += [f"## Synthesis (by {result.judge.model_id})", ""]
    if parsed.has_tags:
        if parsed.reasoning:
            lines += ["### Reasoning", "", parsed.reasoning, ""]
        lines += ["### Answer", "", parsed.answer or "", ""]
    else:
        lines += [result.judge.raw_text, ""]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Council turn saved to: %s", filepath)
    return filepath
