"""Click CLI — loads config, runs the council with live output, then the judge."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config
from council.credentials import ConfigurationError, EnvCredentialStore
from council.healthcheck import run_health_checks
from council.judge import JudgeError
from council.models import CouncilMember, CouncilMemberState, ParsedJudgeResponse, SessionResult
from council.output import (
    print_council_summary,
    print_judge_result,
    print_usage,
    render_council,
    render_judge,
    save_to_file,
)
from council.session import CouncilSession
from council.store import JsonMessageStore

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _resolve_members(
    config: AppConfig,
    members_arg: str | None,
    preset_id: str | None,
    template_id: str | None = None,
) -> tuple[list[CouncilMember], str | None]:
    """Returns (members, preset judge template). --members overrides --preset.

    ``template_id`` applies a member template to every member given via
    --members or the configured default list.
    """
    if members_arg:
        ids = [m.strip() for m in members_arg.split(",") if m.strip()]
        return [CouncilMember(model_id=m, prompt_template_id=template_id) for m in ids], None
    if preset_id:
        if preset_id not in config.presets:
            raise click.BadParameter(
                f"Unknown preset '{preset_id}'. Available: {', '.join(sorted(config.presets))}",
                param_hint="--preset",
            )
        preset = config.presets[preset_id]
        return list(preset.members), preset.judge_template
    return [CouncilMember(model_id=m, prompt_template_id=template_id) for m in config.defaults.members], None


def _resolve_judge_prompt(
    config: AppConfig,
    template_arg: str | None,
    preset_template: str | None,
    prompt_file: str | None,
) -> str | None:
    """Precedence: --judge-prompt-file > --judge-template > preset > config default."""
    if prompt_file:
        return Path(prompt_file).read_text(encoding="utf-8").strip()
    template_id = template_arg or preset_template or config.defaults.judge_template
    if template_id not in config.judge_templates:
        logger.warning("Judge template '%s' not found, using built-in prompt", template_id)
        return None
    return config.judge_templates[template_id]


async def _check_members(session: CouncilSession, members: list[CouncilMember]) -> list[CouncilMember]:
    """Ping members, print results, and ask whether to continue without failures."""
    console.print("\n[bold]Checking models...[/bold]")
    results = await run_health_checks(session.connect(), [m.model_id for m in members])

    failed: list[str] = []
    for model_id in sorted(results):
        ok, err = results[model_id]
        if ok:
            console.print(f"  [green]OK  [/green] {model_id}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {model_id}: {short_err}")
            failed.append(model_id)

    working = [m for m in members if m.model_id not in failed]
    if not failed:
        return members
    if not working:
        console.print("\n[bold red]Error:[/bold red] No council model passed the health check.")
        sys.exit(1)
    if not click.confirm("Continue with working models only?", default=True):
        sys.exit(0)
    return working


async def _run_turn(
    session: CouncilSession,
    question: str,
    members: list[CouncilMember],
    judge_model: str,
    judge_prompt: str | None,
    chat_id: str | None,
    retry_failed: bool,
    health_check: bool,
) -> SessionResult:
    if health_check:
        members = await _check_members(session, members)

    console.print(f"\n[bold cyan]AI Council[/bold cyan] — {len(members)} members, judge {judge_model}")
    console.print(f"Question: [italic]{question[:80]}{'...' if len(question) > 80 else ''}[/italic]\n")

    with Live(render_council([]), console=console, refresh_per_second=8, transient=True) as live:

        def on_council_update(states: list[CouncilMemberState]) -> None:
            live.update(render_council(states))

        states = await session.convene(question, members, chat_id=chat_id, on_update=on_council_update)
        if retry_failed and any(s.error_message for s in states):
            states = await session.retry_failed()

    print_council_summary(states)

    with Live(console=console, refresh_per_second=8, transient=True) as live:

        def on_judge_update(text: str, parsed: ParsedJudgeResponse) -> None:
            live.update(render_judge(text, parsed))

        return await session.conclude(judge_model, judge_prompt, on_update=on_judge_update)


@click.command()
@click.argument("question", required=False)
@click.option("--file", "question_file", type=click.Path(exists=True), help="Read question from a text file")
@click.option("--members", default=None, help="Comma-separated model ids, overrides --preset")
@click.option("--preset", default=None, help="Named council preset from settings.yaml")
@click.option("--template", "member_template", default=None,
              help="Member persona template applied to --members / default members")
@click.option("--judge", "judge_model", default=None, help="Judge model id (default: from config)")
@click.option("--judge-template", default=None, help="Judge prompt template id (default: from config)")
@click.option("--judge-prompt-file", type=click.Path(exists=True), default=None,
              help="Custom judge prompt read from a file")
@click.option("--provider", "provider_name", default=None, help="Provider from settings.yaml (default: from config)")
@click.option("--chat", "chat_id", default=None, help="Continue a stored chat by id")
@click.option("--retry-failed", is_flag=True, default=False,
              help="Retry members that errored once more before judging")
@click.option("--health-check", is_flag=True, default=False, help="Ping council models before the run")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--no-save", is_flag=True, default=False, help="Do not write a markdown transcript")
@click.option("--list-presets", is_flag=True, default=False, help="List presets and templates, then exit")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(
    question: str | None,
    question_file: str | None,
    members: str | None,
    preset: str | None,
    member_template: str | None,
    judge_model: str | None,
    judge_template: str | None,
    judge_prompt_file: str | None,
    provider_name: str | None,
    chat_id: str | None,
    retry_failed: bool,
    health_check: bool,
    output_path: str | None,
    no_save: bool,
    list_presets: bool,
    verbose: bool,
) -> None:
    """AI Council -- ask several models at once, then let a judge synthesize.

    \b
    Examples:
      council "What is 2+2?"
      council "Monorepo vs polyrepo?" --preset engineering_debate
      council "SQL or NoSQL?" --members openai/gpt-4o,anthropic/claude-3.5-sonnet --judge openai/gpt-4o
      council --file question.md --retry-failed
      council "And for a team of five?" --chat 3f9a1c2b7d10
    """
    # Model output may contain characters the Windows console codepage lacks
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    if list_presets:
        for preset_id, preset_cfg in sorted(config.presets.items()):
            console.print(f"[bold]{preset_id}[/bold] — {preset_cfg.name}: {preset_cfg.description}")
        console.print(f"\nJudge templates: {', '.join(sorted(config.judge_templates))}")
        console.print(f"Member templates: {', '.join(sorted(config.member_templates))}")
        return

    if question_file:
        question_text = Path(question_file).read_text(encoding="utf-8").strip()
    elif question:
        question_text = question
    else:
        console.print("[bold red]Error:[/bold red] Provide a QUESTION argument or --file.")
        sys.exit(1)

    council_members, preset_template = _resolve_members(config, members, preset, member_template)
    judge_prompt = _resolve_judge_prompt(config, judge_template, preset_template, judge_prompt_file)
    effective_judge = judge_model or config.defaults.judge_model
    effective_output = Path(output_path) if output_path else config.defaults.output_dir

    session = CouncilSession(
        config=config,
        credentials=EnvCredentialStore(config.providers),
        store=JsonMessageStore(config.defaults.store_dir),
        provider_name=provider_name,
    )

    try:
        result = asyncio.run(
            _run_turn(
                session,
                question=question_text,
                members=council_members,
                judge_model=effective_judge,
                judge_prompt=judge_prompt,
                chat_id=chat_id,
                retry_failed=retry_failed,
                health_check=health_check,
            )
        )
    except ConfigurationError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)
    except JudgeError as exc:
        console.print(f"[bold red]Synthesis failed:[/bold red] {exc}")
        console.print("[dim]Council responses above are unaffected.[/dim]")
        sys.exit(1)

    print_judge_result(result.judge)
    print_usage(result.member_usage, result.judge.usage)
    console.print(f"\n[dim]Chat id: {result.chat_id} (continue with --chat {result.chat_id})[/dim]")

    if not no_save:
        saved_path = save_to_file(question_text, result, effective_output)
        console.print(f"[dim]Saved to: {saved_path}[/dim]")


if __name__ == "__main__":
    main()
