"""Command-line interface for the outreach agent."""

import asyncio
import signal
from pathlib import Path
from typing import Optional

import click
import structlog

from outreach_engine.clients.ai import build_backend
from outreach_engine.core.config import DEFAULT_CONFIG_PATH, load_settings
from outreach_engine.core.db import (
    DEFAULT_DB_PATH,
    get_pipeline_stats,
    get_prospect_by_email,
    get_routing_stats,
    init_db,
)
from outreach_engine.outreach.scheduler import OutreachAgent
from outreach_engine.replies.classifier import ReplyClassifier
from outreach_engine.services.slack_notifier import SlackNotifier

# Configure structlog for CLI output
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer()
    ]
)

log = structlog.get_logger()


@click.group(invoke_without_command=True)
@click.pass_context
def cli(ctx):
    """Outreach Engine - autonomous prospect outreach.

    Just run 'python run.py' to start the agent loop.
    """
    if ctx.invoked_subcommand is None:
        # Default behavior: run the agent
        ctx.invoke(run)


async def _run_forever(agent: OutreachAgent) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, agent.stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises KeyboardInterrupt
            pass
    await agent.run()


@cli.command()
@click.option("--db", "db_path", type=click.Path(), default=str(DEFAULT_DB_PATH),
              help="Database path")
@click.option("--config", "config_path", type=click.Path(), default=str(DEFAULT_CONFIG_PATH),
              help="Config directory path")
@click.option("--once", is_flag=True, help="Run a single cycle and exit")
def run(db_path: str, config_path: str, once: bool = False):
    """Run the agent: discover prospects, work the task queue, handle replies."""
    db = Path(db_path)
    config = Path(config_path)

    init_db(db)
    settings = load_settings(config)

    agent = OutreachAgent(
        settings,
        db_path=db,
        config_path=config,
        backend=build_backend(settings),
        notifier=SlackNotifier(),
    )

    if not once:
        click.echo("Agent running. Press Ctrl+C to stop.")
        asyncio.run(_run_forever(agent))
        return

    result = asyncio.run(agent.run_cycle())

    click.echo("=" * 40)
    click.echo("CYCLE SUMMARY")
    click.echo("=" * 40)
    click.echo(f"Prospects discovered: {result['discovered']}")
    click.echo(f"Tasks completed:      {result['completed']}")
    click.echo(f"Tasks failed:         {result['failed']}")
    click.echo(f"Tasks deferred:       {result['limit_reached']}")
    click.echo(f"Replies queued:       {result['replies_queued']}")
    click.echo(f"Daily total: {result['sent_today']}/{settings.sending.daily_limit}")

    if result["daily_limit_reached"]:
        click.echo("\n⚠️  Daily limit reached. Sends resume tomorrow.")


@cli.command()
@click.option("--db", "db_path", type=click.Path(), default=str(DEFAULT_DB_PATH),
              help="Database path")
@click.option("--prospect", "prospect_email", type=str, default=None,
              help="Check specific prospect by email")
@click.option("--config", "config_path", type=click.Path(), default=str(DEFAULT_CONFIG_PATH),
              help="Config directory path")
@click.option("--days", type=int, default=30, help="Window for routing stats")
def status(db_path: str, prospect_email: Optional[str], config_path: str, days: int):
    """Show pipeline and reply-routing status."""
    db = Path(db_path)
    config = Path(config_path)

    init_db(db)
    settings = load_settings(config)

    if prospect_email:
        prospect = get_prospect_by_email(db, prospect_email)
        if not prospect:
            click.echo(f"Prospect not found: {prospect_email}")
            return

        click.echo(f"\nProspect: {prospect['email']}")
        click.echo(f"  Name: {prospect['first_name']} {prospect['last_name'] or ''}")
        click.echo(f"  Company: {prospect['company'] or 'N/A'}")
        click.echo(f"  Status: {prospect['status']}")
        click.echo(f"  Stage: {prospect['relationship_stage']}")
        click.echo(f"  Touches: {prospect['contact_count']}")
        if prospect['qualification_score'] is not None:
            click.echo(f"  Qualification score: {prospect['qualification_score']}")
        if prospect['last_contacted_at']:
            click.echo(f"  Last contacted: {prospect['last_contacted_at']}")
        return

    stats = get_pipeline_stats(db)

    click.echo("\nPipeline Status")
    click.echo("───────────────")
    click.echo(f"New:                   {stats.get('new', 0)}")
    click.echo(f"In progress:           {stats.get('queued', 0) + stats.get('researching', 0) + stats.get('engaging', 0)}")
    click.echo(f"Active sequences:      {stats.get('active', 0)}")
    click.echo(f"Awaiting approval:     {stats.get('awaiting_approval', 0)}")
    click.echo(f"Qualified:             {stats.get('qualified', 0)}")
    click.echo(f"Handed off:            {stats.get('handed_off', 0)}")
    click.echo(f"Nurture:               {stats.get('nurture', 0)}")
    click.echo(f"Unresponsive:          {stats.get('unresponsive', 0)}")
    click.echo(f"Opted out:             {stats.get('unsubscribed', 0) + stats.get('disqualified', 0)}")
    click.echo("───────────────")
    click.echo(f"Pending tasks:     {stats['pending_tasks']}")
    click.echo(f"Failed tasks:      {stats['failed_tasks']}")
    click.echo(f"Pending approvals: {stats['pending_approvals']}")
    click.echo(f"Open handoffs:     {stats['open_handoffs']}")
    click.echo(f"Daily sends: {stats['sent_today']}/{settings.sending.daily_limit}")

    routing = get_routing_stats(db, days=days)
    click.echo(f"\nReply Routing (last {days} days)")
    click.echo("───────────────")
    click.echo(f"Replies routed:    {routing['total']}")
    if routing["total"]:
        for category, count in sorted(routing["by_category"].items(), key=lambda kv: -kv[1]):
            click.echo(f"  {category}: {count}")
        click.echo(f"Auto-handled:      {routing['auto_handled_pct']}%")
        click.echo(f"Escalated:         {routing['escalated_pct']}%")
        click.echo(f"Response rate:     {routing['response_rate_pct']}%")
        click.echo(f"Avg confidence:    {routing['avg_confidence']}")


@cli.command()
@click.argument("text")
@click.option("--subject", default=None, help="Reply subject line")
@click.option("--config", "config_path", type=click.Path(), default=str(DEFAULT_CONFIG_PATH),
              help="Config directory path")
def classify(text: str, subject: Optional[str], config_path: str):
    """Classify a reply with the rule tier only (no API calls)."""
    settings = load_settings(Path(config_path))
    classifier = ReplyClassifier(config=settings.classifier)
    result = asyncio.run(classifier.classify(text, subject))

    click.echo(f"Category:   {result.category.value}")
    click.echo(f"Confidence: {result.confidence:.2f}")
    click.echo(f"Sentiment:  {result.sentiment.label} ({result.sentiment.score:+.2f})")
    click.echo(f"Action:     {result.suggested_action.action} [{result.suggested_action.priority}]")
    click.echo(f"Review:     {'yes' if result.requires_human_review else 'no'}")
    if result.intents:
        click.echo(f"Intents:    {', '.join(i.type for i in result.intents)}")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
