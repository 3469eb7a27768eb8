"""CLI for chat-commander: run, specialists, work, and feedback commands."""

import argparse
import asyncio
import sys
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from .config import Config, load_config
from .delegation import DelegationResolver
from .errors import ValidationError
from .logging_config import setup_logging
from .models import FeedbackRecord, SpecialistRegistration, WorkItem
from .oracle import ClaudeCLIOracle
from .stores import LearningStore, SpecialistStore, WorkItemStore

STATUS_STYLES = {
	"pending": "dim",
	"analyzing": "cyan",
	"building": "cyan",
	"deploying": "blue",
	"paused": "yellow",
	"completed": "green",
	"failed": "red",
	"cancelled": "red",
}


# ==================== Rendering ====================


def render_specialists(specialists: list[SpecialistRegistration], console: Optional[Console] = None) -> None:
	console = console or Console()
	if not specialists:
		console.print("[dim]No specialists registered.[/dim]")
		return

	table = Table(title="Specialists")
	table.add_column("Name", style="cyan")
	table.add_column("Status")
	table.add_column("Purpose")
	table.add_column("Specialties")
	table.add_column("Channel")
	table.add_column("Last Seen")
	for s in specialists:
		status = "[green]online[/green]" if s.is_online else "[red]offline[/red]"
		table.add_row(
			s.name,
			status,
			s.purpose,
			", ".join(s.specialties),
			s.channel_id,
			s.last_seen.strftime("%Y-%m-%d %H:%M"),
		)
	console.print(table)


def render_work_items(items: list[WorkItem], show_all: bool = False, console: Optional[Console] = None) -> None:
	"""Newest first; terminal items only with show_all."""
	console = console or Console()
	if not show_all:
		items = [i for i in items if not i.is_terminal]
	if not items:
		console.print("[dim]No work items.[/dim]")
		return

	table = Table(title="Work Items")
	table.add_column("ID", style="cyan")
	table.add_column("Title")
	table.add_column("Status")
	table.add_column("Progress", justify="right")
	table.add_column("Priority")
	table.add_column("Parent")
	table.add_column("Started")
	for item in sorted(items, key=lambda i: i.start_time, reverse=True):
		style = STATUS_STYLES.get(item.status.value, "white")
		table.add_row(
			item.id,
			item.title,
			f"[{style}]{item.status.value}[/{style}]",
			f"{item.progress}%",
			item.priority.value,
			item.parent_work_item or "",
			item.start_time.strftime("%Y-%m-%d %H:%M"),
		)
	console.print(table)


def render_feedback(records: list[FeedbackRecord], total: int, console: Optional[Console] = None) -> None:
	console = console or Console()
	if not records:
		console.print("[dim]No feedback recorded yet.[/dim]")
		return

	table = Table(title=f"Feedback ({len(records)} of {total})")
	table.add_column("When")
	table.add_column("Type")
	table.add_column("Source")
	table.add_column("Category")
	table.add_column("Response")
	table.add_column("Suggestion")
	type_styles = {"positive": "green", "negative": "red", "suggestion": "yellow"}
	for r in reversed(records):
		style = type_styles[r.feedback_type.value]
		table.add_row(
			r.created_at.strftime("%Y-%m-%d %H:%M"),
			f"[{style}]{r.feedback_type.value}[/{style}]",
			r.source.value,
			r.category.value,
			r.response[:60],
			r.suggestion or "",
		)
	console.print(table)


# ==================== Commands ====================


async def _run(config: Config) -> None:
	from .commander import Commander
	from .transport import TelegramTransport

	transport = TelegramTransport(config.telegram_token, user_channel=config.user_channel_id)
	commander = await Commander.from_config(config)
	commander.attach(transport)
	try:
		await transport.run_forever()
	finally:
		await commander.close()


def cmd_run(args: argparse.Namespace) -> None:
	"""Start the Telegram transport and route messages through the commander."""
	config = load_config()
	setup_logging(log_dir=config.log_dir)

	if not config.telegram_token:
		print("Error: TELEGRAM_BOT_TOKEN not set")
		print("Set it in .env file or as environment variable")
		sys.exit(1)

	print("Starting chat-commander... Press Ctrl+C to stop.")
	try:
		asyncio.run(_run(config))
	except KeyboardInterrupt:
		print("\nStopped.")


async def _specialists(args: argparse.Namespace, config: Config) -> int:
	store = SpecialistStore(str(config.db_path))
	resolver = DelegationResolver(
		ClaudeCLIOracle(model=config.oracle_model, timeout=config.oracle_timeout),
		store=store,
		default_channel=config.agent_channel_id,
	)
	try:
		await resolver.load()
		action = args.specialists_action

		if action == "add":
			try:
				spec = await resolver.register(args.name, args.purpose, args.capability or [], args.channel)
			except ValidationError as e:
				print(f"Error: {e}")
				return 1
			print(f"Registered {spec.name}: {', '.join(spec.specialties) or 'no specialties'}")
		elif action == "remove":
			if not await resolver.remove(args.name):
				print(f"Specialist {args.name} not found.")
				return 1
			print(f"Removed {args.name}.")
		elif action in ("online", "offline"):
			if not await resolver.set_online(args.name, action == "online"):
				print(f"Specialist {args.name} not found.")
				return 1
			print(f"{args.name} is {action}.")
		else:
			render_specialists(resolver.list_specialists())
		return 0
	finally:
		await store.close()


def cmd_specialists(args: argparse.Namespace) -> None:
	"""Manage the specialist registry."""
	config = load_config()
	sys.exit(asyncio.run(_specialists(args, config)))


async def _load_work_items(config: Config) -> list[WorkItem]:
	store = WorkItemStore(str(config.db_path))
	try:
		return await store.load()
	finally:
		await store.close()


def cmd_work(args: argparse.Namespace) -> None:
	"""Show persisted work items."""
	config = load_config()
	items = asyncio.run(_load_work_items(config))
	render_work_items(items, show_all=args.all)


async def _load_feedback(config: Config, limit: int) -> tuple[list[FeedbackRecord], int]:
	store = LearningStore(str(config.db_path))
	try:
		return await store.recent(limit=limit), await store.count()
	finally:
		await store.close()


def cmd_feedback(args: argparse.Namespace) -> None:
	"""Show recent learning records."""
	config = load_config()
	records, total = asyncio.run(_load_feedback(config, args.limit))
	render_feedback(records, total)


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="chat-commander",
		description="Conversational commander: intent routing, work tracking, and feedback learning",
	)
	subparsers = parser.add_subparsers(dest="command")

	# run
	run_parser = subparsers.add_parser("run", help="Run the commander on Telegram")
	run_parser.set_defaults(func=cmd_run)

	# specialists
	spec_parser = subparsers.add_parser("specialists", help="Manage specialist responders")
	spec_subparsers = spec_parser.add_subparsers(dest="specialists_action")

	spec_list = spec_subparsers.add_parser("list", help="List specialists")
	spec_list.set_defaults(func=cmd_specialists)

	spec_add = spec_subparsers.add_parser("add", help="Register a specialist")
	spec_add.add_argument("name", help="Specialist name (case-insensitive)")
	spec_add.add_argument("purpose", help="What the specialist is for")
	spec_add.add_argument("--channel", help="Channel (chat id) to forward requests to; defaults to agent_channel_id")
	spec_add.add_argument("--capability", action="append", help="Capability; repeat for several")
	spec_add.set_defaults(func=cmd_specialists)

	for action, help_text in (
		("remove", "Remove a specialist"),
		("online", "Mark a specialist online"),
		("offline", "Mark a specialist offline"),
	):
		sub = spec_subparsers.add_parser(action, help=help_text)
		sub.add_argument("name")
		sub.set_defaults(func=cmd_specialists)

	spec_parser.set_defaults(func=cmd_specialists)

	# work
	work_parser = subparsers.add_parser("work", help="Show work items")
	work_parser.add_argument("--all", action="store_true", help="Include completed, failed, and cancelled items")
	work_parser.set_defaults(func=cmd_work)

	# feedback
	feedback_parser = subparsers.add_parser("feedback", help="Show recent feedback records")
	feedback_parser.add_argument("--limit", type=int, default=20, help="Max records (default: 20)")
	feedback_parser.set_defaults(func=cmd_feedback)

	return parser


def main() -> None:
	"""CLI entry point."""
	load_dotenv()
	parser = build_parser()
	args = parser.parse_args()

	if not args.command:
		parser.print_help()
		sys.exit(1)

	args.func(args)


if __name__ == "__main__":
	main()
