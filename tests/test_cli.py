"""Tests for the CLI module."""

import argparse
from datetime import datetime

import pytest
from rich.console import Console

from chat_commander.cli import (
	_specialists,
	build_parser,
	render_feedback,
	render_specialists,
	render_work_items,
)
from chat_commander.models import (
	FeedbackRecord,
	FeedbackSource,
	FeedbackType,
	SpecialistRegistration,
	WorkItem,
	WorkItemStatus,
)
from chat_commander.stores import SpecialistStore

from .helpers import make_config


def _console() -> Console:
	return Console(record=True, width=200)


def _item(item_id: str, status: WorkItemStatus, progress: int = 0) -> WorkItem:
	return WorkItem(
		id=item_id,
		title=f"title {item_id}",
		description="d",
		original_request="r",
		status=status,
		progress=progress,
		user_id="u1",
		message_id="m1",
	)


class TestParser:

	def test_work_all_flag(self):
		args = build_parser().parse_args(["work", "--all"])
		assert args.command == "work"
		assert args.all is True

	def test_feedback_default_limit(self):
		args = build_parser().parse_args(["feedback"])
		assert args.limit == 20

	def test_specialists_add_collects_capabilities(self):
		args = build_parser().parse_args([
			"specialists", "add", "Dashboard", "cost reporting",
			"--channel", "500", "--capability", "cost metrics", "--capability", "charts",
		])
		assert args.specialists_action == "add"
		assert args.name == "Dashboard"
		assert args.channel == "500"
		assert args.capability == ["cost metrics", "charts"]

	def test_specialists_add_channel_optional(self):
		args = build_parser().parse_args(["specialists", "add", "Dashboard", "cost reporting"])
		assert args.channel is None

	def test_bare_specialists_lists(self):
		args = build_parser().parse_args(["specialists"])
		assert args.specialists_action is None
		assert args.func.__name__ == "cmd_specialists"


class TestRendering:

	def test_render_work_items_hides_terminal_by_default(self):
		console = _console()
		items = [_item("work_a", WorkItemStatus.BUILDING, 50), _item("work_b", WorkItemStatus.COMPLETED, 100)]
		render_work_items(items, console=console)
		text = console.export_text()
		assert "work_a" in text
		assert "50%" in text
		assert "work_b" not in text

	def test_render_work_items_show_all(self):
		console = _console()
		items = [_item("work_a", WorkItemStatus.BUILDING), _item("work_b", WorkItemStatus.CANCELLED)]
		render_work_items(items, show_all=True, console=console)
		text = console.export_text()
		assert "work_b" in text
		assert "cancelled" in text

	def test_render_work_items_empty(self):
		console = _console()
		render_work_items([_item("work_b", WorkItemStatus.FAILED)], console=console)
		assert "No work items." in console.export_text()

	def test_render_specialists(self):
		console = _console()
		specialists = [
			SpecialistRegistration(
				name="Dashboard",
				purpose="cost reporting",
				specialties=["cost metrics"],
				channel_id="500",
				is_online=False,
				last_seen=datetime(2026, 1, 2, 3, 4),
			),
		]
		render_specialists(specialists, console=console)
		text = console.export_text()
		assert "Dashboard" in text
		assert "offline" in text
		assert "2026-01-02 03:04" in text

	def test_render_feedback_title_shows_total(self):
		console = _console()
		records = [
			FeedbackRecord(
				id="fb_1",
				message_id="m1",
				input="hi",
				response="Greetings",
				feedback_type=FeedbackType.SUGGESTION,
				suggestion="Hey",
				source=FeedbackSource.REACTION,
			),
		]
		render_feedback(records, total=7, console=console)
		text = console.export_text()
		assert "Feedback (1 of 7)" in text
		assert "suggestion" in text
		assert "Hey" in text

	def test_render_feedback_empty(self):
		console = _console()
		render_feedback([], total=0, console=console)
		assert "No feedback recorded yet." in console.export_text()


class TestSpecialistsCommand:

	@pytest.mark.asyncio
	async def test_add_then_offline_persists(self, tmp_path, capsys):
		config = make_config(tmp_path)
		add = argparse.Namespace(
			specialists_action="add",
			name="Dashboard",
			purpose="cost reporting",
			channel="500",
			capability=["cost metrics"],
		)
		assert await _specialists(add, config) == 0
		assert "Registered Dashboard" in capsys.readouterr().out

		offline = argparse.Namespace(specialists_action="offline", name="dashboard")
		assert await _specialists(offline, config) == 0

		store = SpecialistStore(str(config.db_path))
		try:
			saved = await store.load()
		finally:
			await store.close()
		assert len(saved) == 1
		assert saved[0].is_online is False

	@pytest.mark.asyncio
	async def test_remove_unknown_returns_error(self, tmp_path, capsys):
		config = make_config(tmp_path)
		args = argparse.Namespace(specialists_action="remove", name="Ghost")
		assert await _specialists(args, config) == 1
		assert "not found" in capsys.readouterr().out

	@pytest.mark.asyncio
	async def test_add_without_channel_uses_agent_channel(self, tmp_path, capsys):
		config = make_config(tmp_path, agent_channel_id="-100900")
		args = argparse.Namespace(
			specialists_action="add",
			name="Dashboard",
			purpose="cost reporting",
			channel=None,
			capability=None,
		)
		assert await _specialists(args, config) == 0

		store = SpecialistStore(str(config.db_path))
		try:
			saved = await store.load()
		finally:
			await store.close()
		assert saved[0].channel_id == "-100900"

	@pytest.mark.asyncio
	async def test_add_without_any_channel_fails(self, tmp_path, capsys):
		config = make_config(tmp_path)
		args = argparse.Namespace(
			specialists_action="add",
			name="Dashboard",
			purpose="cost reporting",
			channel=None,
			capability=None,
		)
		assert await _specialists(args, config) == 1
		assert "needs a channel" in capsys.readouterr().out
