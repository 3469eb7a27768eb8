"""
Reasoning Oracle - Prompt-in, text-out access to the generative backend.

Uses `claude --print` for clean stdin/stdout communication. Each call is
independent and bounded by a timeout; every failure surfaces as
OracleUnavailable so call sites can fall back deterministically.
"""

import asyncio
import logging
import os
from typing import Optional, Protocol

from .errors import OracleMalformedResponse, OracleUnavailable
from .schemas import DecodeResult, ResponseSchema

logger = logging.getLogger(__name__)


class ReasoningOracle(Protocol):
	"""Anything that turns a prompt into text."""

	async def complete(self, prompt: str, instructions: Optional[str] = None) -> str:
		...


class ClaudeCLIOracle:
	"""
	Oracle backed by the Claude Code CLI in print mode.

	The API key is taken from ANTHROPIC_API_KEY in the environment.
	"""

	def __init__(
		self,
		model: str = "opus",
		timeout: float = 20.0,
		executable: str = "claude",
		cwd: Optional[str] = None,
	):
		self.model = model
		self.timeout = timeout
		self.executable = executable
		self.cwd = cwd
		self._api_key = os.environ.get("ANTHROPIC_API_KEY", "")

	@property
	def is_ready(self) -> bool:
		return bool(self._api_key)

	async def complete(self, prompt: str, instructions: Optional[str] = None) -> str:
		"""
		Send a prompt to the CLI and return its stdout.

		Raises:
			OracleUnavailable: on timeout, a CLI that can't start, or non-zero exit
		"""
		if not self._api_key:
			raise OracleUnavailable("No API key configured")

		args = [self.executable, "--print", "--model", self.model]
		if instructions:
			args += ["--append-system-prompt", instructions]
		args.append(prompt)

		logger.debug(f"Sending prompt ({len(prompt)} chars): {prompt[:100]}...")

		env = os.environ.copy()
		env["ANTHROPIC_API_KEY"] = self._api_key

		try:
			process = await asyncio.create_subprocess_exec(
				*args,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				cwd=self.cwd,
				env=env,
			)
		except FileNotFoundError:
			raise OracleUnavailable(f"{self.executable} CLI not found. Is it installed?")
		except OSError as e:
			raise OracleUnavailable(f"Could not start {self.executable}: {e}")

		try:
			stdout, stderr = await asyncio.wait_for(
				process.communicate(),
				timeout=self.timeout,
			)
		except (asyncio.TimeoutError, asyncio.CancelledError) as e:
			process.kill()
			await process.wait()
			if isinstance(e, asyncio.CancelledError):
				raise
			raise OracleUnavailable(f"Response timed out after {self.timeout} seconds")

		stdout_text = stdout.decode(errors="replace") if stdout else ""
		stderr_text = stderr.decode(errors="replace") if stderr else ""

		if process.returncode != 0:
			error_msg = stderr_text or f"Exit code {process.returncode}"
			logger.error(f"Claude CLI error: {error_msg}")
			raise OracleUnavailable(f"Claude CLI failed: {error_msg}")

		logger.debug(f"Response received ({len(stdout_text)} chars)")
		return stdout_text


async def ask_json(
	oracle: ReasoningOracle,
	prompt: str,
	schema: ResponseSchema,
	instructions: Optional[str] = None,
	timeout: Optional[float] = None,
) -> DecodeResult:
	"""
	Ask the oracle for a JSON reply and decode it against a schema.

	Never raises for oracle or decode problems; those come back as a
	failed DecodeResult so the caller can apply its fallback.
	"""
	try:
		call = oracle.complete(prompt, instructions)
		if timeout is not None:
			text = await asyncio.wait_for(call, timeout=timeout)
		else:
			text = await call
	except asyncio.TimeoutError:
		logger.warning(f"[{schema.name}] Oracle timed out after {timeout}s")
		return DecodeResult.failure("timeout")
	except OracleUnavailable as e:
		logger.warning(f"[{schema.name}] Oracle unavailable: {e}")
		return DecodeResult.failure(str(e))
	except Exception as e:
		# Any other backend error is treated as unavailability
		logger.warning(f"[{schema.name}] Oracle call failed: {e}")
		return DecodeResult.failure(str(e))

	result = schema.decode(text)
	if not result.ok:
		logger.warning(f"[{schema.name}] {OracleMalformedResponse.__name__}: {result.error}")
	return result
