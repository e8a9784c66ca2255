"""
Pytest configuration and fixtures for ingestctl tests.

External CLIs are replaced by ``FakeRunner``, which answers commands from
scripted rules; interactive prompts by ``ScriptedPrompter``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Sequence, Tuple, Union

import pytest

from ingestctl.config import get_config, reset_config
from ingestctl.console import Prompter
from ingestctl.runner import CommandResult, CommandRunner

Response = Union[Tuple[int, str, str], Callable[[List[str]], Tuple[int, str, str]]]


# ============================================================================
# Fakes
# ============================================================================


class FakeRunner(CommandRunner):
    """
    CommandRunner whose subprocess layer answers from scripted rules.

    A rule matches when its pattern is a substring of the joined command
    line. Later rules take precedence; ``times`` limits how often a rule
    fires. Unmatched commands succeed with empty output.
    """

    def __init__(self):
        self.sleeps: List[float] = []
        super().__init__(sleep=self.sleeps.append, iam_wait_s=10, org_policy_wait_s=30)
        self.rules: List[list] = []
        self.calls: List[str] = []
        self.inputs: Dict[str, str] = {}

    def on(
        self,
        pattern: str,
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
        times: Optional[int] = None,
        respond: Optional[Callable[[List[str]], Tuple[int, str, str]]] = None,
    ) -> "FakeRunner":
        response: Response = respond or (exit_code, stdout, stderr)
        self.rules.insert(0, [pattern, response, times])
        return self

    def require(self, tools) -> None:
        pass

    def _execute(self, cmd, input_text, cwd, timeout, interactive) -> CommandResult:
        line = " ".join(cmd)
        self.calls.append(line)
        if input_text is not None:
            self.inputs[line] = input_text
        for rule in self.rules:
            pattern, response, times = rule
            if pattern not in line:
                continue
            if times is not None:
                if times <= 0:
                    continue
                rule[2] = times - 1
            exit_code, stdout, stderr = response(list(cmd)) if callable(response) else response
            return CommandResult(list(cmd), exit_code, stdout, stderr)
        return CommandResult(list(cmd), 0, "", "")

    def called(self, pattern: str) -> List[str]:
        return [c for c in self.calls if pattern in c]


class ScriptedPrompter(Prompter):
    """
    Prompter answering from dictionaries keyed by a substring of the question.

    A list value is consumed one answer per question. Unscripted questions
    take their default.
    """

    def __init__(
        self,
        answers: Optional[Dict[str, object]] = None,
        confirms: Optional[Dict[str, object]] = None,
        choices: Optional[Dict[str, object]] = None,
    ):
        self.answers = dict(answers or {})
        self.confirms = dict(confirms or {})
        self.choices = dict(choices or {})
        self.asked: List[str] = []
        self.opened: List[str] = []
        self.pauses = 0

    @staticmethod
    def _lookup(table: Dict[str, object], text: str):
        for key, value in table.items():
            if key in text:
                if isinstance(value, list):
                    return value.pop(0) if value else None
                return value
        return None

    def ask(self, text, default=None, hide_input=False, optional=False) -> str:
        self.asked.append(text)
        value = self._lookup(self.answers, text)
        if value is None:
            return default or ""
        return str(value)

    def confirm(self, text, default=False) -> bool:
        self.asked.append(text)
        value = self._lookup(self.confirms, text)
        return default if value is None else bool(value)

    def choose(self, text, choices: Sequence[str], default=None) -> str:
        self.asked.append(text)
        value = self._lookup(self.choices, text)
        return default if value is None else str(value)

    def pause(self, text="Press Enter to continue") -> None:
        self.pauses += 1

    def open_url(self, url: str) -> None:
        self.opened.append(url)


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch) -> Generator[None, None, None]:
    """Point state and Terraform directories at a temp dir and reset the config singleton."""
    monkeypatch.setenv("INGESTCTL_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("INGESTCTL_TERRAFORM_DIR", str(tmp_path / "terraform"))
    monkeypatch.setenv("INGESTCTL_REGISTRY_URL", "https://registry.test")
    monkeypatch.setenv("INGESTCTL_WELCOME_BASE_URL", "https://welcome.test")
    monkeypatch.delenv("INGESTCTL_OTLP_ENDPOINT", raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config():
    return get_config()


@pytest.fixture
def state_dir(config) -> Path:
    return config.get_state_path()


@pytest.fixture
def terraform_dir(config) -> Path:
    path = config.get_terraform_path()
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def prompter() -> ScriptedPrompter:
    return ScriptedPrompter()


@pytest.fixture
def sleeps() -> List[float]:
    return []


# ============================================================================
# Workflow Fixtures
# ============================================================================


@pytest.fixture
def make_ctx(config, fake_runner, prompter, state_dir, sleeps):
    """
    Build a WorkflowContext for ``acme.com`` around the fakes.

    Keyword ``values`` are written to the state store first; the registry
    client is a ``mock.Mock``.
    """
    from unittest import mock

    from ingestctl.cloud import GcloudClient
    from ingestctl.ledger import StepLedger
    from ingestctl.logger import StepLogger
    from ingestctl.state import StateStore
    from ingestctl.terraform import TerraformClient
    from ingestctl.workflow import WorkflowContext

    def factory(resume=False, force=(), values=None, transport=None):
        store = StateStore(state_dir)
        ctx = WorkflowContext(
            domain="acme.com",
            token="tok-123",
            config=config,
            store=store,
            ledger=StepLedger(store, resume=resume, force=force),
            runner=fake_runner,
            cloud=GcloudClient(fake_runner),
            terraform=TerraformClient(fake_runner, config.get_terraform_path()),
            registry=mock.Mock(),
            prompter=prompter,
            events=StepLogger("acme.com"),
            sleep=sleeps.append,
            consultant_email="consultant@partner.test",
            http_transport=transport,
        )
        if values:
            ctx.update(values)
        return ctx
    return factory
