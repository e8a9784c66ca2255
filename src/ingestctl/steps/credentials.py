"""
Integration credentials.

Gmail and Google Meet are always on. Telegram, Twilio and OpenAI are
optional; each enabled integration gets its secret containers up front,
then its values are collected. A value already stored is kept unless the
operator explicitly chooses to replace it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ingestctl import console, keys
from ingestctl.naming import secret_name
from ingestctl.secrets import SecretStore
from ingestctl.workflow import WorkflowContext


@dataclass
class SecretGuide:
    """One credential the operator has to fetch from a third-party console."""
    key: str
    label: str
    source_url: str
    instructions: List[str] = field(default_factory=list)


@dataclass
class Integration:
    number: str
    name: str
    label: str
    flag_key: str
    secrets: List[SecretGuide]
    notes: List[str] = field(default_factory=list)
    selection_warning: Optional[str] = None


TWILIO_CONSOLE_KEYS = "https://console.twilio.com/us1/account/keys-credentials/api-keys"

INTEGRATIONS: Tuple[Integration, ...] = (
    Integration(
        number="1",
        name="telegram",
        label="Telegram Bot - Chat message ingestion",
        flag_key=keys.ENABLE_TELEGRAM,
        secrets=[
            SecretGuide(
                key="TELEGRAM_BOT_TOKEN",
                label="Telegram bot token",
                source_url="https://t.me/BotFather",
                instructions=[
                    "Send /newbot to BotFather",
                    "Choose a display name and username",
                    "Copy the token (looks like: 123456789:ABCdef...)",
                ],
            ),
        ],
        notes=[
            "Use a company Telegram account, not personal. The account that creates the bot owns it permanently.",
        ],
        selection_warning=(
            "Telegram delivers messages through a public webhook. An iam.allowedPolicyMemberDomains "
            "organization policy blocks that; setup will detect it and offer a project-level exception."
        ),
    ),
    Integration(
        number="2",
        name="twilio",
        label="Twilio - Voice call transcription",
        flag_key=keys.ENABLE_TWILIO,
        secrets=[
            SecretGuide(
                key="TWILIO_ACCOUNT_SID",
                label="Twilio Account SID",
                source_url=TWILIO_CONSOLE_KEYS,
                instructions=[
                    "If you use subaccounts (e.g. dev/prod), select the right one first",
                    "Find your Account SID (starts with AC...) and copy it",
                ],
            ),
            SecretGuide(
                key="TWILIO_AUTH_TOKEN",
                label="Twilio Auth Token",
                source_url=TWILIO_CONSOLE_KEYS,
                instructions=["Click the eye icon next to Auth Token, then copy it"],
            ),
        ],
    ),
    Integration(
        number="3",
        name="openai",
        label="OpenAI - AI enrichment features",
        flag_key=keys.ENABLE_OPENAI,
        secrets=[
            SecretGuide(
                key="OPENAI_API_KEY",
                label="OpenAI API key",
                source_url="https://platform.openai.com/api-keys",
                instructions=[
                    "Click '+ Create new secret key' and name it (e.g., 'AI Ingestion')",
                    "Copy the key (starts with sk-...). It is only shown once.",
                ],
            ),
        ],
    ),
)


def parse_selection(answer: str) -> Dict[str, bool]:
    """``"1,3"`` -> telegram and openai on. Empty selects all, ``none`` selects none."""
    answer = answer.strip().lower()
    if answer == "none":
        chosen = set()
    else:
        chosen = {part.strip() for part in (answer or "1,2,3").split(",") if part.strip()}
    return {i.name: i.number in chosen for i in INTEGRATIONS}


def _collect_secret(ctx: WorkflowContext, secrets: SecretStore, guide: SecretGuide, replace: bool) -> bool:
    name = secret_name(guide.key, ctx.config.secret_prefix)
    console.info(f"Opening {guide.source_url}")
    ctx.prompter.open_url(guide.source_url)
    for n, line in enumerate(guide.instructions, 1):
        console.detail(f"{n}. {line}")

    value = ctx.prompter.ask(
        f"Paste the {guide.label} (or press Enter to add it in Secret Manager yourself)",
        hide_input=True,
        optional=True,
    )
    if value:
        if not secrets.add_value(name, value, replace=replace):
            console.success(f"{guide.label}: kept existing value")
            return True
    else:
        console.detail("Add it as a new version of the secret:")
        ctx.prompter.open_url(secrets.console_url(name))
        console.detail("Click '+ New version', paste into 'Secret value', click 'Add new version'")
        ctx.prompter.pause("Press Enter when done")

    if secrets.has_value(name):
        console.success(f"{guide.label} saved")
        return True
    console.warning(f"{guide.label} not saved yet (you can add it later)")
    return False


def configure_integration(ctx: WorkflowContext, secrets: SecretStore, integration: Integration) -> None:
    console.section(integration.name.upper())
    names = [secret_name(g.key, ctx.config.secret_prefix) for g in integration.secrets]

    replace = False
    if all(secrets.has_value(name) for name in names):
        console.success(f"{integration.name.capitalize()} credentials already configured.")
        if ctx.prompter.confirm("Keep existing credentials?", default=True):
            console.success(f"Keeping existing {integration.name.capitalize()} credentials")
            return
        replace = True

    for note in integration.notes:
        console.warning(note)
    for guide in integration.secrets:
        _collect_secret(ctx, secrets, guide, replace=replace)


def run_credentials(ctx: WorkflowContext) -> None:
    console.success("Gmail        - Always included (email sync)")
    console.success("Google Meet  - Always included (meeting recordings)")
    console.detail("Which additional integrations do you need?")
    for integration in INTEGRATIONS:
        console.detail(f"{integration.number}) {integration.label}")
    answer = ctx.prompter.ask("Select (comma-separated, Enter for all, or 'none')", optional=True)
    enabled = parse_selection(answer)
    selected = [i for i in INTEGRATIONS if enabled[i.name]]

    for integration in selected:
        if integration.selection_warning:
            console.warning(integration.selection_warning)
            ctx.prompter.pause()

    secrets = ctx.secrets()
    if selected:
        console.info("Creating secret containers")
    for integration in selected:
        for guide in integration.secrets:
            name = secret_name(guide.key, ctx.config.secret_prefix)
            if secrets.ensure_secret(name):
                console.success(name)
            else:
                console.detail(f"• {name} (exists)")

    for integration in selected:
        configure_integration(ctx, secrets, integration)

    values = {i.flag_key: enabled[i.name] for i in INTEGRATIONS}
    if enabled["telegram"]:
        values[keys.TELEGRAM_GROUP_ID] = ctx.prompter.ask(
            "Telegram support group chat id for the welcome message (optional)", optional=True,
        )
    ctx.update(values)
    console.success("Credentials configured")
