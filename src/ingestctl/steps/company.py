"""Company and admin contact details, prefilled from the registry."""

from __future__ import annotations

from ingestctl import console, keys
from ingestctl.registry import ClientData
from ingestctl.workflow import WorkflowContext


def _ask_email(ctx: WorkflowContext, text: str, default: str) -> str:
    while True:
        email = ctx.prompter.ask(text, default=default)
        if "@" in email and "." in email.rsplit("@", 1)[-1]:
            return email
        console.warning(f"Not an email address: {email}")


def run_company_info(ctx: WorkflowContext) -> None:
    client = ctx.client_data() or ClientData()
    contact = client.contact

    # The domain comes from the setup token and is never editable
    console.info(f"Domain: {ctx.domain} (locked, from setup token)")
    name = ctx.prompter.ask("Company/Client name (e.g., ACME Corporation)", default=client.company_name)

    console.section("Admin contact (primary point of contact)")
    first_name = ctx.prompter.ask("Admin first name(s)", default=contact.first_name)
    surname = ctx.prompter.ask("Admin surname", default=contact.surname)
    email = _ask_email(ctx, "Admin email", contact.email or f"admin@{ctx.domain}")
    phone = ctx.prompter.ask(
        "Admin work phone (E.164 format, e.g., +14155551234)", default=contact.phone, optional=True,
    )
    telegram = ctx.prompter.ask(
        "Admin Telegram handle (optional, e.g., @johndoe)", default=contact.telegram_handle, optional=True,
    )

    consultant = ctx.consultant_email or client.consultant_email or ctx.config.support_email

    ctx.update({
        keys.CLIENT_NAME: name,
        keys.ADMIN_FIRST_NAME: first_name,
        keys.ADMIN_SURNAME: surname,
        keys.ADMIN_EMAIL: email,
        keys.ADMIN_PHONE: phone,
        keys.ADMIN_TELEGRAM: telegram,
        keys.CONSULTANT_EMAIL: consultant,
    })
    console.success(f"Company information saved for {name}")
