from __future__ import annotations

from dataclasses import replace
from html import escape
from urllib.parse import urlencode

from study_access.economy.side_effects.service import run_side_effect_once
from study_access.services.access_codes import format_access_code
from study_access.services.email_delivery import EmailMessage, send_email

WELCOME_EMAIL_KIND = "welcome_email"
CLAIM_CODE_EMAIL_KIND = "claim_code_email"
PARENT_INVITE_EMAIL_KIND = "parent_invite_email"


def delivery_tags(*, kind: str, subject_key: str) -> dict[str, str]:
    return {"kind": kind, "subject_key": subject_key}


def build_welcome_email(*, to_email: str) -> EmailMessage:
    return EmailMessage(
        to_email=to_email,
        subject="Welcome to Flash",
        text=(
            "Thanks for joining Flash.\n\n"
            "Turn your notes into flashcards, study a little every day, "
            "and unlock Pro any time from the app settings."
        ),
    )


def build_claim_code_email(*, to_email: str, claim_code: str) -> EmailMessage:
    pretty_code = format_access_code(claim_code)
    return EmailMessage(
        to_email=to_email,
        subject="Your Flash Pro access code",
        text=(
            "Someone has purchased Flash Pro for you.\n\n"
            f"Open the app, go to Settings > Redeem code and enter:\n\n{pretty_code}\n\n"
            "The code can be redeemed once."
        ),
        html=(
            "<p>Someone has purchased Flash Pro for you.</p>"
            "<p>Open the app, go to <b>Settings &gt; Redeem code</b> and enter:</p>"
            f"<p style=\"font-size:20px;font-family:monospace\">{pretty_code}</p>"
            "<p>The code can be redeemed once.</p>"
        ),
    )


async def send_welcome_email_once(*, user_id: str, email: str) -> str:
    message = replace(
        build_welcome_email(to_email=email),
        custom_args=delivery_tags(kind=WELCOME_EMAIL_KIND, subject_key=user_id),
    )

    async def _send() -> None:
        await send_email(message)

    return await run_side_effect_once(
        kind=WELCOME_EMAIL_KIND,
        subject_key=user_id,
        user_id=user_id,
        action=_send,
    )


async def send_claim_code_email_once(*, claim_id: str, email: str, claim_code: str) -> str:
    message = replace(
        build_claim_code_email(to_email=email, claim_code=claim_code),
        custom_args=delivery_tags(kind=CLAIM_CODE_EMAIL_KIND, subject_key=claim_id),
    )

    async def _send() -> None:
        await send_email(message)

    return await run_side_effect_once(
        kind=CLAIM_CODE_EMAIL_KIND,
        subject_key=claim_id,
        action=_send,
    )


def build_parent_invite_email(*, to_email: str, child_email: str, marketing_base_url: str) -> EmailMessage:
    page_url = f"{marketing_base_url.rstrip('/')}/parents?{urlencode({'child_email': child_email})}"
    return EmailMessage(
        to_email=to_email,
        subject="Flash: parent/guardian invite",
        text=(
            f"{child_email} is revising with Flash and has invited you to unlock Pro.\n\n"
            f"1. Open the parent page: {page_url}\n"
            "2. Complete the checkout on your device.\n"
            "3. The student receives a code and redeems it in the app.\n\n"
            f"If the student email is not pre-filled, enter {child_email} at checkout.\n"
            "If you didn't expect this, you can ignore this email."
        ),
        html=(
            f"<p><b>{escape(child_email)}</b> is revising with Flash and has invited you to unlock Pro.</p>"
            "<ol><li>Open the parent page below.</li>"
            "<li>Complete the checkout on your device.</li>"
            "<li>The student receives a code and redeems it in the app.</li></ol>"
            f"<p><a href=\"{escape(page_url)}\">Open parent page</a></p>"
            "<p>If you didn't expect this, you can ignore this email.</p>"
        ),
    )
