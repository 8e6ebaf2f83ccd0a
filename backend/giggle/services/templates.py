"""WhatsApp-flavoured reply templates (bold with *...*, emoji markers)."""
from __future__ import annotations
from decimal import Decimal, InvalidOperation
from typing import Optional

SAMPLE_SEND = '"Send $10 to +1234567890"'
PIN_EXAMPLE = '"Set PIN 1234"'


def _fmt2(value: str) -> str:
    try:
        return f"{Decimal(value):.2f}"
    except (InvalidOperation, TypeError, ValueError):
        return str(value)


def short_hash(tx_hash: str) -> str:
    if not tx_hash or len(tx_hash) <= 20:
        return tx_hash or ""
    return f"{tx_hash[:10]}...{tx_hash[-8:]}"


def short_address(address: str) -> str:
    if not address or len(address) <= 12:
        return address or ""
    return f"{address[:6]}...{address[-4:]}"


# ---------------------------------------------------------------------------
# Generic wrappers
# ---------------------------------------------------------------------------
def error(message: str) -> str:
    return f"❌ *Error*\n\n{message}"


def info(message: str) -> str:
    return f"ℹ️ {message}"


GENERIC_APOLOGY = error("An error occurred. Please try again later.")


# ---------------------------------------------------------------------------
# Onboarding
# ---------------------------------------------------------------------------
def onboarding_welcome() -> str:
    return (
        "👋 *Welcome to Giggle Pay!*\n\n"
        "Send and receive PYUSD with just a phone number, right here in WhatsApp.\n\n"
        "Let's get you set up. It takes less than a minute.\n\n"
        "Reply *continue* to get started."
    )


def onboarding_pin() -> str:
    return (
        "🔐 *Step 1: Create your PIN*\n\n"
        "Your PIN protects every transaction you send.\n\n"
        f"Reply with: {PIN_EXAMPLE}\n\n"
        "Use 4-6 digits you'll remember. Never share it with anyone."
    )


def onboarding_pin_success() -> str:
    return (
        "✅ *PIN Set Successfully!*\n\n"
        "Your PIN has been securely saved. You'll need it to confirm transactions."
    )


def onboarding_complete(address: str, explorer_url: str) -> str:
    return (
        "🎉 *You're all set!*\n\n"
        f"Your wallet address:\n`{address}`\n\n"
        f"🔍 View on Blockscout:\n{explorer_url}\n\n"
        "Try:\n"
        f"• {SAMPLE_SEND}\n"
        "• \"What's my balance?\"\n"
        "• \"help\""
    )


def invalid_pin_format() -> str:
    return error(f"Invalid PIN format. PIN must be 4-6 digits.\n\nExample: {PIN_EXAMPLE}")


# ---------------------------------------------------------------------------
# Help / account / balance / history
# ---------------------------------------------------------------------------
def help_message(has_pin: bool) -> str:
    message = (
        "🤖 *Giggle Pay - WhatsApp PYUSD Payments*\n\n"
        "📱 *What you can say:*\n\n"
        "• \"Send $10 to +1234567890\" - send PYUSD\n"
        "• \"Request $5 from +1234567890\" - ask for a payment\n"
        "• \"What's my balance?\"\n"
        "• \"Show my account\"\n"
        "• \"Show transaction history\"\n"
        "• \"Create gift coupon $5\"\n"
        "• \"Redeem coupon GIFT1234ABCD\"\n"
        "• \"Show my coupons\"\n"
        "• \"Set PIN 1234\"\n\n"
        "⚠️ *Testnet only. No real money.*"
    )
    if not has_pin:
        message += f"\n\n⚠️ *Important:* Set up your PIN to send transactions:\n{PIN_EXAMPLE}"
    return message


def balance_message(pyusd: str, eth: str, eth_usd: Optional[float] = None) -> str:
    eth_line = f"• ETH: {Decimal(eth):.4f} (gas)"
    if eth_usd is not None:
        eth_line += f" ≈ ${Decimal(eth) * Decimal(str(eth_usd)):.2f}"
    return f"💰 *Your Balances:*\n\n• PYUSD: ${_fmt2(pyusd)}\n{eth_line}\n"


def account_message(address: str, pyusd: str, eth: str, explorer_url: str) -> str:
    return (
        "👛 *Your Wallet*\n\n"
        f"Address: `{address}`\n"
        f"Short: {short_address(address)}\n\n"
        f"• PYUSD: ${_fmt2(pyusd)}\n"
        f"• ETH: {Decimal(eth):.4f}\n\n"
        f"🔍 View on Blockscout:\n{explorer_url}"
    )


_TX_ICONS = {"send": "📤", "receive": "📥", "request": "💰"}
_STATUS_ICONS = {"confirmed": "✅", "pending": "⏳", "failed": "❌"}


def history_message(transactions, explorer_for) -> str:
    if not transactions:
        return f"📝 *Transaction History*\n\nNo transactions yet.\n\nTry: {SAMPLE_SEND}"
    lines = [f"📝 *Transaction History* (last {len(transactions)})", ""]
    for i, t in enumerate(transactions, 1):
        icon = _TX_ICONS.get(t.type, "•")
        status = _STATUS_ICONS.get(t.status, t.status)
        peer = t.recipient if t.type == "send" else t.sender
        line = f"{i}. {icon} {t.type.title()} ${_fmt2(t.amount)} {t.token} {status}"
        if peer:
            line += f"\n   {'To' if t.type == 'send' else 'From'}: {short_address(peer)}"
        if t.tx_hash:
            line += f"\n   🔗 {explorer_for(t.tx_hash)}"
        lines.append(line)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Send / request flow
# ---------------------------------------------------------------------------
def invalid_phone(raw: str) -> str:
    return error(f"Invalid phone number: {raw}\n\nPlease use format: +1234567890 or (123) 456-7890")


def pin_required_setup() -> str:
    return (
        "🔐 *Security Setup Required*\n\n"
        "For your security, please set up a PIN before sending transactions.\n\n"
        f"💡 *How to set up your PIN:*\nReply with: {PIN_EXAMPLE}\n\n"
        "After setting your PIN, you can retry your transaction."
    )


def insufficient_balance(balance: str, required: str) -> str:
    shortfall = Decimal(required) - Decimal(balance)
    return error(
        f"Insufficient balance.\n\nYou have ${_fmt2(balance)} PYUSD but need ${_fmt2(required)}.\n"
        f"You need ${shortfall:.2f} more."
    )


def send_confirmation_request(amount: str, recipient_phone: str, balance: str) -> str:
    return (
        "🔐 *Confirm Transaction*\n\n"
        f"Send: ${_fmt2(amount)} PYUSD\n"
        f"To: {recipient_phone}\n"
        f"Your balance: ${_fmt2(balance)} PYUSD\n\n"
        "Reply with your *PIN* to confirm, or *cancel* to abort.\n\n"
        "⏰ This request expires in 5 minutes."
    )


def request_confirmation_request(amount: str, from_phone: str) -> str:
    return (
        "💰 *Confirm Payment Request*\n\n"
        f"Request: ${_fmt2(amount)} PYUSD\n"
        f"From: {from_phone}\n\n"
        "Reply *yes* to send the request, or *no* to cancel."
    )


def pin_entry_prompt() -> str:
    return info("Please reply with your 4-6 digit PIN to confirm this transaction.")


def no_pending_to_confirm() -> str:
    return info(f"No pending transaction to confirm.\n\nTry sending a transaction first, like:\n{SAMPLE_SEND}")


def no_pending_to_cancel() -> str:
    return info("No pending transaction to cancel.")


def transaction_cancelled() -> str:
    return "🚫 *Transaction Cancelled*\n\nNo funds were moved."


def no_pin_set() -> str:
    return error(f"No PIN set up. Please set up a PIN first:\n\nExample: {PIN_EXAMPLE}")


def pin_set_success() -> str:
    return (
        "✅ *PIN Set Successfully!*\n\n"
        "Your PIN has been securely saved. You'll need to enter it to confirm transactions.\n\n"
        "🔐 Keep your PIN safe and don't share it with anyone!"
    )


def sending() -> str:
    return "⏳ Sending transaction..."


def transfer_confirmation(direction: str, amount: str, peer: str, tx_hash: str, explorer_url: str) -> str:
    sent = direction == "send"
    header = "✅📤 *Sent!*" if sent else "✅📥 *Received!*"
    return (
        f"{header}\n\n"
        f"Amount: {_fmt2(amount)} PYUSD\n"
        f"{'To' if sent else 'From'}: {peer}\n"
        f"\nTx: {short_hash(tx_hash)}"
        f"\n\n🔍 View on Blockscout:\n{explorer_url}"
    )


def payment_request_notice(requester_phone: str, amount: str) -> str:
    return (
        "💰 *Payment Request*\n\n"
        f"{requester_phone} is requesting ${_fmt2(amount)} PYUSD from you.\n\n"
        f"To send, reply:\n\"Send ${_fmt2(amount)} to {requester_phone}\""
    )


def request_recorded(amount: str) -> str:
    return (
        "✅ *Request Recorded!*\n\n"
        f"Your payment request for ${_fmt2(amount)} PYUSD has been recorded.\n\n"
        "💡 Note: Recipient needs to opt-in to WhatsApp notifications to receive requests."
    )


def unknown_hint() -> str:
    return (
        "I didn't quite understand that. Try:\n"
        f"• {SAMPLE_SEND}\n"
        "• \"What's my balance?\"\n"
        "• \"Show my account\"\n"
        "• \"Show transaction history\"\n\n"
        "Or say \"help\" for more info."
    )


# ---------------------------------------------------------------------------
# Gift coupons
# ---------------------------------------------------------------------------
def coupons_unavailable() -> str:
    return error("Gift coupons are not available yet. Please check back later!")


def coupon_creating() -> str:
    return (
        "🎁 Creating your gift coupon...\n\n"
        "This may take a few minutes. Please check back using \"show my coupons\"."
    )


def coupon_redeeming() -> str:
    return "🎁 Redeeming your gift coupon...\n\nThis may take a few moments. You'll receive confirmation shortly."


def coupon_created(code: str, amount: str, token: str, expiry_days: int, explorer_url: str) -> str:
    expiry = f"⏰ Expires: {expiry_days} days\n" if expiry_days else ""
    return (
        "✅ *Gift Coupon Created!*\n\n"
        f"💳 Code: `{code}`\n"
        f"💰 Amount: ${_fmt2(amount)} {token}\n"
        f"{expiry}\n"
        "Share this code with the recipient to redeem!\n\n"
        f"🔗 View Transaction:\n{explorer_url}\n\n"
        "💡 Your balance has been updated. Check with \"What's my balance?\""
    )


def coupon_redeemed(amount: str, token: str, gift_message: Optional[str], explorer_url: str) -> str:
    note = f"💌 Message: \"{gift_message}\"\n" if gift_message else ""
    return (
        "✅ *Gift Coupon Redeemed!*\n\n"
        f"💰 You received: ${_fmt2(amount)} {token}\n"
        f"{note}\n"
        f"🔗 View Transaction:\n{explorer_url}\n\n"
        "💡 Your balance has been updated. Check with \"What's my balance?\""
    )


def coupon_failed(action: str, detail: str) -> str:
    return error(f"Could not {action} gift coupon. {detail or 'Please try again.'}")


def coupon_code_missing() -> str:
    return info("Please provide a coupon code to check.\n\nExample: \"Check coupon GIFT1234ABCD\"")


def coupon_not_found(code: str) -> str:
    return error(f"Coupon code \"{code}\" not found.")


def coupon_status(code: str, coupon) -> str:
    lines = [
        "🎁 *Gift Coupon Status*",
        "",
        f"💳 Code: `{code}`",
        f"💰 Amount: ${_fmt2(coupon.amount)} {coupon.token}",
        f"✅ Valid: {'Yes' if coupon.is_valid else 'No'}",
    ]
    if coupon.expires_at:
        lines.append(f"⏰ Expires: {coupon.expires_at:%Y-%m-%d}")
    if coupon.metadata.get("message"):
        lines.append(f"💌 Message: \"{coupon.metadata['message']}\"")
    lines.append("")
    if coupon.is_valid:
        lines.append(f"💡 To redeem, reply: \"Redeem coupon {code}\"")
    else:
        lines.append("⚠️ This coupon has already been redeemed or has expired.")
    return "\n".join(lines)


def coupon_list(active, redeemed) -> str:
    message = "🎁 *Your Gift Coupons*\n\n"
    if active:
        message += f"📤 *Coupons You Created ({len(active)})*\n\n"
        for i, c in enumerate(active, 1):
            message += f"{i}. Code: `{c.code}`\n   💰 ${_fmt2(c.amount)} {c.token}\n"
            if c.message:
                message += f"   💌 \"{c.message}\"\n"
            if c.expires_at:
                message += f"   ⏰ Expires: {c.expires_at:%Y-%m-%d}\n"
            message += "\n"
    if redeemed:
        message += f"📥 *Coupons You Redeemed ({len(redeemed)})*\n\n"
        for i, c in enumerate(redeemed[:5], 1):
            message += f"{i}. ${_fmt2(c.amount)} {c.token}\n"
            if c.message:
                message += f"   💌 \"{c.message}\"\n"
            message += "\n"
        if len(redeemed) > 5:
            message += f"   ... and {len(redeemed) - 5} more\n\n"
    if not active and not redeemed:
        message += (
            "You don't have any gift coupons yet.\n\n"
            "💡 Create one with: \"Create gift coupon $5\"\n"
            "Or ask someone to send you a coupon code!"
        )
    else:
        message += "💡 *Tip:* Share your coupon codes with friends to gift them PYUSD!"
    return message


# ---------------------------------------------------------------------------
# Scheduled intents
# ---------------------------------------------------------------------------
def scheduled_reminder(amount: str, token: str, recipient: str) -> str:
    return (
        "⏰ *Scheduled Payment Due*\n\n"
        f"Your scheduled payment of ${_fmt2(amount)} {token} to {recipient} is due.\n\n"
        f"To send it now, reply:\n\"Send ${_fmt2(amount)} to {recipient}\""
    )
