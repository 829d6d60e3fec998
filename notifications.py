"""Transactional email: SMTP delivery and HTML templates."""
import logging
import smtplib
from datetime import datetime, timezone
from email.message import EmailMessage
from html import escape
from typing import Optional

import settings
from errors import DependencyError
from schemas import GiftCard, Order

logger = logging.getLogger(__name__)


class Mailer:
    """Sends HTML mail through the configured SMTP relay (STARTTLS)."""

    def __init__(self, host: str = settings.SMTP_HOST, port: int = settings.SMTP_PORT,
                 user: Optional[str] = settings.SMTP_USER, password: Optional[str] = settings.SMTP_PASSWORD,
                 sender: str = settings.MAIL_FROM, timeout: float = settings.SMTP_TIMEOUT):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def send(self, to: str, subject: str, html: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(html, subtype="html")
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.starttls()
                if self.user and self.password:
                    smtp.login(self.user, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DependencyError("mail", str(e)) from e
        logger.info("Sent '%s' to %s", subject, to)


_mailer: Optional[Mailer] = None


def get_mailer() -> Mailer:
    global _mailer
    if _mailer is None:
        _mailer = Mailer()
    return _mailer


def _layout(title: str, body: str) -> str:
    year = datetime.now(timezone.utc).year
    return f"""<!DOCTYPE html>
<html>
<body style="font-family: Georgia, serif; background-color: #F5F5F7; margin: 0; padding: 0;">
  <div style="max-width: 600px; margin: 40px auto; background: #FFFFFF; border: 1px solid #E5E7EB;">
    <div style="background: #374151; padding: 40px; text-align: center; color: #FFFFFF; font-size: 32px; letter-spacing: 2px;">VERITY GEM</div>
    <div style="padding: 40px; color: #111827;">
      <h2 style="margin-top: 0;">{escape(title)}</h2>
      {body}
    </div>
    <div style="background: #F5F5F7; padding: 30px; text-align: center; color: #6B7280; font-size: 14px;">
      <p>&copy; {year} Verity Gem. All rights reserved.</p>
    </div>
  </div>
</body>
</html>"""


def _amount(order: Order, value: float) -> str:
    return f"{escape(order.currency)} {value:.2f}"


def order_confirmation(order: Order) -> str:
    rows = "".join(
        f"<tr><td>{escape(line.name)}</td><td style=\"text-align: center;\">{line.quantity}</td>"
        f"<td style=\"text-align: right;\">{_amount(order, line.price)}</td></tr>"
        for line in order.items
    )
    addr = order.shipping_address
    address_lines = [addr.full_name, addr.address_line1, addr.address_line2,
                     " ".join(p for p in (addr.city, addr.state, addr.postal_code) if p), addr.country]
    address = "<br>".join(escape(p) for p in address_lines if p)
    body = f"""
      <p>Thank you for your purchase. Your order has been received and will be carefully prepared for shipment.</p>
      <p style="color: #6B7280; font-size: 14px; margin-bottom: 0;">Order Number</p>
      <p style="font-size: 20px; font-weight: bold; margin-top: 5px;">{escape(order.order_number)}</p>
      <table style="width: 100%; border-collapse: collapse;">
        <thead><tr><th style="text-align: left;">Item</th><th>Qty</th><th style="text-align: right;">Price</th></tr></thead>
        <tbody>{rows}</tbody>
        <tfoot>
          <tr><td colspan="2" style="text-align: right;">Subtotal:</td><td style="text-align: right;">{_amount(order, order.subtotal)}</td></tr>
          <tr><td colspan="2" style="text-align: right;">Shipping:</td><td style="text-align: right;">{_amount(order, order.shipping_cost)}</td></tr>
          <tr><td colspan="2" style="text-align: right;">Tax:</td><td style="text-align: right;">{_amount(order, order.tax)}</td></tr>
          <tr><td colspan="2" style="text-align: right; font-weight: bold;">Total:</td><td style="text-align: right; font-weight: bold;">{_amount(order, order.total)}</td></tr>
        </tfoot>
      </table>
      <h3>Shipping Address</h3>
      <p>{address}</p>
      <p style="color: #6B7280; font-size: 14px;">You will receive a shipping notification with tracking information once your order is dispatched.</p>"""
    return _layout("Order Confirmation", body)


def shipping_update(order: Order) -> str:
    body = f"""
      <p>Your order <strong>{escape(order.order_number)}</strong> has been shipped and is on its way to you.</p>
      <p style="color: #6B7280; font-size: 14px; margin-bottom: 0;">Tracking Number</p>
      <p style="font-size: 24px; font-weight: bold; letter-spacing: 2px; margin-top: 10px;">{escape(order.tracking_number or "")}</p>
      <p>Your package will arrive within 5-7 business days for international shipments.</p>"""
    return _layout("Your Order Has Shipped", body)


def reset_code(code: str, ttl_minutes: int) -> str:
    body = f"""
      <p>Use the code below to reset your Verity Gem account password:</p>
      <div style="font-size: 24px; letter-spacing: 0.3em; font-weight: 600;">{escape(code)}</div>
      <p style="font-size: 14px; color: #4B5563;">This code will expire in {ttl_minutes} minutes. If you didn't request this, you can safely ignore this email.</p>"""
    return _layout("Password Reset Code", body)


def welcome(name: str) -> str:
    body = f"""
      <p>Welcome to Verity Gem, {escape(name)}.</p>
      <p>Explore our curated selection of pieces, each crafted with precision and timeless elegance.</p>
      <p><a href="{escape(settings.CLIENT_URL)}/shop">Explore Collection</a></p>"""
    return _layout("Welcome to Verity Gem", body)


def return_request(order: Order) -> str:
    reason = order.return_request.reason or "(no reason given)"
    body = f"""
      <p>Return requested for order <strong>{escape(order.order_number)}</strong>.</p>
      <p>Reason: {escape(reason)}</p>"""
    return _layout("Return Request", body)


def gift_card(card: GiftCard) -> str:
    sender = card.purchaser.name or "Someone special"
    note = f'<p style="font-style: italic;">"{escape(card.message)}"</p>' if card.message else ""
    body = f"""
      <p>{escape(sender)} has sent you a Verity Gem gift card!</p>
      {note}
      <div style="background: #374151; color: #FFFFFF; padding: 30px; text-align: center; margin: 20px 0;">
        <h3 style="margin: 0;">Gift Card Value</h3>
        <div style="font-size: 36px; font-weight: bold; margin: 15px 0;">{escape(card.currency)} {card.amount:.2f}</div>
        <p style="margin: 10px 0 5px 0; font-size: 14px;">Your Gift Card Code:</p>
        <div style="font-size: 24px; font-weight: bold; letter-spacing: 3px;">{escape(card.code)}</div>
        <p style="font-size: 12px; margin-top: 15px;">Valid until {card.expires_at:%B %d, %Y}</p>
      </div>
      <p style="text-align: center;"><a href="{escape(settings.CLIENT_URL)}/shop">Shop Now</a></p>"""
    return _layout("You've Received a Gift!", body)


def send_quietly(mailer: Mailer, to: Optional[str], subject: str, html: str) -> bool:
    """Send a message whose failure must not fail the surrounding request."""
    if not to:
        logger.warning("No recipient for '%s'; skipping", subject)
        return False
    try:
        mailer.send(to, subject, html)
    except DependencyError as e:
        logger.error("Email '%s' to %s failed: %s", subject, to, e)
        return False
    return True


def send_order_confirmation(mailer: Mailer, order: Order, to: Optional[str]) -> bool:
    return send_quietly(mailer, to, f"Order Confirmation - {order.order_number}", order_confirmation(order))
