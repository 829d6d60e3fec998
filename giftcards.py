"""Gift card issuance and balance lookup."""
import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import settings
from database import create_document
from errors import DependencyError, NotFoundError
from notifications import Mailer, gift_card as gift_card_template, send_quietly
from pricing import as_utc, money
from schemas import GiftCard, Party

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 10
CODE_ATTEMPTS = 3


class Recipient(Party):
    email: EmailStr


class GiftCardIn(BaseModel):
    amount: float = Field(..., gt=0)
    currency: str = Field(settings.DEFAULT_CURRENCY, min_length=3, max_length=3)
    purchaser: Party = Field(default_factory=Party)
    recipient: Recipient
    message: Optional[str] = Field(None, max_length=500)
    images: Optional[dict] = None


def generate_code() -> str:
    return "VG" + "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def issue_gift_card(db: Database, payload: GiftCardIn, mailer: Optional[Mailer] = None,
                    now: Optional[datetime] = None) -> Tuple[GiftCard, bool]:
    """Store a new card with its full amount as balance and mail it to the recipient.

    Returns the card and whether the recipient email went out.
    """
    now = now or datetime.now(timezone.utc)
    amount = money(payload.amount)
    card = GiftCard(
        code=generate_code(),
        amount=amount,
        currency=payload.currency.upper(),
        balance=amount,
        purchaser=payload.purchaser,
        recipient=payload.recipient,
        message=payload.message,
        images=payload.images,
        expires_at=now + timedelta(days=settings.GIFT_CARD_VALID_DAYS),
        created_at=now,
    )
    for attempt in range(CODE_ATTEMPTS):
        try:
            card.id = create_document(db, "giftcard", card)
            break
        except DuplicateKeyError:
            logger.warning("Gift card code collision (attempt %d)", attempt + 1)
            card.code = generate_code()
    else:
        raise DependencyError("database", "could not allocate a unique gift card code")
    logger.info("Issued gift card %s for %.2f %s", card.id, card.amount, card.currency)

    email_sent = False
    if mailer is not None:
        email_sent = send_quietly(mailer, card.recipient.email, "You Received a Verity Gem Gift Card!",
                                  gift_card_template(card))
    return card, email_sent


def get_active_gift_card(db: Database, code: str, now: Optional[datetime] = None) -> GiftCard:
    now = now or datetime.now(timezone.utc)
    doc = db["giftcard"].find_one({"code": code.strip().upper(), "is_active": True})
    if not doc or as_utc(doc["expires_at"]) <= now:
        raise NotFoundError("Gift card", code)
    return GiftCard.from_doc(doc)
