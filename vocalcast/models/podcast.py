from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import false, func

db = SQLAlchemy()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime | None) -> datetime | None:
    """Normalize naive datetimes to UTC-aware values."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def _amount(value) -> float | None:
    """Render a Numeric column for JSON."""
    if value is None:
        return None
    return float(value)


# Moderation status, ordered by severity
STATUS_VISIBLE = 'visible'
STATUS_HIDDEN = 'hidden'
STATUS_BANNED = 'banned'
MODERATION_STATUSES = (STATUS_VISIBLE, STATUS_HIDDEN, STATUS_BANNED)

# Payout lifecycle
PAYOUT_INITIATED = 'initiated'
PAYOUT_FAILED = 'failed'
PAYOUT_GATEWAY_CONFIRMED = 'gateway_confirmed'
PAYOUT_COMPLETED = 'completed'
PAYOUT_FULFILLED = 'fulfilled'


class User(db.Model):
    __tablename__ = 'users'

    username = db.Column(db.String(120), primary_key=True)
    wallet_address = db.Column(db.String(128))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            'username': self.username,
            'walletAddress': self.wallet_address,
            'updated_at': _iso(self.updated_at),
        }


class Podcast(db.Model):
    __tablename__ = 'podcasts'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    duration = db.Column(db.String(32))
    audio_url = db.Column(db.Text, nullable=False)
    image_url = db.Column(db.Text)
    genre = db.Column(db.String(80))
    tags = db.Column(db.JSON, nullable=False, default=list)
    creator_pi_username = db.Column(db.String(120), nullable=False, index=True)
    uploaded_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)
    flag_count = db.Column(db.Integer, nullable=False, default=0, server_default='0')
    status = db.Column(db.String(16), nullable=False, default=STATUS_VISIBLE, server_default=STATUS_VISIBLE)

    flags = db.relationship('Flag', backref='podcast', lazy=True, cascade='all, delete-orphan')

    @property
    def hidden(self) -> bool:
        return self.status != STATUS_VISIBLE

    @property
    def creator_banned(self) -> bool:
        return self.status == STATUS_BANNED

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'duration': self.duration,
            'audio_url': self.audio_url,
            'image_url': self.image_url,
            'genre': self.genre,
            'tags': list(self.tags or []),
            'creator_pi_username': self.creator_pi_username,
            'uploaded_at': _iso(self.uploaded_at),
            'flag_count': self.flag_count or 0,
            'status': self.status,
            'hidden': self.hidden,
            'creator_banned': self.creator_banned,
        }


class Flag(db.Model):
    __tablename__ = 'flags'
    __table_args__ = (
        db.UniqueConstraint('podcast_id', 'flagged_by', name='uq_flags_podcast_flagged_by'),
    )

    id = db.Column(db.Integer, primary_key=True)
    podcast_id = db.Column(db.Integer, db.ForeignKey('podcasts.id', ondelete='CASCADE'), nullable=False)
    flagged_by = db.Column(db.String(120), nullable=False)
    flagged_at = db.Column(db.DateTime(timezone=True), default=_utcnow)


class Tip(db.Model):
    __tablename__ = 'tips'

    id = db.Column(db.Integer, primary_key=True)
    podcast_id = db.Column(db.Integer, nullable=True, index=True)
    tipper_username = db.Column(db.String(120), nullable=False)
    recipient_username = db.Column(db.String(120), nullable=False, index=True)
    amount = db.Column(db.Numeric(20, 6), nullable=False)
    paid = db.Column(db.Boolean, nullable=False, default=False, server_default=false())
    # Set while a payout has reserved the tip; cleared again if that payout fails
    payout_id = db.Column(db.Integer, db.ForeignKey('payouts.id'), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'podcast_id': self.podcast_id,
            'tipper': self.tipper_username,
            'recipient': self.recipient_username,
            'amount': _amount(self.amount),
            'paid': bool(self.paid),
            'payout_id': self.payout_id,
            'created_at': _iso(self.created_at),
        }


class PayoutRequest(db.Model):
    __tablename__ = 'payout_requests'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(120), unique=True, nullable=False)
    requested_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    fulfilled = db.Column(db.Boolean, nullable=False, default=False, server_default=false())
    fulfilled_at = db.Column(db.DateTime(timezone=True))

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'requested_at': _iso(self.requested_at),
            'fulfilled': bool(self.fulfilled),
            'fulfilled_at': _iso(self.fulfilled_at),
        }


class Payout(db.Model):
    __tablename__ = 'payouts'

    id = db.Column(db.Integer, primary_key=True)
    creator_username = db.Column(db.String(120), nullable=False, index=True)
    gross_amount = db.Column(db.Numeric(20, 6), nullable=False)
    platform_fee = db.Column(db.Numeric(20, 6), nullable=False)
    amount_paid = db.Column(db.Numeric(20, 6), nullable=False)
    paid_to = db.Column(db.String(128))
    gateway_payment_id = db.Column(db.String(128))
    memo = db.Column(db.String(255))
    txid = db.Column(db.String(128))
    status = db.Column(db.String(32), nullable=False, default=PAYOUT_INITIATED, index=True)
    is_manual = db.Column(db.Boolean, nullable=False, default=False, server_default=false())
    reason = db.Column(db.Text)
    payout_date = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    tips = db.relationship('Tip', backref='payout', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'creator_username': self.creator_username,
            'gross_amount': _amount(self.gross_amount),
            'platform_fee': _amount(self.platform_fee),
            'amount_paid': _amount(self.amount_paid),
            'paid_to': self.paid_to,
            'gateway_payment_id': self.gateway_payment_id,
            'memo': self.memo,
            'txid': self.txid,
            'status': self.status,
            'is_manual': bool(self.is_manual),
            'reason': self.reason,
            'payout_date': _iso(self.payout_date),
            'updated_at': _iso(self.updated_at),
        }


class PayoutLock(db.Model):
    """One row per creator while a payout workflow is running for them."""
    __tablename__ = 'payout_locks'

    creator_username = db.Column(db.String(120), primary_key=True)
    acquired_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)


def eligible_tips_query(username: str):
    """Tips owed to ``username`` that no payout has settled or reserved."""
    return Tip.query.filter(
        Tip.recipient_username == username,
        Tip.paid.is_(False),
        Tip.payout_id.is_(None),
    )


def sum_tips(query) -> Decimal:
    total = query.with_entities(func.coalesce(func.sum(Tip.amount), 0)).scalar()
    # SQLite hands sums back as floats; go through str to avoid binary noise
    return Decimal(str(total or 0)).quantize(Decimal('0.000001'))
