"""Creator wallet addresses. Users exist only once a wallet has been written."""
import logging
import re

from vocalcast.config import settings
from vocalcast.errors import NotFoundError, ValidationError
from vocalcast.models.podcast import db, User

logger = logging.getLogger(__name__)

_WALLET_PATTERN = re.compile(r'^[A-Za-z0-9]+$')


def validate_wallet_address(value, min_length: int | None = None) -> str:
    min_length = settings.WALLET_MIN_LENGTH if min_length is None else min_length
    wallet = (value or '').strip() if isinstance(value, str) else ''
    if len(wallet) < min_length or not _WALLET_PATTERN.match(wallet):
        raise ValidationError(
            f'Wallet address must be at least {min_length} letters or digits',
            code='InvalidWallet',
        )
    return wallet


def wallet_on_file(username: str, min_length: int | None = None) -> str:
    """Return the stored wallet for ``username`` or raise NoWalletOnFile."""
    user = db.session.get(User, username)
    try:
        return validate_wallet_address(user.wallet_address if user else None, min_length)
    except ValidationError:
        raise ValidationError('No valid wallet address on file', code='NoWalletOnFile')


def get_wallet_address(username: str) -> User:
    user = db.session.get(User, username)
    if user is None or not user.wallet_address:
        raise NotFoundError('No wallet address on file', code='WalletNotFound')
    return user


def set_wallet_address(username: str, wallet_address) -> User:
    username = (username or '').strip()
    if not username:
        raise ValidationError('username is required')
    wallet = validate_wallet_address(wallet_address)

    user = db.session.get(User, username)
    if user is None:
        user = User(username=username)
        db.session.add(user)
    user.wallet_address = wallet
    db.session.commit()
    logger.info("Wallet updated for %s", username)
    return user
