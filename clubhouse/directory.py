import logging
from typing import Optional

from shared.errors import NotFound, ValidationError
from .models import db, PlayerClubProfile, PointsTransaction

logger = logging.getLogger(__name__)


class PlayerDirectory:
    """Read-only lookups against club player profiles."""

    def get_profile(self, club_id: str, player_id: str) -> Optional[PlayerClubProfile]:
        if not player_id:
            return None
        return PlayerClubProfile.query.filter_by(club_id=club_id, player_id=player_id).first()


class PointsLedger:
    """Loyalty points balance keeper; each credit is its own transaction row."""

    def credit(
        self,
        club_id: str,
        player_id: str,
        amount: int,
        source_type: str = 'tournament',
        source_id: str = '',
        description: str = '',
        player_name: str = ''
    ) -> PointsTransaction:
        if amount is None or int(amount) <= 0:
            raise ValidationError("Credit amount must be positive")

        profile = PlayerClubProfile.query.filter_by(club_id=club_id, player_id=player_id).first()
        if profile is None:
            raise NotFound('Player profile', player_id)

        balance_before = profile.points or 0
        balance_after = balance_before + int(amount)

        txn = PointsTransaction(
            club_id=club_id,
            player_id=player_id,
            player_name=player_name or profile.player_name,
            type='earn',
            amount=int(amount),
            balance_before=balance_before,
            balance_after=balance_after,
            source=source_type,
            source_id=source_id,
            description=description
        )
        profile.points = balance_after
        db.session.add(txn)
        db.session.commit()

        logger.info(f"Credited {amount} points to {player_id} ({source_type} {source_id})")
        return txn
