from app.models.driver import Driver
from app.models.ride import Ride
from app.models.share import ShareGroup, ShareParticipant
from app.models.wallet import Wallet, WalletHold, WalletTransaction

__all__ = [
    "Driver",
    "Ride",
    "ShareGroup",
    "ShareParticipant",
    "Wallet",
    "WalletHold",
    "WalletTransaction",
]
