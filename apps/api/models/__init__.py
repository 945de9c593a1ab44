"""Models package."""

from .user import User
from .creation import Creation
from .payment import Payment
