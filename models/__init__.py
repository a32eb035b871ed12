from .base import Base, utcnow
from .user import User
from .profile import Profile
from .vehicle import Vehicle
from .mod import Mod
from .image import Image, DEFAULT_BUCKET
from .rate_limit_bucket import RateLimitBucket
from .email_verification import EmailVerification
