from .user import User, Profile
from .refresh_token import RefreshToken
from .otp_challenge import OTPChallenge, OTPRequestLog

__all__ = ["User", "Profile", "RefreshToken", "OTPChallenge", "OTPRequestLog"]
